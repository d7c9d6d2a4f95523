# auth.py
"""
Bearer-token identity for the order API.

Sign-in happens at the identity provider; this service only verifies the
issued JWT and reads the caller's email from it.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from tweeshirt.settings import settings

# ===================================================================
# Pydantic Schemas (Data Validation)
# ===================================================================

class CurrentUser(BaseModel):
    """The authenticated caller, as described by the token."""
    email: str
    name: Optional[str] = None


# ===================================================================
# Configuration
# ===================================================================

bearer_scheme = HTTPBearer(auto_error=False)


# ===================================================================
# Utility Functions
# ===================================================================

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Creates a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRY_MINUTES)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt


# ===================================================================
# Current User Dependency
# ===================================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    """Dependency to get the current authenticated user from a token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        payload = jwt.decode(
            credentials.credentials, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError:
        raise credentials_exception

    email = payload.get("email") or payload.get("sub")
    if not email:
        raise credentials_exception
    return CurrentUser(email=email, name=payload.get("name"))
