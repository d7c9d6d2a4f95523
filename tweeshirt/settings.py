# settings.py
import os
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Project
    PROJECT_NAME: str = "Tweeshirt Order Service"
    API_V1_PREFIX: str = "/api"

    # Security (tokens are issued by the identity provider; we only verify them)
    JWT_SECRET: str = os.getenv("JWT_SECRET", "super-secret-key")
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_MINUTES: int = 60 * 24  # 24h

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite+aiosqlite:///./dev.db"  # default local SQLite
    )

    # Printrove (fulfillment partner)
    PRINTROVE_API_KEY: str = os.getenv("PRINTROVE_API_KEY", "")
    PRINTROVE_UPLOAD_URL: str = "https://api.printrove.com/api/external/designs"

    # Order backend
    ORDER_BACKEND_URL: str = os.getenv("ORDER_BACKEND_URL", "http://localhost:5000")

    # Outbound HTTP
    HTTP_TIMEOUT: float = 60.0

    # Pricing
    PRICING_STRATEGY: str = "margin"  # "margin" (canonical) or "flat"
    CURRENCY: str = "usd"

    # Stripe
    STRIPE_SECRET_KEY: str = os.getenv("STRIPE_SECRET_KEY", "")

    # Frontend URL (CORS)
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    class Config:
        env_file = ".env"
        case_sensitive = True


# ✅ Instantiate settings globally
settings = Settings()
