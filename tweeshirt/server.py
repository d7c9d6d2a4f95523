# server.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tweeshirt import models  # noqa: F401  (registers tables on Base.metadata)
from tweeshirt import orders
from tweeshirt.db import Base, engine
from tweeshirt.settings import settings

# --- Logging Configuration ---
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger(__name__)

# --- App Initialization ---
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Order configuration & submission API: artwork placement, garment, shipping, payment.",
    version="1.0.0",
)

# --- CORS Middleware ---
origins = [origin.strip() for origin in settings.FRONTEND_URL.split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Database Startup Event ---
@app.on_event("startup")
async def on_startup():
    """Create database tables on startup."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info("Database tables verified/created.")


# --- Routers ---
app.include_router(orders.router, prefix=settings.API_V1_PREFIX)


@app.get("/health")
async def health():
    return {"status": "ok", "service": settings.PROJECT_NAME}
