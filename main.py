import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.auth_routes import router as auth_router
from api.expense_routes import router as expense_router
from api.file_routes import router as file_router
from api.message_routes import router as message_router
from api.notification_routes import router as notification_router
from core.config import load_config
from core.platform import build_platform
from services.registry import Services

# This file is the control center of the whole application

# Load environment variables from .env file, if it exists
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
for noisy in ("google", "urllib3", "httpx", "httpcore"):
    logging.getLogger(noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# Default values can be provided if the env var is not set
DEV_DOMAIN = os.getenv("DEV_DOMAIN", "http://localhost:5173")
PRODUCTION_DOMAIN = os.getenv("PRODUCTION_DOMAIN")

# Construct the list of allowed origins, always including both dev and production
allowed_origins_list = [
    DEV_DOMAIN,
    PRODUCTION_DOMAIN,
    "http://localhost:3000",  # Additional fallback for React dev
    "http://127.0.0.1:5173",  # Additional fallback for Vite dev
]

# Remove any None values and duplicates
allowed_origins_list = sorted(set(origin for origin in allowed_origins_list if origin))


# On Startup, Build The Platform And Services Once
@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "services", None) is None:
        config = load_config()
        logger.info(f"Starting with the {config.backend} backend")
        app.state.services = Services(build_platform(config))
    yield


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the API. Passing services skips platform setup (used by tests)."""
    app = FastAPI(title="Expense Management API", lifespan=lifespan)
    app.state.services = services

    # Allow requests from the admin panel dev server & production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router, prefix="/auth", tags=["Auth", "User Management"])
    app.include_router(expense_router, prefix="/expenses", tags=["Expenses"])
    app.include_router(message_router, prefix="/messages", tags=["Messages"])
    app.include_router(notification_router, prefix="/notifications", tags=["Notifications"])
    app.include_router(file_router, prefix="/files", tags=["Files"])

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    return app


# Starts Fast API Up; Init
app = create_app()
