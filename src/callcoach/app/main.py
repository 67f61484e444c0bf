"""FastAPI application entry point for the call analysis API."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from callcoach.app.config import get_settings
from callcoach.infra.database import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup and warn when usage limits are off."""
    await init_db()
    settings = get_settings()
    if settings.subscription_mode == "bypassed":
        logger.warning("Usage limits are BYPASSED (subscription_mode=bypassed)")
    yield


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="Call Coach API",
    lifespan=lifespan,
    debug=settings.debug,
)

# Credentials cannot be combined with a wildcard origin
_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from callcoach.app.routes.auth import router as auth_router
from callcoach.app.routes.calls import router as calls_router
from callcoach.app.routes.performance import router as performance_router
from callcoach.app.routes.roleplay import router as roleplay_router

app.include_router(auth_router)
app.include_router(calls_router)
app.include_router(performance_router)
app.include_router(roleplay_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Liveness probe."""
    return {"status": "ok", "service": "callcoach"}


def run() -> None:
    """Console-script entry point: serve the API with uvicorn."""
    uvicorn.run(
        "callcoach.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
