"""
DealerDesk API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_settings
from core.logging import configure_logging
from db.session import create_tables, engine

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    configure_logging(settings.log_level, json_output=settings.log_json)
    logger.info(
        "DealerDesk API starting up",
        version=settings.app_version,
        dealergpt_mode=settings.dealergpt_mode,
    )
    if settings.auto_create_tables:
        await create_tables()
    yield
    await engine.dispose()
    logger.info("DealerDesk API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Dealership management backend with the DealerGPT assistant",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import auth, dealergpt

app.include_router(auth.router)
app.include_router(dealergpt.router)


@app.get("/health")
async def health_check():
    """Liveness check for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
