"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from breedlens.config import Settings

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from breedlens.api.routes import router
from breedlens.config import get_settings
from breedlens.ml.inference import InferencePool
from breedlens.ml.model_manager import ModelManager, get_profile
from breedlens.ui.screen import ClassifierScreen

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Load the active profile and attach the pool, model manager, and screen to app state."""
    profile = get_profile(settings.profile)
    pool = InferencePool(settings)
    manager = ModelManager(settings)
    screen = ClassifierScreen(
        profile,
        pool,
        notice_history=settings.notice_history,
        max_image_pixels=settings.max_image_pixels,
    )
    screen.initialize(manager)

    app.state.settings = settings
    app.state.inference_pool = pool
    app.state.model_manager = manager
    app.state.screen = screen


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting BreedLens (profile=%s, assets=%s, max_concurrent=%s)",
        settings.profile,
        settings.assets_dir,
        settings.max_concurrent,
    )

    init_state(app, settings)
    if app.state.screen.ready:
        logger.info("BreedLens ready")
    else:
        logger.warning("BreedLens started without a model; classification is unavailable")
    yield

    logger.info("Shutting down BreedLens")
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()
    logger.info("BreedLens shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="BreedLens",
        description="Pick or capture a photo and classify it with an on-device model",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("breedlens.main:app", host=settings.host, port=settings.port)
