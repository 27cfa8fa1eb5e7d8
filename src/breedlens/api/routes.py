"""API route definitions."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from breedlens.api.middleware import verify_api_key
from breedlens.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ImageTag,
    NoticeOut,
    NoticesResponse,
    ProfileInfo,
    ProfilesResponse,
    ScreenState,
)
from breedlens.ml.model_manager import PROFILES
from breedlens.ml.preprocessing import ImageDecodeError, decode_image
from breedlens.ui.screen import ImageRequest

if TYPE_CHECKING:
    from breedlens.config import Settings
    from breedlens.ml.inference import InferencePool
    from breedlens.ui.screen import ClassifierScreen

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_IMAGE_ERRORS = {
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_screen(request: Request) -> ClassifierScreen:
    screen: ClassifierScreen = request.app.state.screen
    return screen


def _screen_state(screen: ClassifierScreen) -> ScreenState:
    snap = screen.snapshot()
    return ScreenState(
        title=snap.title,
        label_text=snap.label_text,
        confidence_text=snap.confidence_text,
        has_image=snap.has_image,
        classify_enabled=snap.classify_enabled,
        ready=snap.ready,
    )


def _check_size(data: bytes, settings: Settings) -> None:
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Image exceeds {settings.max_file_size} bytes",
        )


def _deliver(screen: ClassifierScreen, image_request: ImageRequest, data: bytes) -> None:
    try:
        screen.on_image_result(image_request, ok=bool(data), payload=data or None)
    except ImageDecodeError as exc:
        logger.warning("Rejected %s image: %s", image_request.name.lower(), exc)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc


# ---------------------------------------------------------------------------
# Screen
# ---------------------------------------------------------------------------


@router.get("/screen", response_model=ScreenState, summary="Current screen state")
async def get_screen(request: Request) -> ScreenState:
    return _screen_state(_get_screen(request))


@router.post(
    "/screen/gallery",
    response_model=ScreenState,
    responses=_IMAGE_ERRORS,
    summary="Answer a gallery pick",
)
async def pick_from_gallery(request: Request, file: UploadFile) -> ScreenState:
    """Replace the displayed image with a picked file. An empty upload counts as a cancelled pick."""
    screen = _get_screen(request)
    data = await file.read()
    _check_size(data, _get_settings(request))
    _deliver(screen, screen.open_gallery(), data)
    return _screen_state(screen)


@router.post(
    "/screen/camera",
    response_model=ScreenState,
    responses=_IMAGE_ERRORS,
    summary="Answer a camera capture",
)
async def capture_from_camera(request: Request) -> ScreenState:
    """Replace the displayed image with captured bytes sent as the request body."""
    screen = _get_screen(request)
    data = await request.body()
    _check_size(data, _get_settings(request))
    _deliver(screen, screen.open_camera(), data)
    return _screen_state(screen)


@router.post(
    "/screen/classify",
    response_model=ScreenState,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse}},
    summary="Classify the displayed image",
)
async def classify_screen(request: Request) -> ScreenState:
    screen = _get_screen(request)
    try:
        await screen.classify()
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference pool is busy, try again",
        ) from None
    return _screen_state(screen)


@router.get("/screen/notices", response_model=NoticesResponse, summary="Recent notices")
async def get_notices(request: Request) -> NoticesResponse:
    notices = _get_screen(request).notices()
    return NoticesResponse(notices=[NoticeOut(message=n.message, created_at=n.created_at) for n in notices])


# ---------------------------------------------------------------------------
# Stateless classification
# ---------------------------------------------------------------------------


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        **_IMAGE_ERRORS,
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image with tags",
)
async def classify_image(request: Request, file: UploadFile, top_k: int = 5) -> ClassifyImageResponse:
    """Classify an uploaded image and return the top label plus ranked tags."""
    classifier = _get_screen(request).classifier
    if classifier is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Model not loaded")

    settings = _get_settings(request)
    data = await file.read()
    _check_size(data, settings)
    try:
        image = decode_image(data, settings.max_image_pixels)
    except ImageDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    try:
        result, tags = await _get_inference_pool(request).run(classifier.classify_ranked, image, max(top_k, 1))
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference pool is busy, try again",
        ) from None
    except Exception as exc:
        logger.exception("Classification failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Classification failed",
        ) from exc

    return ClassifyImageResponse(
        label=result.label,
        confidence=result.confidence,
        confidence_text=result.confidence_text,
        known=result.known,
        tags=[ImageTag(label=t.label, confidence=min(max(t.confidence, 0.0), 1.0)) for t in tags],
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    screen = _get_screen(request)
    pool = _get_inference_pool(request)
    classifier = screen.classifier
    return HealthResponse(
        status="ok" if classifier is not None else "degraded",
        profile=screen.profile.name,
        model_loaded=classifier is not None,
        num_classes=len(classifier.labels) if classifier is not None else 0,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        completed_requests=pool.completed_count,
    )


@router.get("/models", response_model=ProfilesResponse, summary="List classifier profiles")
async def list_models(request: Request) -> ProfilesResponse:
    """Return known profiles and whether their assets are present."""
    settings = _get_settings(request)
    assets_dir = Path(settings.assets_dir)

    profiles: list[ProfileInfo] = []
    for profile in PROFILES.values():
        if profile.name == settings.profile:
            profile_status = "active"
        elif (assets_dir / profile.model_filename).exists() and (assets_dir / profile.labels_filename).exists():
            profile_status = "available"
        elif settings.model_repo is not None:
            profile_status = "available"
        else:
            profile_status = "missing_assets"

        profiles.append(
            ProfileInfo(
                name=profile.name,
                image_size=profile.image_size,
                threshold=profile.threshold,
                status=profile_status,
            )
        )

    return ProfilesResponse(profiles=profiles)
