"""Pydantic request/response schemas for the BreedLens API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ScreenState(BaseModel):
    """What the classifier screen currently displays."""

    title: str
    label_text: str = Field(description="Top label, '-' for an unknown result, empty before the first run")
    confidence_text: str = Field(description="Confidence as a percentage with two decimals, e.g. '87.34%'")
    has_image: bool
    classify_enabled: bool
    ready: bool = Field(description="False when the model failed to load")


class NoticeOut(BaseModel):
    """A transient user-facing notice."""

    message: str
    created_at: float


class NoticesResponse(BaseModel):
    notices: list[NoticeOut]


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for the stateless image classification endpoint."""

    label: str = Field(description="Top label, or 'unknown' when the score does not exceed the threshold")
    confidence: float
    confidence_text: str
    known: bool
    tags: list[ImageTag]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    profile: str
    model_loaded: bool
    num_classes: int
    concurrent_requests: int
    queue_depth: int
    completed_requests: int


class ProfileInfo(BaseModel):
    """Information about a classifier profile."""

    name: str
    image_size: int
    threshold: float | None
    status: str = Field(description="Profile status: 'active', 'available', or 'missing_assets'")


class ProfilesResponse(BaseModel):
    """Response for the profile listing endpoint."""

    profiles: list[ProfileInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
