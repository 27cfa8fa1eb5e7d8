"""Environment-based configuration for BreedLens."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ProfileName = Literal["dog_breeds", "dog_breeds_strict", "basic"]


class Settings(BaseSettings):
    """Application settings loaded from BREEDLENS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BREEDLENS_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # Classifier profile and bundled resources
    profile: ProfileName = "dog_breeds"
    assets_dir: str = "assets"
    # HuggingFace repo to fetch missing assets from (None = bundled only)
    model_repo: str | None = None

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)

    # Screen
    notice_history: int = Field(default=20, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
