"""Shared fixtures: a fake engine session and in-memory images."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

from breedlens.config import Settings
from breedlens.ml.model_manager import PROFILES, LoadedModel
from breedlens.ml.preprocessing import ImagePreprocessor

if TYPE_CHECKING:
    from breedlens.ml.model_manager import ClassifierProfile


@dataclass
class _NodeArg:
    name: str
    shape: list[object]


@dataclass
class FakeSession:
    """Stands in for onnxruntime.InferenceSession, returning fixed scores."""

    scores: list[float]
    input_name: str = "input"
    static_width: bool = True
    feeds: list[dict[str, np.ndarray]] = field(default_factory=list)

    def get_inputs(self) -> list[_NodeArg]:
        return [_NodeArg(self.input_name, [1, 224, 224, 3])]

    def get_outputs(self) -> list[_NodeArg]:
        width: object = len(self.scores) if self.static_width else "num_classes"
        return [_NodeArg("output", [1, width])]

    def run(self, output_names: object, feed: dict[str, np.ndarray]) -> list[np.ndarray]:
        self.feeds.append(feed)
        return [np.asarray([self.scores], dtype=np.float32)]


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "profile": "dog_breeds",
        "assets_dir": "/tmp/breedlens_test_assets",
        "max_concurrent": 2,
        "intra_op_threads": 0,
        "inter_op_threads": 1,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def make_loaded_model(
    scores: list[float],
    labels: tuple[str, ...],
    profile: ClassifierProfile | None = None,
) -> LoadedModel:
    profile = profile or PROFILES["dog_breeds"]
    return LoadedModel(
        profile=profile,
        session=FakeSession(scores),  # type: ignore[arg-type]
        labels=labels,
        preprocessor=ImagePreprocessor(size=profile.image_size),
    )


def encode_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def dog_image() -> Image.Image:
    """A small deterministic RGB gradient."""
    x = np.linspace(0, 255, 64, dtype=np.uint8)
    red, green = np.meshgrid(x, x[::-1])
    pixels = np.stack([red, green, np.full((64, 64), 128, dtype=np.uint8)], axis=-1)
    return Image.fromarray(pixels.astype(np.uint8))


@pytest.fixture()
def dog_png(dog_image: Image.Image) -> bytes:
    return encode_png(dog_image)
