"""Model manager: classifier profiles, bundled asset loading, and the engine session.

A profile names the model and label files for one classifier screen. Loading
reads the label list and opens the model file in an ONNX InferenceSession with
default execution options.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from breedlens.ml.preprocessing import ImagePreprocessor

if TYPE_CHECKING:
    from breedlens.config import Settings

logger = logging.getLogger(__name__)


class ModelLoadError(RuntimeError):
    """Raised when the model or label file cannot be loaded."""


# ---------------------------------------------------------------------------
# Profile registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScreenCopy:
    """User-facing text for a classifier screen."""

    title: str
    init_error: str = "Initialization error!"
    unknown_notice: str | None = None
    unknown_text: str = "-"


@dataclass(frozen=True)
class ClassifierProfile:
    """Static configuration for one classifier screen variant."""

    name: str
    image_size: int
    threshold: float | None
    model_filename: str
    labels_filename: str
    copy: ScreenCopy


_DOG_BREEDS_COPY = ScreenCopy(
    title="Dog breed classifier",
    unknown_notice="Unknown breed.",
)

PROFILES: dict[str, ClassifierProfile] = {
    "dog_breeds": ClassifierProfile(
        name="dog_breeds",
        image_size=224,
        threshold=0.5,
        model_filename="model.onnx",
        labels_filename="labels.txt",
        copy=_DOG_BREEDS_COPY,
    ),
    "dog_breeds_strict": ClassifierProfile(
        name="dog_breeds_strict",
        image_size=224,
        threshold=0.7,
        model_filename="model.onnx",
        labels_filename="labels.txt",
        copy=_DOG_BREEDS_COPY,
    ),
    "basic": ClassifierProfile(
        name="basic",
        image_size=224,
        threshold=None,
        model_filename="model.onnx",
        labels_filename="labels.txt",
        copy=ScreenCopy(title="Image classifier"),
    ),
}


def get_profile(name: str) -> ClassifierProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise KeyError(f"Unknown profile: {name}") from None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoadedModel:
    """Read-only resources held for the lifetime of the app."""

    profile: ClassifierProfile
    session: InferenceSession
    labels: tuple[str, ...]
    preprocessor: ImagePreprocessor

    @property
    def input_name(self) -> str:
        return str(self.session.get_inputs()[0].name)

    @property
    def num_classes(self) -> int:
        return len(self.labels)


def load_labels(path: Path) -> tuple[str, ...]:
    """Read a newline-delimited label file, skipping blank lines."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, ValueError) as exc:
        raise ModelLoadError(f"Cannot read labels from {path}: {exc}") from exc

    labels = tuple(line.strip() for line in text.splitlines() if line.strip())
    if not labels:
        raise ModelLoadError(f"Label file {path} is empty")
    return labels


def build_session_options(settings: Settings) -> SessionOptions:
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    return opts


def _static_output_width(session: InferenceSession) -> int | None:
    shape = session.get_outputs()[0].shape
    if not shape:
        return None
    width = shape[-1]
    return width if isinstance(width, int) else None


class ModelManager:
    """Resolves bundled assets for a profile and loads them once."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._assets_dir = Path(settings.assets_dir)
        self._loaded: LoadedModel | None = None

    @property
    def loaded(self) -> LoadedModel | None:
        return self._loaded

    def asset_path(self, filename: str) -> Path:
        """Return the local path of an asset, downloading it if a repo is configured."""
        path = self._assets_dir / filename
        if path.exists() or self._settings.model_repo is None:
            return path

        self._assets_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=self._settings.model_repo,
                filename=filename,
                local_dir=str(self._assets_dir),
            )
        )
        logger.info("Downloaded %s to %s", filename, downloaded)
        return downloaded

    def load(self, profile: ClassifierProfile) -> LoadedModel:
        """Load labels and model for a profile.

        Raises:
            ModelLoadError: If either file is missing, unreadable, or the
                model output width does not match the label count.
        """
        try:
            labels_path = self.asset_path(profile.labels_filename)
            model_path = self.asset_path(profile.model_filename)
        except Exception as exc:
            raise ModelLoadError(f"Cannot fetch assets for {profile.name}: {exc}") from exc

        labels = load_labels(labels_path)
        session = self._open_session(model_path)

        width = _static_output_width(session)
        if width is not None and width != len(labels):
            raise ModelLoadError(
                f"Model {model_path.name} outputs {width} scores but {labels_path.name} has {len(labels)} labels"
            )

        self._loaded = LoadedModel(
            profile=profile,
            session=session,
            labels=labels,
            preprocessor=ImagePreprocessor(
                size=profile.image_size,
                max_pixels=self._settings.max_image_pixels,
            ),
        )
        logger.info("Loaded profile %s (%d classes)", profile.name, len(labels))
        return self._loaded

    def shutdown(self) -> None:
        self._loaded = None
        logger.info("Model session released")

    def _open_session(self, model_path: Path) -> InferenceSession:
        try:
            size = model_path.stat().st_size
        except OSError as exc:
            raise ModelLoadError(f"Cannot open model file {model_path}: {exc}") from exc
        if size == 0:
            raise ModelLoadError(f"Model file {model_path} is empty")

        try:
            return InferenceSession(
                str(model_path),
                sess_options=build_session_options(self._settings),
                providers=["CPUExecutionProvider"],
            )
        except Exception as exc:
            # onnxruntime's own error types do not share a common base.
            raise ModelLoadError(f"Cannot load model {model_path}: {exc}") from exc
