"""Image classification: run the engine, pick the top label, apply the threshold."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike, NDArray
    from PIL import Image

    from breedlens.ml.model_manager import LoadedModel

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "unknown"


class ClassificationCancelled(RuntimeError):
    """Raised when a classification is cancelled between pipeline stages."""


class CancelToken:
    """Cooperative cancellation flag checked before each pipeline stage."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self, stage: str) -> None:
        if self._event.is_set():
            raise ClassificationCancelled(f"Classification cancelled before {stage}")


@dataclass(frozen=True)
class ClassificationResult:
    """The outcome of classifying one image."""

    label: str
    confidence: float
    index: int
    known: bool = True

    @property
    def confidence_text(self) -> str:
        return format_confidence(self.confidence)


@dataclass(frozen=True)
class ImageTag:
    """A single ranked label with its score."""

    label: str
    confidence: float


def format_confidence(score: float) -> str:
    """Format a [0, 1] score as a percentage with two decimals, e.g. 0.8734 -> '87.34%'."""
    return f"{float(score) * 100:.2f}%"


def argmax_label(scores: ArrayLike, labels: Sequence[str]) -> tuple[int, str, float]:
    """Return (index, label, score) of the highest score.

    Ties go to the lowest index.

    Raises:
        ValueError: If the scores are empty or not aligned with the labels.
    """
    vector = np.asarray(scores, dtype=np.float32).reshape(-1)
    if vector.size == 0:
        raise ValueError("Cannot select a label from an empty output vector")
    if vector.size != len(labels):
        raise ValueError(f"Output vector has {vector.size} scores but there are {len(labels)} labels")
    index = int(np.argmax(vector))
    return index, labels[index], float(vector[index])


def apply_threshold(score: float, threshold: float | None) -> bool:
    """Return True when the score is accepted. A score equal to the threshold is rejected."""
    if threshold is None:
        return True
    return score > threshold


def decide(scores: ArrayLike, labels: Sequence[str], threshold: float | None) -> ClassificationResult:
    """Turn an output vector into a classification, or the unknown result below threshold."""
    index, label, score = argmax_label(scores, labels)
    if apply_threshold(score, threshold):
        return ClassificationResult(label=label, confidence=score, index=index)
    return ClassificationResult(label=UNKNOWN_LABEL, confidence=score, index=index, known=False)


def rank(scores: ArrayLike, labels: Sequence[str], top_k: int) -> list[ImageTag]:
    """Return the top_k labels by score, highest first; ties keep label order."""
    vector = np.asarray(scores, dtype=np.float32).reshape(-1)
    order = np.argsort(-vector, kind="stable")[:top_k]
    return [ImageTag(label=labels[i], confidence=float(vector[i])) for i in order]


class OnnxImageClassifier:
    """Classifies images with a loaded model session."""

    def __init__(self, model: LoadedModel) -> None:
        self._model = model

    @property
    def model_name(self) -> str:
        return self._model.profile.name

    @property
    def labels(self) -> tuple[str, ...]:
        return self._model.labels

    def scores(self, image: Image.Image, token: CancelToken | None = None) -> NDArray[np.float32]:
        """Run preprocessing and inference, returning one score per label."""
        if token is not None:
            token.check("preprocessing")
        tensor = self._model.preprocessor.process(image)

        if token is not None:
            token.check("inference")
        outputs = self._model.session.run(None, {self._model.input_name: tensor})
        vector = np.asarray(outputs[0], dtype=np.float32).reshape(-1)

        if token is not None:
            token.check("post-processing")
        return vector

    def classify(self, image: Image.Image, token: CancelToken | None = None) -> ClassificationResult:
        """Classify an image against the profile threshold."""
        result = decide(self.scores(image, token), self._model.labels, self._model.profile.threshold)
        logger.debug("Classified as %s (%s)", result.label, result.confidence_text)
        return result

    def classify_ranked(self, image: Image.Image, top_k: int = 5) -> tuple[ClassificationResult, list[ImageTag]]:
        """Classify an image and also return the top_k ranked labels."""
        vector = self.scores(image)
        result = decide(vector, self._model.labels, self._model.profile.threshold)
        return result, rank(vector, self._model.labels, top_k)
