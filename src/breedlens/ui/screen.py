"""Classifier screen: the displayed image, result fields, and transient notices.

One screen instance is owned by a single event loop. Classification runs on the
inference pool and its result is applied back on that loop. Image acquisition
is host-mediated: the host answers an ImageRequest with a payload or a
cancellation.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import IO, TYPE_CHECKING

from PIL import Image

from breedlens.ml.image_classifier import CancelToken, ClassificationCancelled, OnnxImageClassifier
from breedlens.ml.model_manager import ModelLoadError
from breedlens.ml.preprocessing import decode_image

if TYPE_CHECKING:
    from pathlib import Path

    from breedlens.ml.image_classifier import ClassificationResult
    from breedlens.ml.inference import InferencePool
    from breedlens.ml.model_manager import ClassifierProfile, LoadedModel, ModelManager

logger = logging.getLogger(__name__)


class ImageRequest(IntEnum):
    CAMERA = 1
    GALLERY = 100


@dataclass(frozen=True)
class Notice:
    """A transient user-facing message."""

    message: str
    created_at: float


@dataclass(frozen=True)
class ScreenSnapshot:
    title: str
    label_text: str
    confidence_text: str
    has_image: bool
    classify_enabled: bool
    ready: bool


class ClassifierScreen:
    """Screen controller parameterized by a classifier profile."""

    def __init__(
        self,
        profile: ClassifierProfile,
        pool: InferencePool,
        notice_history: int = 20,
        max_image_pixels: int | None = None,
    ) -> None:
        self.profile = profile
        self._pool = pool
        self._max_image_pixels = max_image_pixels
        self._lock = threading.Lock()
        self._classifier: OnnxImageClassifier | None = None
        self._image: Image.Image | None = None
        self._label_text = ""
        self._confidence_text = ""
        self._classify_enabled = False
        self._notices: deque[Notice] = deque(maxlen=notice_history)
        self._in_flight: CancelToken | None = None

    # -- Lifecycle ----------------------------------------------------------

    def initialize(self, manager: ModelManager) -> bool:
        """Load the profile's model and labels.

        On failure the error is logged, a notice is shown once, and the screen
        stays up without a classifier.
        """
        try:
            model = manager.load(self.profile)
        except ModelLoadError:
            logger.exception("Failed to initialize profile %s", self.profile.name)
            self.show_notice(self.profile.copy.init_error)
            return False
        self.attach(model)
        return True

    def attach(self, model: LoadedModel) -> None:
        self._classifier = OnnxImageClassifier(model)

    @property
    def ready(self) -> bool:
        return self._classifier is not None

    @property
    def classifier(self) -> OnnxImageClassifier | None:
        return self._classifier

    # -- Image acquisition --------------------------------------------------

    def open_gallery(self) -> ImageRequest:
        return ImageRequest.GALLERY

    def open_camera(self) -> ImageRequest:
        return ImageRequest.CAMERA

    def on_image_result(
        self,
        request: ImageRequest | int,
        ok: bool,
        payload: Image.Image | bytes | IO[bytes] | Path | None = None,
    ) -> bool:
        """Handle the host's answer to an image request.

        Returns True when the displayed image was replaced. A cancelled or failed
        request leaves the screen unchanged.

        Raises:
            ImageDecodeError: If the payload cannot be decoded. The screen is unchanged.
            ValueError: If the request code is not recognized.
        """
        if not ok or payload is None:
            logger.info("Image request %s cancelled", int(request))
            return False

        request = ImageRequest(request)
        image = payload if isinstance(payload, Image.Image) else decode_image(payload, self._max_image_pixels)
        with self._lock:
            self._image = image
            self._classify_enabled = True
        logger.info("Loaded image %dx%d from %s", image.width, image.height, request.name.lower())
        return True

    @property
    def image(self) -> Image.Image | None:
        with self._lock:
            return self._image

    # -- Classification -----------------------------------------------------

    async def classify(self) -> ClassificationResult | None:
        """Classify the displayed image and update the result fields.

        Returns None with no display update when there is no image, the screen
        failed to initialize, the run was superseded by a newer one, or the
        pipeline failed (the failure is logged).

        Raises:
            TimeoutError: If the inference pool is saturated.
        """
        classifier = self._classifier
        if classifier is None:
            logger.error("Classifier not initialized")
            return None

        token = CancelToken()
        with self._lock:
            image = self._image
            if image is None:
                logger.error("No image loaded")
                return None
            previous, self._in_flight = self._in_flight, token
        if previous is not None:
            previous.cancel()

        try:
            result = await self._pool.run(classifier.classify, image, token)
        except ClassificationCancelled:
            logger.info("Superseded classification discarded")
            return None
        except TimeoutError:
            raise
        except Exception:
            logger.exception("Classification failed")
            self._release(token)
            return None
        if token.cancelled:
            logger.info("Superseded classification discarded")
            return None

        self._release(token)
        self._show(result)
        return result

    def _release(self, token: CancelToken) -> None:
        with self._lock:
            if self._in_flight is token:
                self._in_flight = None

    def _show(self, result: ClassificationResult) -> None:
        copy = self.profile.copy
        with self._lock:
            if result.known:
                self._label_text = result.label
                self._confidence_text = result.confidence_text
            else:
                self._label_text = copy.unknown_text
                self._confidence_text = copy.unknown_text
        if not result.known and copy.unknown_notice:
            self.show_notice(copy.unknown_notice)

    # -- Display ------------------------------------------------------------

    def show_notice(self, message: str) -> None:
        with self._lock:
            self._notices.append(Notice(message=message, created_at=time.time()))

    def notices(self) -> list[Notice]:
        """Return retained notices, oldest first."""
        with self._lock:
            return list(self._notices)

    def snapshot(self) -> ScreenSnapshot:
        with self._lock:
            return ScreenSnapshot(
                title=self.profile.copy.title,
                label_text=self._label_text,
                confidence_text=self._confidence_text,
                has_image=self._image is not None,
                classify_enabled=self._classify_enabled,
                ready=self._classifier is not None,
            )
