"""Tests for label selection, thresholding, and the ONNX classifier wrapper."""

from __future__ import annotations

import numpy as np
import pytest
from conftest import FakeSession, make_loaded_model
from PIL import Image

from breedlens.ml.image_classifier import (
    UNKNOWN_LABEL,
    CancelToken,
    ClassificationCancelled,
    OnnxImageClassifier,
    apply_threshold,
    argmax_label,
    decide,
    format_confidence,
    rank,
)
from breedlens.ml.model_manager import PROFILES

# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestArgmaxLabel:
    def test_picks_highest_score(self) -> None:
        index, label, score = argmax_label([0.1, 0.7, 0.2], ["a", "b", "c"])
        assert index == 1
        assert label == "b"
        assert score == pytest.approx(0.7)

    def test_ties_go_to_lowest_index(self) -> None:
        index, label, _ = argmax_label([0.1, 0.4, 0.4, 0.1], ["a", "b", "c", "d"])
        assert index == 1
        assert label == "b"

    def test_accepts_batched_output(self) -> None:
        index, _, _ = argmax_label(np.array([[0.3, 0.6, 0.1]]), ["a", "b", "c"])
        assert index == 1

    def test_length_mismatch_raises(self) -> None:
        with pytest.raises(ValueError, match="3 scores but there are 2 labels"):
            argmax_label([0.1, 0.2, 0.7], ["a", "b"])

    def test_empty_vector_raises(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            argmax_label([], [])


class TestThreshold:
    def test_above_threshold_accepted(self) -> None:
        assert apply_threshold(0.51, 0.5) is True

    def test_equal_to_threshold_rejected(self) -> None:
        assert apply_threshold(0.5, 0.5) is False

    def test_no_threshold_accepts_everything(self) -> None:
        assert apply_threshold(0.01, None) is True


class TestFormatConfidence:
    @pytest.mark.parametrize(
        ("score", "expected"),
        [(0.8734, "87.34%"), (0.81, "81.00%"), (1.0, "100.00%"), (0.0, "0.00%")],
    )
    def test_two_decimal_percentage(self, score: float, expected: str) -> None:
        assert format_confidence(score) == expected

    def test_float32_score(self) -> None:
        assert format_confidence(np.float32(0.81)) == "81.00%"


class TestDecide:
    def test_beagle_poodle_scenario(self) -> None:
        result = decide([0.2, 0.81], ["beagle", "poodle"], threshold=0.5)
        assert result.known is True
        assert result.label == "poodle"
        assert result.index == 1
        assert result.confidence_text == "81.00%"

    def test_below_threshold_is_unknown(self) -> None:
        result = decide([0.45, 0.55], ["beagle", "poodle"], threshold=0.7)
        assert result.known is False
        assert result.label == UNKNOWN_LABEL
        assert result.index == 1

    def test_at_threshold_is_unknown(self) -> None:
        result = decide([0.5, 0.5], ["beagle", "poodle"], threshold=0.5)
        assert result.known is False

    def test_no_threshold_always_labels(self) -> None:
        result = decide([0.3, 0.2, 0.25, 0.25], ["a", "b", "c", "d"], threshold=None)
        assert result.known is True
        assert result.label == "a"


class TestRank:
    def test_orders_by_score_and_truncates(self) -> None:
        tags = rank([0.1, 0.5, 0.3, 0.1], ["a", "b", "c", "d"], top_k=3)
        assert [t.label for t in tags] == ["b", "c", "a"]

    def test_ties_keep_label_order(self) -> None:
        tags = rank([0.25, 0.25, 0.25, 0.25], ["a", "b", "c", "d"], top_k=4)
        assert [t.label for t in tags] == ["a", "b", "c", "d"]


# ---------------------------------------------------------------------------
# OnnxImageClassifier
# ---------------------------------------------------------------------------


class TestOnnxImageClassifier:
    def test_feeds_normalized_tensor_to_session(self, dog_image: Image.Image) -> None:
        model = make_loaded_model([0.2, 0.81], ("beagle", "poodle"))
        classifier = OnnxImageClassifier(model)

        result = classifier.classify(dog_image)

        session: FakeSession = model.session  # type: ignore[assignment]
        tensor = session.feeds[0]["input"]
        assert tensor.shape == (1, 224, 224, 3)
        assert tensor.dtype == np.float32
        assert 0.0 <= tensor.min() <= tensor.max() <= 1.0
        assert result.label == "poodle"
        assert result.confidence_text == "81.00%"

    def test_uses_profile_threshold(self, dog_image: Image.Image) -> None:
        model = make_loaded_model([0.35, 0.65], ("beagle", "poodle"), profile=PROFILES["dog_breeds_strict"])
        result = OnnxImageClassifier(model).classify(dog_image)
        assert result.known is False

    def test_basic_profile_has_no_unknown_path(self, dog_image: Image.Image) -> None:
        model = make_loaded_model([0.35, 0.3, 0.35], ("a", "b", "c"), profile=PROFILES["basic"])
        result = OnnxImageClassifier(model).classify(dog_image)
        assert result.known is True
        assert result.label == "a"

    def test_classify_ranked_returns_tags(self, dog_image: Image.Image) -> None:
        model = make_loaded_model([0.1, 0.6, 0.3], ("a", "b", "c"))
        result, tags = OnnxImageClassifier(model).classify_ranked(dog_image, top_k=2)
        assert result.label == "b"
        assert [t.label for t in tags] == ["b", "c"]

    def test_cancelled_token_stops_before_inference(self, dog_image: Image.Image) -> None:
        model = make_loaded_model([0.2, 0.81], ("beagle", "poodle"))
        token = CancelToken()
        token.cancel()

        with pytest.raises(ClassificationCancelled, match="preprocessing"):
            OnnxImageClassifier(model).classify(dog_image, token)

        session: FakeSession = model.session  # type: ignore[assignment]
        assert session.feeds == []

    def test_does_not_mutate_input_image(self, dog_image: Image.Image) -> None:
        before = dog_image.tobytes()
        model = make_loaded_model([0.2, 0.81], ("beagle", "poodle"))
        OnnxImageClassifier(model).classify(dog_image)
        assert dog_image.tobytes() == before
        assert dog_image.size == (64, 64)
