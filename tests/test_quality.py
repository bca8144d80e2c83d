"""Tests for the quality gates and stable ids."""

import numpy as np
import pytest

from face_identity.detection import DetectedFace


class TestDetectionGate:
    """Test cases for QualityGate.check_detection."""

    FRAME = (480, 640, 3)

    def test_accepts_good_detection(self):
        from face_identity.quality import QualityGate

        face = DetectedFace(x=100, y=100, width=200, height=200, confidence=0.95)
        QualityGate().check_detection(face, self.FRAME)

    @pytest.mark.parametrize("face", [
        DetectedFace(x=0, y=0, width=79, height=200, confidence=0.99),
        DetectedFace(x=0, y=0, width=200, height=60, confidence=0.99),
        DetectedFace(x=0, y=0, width=80, height=80, confidence=0.99),  # 2% of frame
        DetectedFace(x=0, y=0, width=200, height=200, confidence=0.80),
    ])
    def test_rejects_bad_detection(self, face):
        from face_identity.errors import LowQualityRejected
        from face_identity.quality import QualityGate

        with pytest.raises(LowQualityRejected):
            QualityGate().check_detection(face, self.FRAME)

    def test_filter_detections(self):
        from face_identity.quality import QualityGate

        good = DetectedFace(x=100, y=100, width=200, height=200, confidence=0.95)
        small = DetectedFace(x=0, y=0, width=40, height=40, confidence=0.95)
        assert QualityGate().filter_detections([small, good], self.FRAME) == [good]


class TestEmbeddingGate:
    """Test cases for QualityGate.check_embedding."""

    def test_accepts_textured_face(self, face_image):
        from face_identity.features import extract_features_with_stats
        from face_identity.normalization import normalize_embedding
        from face_identity.preprocessing import preprocess_face
        from face_identity.quality import QualityGate

        features = extract_features_with_stats(preprocess_face(face_image))
        embedding = normalize_embedding(features.vector)
        assert QualityGate().passes_embedding(
            embedding, features.raw_variance, features.max_intensity_variance
        )

    def test_rejects_zero_embedding(self):
        from face_identity.errors import LowQualityRejected
        from face_identity.quality import QualityGate

        with pytest.raises(LowQualityRejected):
            QualityGate().check_embedding(np.zeros(512), raw_variance=10.0)

    def test_rejects_low_raw_variance(self):
        from face_identity.errors import LowQualityRejected
        from face_identity.quality import QualityGate

        embedding = np.random.default_rng(1).normal(size=512)
        with pytest.raises(LowQualityRejected) as excinfo:
            QualityGate().check_embedding(embedding, raw_variance=0.001)
        assert excinfo.value.value == pytest.approx(0.001)

    def test_rejects_uniform_gray_crop(self, engine, gray_image):
        """A uniform gray crop never produces an embedding."""
        from face_identity.errors import LowQualityRejected

        with pytest.raises(LowQualityRejected):
            engine.extract_embedding(gray_image)


class TestStableId:
    """Test cases for stable face ids and cooldowns."""

    def test_format(self):
        """Halves round toward +inf: 62.5 gives 63, -62.5 gives -62."""
        from face_identity.stable_id import stable_face_id

        embedding = np.zeros(512)
        embedding[:4] = [0.0625, -0.0625, 0.125, -1.0]
        assert stable_face_id(embedding) == "face-63--62-125--1000-0-0-0-0"

    def test_identical_embeddings_share_id(self, engine, face_image):
        first = engine.extract_embedding(face_image)
        second = engine.extract_embedding(face_image.copy())
        assert first.stable_id == second.stable_id
        assert first.stable_id.startswith("face-")

    def test_requires_full_embedding(self):
        from face_identity.errors import DimensionMismatch
        from face_identity.stable_id import stable_face_id

        with pytest.raises(DimensionMismatch):
            stable_face_id(np.ones(8))

    def test_cooldown(self):
        from face_identity.stable_id import CooldownTracker

        now = [0.0]
        tracker = CooldownTracker(60.0, clock=lambda: now[0])

        assert tracker.should_emit("face-1")
        assert not tracker.should_emit("face-1")
        assert tracker.should_emit("face-2")

        now[0] = 59.9
        assert not tracker.should_emit("face-1")
        now[0] = 60.0
        assert tracker.should_emit("face-1")
