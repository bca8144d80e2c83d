"""Integration tests for the engine and live stream scanning."""

import threading

import numpy as np
import pytest

from conftest import BlockingDetector, ScriptedDetector
from face_identity.detection import DetectedFace
from face_identity.gallery import GalleryEntry


class TestFaceIdentityEngine:
    """Test cases for FaceIdentityEngine."""

    def test_extraction_is_deterministic(self, engine, face_image):
        first = engine.extract_embedding(face_image)
        second = engine.extract_embedding(face_image)

        assert first.embedding.shape == (512,)
        assert first.embedding.dtype == np.float64
        assert np.array_equal(first.embedding, second.embedding)

    def test_embedding_is_standardized(self, engine, face_image):
        embedding = engine.extract_embedding(face_image).embedding
        assert embedding.mean() == pytest.approx(0.0, abs=1e-9)
        assert embedding.std() == pytest.approx(1.0, abs=1e-6)

    def test_same_face_matches_itself(self, engine, face_image):
        gallery = [
            GalleryEntry.from_embedding("alice", "Alice", engine.extract_embedding(face_image).embedding),
        ]
        decision = engine.match_embedding(engine.extract_embedding(face_image).embedding, gallery)

        assert decision.identity_key == "alice"
        assert decision.confidence == pytest.approx(1.0)

    @pytest.mark.parametrize("shape", [
        (81, 81, 3),
        (37, 300, 3),
        (300, 37, 3),
        (768, 1024, 3),
        (120, 90),
        (150, 150, 4),
        (64, 64, 1),
    ])
    def test_embedding_length_is_fixed(self, engine, shape):
        image = np.random.default_rng(7).integers(0, 256, shape, dtype=np.uint8)

        result = engine.extract_embedding(image)

        assert result.embedding.shape == (512,)
        assert np.all(np.isfinite(result.embedding))

    def test_uniform_gray_canonical_size_is_rejected(self, engine):
        from face_identity.errors import LowQualityRejected

        with pytest.raises(LowQualityRejected):
            engine.extract_embedding(np.full((256, 256, 3), 128, dtype=np.uint8))

    def test_try_extract_swallows_frame_errors(self, engine, gray_image):
        assert engine.try_extract(gray_image) is None
        assert engine.try_extract(None) is None

    def test_detector_crops_largest_face(self, frame_image, good_face):
        from face_identity.pipeline import FaceIdentityEngine

        small = DetectedFace(x=0, y=0, width=90, height=90, confidence=0.99)
        engine = FaceIdentityEngine(detector=ScriptedDetector([[small, good_face]]))

        result = engine.extract_embedding(frame_image)
        assert result.face is good_face

    def test_no_face(self, frame_image):
        from face_identity.errors import NoFaceDetected
        from face_identity.pipeline import FaceIdentityEngine

        engine = FaceIdentityEngine(detector=ScriptedDetector([[]]))
        with pytest.raises(NoFaceDetected):
            engine.extract_embedding(frame_image)

    def test_low_confidence_detection(self, frame_image):
        from face_identity.errors import LowQualityRejected
        from face_identity.pipeline import FaceIdentityEngine

        weak = DetectedFace(x=20, y=20, width=160, height=160, confidence=0.5)
        engine = FaceIdentityEngine(detector=ScriptedDetector([[weak]]))
        with pytest.raises(LowQualityRejected):
            engine.extract_embedding(frame_image)

    def test_process_frame_drops_rejected_faces(self, frame_image, good_face):
        from face_identity.pipeline import FaceIdentityEngine

        tiny = DetectedFace(x=0, y=0, width=30, height=30, confidence=0.99)
        engine = FaceIdentityEngine(detector=ScriptedDetector([[good_face, tiny]]))

        observations = engine.process_frame(frame_image, [])
        assert len(observations) == 1
        assert observations[0].face is good_face
        assert observations[0].decision.is_unknown


class TestStreamScanner:
    """Test cases for StreamScanner."""

    def test_recognition_cooldown_and_history(self, engine, storage, face_image):
        from face_identity.pipeline import StreamScanner

        embedding = engine.extract_embedding(face_image).embedding
        storage.gallery.put(GalleryEntry.from_embedding("alice", "Alice", embedding))
        now = [0.0]
        scanner = StreamScanner(engine, storage.gallery, storage.history, clock=lambda: now[0])

        first = scanner.scan(face_image)
        second = scanner.scan(face_image)
        assert first[0].decision.identity_key == "alice"
        assert first[0].alert
        assert not second[0].alert

        now[0] = 61.0
        assert scanner.scan(face_image)[0].alert
        assert len(storage.history.get_history("alice")) == 2

    def test_unknown_face_cooldown_by_stable_id(self, engine, storage, face_image):
        from face_identity.pipeline import StreamScanner

        scanner = StreamScanner(engine, storage.gallery, clock=lambda: 0.0)
        assert scanner.scan(face_image)[0].alert
        assert not scanner.scan(face_image)[0].alert

    def test_rejected_frame_returns_empty(self, engine, storage, gray_image):
        from face_identity.pipeline import StreamScanner

        scanner = StreamScanner(engine, storage.gallery)
        assert scanner.scan(gray_image) == []
        assert scanner.frames_processed == 1

    def test_overlapping_frame_is_skipped(self, storage, frame_image):
        """A frame arriving mid-cycle is dropped, not queued."""
        from face_identity.pipeline import FaceIdentityEngine, StreamScanner

        detector = BlockingDetector()
        scanner = StreamScanner(FaceIdentityEngine(detector=detector), storage.gallery)
        results = []

        worker = threading.Thread(target=lambda: results.append(scanner.scan(frame_image)))
        worker.start()
        assert detector.entered.wait(timeout=5)

        assert scanner.scan(frame_image) is None
        assert scanner.frames_skipped == 1

        detector.release.set()
        worker.join(timeout=5)
        assert results == [[]]
        assert scanner.frames_processed == 1


class TestHaarCascadeDetector:
    """Test cases for the default detector collaborator."""

    def test_blank_frame_has_no_faces(self):
        from face_identity.detection import HaarCascadeDetector

        detector = HaarCascadeDetector()
        assert detector.name == "haar_cascade"
        assert detector.min_size == (80, 80)
        assert detector.detect(np.zeros((240, 320, 3), dtype=np.uint8)) == []

    def test_empty_frame(self):
        from face_identity.detection import HaarCascadeDetector
        from face_identity.errors import InvalidImage

        with pytest.raises(InvalidImage):
            HaarCascadeDetector().detect(np.zeros((0, 0, 3), dtype=np.uint8))

    def test_crop_face_margin_is_clipped(self, frame_image):
        from face_identity.detection import crop_face

        crop = crop_face(frame_image, (20, 20, 160, 160), margin=0.2)
        assert crop.shape == (200, 200, 3)

    def test_detected_face_carries_box_and_confidence_only(self, good_face):
        import dataclasses

        assert [f.name for f in dataclasses.fields(DetectedFace)] == [
            "x", "y", "width", "height", "confidence",
        ]
        assert good_face.to_dict() == {
            "x": 20, "y": 20, "width": 160, "height": 160, "confidence": 0.95,
        }
