"""Pytest configuration and fixtures."""

import sys
import threading
from pathlib import Path
from typing import List

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from face_identity.constants import EMBEDDING_DIM  # noqa: E402
from face_identity.detection import BaseFaceDetector, DetectedFace  # noqa: E402


def basis(index: int) -> np.ndarray:
    """Unit vector along one embedding axis."""
    vector = np.zeros(EMBEDDING_DIM)
    vector[index] = 1.0
    return vector


def with_cosine(cosine: float, axis: int) -> np.ndarray:
    """Unit vector whose cosine with basis(0) is exactly ``cosine``."""
    return cosine * basis(0) + np.sqrt(1.0 - cosine ** 2) * basis(axis)


class ScriptedDetector(BaseFaceDetector):
    """Detector returning a fixed list of detections per call, in order."""

    def __init__(self, script: List[List[DetectedFace]]):
        self.script = list(script)
        self.calls = 0

    def detect(self, image: np.ndarray) -> List[DetectedFace]:
        result = self.script[self.calls % len(self.script)]
        self.calls += 1
        return list(result)


class BlockingDetector(BaseFaceDetector):
    """Detector that blocks until released, for concurrency tests."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def detect(self, image: np.ndarray) -> List[DetectedFace]:
        self.entered.set()
        self.release.wait(timeout=5)
        return []


@pytest.fixture
def face_image():
    """Textured RGB face crop (deterministic)."""
    rng = np.random.default_rng(42)
    return rng.integers(0, 256, (200, 200, 3), dtype=np.uint8)


@pytest.fixture
def other_face_image():
    """A second, different textured crop."""
    rng = np.random.default_rng(7)
    image = rng.integers(0, 256, (180, 160, 3), dtype=np.uint8)
    # Darken the lower half so the intensity distribution differs
    image[90:] //= 3
    return image


@pytest.fixture
def gray_image():
    """Uniform gray image with no usable texture."""
    return np.full((200, 200, 3), 128, dtype=np.uint8)


@pytest.fixture
def good_face():
    """Detection that passes the detection gate on a 200x200 frame."""
    return DetectedFace(x=20, y=20, width=160, height=160, confidence=0.95)


@pytest.fixture
def frame_image():
    """Textured 200x200 RGB frame."""
    rng = np.random.default_rng(3)
    return rng.integers(0, 256, (200, 200, 3), dtype=np.uint8)


@pytest.fixture
def storage():
    """In-memory stores."""
    from face_identity.storage import (
        InMemoryGalleryStore,
        InMemoryPendingQueue,
        InMemoryRecognitionHistory,
        Storage,
    )
    return Storage(
        gallery=InMemoryGalleryStore(),
        pending=InMemoryPendingQueue(),
        history=InMemoryRecognitionHistory(),
    )


@pytest.fixture
def engine():
    """Engine without a detector (inputs are face crops)."""
    from face_identity.pipeline import FaceIdentityEngine
    return FaceIdentityEngine()

