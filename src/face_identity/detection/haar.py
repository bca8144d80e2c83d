"""Default detector collaborator backed by OpenCV Haar cascades."""

import logging
from typing import List, Optional, Tuple

import cv2
import numpy as np

from ..constants import get_quality_config
from ..errors import InvalidImage
from ..preprocessing import to_grayscale
from .base import BaseFaceDetector
from .types import DetectedFace

logger = logging.getLogger(__name__)


class HaarCascadeDetector(BaseFaceDetector):
    """Frontal face detector using the bundled OpenCV cascade.

    Cascades report no score, so every box carries ``default_confidence``.
    Boxes smaller than the detection gate's minimum face size are not
    searched for at all.
    """

    def __init__(
        self,
        scale_factor: float = 1.1,
        min_neighbors: int = 5,
        min_size: Optional[Tuple[int, int]] = None,
        default_confidence: float = 0.9,
        bgr: bool = False,
        cascade_file: str = "haarcascade_frontalface_default.xml",
    ):
        """Initialize detector.

        Args:
            scale_factor: Image pyramid step
            min_neighbors: Overlapping hits required to keep a box
            min_size: Smallest box searched (detection gate minimum if None)
            default_confidence: Confidence assigned to every box
            bgr: Set when frames come from OpenCV capture or imdecode
            cascade_file: Cascade name inside ``cv2.data.haarcascades``
        """
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size = tuple(min_size or get_quality_config().min_face_size)
        self.default_confidence = default_confidence
        self.bgr = bgr

        cascade_path = cv2.data.haarcascades + cascade_file  # type: ignore
        self.cascade = cv2.CascadeClassifier(cascade_path)
        if self.cascade.empty():
            raise RuntimeError(f"Failed to load cascade from {cascade_path}")

    @property
    def name(self) -> str:
        return "haar_cascade"

    def detect(self, image: np.ndarray) -> List[DetectedFace]:
        """Detect faces, largest first."""
        if image is None or image.size == 0:
            raise InvalidImage("Frame is empty")

        gray = to_grayscale(image.astype(np.float64), bgr=self.bgr)
        gray = cv2.equalizeHist(np.clip(gray, 0, 255).astype(np.uint8))

        boxes = self.cascade.detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=self.min_size,
        )

        faces = [
            DetectedFace(
                x=int(x), y=int(y), width=int(w), height=int(h),
                confidence=self.default_confidence,
            )
            for (x, y, w, h) in boxes
        ]
        faces.sort(key=lambda f: f.area, reverse=True)
        logger.debug(f"Haar cascade found {len(faces)} face(s)")
        return faces
