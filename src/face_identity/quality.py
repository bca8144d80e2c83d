"""Quality gates applied before an observation reaches matching or storage.

The detection gate runs on the detector's raw boxes before cropping; the
embedding gate runs after normalization. A rejection raises
LowQualityRejected so callers can drop the observation and keep scanning.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from .constants import QualityConfig, get_quality_config
from .detection.types import DetectedFace
from .errors import LowQualityRejected

logger = logging.getLogger(__name__)


class QualityGate:
    """Detection and embedding quality checks."""

    def __init__(self, config: Optional[QualityConfig] = None):
        """Initialize quality gate.

        Args:
            config: Quality thresholds (uses global config if None)
        """
        self.config = config or get_quality_config()

    def check_detection(self, face: DetectedFace, frame_shape: Sequence[int]) -> None:
        """Reject small, marginal or low-confidence detections.

        Args:
            face: Detection reported by the detector collaborator
            frame_shape: Shape of the source frame (height, width[, channels])

        Raises:
            LowQualityRejected: If any detection check fails
        """
        min_w, min_h = self.config.min_face_size
        if face.width < min_w or face.height < min_h:
            raise LowQualityRejected(
                f"face too small: {face.width}x{face.height} < {min_w}x{min_h}"
            )

        ratio = face.area_ratio(frame_shape)
        if ratio < self.config.min_area_ratio:
            raise LowQualityRejected("face covers too little of the frame", ratio)

        if face.confidence < self.config.min_detection_confidence:
            raise LowQualityRejected("detector confidence too low", face.confidence)

    def check_embedding(
        self,
        embedding: np.ndarray,
        raw_variance: float,
        intensity_variance: Optional[float] = None,
    ) -> None:
        """Reject uniform or degenerate embeddings.

        Args:
            embedding: Normalized embedding
            raw_variance: Variance of the raw feature vector before normalization
            intensity_variance: Largest per-scale pixel variance of the crop

        Raises:
            LowQualityRejected: If any embedding check fails
        """
        nonzero = int(np.count_nonzero(np.abs(embedding) > self.config.nonzero_magnitude))
        if nonzero < self.config.min_nonzero_values:
            raise LowQualityRejected(
                f"embedding too uniform: {nonzero} informative values "
                f"< {self.config.min_nonzero_values}"
            )

        if raw_variance < self.config.min_raw_variance:
            raise LowQualityRejected("raw feature variance too low", raw_variance)

        if (
            intensity_variance is not None
            and intensity_variance < self.config.min_intensity_variance
        ):
            raise LowQualityRejected("flat face crop", intensity_variance)

    def passes_detection(self, face: DetectedFace, frame_shape: Sequence[int]) -> bool:
        """Check the detection gate without raising."""
        try:
            self.check_detection(face, frame_shape)
        except LowQualityRejected as e:
            logger.debug(f"Detection rejected: {e}")
            return False
        return True

    def passes_embedding(
        self,
        embedding: np.ndarray,
        raw_variance: float,
        intensity_variance: Optional[float] = None,
    ) -> bool:
        """Check the embedding gate without raising."""
        try:
            self.check_embedding(embedding, raw_variance, intensity_variance)
        except LowQualityRejected as e:
            logger.debug(f"Embedding rejected: {e}")
            return False
        return True

    def filter_detections(
        self,
        faces: List[DetectedFace],
        frame_shape: Sequence[int],
    ) -> List[DetectedFace]:
        """Drop detections that fail the detection gate."""
        accepted = [face for face in faces if self.passes_detection(face, frame_shape)]
        if len(accepted) < len(faces):
            logger.info(f"Dropped {len(faces) - len(accepted)} low-quality detection(s)")
        return accepted
