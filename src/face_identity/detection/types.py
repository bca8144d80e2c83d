"""Detected face data type."""

from dataclasses import dataclass
from typing import Sequence, Tuple


@dataclass
class DetectedFace:
    """Candidate face region reported by a detector collaborator."""
    
    x: int
    y: int
    width: int
    height: int
    confidence: float = 1.0
    
    @property
    def bbox(self) -> Tuple[int, int, int, int]:
        """Return bounding box as (x, y, w, h)."""
        return (self.x, self.y, self.width, self.height)
    
    @property
    def center(self) -> Tuple[int, int]:
        """Return center point of bounding box."""
        return (self.x + self.width // 2, self.y + self.height // 2)
    
    @property
    def area(self) -> int:
        """Return area of bounding box."""
        return self.width * self.height
    
    def area_ratio(self, frame_shape: Sequence[int]) -> float:
        """Fraction of the source frame covered by this face."""
        frame_area = int(frame_shape[0]) * int(frame_shape[1])
        if frame_area <= 0:
            return 0.0
        return self.area / frame_area
    
    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "x": int(self.x),
            "y": int(self.y),
            "width": int(self.width),
            "height": int(self.height),
            "confidence": float(self.confidence),
        }
