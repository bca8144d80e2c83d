"""Face detector collaborator interface.

The engine consumes detections, it does not own a detection model:
- types.py: DetectedFace
- base.py: BaseFaceDetector interface
- haar.py: OpenCV Haar Cascade default implementation
- utils.py: crop_face
"""

from .types import DetectedFace
from .base import BaseFaceDetector
from .haar import HaarCascadeDetector
from .utils import crop_face

__all__ = [
    "DetectedFace",
    "BaseFaceDetector",
    "HaarCascadeDetector",
    "crop_face",
]
