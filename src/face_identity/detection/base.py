"""Base face detector interface."""

from abc import ABC, abstractmethod
from typing import List

import numpy as np

from .types import DetectedFace


class BaseFaceDetector(ABC):
    """Abstract base class for face detector collaborators.

    The engine does not own a detector model. Callers load one at process
    start and pass it to the engine, which only consumes the boxes and
    confidence scores it returns.
    """
    
    @property
    def name(self) -> str:
        """Return the name of the detector backend."""
        return type(self).__name__
    
    @abstractmethod
    def detect(self, image: np.ndarray) -> List[DetectedFace]:
        """Detect faces in an image.
        
        Args:
            image: RGB image as numpy array
            
        Returns:
            List of DetectedFace objects (empty when nothing was found)
        """
        pass
