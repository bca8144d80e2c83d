"""Face region utilities."""

from typing import Tuple

import numpy as np

from ..errors import InvalidImage


def crop_face(
    image: np.ndarray,
    bbox: Tuple[int, int, int, int],
    margin: float = 0.0,
) -> np.ndarray:
    """Crop face from image with margin.
    
    Args:
        image: Full frame
        bbox: Bounding box (x, y, w, h)
        margin: Margin around face as fraction of size
        
    Returns:
        Cropped face image
        
    Raises:
        InvalidImage: If the clipped region is empty
    """
    x, y, w, h = (int(round(v)) for v in bbox)
    margin_w = int(w * margin)
    margin_h = int(h * margin)
    x1 = max(0, x - margin_w)
    y1 = max(0, y - margin_h)
    x2 = min(image.shape[1], x + w + margin_w)
    y2 = min(image.shape[0], y + h + margin_h)
    if x2 <= x1 or y2 <= y1:
        raise InvalidImage(f"Face region {bbox} lies outside the frame")
    return image[y1:y2, x1:x2]
