"""Image preprocessing: face crop to canonical contrast-boosted grayscale."""

import logging
from typing import Optional

import cv2
import numpy as np

from .constants import PreprocessingConfig, get_preprocessing_config
from .errors import InvalidImage

logger = logging.getLogger(__name__)

# ITU-R BT.601 luma weights (R, G, B)
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


def _validate_image(image: np.ndarray) -> np.ndarray:
    """Return the image as a float64 array or raise InvalidImage."""
    if image is None:
        raise InvalidImage("Image is None")
    if not isinstance(image, np.ndarray):
        raise InvalidImage(f"Expected numpy array, got {type(image).__name__}")
    if image.size == 0 or image.ndim not in (2, 3):
        raise InvalidImage(f"Malformed image with shape {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise InvalidImage(f"Empty image with shape {image.shape}")
    if image.ndim == 3 and image.shape[2] not in (1, 3, 4):
        raise InvalidImage(f"Unsupported channel count {image.shape[2]}")

    pixels = image.astype(np.float64)
    if not np.all(np.isfinite(pixels)):
        raise InvalidImage("Image contains non-finite values")
    return pixels


def resize_bilinear(image: np.ndarray, size: tuple) -> np.ndarray:
    """Resize to (width, height) with bilinear interpolation."""
    resized = cv2.resize(image, size, interpolation=cv2.INTER_LINEAR)
    # cv2 drops a trailing singleton channel
    if image.ndim == 3 and resized.ndim == 2:
        resized = resized[:, :, np.newaxis]
    return resized


def to_grayscale(image: np.ndarray, bgr: bool = False) -> np.ndarray:
    """Convert an RGB(A), BGR(A) or single channel image to a luma plane."""
    if image.ndim == 2:
        return image
    if image.shape[2] == 1:
        return image[:, :, 0]

    color = image[:, :, :3]
    if bgr:
        color = color[:, :, ::-1]
    return color @ LUMA_WEIGHTS


def preprocess_face(
    face_image: np.ndarray,
    bgr: bool = False,
    config: Optional[PreprocessingConfig] = None,
) -> np.ndarray:
    """Normalize a face crop into the canonical 3-channel representation.

    Steps, in order: bilinear resize to the canonical size, luma grayscale
    scaled to [0, 1], fixed contrast boost clipped to [0, 1], rescale to
    [0, 255] and replicate across three identical channels.

    Args:
        face_image: Face crop of arbitrary size (RGB, RGBA or grayscale)
        bgr: Set when the crop comes from OpenCV (BGR channel order)
        config: Preprocessing constants (uses global config if None)

    Returns:
        float64 array of shape (height, width, 3) with values in [0, 255]

    Raises:
        InvalidImage: If the input is missing, empty or malformed
    """
    config = config or get_preprocessing_config()
    pixels = _validate_image(face_image)

    resized = resize_bilinear(pixels, tuple(config.canonical_size))
    gray = to_grayscale(resized, bgr=bgr) / config.pixel_max_value
    enhanced = np.clip(gray * config.contrast_boost, 0.0, 1.0)
    scaled = enhanced * config.pixel_max_value

    return np.repeat(scaled[:, :, np.newaxis], 3, axis=2)
