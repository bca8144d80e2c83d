"""Multi-scale moment and histogram feature extraction.

For each relative scale the canonical image is resized to a square of
``round(base_size * scale)`` pixels and summarized by its intensity mean,
variance and a coarse histogram whose bins span the observed min..max range.
Moments plus histograms at several scales approximate a texture fingerprint
without a learned model, and the scale sweep gives some robustness to the
camera-to-subject distance.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .constants import FeatureConfig, get_feature_config
from .errors import InvalidImage
from .preprocessing import resize_bilinear

logger = logging.getLogger(__name__)


@dataclass
class FeatureResult:
    """Raw feature vector plus the statistics the quality gate needs."""

    vector: np.ndarray
    scale_sizes: List[int]
    intensity_variances: List[float]

    @property
    def raw_variance(self) -> float:
        """Variance of the raw (pre-normalization) feature vector."""
        return float(np.var(self.vector))

    @property
    def max_intensity_variance(self) -> float:
        """Largest per-scale pixel variance; zero for a flat crop."""
        return max(self.intensity_variances) if self.intensity_variances else 0.0


def scale_size(base_size: int, scale: float) -> int:
    """Side length for a scale, rounding halves up."""
    return int(np.floor(base_size * scale + 0.5))


def intensity_histogram(plane: np.ndarray, bins: int) -> np.ndarray:
    """Count pixels per bin, bins spaced linearly over [min, max).

    Each bin is half open, ``[start, start + step)``, so pixels equal to the
    maximum fall outside the last bin. A flat plane has zero-width bins and
    every count is zero.
    """
    values = plane.ravel()
    min_val = values.min()
    max_val = values.max()
    step = (max_val - min_val) / bins

    counts = np.empty(bins, dtype=np.float64)
    for i in range(bins):
        bin_start = min_val + step * i
        bin_end = bin_start + step
        counts[i] = np.count_nonzero((values >= bin_start) & (values < bin_end))
    return counts


def extract_features_with_stats(
    canonical_image: np.ndarray,
    config: Optional[FeatureConfig] = None,
) -> FeatureResult:
    """Extract the raw multi-scale feature vector and its statistics.

    Args:
        canonical_image: Output of preprocess_face
        config: Feature constants (uses global config if None)

    Returns:
        FeatureResult with a vector of ``len(scales) * (2 + bins)`` values
    """
    config = config or get_feature_config()
    if canonical_image is None or canonical_image.size == 0:
        raise InvalidImage("Canonical image is empty")

    blocks = []
    sizes = []
    variances = []

    for scale in config.scales:
        side = scale_size(config.base_size, scale)
        scaled = resize_bilinear(canonical_image, (side, side))
        # Channels are identical, summarize the single intensity plane
        plane = scaled[:, :, 0] if scaled.ndim == 3 else scaled

        mean = plane.mean()
        variance = plane.var()
        histogram = intensity_histogram(plane, config.histogram_bins)

        blocks.append(np.concatenate(([mean, variance], histogram)))
        sizes.append(side)
        variances.append(float(variance))

    vector = np.concatenate(blocks)
    logger.debug(f"Extracted {vector.size} raw features from scales {sizes}")

    return FeatureResult(
        vector=vector,
        scale_sizes=sizes,
        intensity_variances=variances,
    )


def extract_features(
    canonical_image: np.ndarray,
    config: Optional[FeatureConfig] = None,
) -> np.ndarray:
    """Extract the raw multi-scale feature vector."""
    return extract_features_with_stats(canonical_image, config).vector
