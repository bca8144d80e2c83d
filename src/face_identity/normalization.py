"""Embedding normalization, validation and serialization.

The raw feature vector length is a by-product of the scale sizes, so it is
fitted to the fixed embedding length here (truncation or tiling, never zero
padding) and then standardized to zero mean and unit variance.
"""

import logging
from typing import Iterable, List, Optional

import numpy as np

from .constants import EMBEDDING_DIM, FeatureConfig, get_feature_config
from .errors import DimensionMismatch

logger = logging.getLogger(__name__)


def fit_to_dimension(vector: np.ndarray, target: int = EMBEDDING_DIM) -> np.ndarray:
    """Truncate or tile a raw feature vector to exactly ``target`` values.

    Longer vectors keep their first ``target`` values. Shorter vectors are
    repeated ``target // L`` times followed by their first ``target % L``
    values. Zero padding would create long constant runs that destroy the
    variance signal used downstream.
    """
    vector = np.asarray(vector, dtype=np.float64).ravel()
    length = vector.size
    if length == 0:
        raise ValueError("Cannot fit an empty feature vector")

    if length > target:
        return vector[:target].copy()
    if length < target:
        repetitions, remainder = divmod(target, length)
        parts = [vector] * repetitions
        if remainder:
            parts.append(vector[:remainder])
        return np.concatenate(parts)
    return vector.copy()


def standardize(vector: np.ndarray, epsilon: float = 1e-8) -> np.ndarray:
    """Subtract the vector's mean and divide by its std plus epsilon."""
    mean = vector.mean()
    std = vector.std()
    if std == 0.0:
        logger.debug("Degenerate feature vector (zero std), output is all zeros")
    return (vector - mean) / (std + epsilon)


def normalize_embedding(
    raw_features: np.ndarray,
    config: Optional[FeatureConfig] = None,
) -> np.ndarray:
    """Fit a raw feature vector to the embedding length and standardize it.

    Args:
        raw_features: Output of extract_features, any length
        config: Feature constants (uses global config if None)

    Returns:
        float64 embedding of length ``config.embedding_dim``
    """
    config = config or get_feature_config()
    fitted = fit_to_dimension(raw_features, config.embedding_dim)
    return standardize(fitted, config.epsilon)


def validate_embedding(
    embedding,
    expected_dim: int = EMBEDDING_DIM,
    context: str = "embedding",
) -> np.ndarray:
    """Return the embedding as a flat float64 array or raise DimensionMismatch.

    Used at every comparison and storage boundary. Wrong lengths are never
    coerced.
    """
    array = np.asarray(embedding, dtype=np.float64).ravel()
    if array.size != expected_dim:
        raise DimensionMismatch(expected_dim, array.size, context)
    if not np.all(np.isfinite(array)):
        raise ValueError(f"{context} contains non-finite values")
    return array


def embedding_to_list(embedding: np.ndarray) -> List[float]:
    """Serialize an embedding as a flat list of floats."""
    return [float(v) for v in validate_embedding(embedding)]


def embedding_from_list(values: Iterable[float], context: str = "embedding") -> np.ndarray:
    """Deserialize a stored embedding, enforcing its length."""
    return validate_embedding(list(values), context=context)
