"""Exceptions raised by the face identity engine.

Per-frame errors (InvalidImage, NoFaceDetected, LowQualityRejected) are
recovered locally by live scanning loops. DimensionMismatch is always a data
integrity error and propagates. InsufficientRegistrationSamples is surfaced to
the user as "try again".
"""

from typing import Optional


class FaceIdentityError(Exception):
    """Base class for all engine errors."""


class InvalidImage(FaceIdentityError, ValueError):
    """Input image is missing, empty or malformed."""


class NoFaceDetected(FaceIdentityError):
    """Detector returned no usable face for a frame."""


class LowQualityRejected(FaceIdentityError):
    """Observation failed a quality gate and was dropped."""

    def __init__(self, reason: str, value: Optional[float] = None):
        self.reason = reason
        self.value = value
        message = reason if value is None else f"{reason} ({value:.4f})"
        super().__init__(message)


class DimensionMismatch(FaceIdentityError, ValueError):
    """Embedding of the wrong length reached a comparison or storage boundary."""

    def __init__(self, expected: int, actual: int, context: str = "embedding"):
        self.expected = expected
        self.actual = actual
        super().__init__(f"{context} has {actual} values, expected {expected}")


class InsufficientRegistrationSamples(FaceIdentityError):
    """Too few poses survived the quality gates to register an identity."""

    def __init__(self, required: int, collected: int):
        self.required = required
        self.collected = collected
        super().__init__(
            f"Only {collected} usable pose(s) captured, {required} required. "
            "Please try again."
        )
