"""Stable face ids and the cooldown tracker that consumes them.

A stable id is a cheap, approximate key derived from the leading embedding
components. It only lets callers suppress repeated alerts for the same
unidentified face across frames; it is not a security identifier. Two
numerically close embeddings may map to different ids.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

import numpy as np

from .constants import ScanningConfig, get_scanning_config
from .normalization import validate_embedding

logger = logging.getLogger(__name__)


def stable_face_id(
    embedding: np.ndarray,
    config: Optional[ScanningConfig] = None,
) -> str:
    """Derive a short deterministic id from an embedding.

    The first components are scaled, rounded half up (toward +inf) and joined
    with a delimiter behind a fixed prefix, e.g. ``face-1234--87-...``.
    """
    config = config or get_scanning_config()
    values = validate_embedding(embedding)[: config.stable_id_components]
    scaled = values * config.stable_id_scale
    # Halves round toward +inf, as in the web client
    rounded = np.floor(scaled + 0.5)
    sample = config.stable_id_delimiter.join(str(int(v)) for v in rounded)
    return f"{config.stable_id_prefix}{config.stable_id_delimiter}{sample}"


class CooldownTracker:
    """Suppress repeated events for the same key within a time window."""

    def __init__(
        self,
        cooldown_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def should_emit(self, key: str) -> bool:
        """Return True and start a new window if ``key`` is not cooling down."""
        now = self._clock()
        with self._lock:
            last = self._last_seen.get(key)
            if last is not None and now - last < self.cooldown_seconds:
                return False
            self._last_seen[key] = now
            self._prune(now)
            return True

    def _prune(self, now: float) -> None:
        expired = [k for k, t in self._last_seen.items() if now - t >= self.cooldown_seconds]
        for key in expired:
            del self._last_seen[key]

    def reset(self) -> None:
        """Forget all keys."""
        with self._lock:
            self._last_seen.clear()

    def __len__(self) -> int:
        return len(self._last_seen)
