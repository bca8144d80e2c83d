"""Adaptive refinement of gallery entries from recognition history."""

import logging
import time
from typing import List, Optional, Sequence

import numpy as np

from .constants import AdaptiveConfig, get_adaptive_config
from .gallery import (
    SOURCE_ADAPTIVE,
    EmbeddingAngle,
    GalleryEntry,
    Pose,
    RecognitionRecord,
    utc_timestamp,
)
from .storage import GalleryStore, RecognitionHistoryLog

logger = logging.getLogger(__name__)


class AdaptiveRefiner:
    """Fold confident past recognitions into one learned angle.

    Learned angles are only ever appended; registered angles are never
    removed or replaced.
    """

    def __init__(self, config: Optional[AdaptiveConfig] = None):
        self.config = config or get_adaptive_config()

    def qualifying(self, history: Sequence[RecognitionRecord]) -> List[RecognitionRecord]:
        """Records confident enough to learn from."""
        return [r for r in history if r.confidence >= self.config.min_confidence]

    def learned_angle(
        self,
        history: Sequence[RecognitionRecord],
        now_ms: Optional[int] = None,
    ) -> Optional[EmbeddingAngle]:
        """Average qualifying history into a unit-norm learned angle.

        Returns:
            The learned angle, or None when there are too few samples
        """
        samples = self.qualifying(history)
        if len(samples) < self.config.min_samples:
            logger.info(
                f"Not enough confident recognitions to learn from: "
                f"{len(samples)} < {self.config.min_samples}"
            )
            return None

        mean = np.mean([r.embedding for r in samples], axis=0)
        norm = np.linalg.norm(mean)
        if norm == 0.0:
            logger.warning("Averaged history embedding has zero norm, nothing learned")
            return None

        if now_ms is None:
            now_ms = int(time.time() * 1000)

        return EmbeddingAngle(
            embedding=mean / norm,
            pose=Pose.LEARNED,
            uid=f"learned-{now_ms}",
            source=SOURCE_ADAPTIVE,
            sample_count=len(samples),
        )

    def refine(
        self,
        entry: GalleryEntry,
        history: Sequence[RecognitionRecord],
    ) -> Optional[GalleryEntry]:
        """Return ``entry`` with one learned angle appended, or None."""
        angle = self.learned_angle(history)
        if angle is None:
            return None

        return entry.with_angles(
            [angle],
            last_learning_update=utc_timestamp(),
            learning_samples=angle.sample_count,
            total_recognitions=len(history),
        )

    def refine_identity(
        self,
        identity_key: str,
        store: GalleryStore,
        history_log: RecognitionHistoryLog,
    ) -> Optional[GalleryEntry]:
        """Refine a stored identity from its recognition history.

        Runs as a whole-entry update so a concurrent registration approval is
        not lost.

        Returns:
            The updated entry, or None if nothing was learned
        """
        history = history_log.get_history(identity_key)
        refined: List[GalleryEntry] = []

        def append_learned(current: Optional[GalleryEntry]) -> Optional[GalleryEntry]:
            refined.clear()
            if current is None:
                logger.warning(f"Cannot refine unknown identity: {identity_key}")
                return None
            new_entry = self.refine(current, history)
            if new_entry is not None:
                refined.append(new_entry)
            return new_entry

        store.update(identity_key, append_learned)
        if not refined:
            return None

        entry = refined[0]
        logger.info(
            f"Learned a new angle for {identity_key} from "
            f"{entry.metadata.get('learning_samples')} recognitions"
        )
        return entry
