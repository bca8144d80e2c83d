"""Gallery matching with confidence tiers and gap-triggered ambiguity.

The matcher is a read-only consumer of gallery entries. For one observed
embedding it scores every entry, keeps the eligible candidates at or above
the low threshold and decides between three outcomes: a confident
identification, a potential match that needs human confirmation, or an
ambiguous pair of look-alikes. Picking the best score without the top-two
gap check misidentifies similar-looking people at unattended thresholds.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

import numpy as np

from .constants import MatchingConfig, get_matching_config
from .gallery import GalleryEntry
from .normalization import validate_embedding

logger = logging.getLogger(__name__)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two embeddings, 0.0 when either norm is zero.

    Raises:
        DimensionMismatch: If either vector is not a full-length embedding
    """
    a = validate_embedding(a, context="observed embedding")
    b = validate_embedding(b, context="gallery embedding")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    return float(np.clip(similarity, -1.0, 1.0))


class ConfidenceTier(Enum):
    """Confidence tier of a similarity score."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


@dataclass
class MatchCandidate:
    """Result of comparing an observation against one gallery entry."""

    identity_key: str
    display_name: str
    score: float
    angle_scores: List[float] = field(default_factory=list)
    angles_above_low: int = 0
    eligible: bool = True

    def to_dict(self) -> dict:
        return {
            "identity_key": self.identity_key,
            "name": self.display_name,
            "confidence": round(self.score, 4),
            "angle_scores": [round(s, 4) for s in self.angle_scores],
            "angles_above_low": self.angles_above_low,
        }


@dataclass
class MatchDecision:
    """Matcher output for one observation."""

    identity_key: Optional[str] = None
    display_name: Optional[str] = None
    confidence: float = 0.0
    tier: ConfidenceTier = ConfidenceTier.NONE
    is_potential_match: bool = False
    is_ambiguous: bool = False
    potential_matches: List[MatchCandidate] = field(default_factory=list)
    candidates: List[MatchCandidate] = field(default_factory=list)

    @property
    def is_confirmed(self) -> bool:
        """A confident identification was made."""
        return self.identity_key is not None

    @property
    def is_unknown(self) -> bool:
        """No candidate reached the low threshold."""
        return self.tier == ConfidenceTier.NONE

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "identity_key": self.identity_key,
            "name": self.display_name,
            "confidence": round(self.confidence, 4),
            "tier": self.tier.value,
            "is_potential_match": self.is_potential_match,
            "is_ambiguous": self.is_ambiguous,
            "potential_matches": [c.to_dict() for c in self.potential_matches],
        }


class GalleryMatcher:
    """Compare observed embeddings against gallery entries."""

    def __init__(self, config: Optional[MatchingConfig] = None):
        """Initialize matcher.

        Args:
            config: Threshold policy (uses global config if None)
        """
        self.config = config or get_matching_config()

    def tier_for(self, score: float) -> ConfidenceTier:
        """Map a similarity score to its confidence tier."""
        if score >= self.config.high_threshold:
            return ConfidenceTier.HIGH
        if score >= self.config.medium_threshold:
            return ConfidenceTier.MEDIUM
        if score >= self.config.low_threshold:
            return ConfidenceTier.LOW
        return ConfidenceTier.NONE

    def score_entry(self, embedding: np.ndarray, entry: GalleryEntry) -> MatchCandidate:
        """Score one gallery entry.

        Single-angle entries score their only angle. Multi-angle entries take
        the best angle, but are only eligible when at least
        ``min_agreeing_angles`` angles clear the low threshold; a single lucky
        pose is inconclusive.
        """
        scores = [cosine_similarity(embedding, angle) for angle in entry.embeddings]
        above_low = sum(1 for s in scores if s >= self.config.low_threshold)

        if entry.is_multi_angle:
            eligible = above_low >= self.config.min_agreeing_angles
        else:
            eligible = True

        return MatchCandidate(
            identity_key=entry.identity_key,
            display_name=entry.display_name,
            score=max(scores),
            angle_scores=scores,
            angles_above_low=above_low,
            eligible=eligible,
        )

    def match_many(self, embedding: np.ndarray, entries: Iterable[GalleryEntry]) -> List[MatchCandidate]:
        """Score every entry, best first, eligible or not."""
        embedding = validate_embedding(embedding, context="observed embedding")
        scored = [self.score_entry(embedding, entry) for entry in entries]
        return sorted(scored, key=lambda c: c.score, reverse=True)

    def match(self, embedding: np.ndarray, entries: Iterable[GalleryEntry]) -> MatchDecision:
        """Decide who an observed embedding belongs to.

        Args:
            embedding: Observed 512-value embedding
            entries: Gallery entries to compare against

        Returns:
            MatchDecision with at most one confirmed identity

        Raises:
            DimensionMismatch: If the observation or a stored angle has the
                wrong length
        """
        ranked = self.match_many(embedding, entries)
        candidates = [
            c for c in ranked
            if c.eligible and c.score >= self.config.low_threshold
        ]

        if not candidates:
            best = ranked[0].score if ranked else 0.0
            logger.debug(f"No candidate reached the low threshold (best {best:.3f})")
            return MatchDecision(confidence=max(best, 0.0))

        top = candidates[0]

        if len(candidates) >= 2:
            runner_up = candidates[1]
            gap = top.score - runner_up.score
            if gap < self.config.ambiguity_margin and top.score < self.config.certainty_cutoff:
                logger.info(
                    f"Ambiguous match between {top.identity_key} ({top.score:.3f}) "
                    f"and {runner_up.identity_key} ({runner_up.score:.3f})"
                )
                return MatchDecision(
                    confidence=top.score,
                    tier=self.tier_for(top.score),
                    is_potential_match=True,
                    is_ambiguous=True,
                    potential_matches=[top, runner_up],
                    candidates=candidates,
                )

        return self._decide_single(top, candidates)

    def _decide_single(
        self,
        top: MatchCandidate,
        candidates: List[MatchCandidate],
    ) -> MatchDecision:
        """Apply the tier of the top candidate."""
        tier = self.tier_for(top.score)

        if tier == ConfidenceTier.HIGH:
            return MatchDecision(
                identity_key=top.identity_key,
                display_name=top.display_name,
                confidence=top.score,
                tier=tier,
                candidates=candidates,
            )

        # medium needs confirmation, low is recorded but never asserted
        return MatchDecision(
            confidence=top.score,
            tier=tier,
            is_potential_match=tier == ConfidenceTier.MEDIUM,
            potential_matches=[top],
            candidates=candidates,
        )
