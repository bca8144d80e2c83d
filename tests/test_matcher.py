"""Tests for gallery matching."""

import numpy as np
import pytest

from conftest import basis, with_cosine
from face_identity.gallery import EmbeddingAngle, GalleryEntry, Pose


def single(key, embedding):
    return GalleryEntry.from_embedding(key, key.title(), embedding)


def multi(key, embeddings):
    angles = tuple(
        EmbeddingAngle(embedding=e, pose=pose)
        for e, pose in zip(embeddings, Pose)
    )
    return GalleryEntry(identity_key=key, display_name=key.title(), angles=angles)


class TestCosineSimilarity:
    """Test cases for cosine_similarity."""

    def test_bounds(self):
        from face_identity.matcher import cosine_similarity

        rng = np.random.default_rng(5)
        for _ in range(20):
            score = cosine_similarity(rng.normal(size=512), rng.normal(size=512))
            assert -1.0 <= score <= 1.0

    def test_identical_and_opposite(self):
        from face_identity.matcher import cosine_similarity

        v = np.random.default_rng(6).normal(size=512)
        assert cosine_similarity(v, v) == pytest.approx(1.0)
        assert cosine_similarity(v, -v) == pytest.approx(-1.0)
        assert cosine_similarity(basis(0), basis(1)) == pytest.approx(0.0)

    def test_zero_norm(self):
        from face_identity.matcher import cosine_similarity

        assert cosine_similarity(np.zeros(512), basis(0)) == 0.0

    def test_dimension_mismatch(self):
        from face_identity.errors import DimensionMismatch
        from face_identity.matcher import cosine_similarity

        with pytest.raises(DimensionMismatch):
            cosine_similarity(np.ones(512), np.ones(136))


class TestGalleryMatcher:
    """Test cases for GalleryMatcher decisions."""

    def test_empty_gallery(self):
        from face_identity.matcher import ConfidenceTier, GalleryMatcher

        decision = GalleryMatcher().match(basis(0), [])
        assert decision.tier == ConfidenceTier.NONE
        assert decision.identity_key is None
        assert decision.potential_matches == []

    def test_high_confidence_match(self):
        """0.92 against 0.55 confirms the top identity."""
        from face_identity.matcher import ConfidenceTier, GalleryMatcher

        gallery = [single("alice", with_cosine(0.92, 1)), single("bob", with_cosine(0.55, 2))]
        decision = GalleryMatcher().match(basis(0), gallery)

        assert decision.identity_key == "alice"
        assert decision.display_name == "Alice"
        assert decision.tier == ConfidenceTier.HIGH
        assert decision.confidence == pytest.approx(0.92)
        assert not decision.is_ambiguous
        assert not decision.is_potential_match

    def test_ambiguous_close_scores(self):
        """0.80 against 0.76 is ambiguous: no identity, both surfaced."""
        from face_identity.matcher import GalleryMatcher

        gallery = [single("alice", with_cosine(0.80, 1)), single("bob", with_cosine(0.76, 2))]
        decision = GalleryMatcher().match(basis(0), gallery)

        assert decision.identity_key is None
        assert decision.is_ambiguous
        assert decision.is_potential_match
        assert [c.identity_key for c in decision.potential_matches] == ["alice", "bob"]

    def test_small_gap_above_certainty_cutoff(self):
        """A tiny gap is tolerated when the top score is near certain."""
        from face_identity.matcher import GalleryMatcher

        gallery = [single("alice", with_cosine(0.95, 1)), single("bob", with_cosine(0.93, 2))]
        decision = GalleryMatcher().match(basis(0), gallery)

        assert decision.identity_key == "alice"
        assert not decision.is_ambiguous

    def test_medium_is_potential_match(self):
        from face_identity.matcher import ConfidenceTier, GalleryMatcher

        decision = GalleryMatcher().match(basis(0), [single("alice", with_cosine(0.75, 1))])

        assert decision.identity_key is None
        assert decision.tier == ConfidenceTier.MEDIUM
        assert decision.is_potential_match
        assert decision.potential_matches[0].identity_key == "alice"

    def test_low_is_listed_without_flag(self):
        from face_identity.matcher import ConfidenceTier, GalleryMatcher

        decision = GalleryMatcher().match(basis(0), [single("alice", with_cosine(0.65, 1))])

        assert decision.identity_key is None
        assert decision.tier == ConfidenceTier.LOW
        assert not decision.is_potential_match
        assert decision.potential_matches[0].identity_key == "alice"

    def test_below_low_is_unknown(self):
        from face_identity.matcher import GalleryMatcher

        decision = GalleryMatcher().match(basis(0), [single("alice", with_cosine(0.50, 1))])
        assert decision.is_unknown
        assert decision.potential_matches == []

    def test_multi_angle_single_lucky_pose_is_ineligible(self):
        """One strong angle out of five is not enough."""
        from face_identity.matcher import GalleryMatcher

        entry = multi("alice", [with_cosine(0.95, 1)] + [with_cosine(0.1, i) for i in range(2, 6)])
        decision = GalleryMatcher().match(basis(0), [entry])

        assert decision.is_unknown
        assert decision.identity_key is None

    def test_multi_angle_agreement_uses_best_angle(self):
        from face_identity.matcher import GalleryMatcher

        entry = multi("alice", [
            with_cosine(0.88, 1),
            with_cosine(0.65, 2),
            with_cosine(0.30, 3),
        ])
        matcher = GalleryMatcher()
        candidate = matcher.score_entry(basis(0), entry)

        assert candidate.eligible
        assert candidate.angles_above_low == 2
        assert candidate.score == pytest.approx(0.88)
        assert matcher.match(basis(0), [entry]).identity_key == "alice"

    def test_ineligible_entry_does_not_cause_ambiguity(self):
        from face_identity.matcher import GalleryMatcher

        lucky = multi("bob", [with_cosine(0.84, 1), with_cosine(0.2, 2)])
        gallery = [single("alice", with_cosine(0.87, 3)), lucky]
        decision = GalleryMatcher().match(basis(0), gallery)

        assert decision.identity_key == "alice"

    def test_match_many_ranks_everything(self):
        from face_identity.matcher import GalleryMatcher

        gallery = [single("bob", with_cosine(0.3, 1)), single("alice", with_cosine(0.9, 2))]
        ranked = GalleryMatcher().match_many(basis(0), gallery)
        assert [c.identity_key for c in ranked] == ["alice", "bob"]

    def test_observation_dimension_mismatch(self):
        from face_identity.errors import DimensionMismatch
        from face_identity.matcher import GalleryMatcher

        with pytest.raises(DimensionMismatch):
            GalleryMatcher().match(np.ones(100), [single("alice", basis(0))])

    def test_decision_to_dict(self):
        from face_identity.matcher import GalleryMatcher

        decision = GalleryMatcher().match(basis(0), [single("alice", with_cosine(0.92, 1))])
        data = decision.to_dict()
        assert data["identity_key"] == "alice"
        assert data["tier"] == "high"

    def test_custom_thresholds(self):
        from face_identity.constants import MatchingConfig
        from face_identity.matcher import ConfidenceTier, GalleryMatcher

        matcher = GalleryMatcher(MatchingConfig(high_threshold=0.7, medium_threshold=0.6, low_threshold=0.5))
        assert matcher.tier_for(0.75) == ConfidenceTier.HIGH

    def test_thresholds_must_be_ordered(self):
        from face_identity.constants import MatchingConfig

        with pytest.raises(ValueError):
            MatchingConfig(high_threshold=0.5, medium_threshold=0.7)
