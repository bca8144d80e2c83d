"""Gallery data model: registered identities and their reference angles."""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .normalization import embedding_from_list, embedding_to_list, validate_embedding

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


class Pose(IntEnum):
    """Guided capture poses, in prompt order.

    The integer values are the stored angle index.
    """
    FRONT = 0
    RIGHT = 1
    LEFT = 2
    UP = 3
    DOWN = 4
    LEARNED = 99

    @property
    def prompt(self) -> str:
        """Instruction shown to the user for this pose."""
        return POSE_PROMPTS.get(self, "")


POSE_PROMPTS = {
    Pose.FRONT: "Please look directly at the camera.",
    Pose.RIGHT: "Slowly turn your head to the right.",
    Pose.LEFT: "Slowly turn your head to the left.",
    Pose.UP: "Slowly tilt your head up.",
    Pose.DOWN: "Slowly tilt your head down.",
}

GUIDED_POSES: Tuple[Pose, ...] = (Pose.FRONT, Pose.RIGHT, Pose.LEFT, Pose.UP, Pose.DOWN)

SOURCE_REGISTRATION = "registration"
SOURCE_ADAPTIVE = "adaptive-learning"


@dataclass(frozen=True, eq=False)
class EmbeddingAngle:
    """One reference embedding of an identity."""

    embedding: np.ndarray
    pose: Optional[Pose] = None
    timestamp: str = field(default_factory=utc_timestamp)
    uid: Optional[str] = None
    source: str = SOURCE_REGISTRATION
    sample_count: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "embedding", validate_embedding(self.embedding))

    @property
    def is_learned(self) -> bool:
        return self.pose == Pose.LEARNED

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "embedding": embedding_to_list(self.embedding),
            "angle": int(self.pose) if self.pose is not None else None,
            "timestamp": self.timestamp,
            "uid": self.uid,
            "source": self.source,
        }
        if self.sample_count is not None:
            data["sampleCount"] = self.sample_count
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmbeddingAngle":
        angle = data.get("angle")
        return cls(
            embedding=embedding_from_list(data["embedding"], context="stored angle"),
            pose=Pose(angle) if angle is not None else None,
            timestamp=data.get("timestamp") or utc_timestamp(),
            uid=data.get("uid"),
            source=data.get("source", SOURCE_REGISTRATION),
            sample_count=data.get("sampleCount"),
        )


@dataclass(frozen=True, eq=False)
class GalleryEntry:
    """A registered person and their reference angles.

    Entries are immutable values. Registration and adaptive refinement
    produce a new entry and write it back as a whole.
    """

    identity_key: str
    display_name: str
    angles: Tuple[EmbeddingAngle, ...]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        angles = tuple(self.angles)
        if not angles:
            raise ValueError(f"Gallery entry {self.identity_key!r} needs at least one embedding")
        object.__setattr__(self, "angles", angles)

    @classmethod
    def from_embedding(
        cls,
        identity_key: str,
        display_name: str,
        embedding: np.ndarray,
        **metadata: Any,
    ) -> "GalleryEntry":
        """Create a single-angle entry."""
        return cls(
            identity_key=identity_key,
            display_name=display_name,
            angles=(EmbeddingAngle(embedding=embedding, pose=Pose.FRONT),),
            metadata=dict(metadata),
        )

    @property
    def embeddings(self) -> List[np.ndarray]:
        return [angle.embedding for angle in self.angles]

    @property
    def is_multi_angle(self) -> bool:
        return len(self.angles) > 1

    @property
    def primary_embedding(self) -> np.ndarray:
        """Front pose embedding, or the first angle when no front pose exists."""
        for angle in self.angles:
            if angle.pose == Pose.FRONT:
                return angle.embedding
        return self.angles[0].embedding

    def with_angles(self, new_angles, **metadata: Any) -> "GalleryEntry":
        """Return a copy with ``new_angles`` appended and metadata updated."""
        merged = dict(self.metadata)
        merged.update(metadata)
        return replace(self, angles=self.angles + tuple(new_angles), metadata=merged)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the stored record format."""
        return {
            "identityKey": self.identity_key,
            "name": self.display_name,
            "embeddings": [angle.to_dict() for angle in self.angles],
            "primaryEmbedding": embedding_to_list(self.primary_embedding),
            "embeddingCount": len(self.angles),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], identity_key: Optional[str] = None) -> "GalleryEntry":
        """Load a stored record.

        Supports the multi-angle format and the legacy single-embedding
        format (``{"embedding": [...]}``).
        """
        key = identity_key or data.get("identityKey") or data.get("studentId")
        name = data.get("name") or data.get("studentName") or key
        if key is None:
            raise ValueError("Stored gallery record has no identity key")

        if data.get("embeddings"):
            angles = tuple(EmbeddingAngle.from_dict(a) for a in data["embeddings"])
        elif data.get("embedding") is not None:
            angles = (
                EmbeddingAngle(
                    embedding=embedding_from_list(data["embedding"], context="stored embedding"),
                    pose=Pose.FRONT,
                    uid=data.get("uid"),
                ),
            )
        else:
            raise ValueError(f"Stored gallery record {key!r} has no embeddings")

        return cls(
            identity_key=key,
            display_name=name,
            angles=angles,
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True, eq=False)
class PendingRegistration:
    """Registration output awaiting external approval."""

    registration_id: str
    identity_key: str
    display_name: str
    angles: Tuple[EmbeddingAngle, ...]
    skipped_poses: Tuple[Pose, ...] = ()
    status: str = "pending"
    timestamp: str = field(default_factory=utc_timestamp)

    def to_entry(self, **metadata: Any) -> GalleryEntry:
        """Gallery entry holding this registration's angles."""
        return GalleryEntry(
            identity_key=self.identity_key,
            display_name=self.display_name,
            angles=self.angles,
            metadata=dict(metadata),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registrationId": self.registration_id,
            "identityKey": self.identity_key,
            "name": self.display_name,
            "embeddings": [angle.to_dict() for angle in self.angles],
            "skippedPoses": [int(p) for p in self.skipped_poses],
            "status": self.status,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], registration_id: Optional[str] = None) -> "PendingRegistration":
        return cls(
            registration_id=registration_id or data["registrationId"],
            identity_key=data["identityKey"],
            display_name=data.get("name") or data["identityKey"],
            angles=tuple(EmbeddingAngle.from_dict(a) for a in data.get("embeddings") or []),
            skipped_poses=tuple(Pose(p) for p in data.get("skippedPoses") or []),
            status=data.get("status", "pending"),
            timestamp=data.get("timestamp") or utc_timestamp(),
        )


@dataclass(frozen=True, eq=False)
class RecognitionRecord:
    """One past recognition attributed to an identity."""

    embedding: np.ndarray
    confidence: float
    timestamp: str = field(default_factory=utc_timestamp)

    def __post_init__(self):
        object.__setattr__(self, "embedding", validate_embedding(self.embedding, context="history embedding"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "embedding": embedding_to_list(self.embedding),
            "confidence": float(self.confidence),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecognitionRecord":
        return cls(
            embedding=embedding_from_list(data["embedding"], context="history embedding"),
            confidence=float(data["confidence"]),
            timestamp=data.get("timestamp") or utc_timestamp(),
        )
