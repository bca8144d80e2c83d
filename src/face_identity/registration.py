"""Guided multi-pose registration.

The user is prompted through five poses (front, right, left, up, down). Each
captured frame is embedded independently; poses without a usable face are
skipped. A registration succeeds when enough poses survive, and the result
waits in the pending queue until an external approver promotes it.
"""

import logging
from typing import TYPE_CHECKING, Any, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .constants import RegistrationConfig, get_registration_config
from .errors import (
    InsufficientRegistrationSamples,
    InvalidImage,
    LowQualityRejected,
    NoFaceDetected,
)
from .gallery import (
    GUIDED_POSES,
    EmbeddingAngle,
    GalleryEntry,
    PendingRegistration,
    Pose,
    utc_timestamp,
)
from .storage import GalleryStore, PendingRegistrationQueue

if TYPE_CHECKING:
    from .pipeline import FaceIdentityEngine

logger = logging.getLogger(__name__)

PoseImages = Union[Sequence[Optional[np.ndarray]], Mapping[Pose, Optional[np.ndarray]]]


def _pose_frames(pose_images: PoseImages) -> List[Tuple[Pose, Optional[np.ndarray]]]:
    """Pair each guided pose with its captured frame (None when missing)."""
    if isinstance(pose_images, Mapping):
        return [(pose, pose_images.get(pose)) for pose in GUIDED_POSES]

    frames = list(pose_images)
    if len(frames) > len(GUIDED_POSES):
        raise ValueError(
            f"Got {len(frames)} pose images, expected at most {len(GUIDED_POSES)}"
        )
    frames += [None] * (len(GUIDED_POSES) - len(frames))
    return list(zip(GUIDED_POSES, frames))


class RegistrationAggregator:
    """Turn guided pose captures into a multi-angle gallery entry."""

    def __init__(
        self,
        engine: "FaceIdentityEngine",
        config: Optional[RegistrationConfig] = None,
    ):
        """Initialize aggregator.

        Args:
            engine: Engine used to embed each pose frame
            config: Registration constants (uses global config if None)
        """
        self.engine = engine
        self.config = config or get_registration_config()

    def capture_pose(self, pose: Pose, image: Optional[np.ndarray], bgr: bool = False) -> EmbeddingAngle:
        """Embed one pose frame.

        Raises:
            NoFaceDetected: If the frame is missing or has no face
            LowQualityRejected: If the face fails a quality gate
            InvalidImage: If the frame is unreadable
        """
        if image is None:
            raise NoFaceDetected(f"No frame captured for pose {pose.name.lower()}")

        result = self.engine.extract_embedding(
            image, bgr=bgr, margin=self.config.crop_margin_ratio
        )
        return EmbeddingAngle(
            embedding=result.embedding,
            pose=pose,
            uid=result.stable_id,
        )

    def collect(
        self,
        pose_images: PoseImages,
        bgr: bool = False,
    ) -> Tuple[List[EmbeddingAngle], List[Pose]]:
        """Embed every pose, returning surviving angles and skipped poses."""
        angles = []
        skipped = []

        for pose, image in _pose_frames(pose_images):
            try:
                angles.append(self.capture_pose(pose, image, bgr=bgr))
                logger.info(f"Captured pose {pose.name.lower()}")
            except (NoFaceDetected, LowQualityRejected, InvalidImage) as e:
                skipped.append(pose)
                logger.warning(f"Skipping pose {pose.name.lower()}: {e}")

        return angles, skipped

    def register(
        self,
        identity_key: str,
        display_name: str,
        pose_images: PoseImages,
        bgr: bool = False,
        **metadata: Any,
    ) -> GalleryEntry:
        """Build a gallery entry from guided pose captures.

        Args:
            identity_key: Key the entry is stored under
            display_name: Name shown on recognition
            pose_images: Frames in pose order, or a mapping of Pose to frame
            bgr: Set when frames come from OpenCV
            **metadata: Extra metadata stored on the entry

        Returns:
            GalleryEntry with one angle per surviving pose, in capture order

        Raises:
            InsufficientRegistrationSamples: If too few poses survive
        """
        entry, _ = self._aggregate(identity_key, display_name, pose_images, bgr, metadata)
        return entry

    def _aggregate(self, identity_key, display_name, pose_images, bgr, metadata):
        angles, skipped = self.collect(pose_images, bgr=bgr)

        if len(angles) < self.config.min_successful_poses:
            logger.warning(
                f"Registration of {identity_key} failed: "
                f"{len(angles)}/{len(GUIDED_POSES)} poses usable"
            )
            raise InsufficientRegistrationSamples(
                self.config.min_successful_poses, len(angles)
            )

        entry = GalleryEntry(
            identity_key=identity_key,
            display_name=display_name,
            angles=tuple(angles),
            metadata=dict(metadata),
        )
        logger.info(
            f"Registered {identity_key} with {len(angles)} angle(s)"
            + (f", skipped {[p.name.lower() for p in skipped]}" if skipped else "")
        )
        return entry, skipped

    def submit(
        self,
        queue: PendingRegistrationQueue,
        identity_key: str,
        display_name: str,
        pose_images: PoseImages,
        bgr: bool = False,
    ) -> PendingRegistration:
        """Register and write the result to the pending queue for approval."""
        entry, skipped = self._aggregate(identity_key, display_name, pose_images, bgr, {})
        pending = PendingRegistration(
            registration_id=queue.new_registration_id(),
            identity_key=entry.identity_key,
            display_name=entry.display_name,
            angles=entry.angles,
            skipped_poses=tuple(skipped),
        )
        queue.write_pending(pending)
        return pending


def promote_pending(
    queue: PendingRegistrationQueue,
    gallery: GalleryStore,
    registration_id: str,
    **metadata: Any,
) -> Optional[GalleryEntry]:
    """Approve a pending registration.

    The pending record is claimed (removed) first, so concurrent approvals of
    the same registration append its angles once. The angles are then
    appended to the identity's gallery entry (created when absent) in one
    whole-entry update. If that update fails the record is put back.

    Returns:
        The stored entry, or None if the registration does not exist
    """
    pending = queue.take_pending(registration_id)
    if pending is None:
        logger.warning(f"Pending registration not found: {registration_id}")
        return None

    approval = {"approved": True, "approved_at": utc_timestamp()}
    approval.update(metadata)

    def append_angles(current: Optional[GalleryEntry]) -> GalleryEntry:
        if current is None:
            return pending.to_entry(**approval)
        return current.with_angles(pending.angles, **approval)

    try:
        entry = gallery.update(pending.identity_key, append_angles)
    except Exception:
        logger.error(f"Approval of {registration_id} failed, registration restored")
        queue.write_pending(pending)
        raise
    logger.info(
        f"Approved registration {registration_id}: "
        f"{pending.identity_key} now has {len(entry.angles)} angle(s)"
    )
    return entry


def reject_pending(queue: PendingRegistrationQueue, registration_id: str) -> bool:
    """Discard a pending registration. Returns False if it did not exist."""
    removed = queue.remove_pending(registration_id)
    if removed:
        logger.info(f"Rejected registration {registration_id}")
    return removed
