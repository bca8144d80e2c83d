"""Face identity engine and live stream scanning.

The engine is an explicit handle: callers construct it once (optionally with
a detector collaborator) and pass it wherever embeddings or decisions are
needed. Registration, live recognition and server-side verification all go
through the same instance, so they share one preprocessing path and one
threshold set.

Usage:
    engine = FaceIdentityEngine(detector=HaarCascadeDetector())
    result = engine.extract_embedding(image)
    decision = engine.match_embedding(result.embedding, store.list_entries())
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

import numpy as np

from .constants import Config, get_config
from .detection.base import BaseFaceDetector
from .detection.types import DetectedFace
from .detection.utils import crop_face
from .errors import InvalidImage, LowQualityRejected, NoFaceDetected
from .features import extract_features_with_stats
from .gallery import GalleryEntry, RecognitionRecord
from .matcher import ConfidenceTier, GalleryMatcher, MatchDecision
from .normalization import normalize_embedding
from .preprocessing import preprocess_face
from .quality import QualityGate
from .registration import PoseImages, RegistrationAggregator
from .stable_id import CooldownTracker, stable_face_id
from .storage import GalleryStore, RecognitionHistoryLog

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """Embedding of one face plus the statistics behind it."""

    embedding: np.ndarray
    stable_id: str
    raw_variance: float
    intensity_variance: float
    face: Optional[DetectedFace] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "embedding": [float(v) for v in self.embedding],
            "stable_id": self.stable_id,
            "raw_variance": self.raw_variance,
        }
        if self.face is not None:
            data["face"] = self.face.to_dict()
        return data


@dataclass
class FaceObservation:
    """One face seen in a frame and the decision made about it."""

    extraction: ExtractionResult
    decision: MatchDecision
    alert: bool = True

    @property
    def stable_id(self) -> str:
        return self.extraction.stable_id

    @property
    def face(self) -> Optional[DetectedFace]:
        return self.extraction.face

    def to_dict(self) -> Dict[str, Any]:
        data = self.decision.to_dict()
        data["stable_id"] = self.stable_id
        if self.face is not None:
            data["bbox"] = list(self.face.bbox)
        return data


class FaceIdentityEngine:
    """Preprocess, embed, gate and match faces."""

    def __init__(
        self,
        detector: Optional[BaseFaceDetector] = None,
        config: Optional[Config] = None,
    ):
        """Initialize engine.

        Args:
            detector: Face detector collaborator. Without one, every image
                passed in is treated as an already-cropped face.
            config: Configuration (uses global config if None)
        """
        self.detector = detector
        self.config = config or get_config()
        self.quality_gate = QualityGate(self.config.quality)
        self.matcher = GalleryMatcher(self.config.matching)

    # -------------------------------------------------------------------------
    # Embedding
    # -------------------------------------------------------------------------

    def embed_face(
        self,
        face_image: np.ndarray,
        bgr: bool = False,
        face: Optional[DetectedFace] = None,
    ) -> ExtractionResult:
        """Embed an already-cropped face and apply the embedding gate.

        Raises:
            InvalidImage: If the crop is missing or malformed
            LowQualityRejected: If the embedding is degenerate
        """
        canonical = preprocess_face(face_image, bgr=bgr, config=self.config.preprocessing)
        features = extract_features_with_stats(canonical, self.config.features)
        embedding = normalize_embedding(features.vector, self.config.features)

        self.quality_gate.check_embedding(
            embedding,
            features.raw_variance,
            features.max_intensity_variance,
        )

        return ExtractionResult(
            embedding=embedding,
            stable_id=stable_face_id(embedding, self.config.scanning),
            raw_variance=features.raw_variance,
            intensity_variance=features.max_intensity_variance,
            face=face,
        )

    def detect_faces(self, frame: np.ndarray) -> List[DetectedFace]:
        """Detect faces and drop those failing the detection gate."""
        if self.detector is None:
            raise RuntimeError("No face detector configured")
        if frame is None or not isinstance(frame, np.ndarray) or frame.size == 0:
            raise InvalidImage("Frame is empty")

        faces = self.detector.detect(frame)
        return self.quality_gate.filter_detections(faces, frame.shape)

    def extract_embedding(
        self,
        image: np.ndarray,
        bgr: bool = False,
        margin: Optional[float] = None,
    ) -> ExtractionResult:
        """Embed the face in an image.

        With a detector, the largest detection is gated, cropped with
        ``margin`` and embedded. Without one, the image is the face crop.

        Raises:
            InvalidImage: If the image is missing or malformed
            NoFaceDetected: If the detector finds no face
            LowQualityRejected: If the face fails a quality gate
        """
        if self.detector is None:
            return self.embed_face(image, bgr=bgr)

        if image is None or not isinstance(image, np.ndarray) or image.size == 0:
            raise InvalidImage("Image is empty")

        faces = self.detector.detect(image)
        if not faces:
            raise NoFaceDetected("No face found in image")

        face = max(faces, key=lambda f: f.area)
        self.quality_gate.check_detection(face, image.shape)

        if margin is None:
            margin = self.config.scanning.crop_margin_ratio
        crop = crop_face(image, face.bbox, margin=margin)
        return self.embed_face(crop, bgr=bgr, face=face)

    def try_extract(self, image: np.ndarray, bgr: bool = False) -> Optional[ExtractionResult]:
        """Like extract_embedding, but returns None for per-frame failures."""
        try:
            return self.extract_embedding(image, bgr=bgr)
        except (InvalidImage, NoFaceDetected, LowQualityRejected) as e:
            logger.debug(f"Frame dropped: {e}")
            return None

    def stable_id(self, embedding: np.ndarray) -> str:
        """Stable face id for an embedding."""
        return stable_face_id(embedding, self.config.scanning)

    # -------------------------------------------------------------------------
    # Matching and registration
    # -------------------------------------------------------------------------

    def match_embedding(
        self,
        embedding: np.ndarray,
        entries: Iterable[GalleryEntry],
    ) -> MatchDecision:
        """Match an embedding against gallery entries."""
        return self.matcher.match(embedding, entries)

    def register_multi_pose(
        self,
        identity_key: str,
        display_name: str,
        pose_images: PoseImages,
        bgr: bool = False,
        **metadata: Any,
    ) -> GalleryEntry:
        """Build a multi-angle gallery entry from guided pose frames."""
        aggregator = RegistrationAggregator(self, self.config.registration)
        return aggregator.register(identity_key, display_name, pose_images, bgr=bgr, **metadata)

    def process_frame(
        self,
        frame: np.ndarray,
        entries: Iterable[GalleryEntry],
        bgr: bool = False,
    ) -> List[FaceObservation]:
        """Embed and match every usable face in a frame.

        Faces that fail a gate are skipped; they never abort the frame.
        """
        entries = list(entries)

        if self.detector is None:
            result = self.try_extract(frame, bgr=bgr)
            if result is None:
                return []
            return [FaceObservation(result, self.match_embedding(result.embedding, entries))]

        observations = []
        for face in self.detect_faces(frame):
            try:
                crop = crop_face(frame, face.bbox, margin=self.config.scanning.crop_margin_ratio)
                result = self.embed_face(crop, bgr=bgr, face=face)
            except (InvalidImage, LowQualityRejected) as e:
                logger.debug(f"Face at {face.bbox} dropped: {e}")
                continue
            decision = self.match_embedding(result.embedding, entries)
            observations.append(FaceObservation(result, decision))

        return observations


class StreamScanner:
    """Scan one camera stream, one frame at a time.

    A frame that arrives while the previous one is still being processed is
    skipped. Repeated alerts for the same face are suppressed by cooldowns:
    recognized identities by identity key, everything else by stable id.
    """

    def __init__(
        self,
        engine: FaceIdentityEngine,
        gallery: GalleryStore,
        history: Optional[RecognitionHistoryLog] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize scanner.

        Args:
            engine: Shared engine
            gallery: Gallery read once per frame
            history: When given, confident recognitions are recorded here
            clock: Time source for cooldowns
        """
        self.engine = engine
        self.gallery = gallery
        self.history = history

        scanning = engine.config.scanning
        self.recognition_cooldown = CooldownTracker(scanning.recognition_cooldown, clock)
        self.unknown_cooldown = CooldownTracker(scanning.unknown_face_cooldown, clock)

        self._busy = threading.Lock()
        self.frames_processed = 0
        self.frames_skipped = 0

    def scan(self, frame: np.ndarray, bgr: bool = False) -> Optional[List[FaceObservation]]:
        """Process a frame.

        Returns:
            Observations for the frame (``alert`` is False for faces in
            cooldown), or None if the frame was skipped
        """
        if not self._busy.acquire(blocking=False):
            self.frames_skipped += 1
            logger.debug("Scan already in progress, frame skipped")
            return None

        try:
            observations = self.engine.process_frame(
                frame, self.gallery.list_entries(), bgr=bgr
            )
            for observation in observations:
                self._apply_cooldown(observation)
            self.frames_processed += 1
            return observations
        except InvalidImage as e:
            logger.warning(f"Unreadable frame: {e}")
            return []
        finally:
            self._busy.release()

    def _apply_cooldown(self, observation: FaceObservation) -> None:
        decision = observation.decision

        if decision.is_confirmed:
            observation.alert = self.recognition_cooldown.should_emit(decision.identity_key)
            if observation.alert:
                logger.info(f"Recognized {decision.display_name} ({decision.confidence:.0%})")
                self._record(decision, observation)
        else:
            observation.alert = self.unknown_cooldown.should_emit(observation.stable_id)
            if observation.alert:
                logger.info(
                    f"Unrecognized face {observation.stable_id} "
                    f"(tier={decision.tier.value}, ambiguous={decision.is_ambiguous})"
                )

    def _record(self, decision: MatchDecision, observation: FaceObservation) -> None:
        if self.history is None or decision.tier != ConfidenceTier.HIGH:
            return
        self.history.append(
            decision.identity_key,
            RecognitionRecord(
                embedding=observation.extraction.embedding,
                confidence=decision.confidence,
            ),
        )
