"""Face Identity Engine.

Deterministic face embeddings and gallery matching for guided registration,
live recognition and server-side verification. All three paths share one
preprocessing pipeline and one threshold set.

Quick Start:
    # As library
    from face_identity import FaceIdentityEngine, InMemoryGalleryStore

    engine = FaceIdentityEngine(detector=HaarCascadeDetector())
    result = engine.extract_embedding(image)
    decision = engine.match_embedding(result.embedding, store.list_entries())

    # Command line
    python -m face_identity match --image photo.jpg
"""

__version__ = "0.1.0"

from .adaptive import AdaptiveRefiner
from .constants import EMBEDDING_DIM, Config, get_config
from .detection import BaseFaceDetector, DetectedFace, HaarCascadeDetector, crop_face
from .errors import (
    DimensionMismatch,
    FaceIdentityError,
    InsufficientRegistrationSamples,
    InvalidImage,
    LowQualityRejected,
    NoFaceDetected,
)
from .features import extract_features
from .gallery import (
    EmbeddingAngle,
    GalleryEntry,
    PendingRegistration,
    Pose,
    RecognitionRecord,
)
from .matcher import ConfidenceTier, GalleryMatcher, MatchCandidate, MatchDecision, cosine_similarity
from .normalization import normalize_embedding
from .pipeline import ExtractionResult, FaceIdentityEngine, FaceObservation, StreamScanner
from .preprocessing import preprocess_face
from .quality import QualityGate
from .registration import RegistrationAggregator, promote_pending, reject_pending
from .stable_id import CooldownTracker, stable_face_id
from .storage import (
    GalleryStore,
    InMemoryGalleryStore,
    InMemoryPendingQueue,
    InMemoryRecognitionHistory,
    JsonGalleryStore,
    JsonPendingQueue,
    JsonRecognitionHistory,
    PendingRegistrationQueue,
    RecognitionHistoryLog,
    Storage,
    open_storage,
)

__all__ = [
    "AdaptiveRefiner",
    "BaseFaceDetector",
    "ConfidenceTier",
    "Config",
    "CooldownTracker",
    "DetectedFace",
    "DimensionMismatch",
    "EMBEDDING_DIM",
    "EmbeddingAngle",
    "ExtractionResult",
    "FaceIdentityEngine",
    "FaceIdentityError",
    "FaceObservation",
    "GalleryEntry",
    "GalleryMatcher",
    "GalleryStore",
    "HaarCascadeDetector",
    "InMemoryGalleryStore",
    "InMemoryPendingQueue",
    "InMemoryRecognitionHistory",
    "InsufficientRegistrationSamples",
    "InvalidImage",
    "JsonGalleryStore",
    "JsonPendingQueue",
    "JsonRecognitionHistory",
    "LowQualityRejected",
    "MatchCandidate",
    "MatchDecision",
    "NoFaceDetected",
    "PendingRegistration",
    "PendingRegistrationQueue",
    "Pose",
    "QualityGate",
    "RecognitionHistoryLog",
    "RecognitionRecord",
    "RegistrationAggregator",
    "StreamScanner",
    "Storage",
    "cosine_similarity",
    "crop_face",
    "extract_features",
    "get_config",
    "normalize_embedding",
    "open_storage",
    "preprocess_face",
    "promote_pending",
    "reject_pending",
    "stable_face_id",
]
