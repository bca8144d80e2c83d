"""Centralized constants and configuration loader.

Every threshold and pipeline constant used by the engine lives here. Values
are loaded from config/config.yaml when available, otherwise the defaults
below are used. Registration, live recognition and server-side verification
all read the same instance, so embeddings and decisions cannot drift between
call sites.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

# Path to the default configuration file
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "config.yaml"

# Fixed embedding length. Not configurable: stored galleries depend on it.
EMBEDDING_DIM = 512


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. Uses default if None.

    Returns:
        Configuration dictionary.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    try:
        if path.exists():
            with open(path, "r") as f:
                return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")

    return {}


def _get_nested(config: Dict, *keys: str, default: Any = None) -> Any:
    """Get nested config value with default fallback."""
    value = config
    for key in keys:
        if isinstance(value, dict):
            value = value.get(key)
        else:
            return default
        if value is None:
            return default
    return value


# ============================================================
# Image Preprocessing Constants
# ============================================================

@dataclass
class PreprocessingConfig:
    """Canonical face image constants."""
    # Canonical size every crop is resized to
    canonical_size: Tuple[int, int] = (256, 256)
    # Multiplicative contrast boost applied to [0, 1] luma
    contrast_boost: float = 1.15
    # Pixel max value (standard, not configurable)
    pixel_max_value: float = 255.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "PreprocessingConfig":
        """Create from config dictionary."""
        pp = _get_nested(config, "preprocessing") or {}
        canonical_size = pp.get("canonical_size", [256, 256])

        return cls(
            canonical_size=tuple(canonical_size),
            contrast_boost=pp.get("contrast_boost", 1.15),
        )


# ============================================================
# Feature Extraction Constants
# ============================================================

@dataclass
class FeatureConfig:
    """Multi-scale moment/histogram feature constants."""
    # Relative scales applied to the base size
    scales: Tuple[float, ...] = (1.0, 0.85, 0.7, 0.5)
    # Base square size the scales are applied to
    base_size: int = 224
    # Histogram bins per scale
    histogram_bins: int = 32
    # Output embedding length
    embedding_dim: int = EMBEDDING_DIM
    # Stabilizer added to the standard deviation
    epsilon: float = 1e-8

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "FeatureConfig":
        """Create from config dictionary."""
        fe = _get_nested(config, "features") or {}
        scales = fe.get("scales", [1.0, 0.85, 0.7, 0.5])

        return cls(
            scales=tuple(float(s) for s in scales),
            base_size=fe.get("base_size", 224),
            histogram_bins=fe.get("histogram_bins", 32),
            epsilon=fe.get("epsilon", 1e-8),
        )


# ============================================================
# Quality Gate Constants
# ============================================================

@dataclass
class QualityConfig:
    """Detection and embedding quality thresholds."""
    # Detection gate
    min_face_size: Tuple[int, int] = (80, 80)
    min_area_ratio: float = 0.03
    min_detection_confidence: float = 0.85

    # Embedding gate
    min_nonzero_values: int = 200
    nonzero_magnitude: float = 0.01
    min_raw_variance: float = 0.01
    # Largest per-scale pixel variance below this means a flat crop
    min_intensity_variance: float = 0.01

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "QualityConfig":
        """Create from config dictionary."""
        q = _get_nested(config, "quality") or {}
        detection = q.get("detection", {})
        embedding = q.get("embedding", {})
        min_face_size = detection.get("min_face_size", [80, 80])

        return cls(
            min_face_size=tuple(min_face_size),
            min_area_ratio=detection.get("min_area_ratio", 0.03),
            min_detection_confidence=detection.get("min_confidence", 0.85),
            min_nonzero_values=embedding.get("min_nonzero_values", 200),
            nonzero_magnitude=embedding.get("nonzero_magnitude", 0.01),
            min_raw_variance=embedding.get("min_raw_variance", 0.01),
            min_intensity_variance=embedding.get("min_intensity_variance", 0.01),
        )


# ============================================================
# Matching Constants
# ============================================================

@dataclass
class MatchingConfig:
    """Confidence tiers and ambiguity policy.

    This is the single authoritative threshold set. Tiers:
    high >= high_threshold > medium >= medium_threshold > low >= low_threshold.
    """
    high_threshold: float = 0.85
    medium_threshold: float = 0.70
    low_threshold: float = 0.60
    # Top-two gap below which the decision is ambiguous
    ambiguity_margin: float = 0.05
    # Top score at or above which a small gap is tolerated
    certainty_cutoff: float = 0.90
    # Angles of a multi-angle entry that must clear low_threshold
    min_agreeing_angles: int = 2

    def __post_init__(self):
        if not (self.low_threshold <= self.medium_threshold <= self.high_threshold):
            raise ValueError(
                "Thresholds must satisfy low <= medium <= high, got "
                f"{self.low_threshold}/{self.medium_threshold}/{self.high_threshold}"
            )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "MatchingConfig":
        """Create from config dictionary."""
        m = _get_nested(config, "matching") or {}
        thresholds = m.get("thresholds", {})

        return cls(
            high_threshold=thresholds.get("high", 0.85),
            medium_threshold=thresholds.get("medium", 0.70),
            low_threshold=thresholds.get("low", 0.60),
            ambiguity_margin=m.get("ambiguity_margin", 0.05),
            certainty_cutoff=m.get("certainty_cutoff", 0.90),
            min_agreeing_angles=m.get("min_agreeing_angles", 2),
        )


# ============================================================
# Registration Constants
# ============================================================

@dataclass
class RegistrationConfig:
    """Guided multi-pose registration constants."""
    # Number of guided poses (front, right, left, up, down)
    pose_count: int = 5
    # Fewer surviving poses than this fails the registration
    min_successful_poses: int = 4
    # Margin around detected face as fraction of size
    crop_margin_ratio: float = 0.2

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RegistrationConfig":
        """Create from config dictionary."""
        r = _get_nested(config, "registration") or {}

        return cls(
            pose_count=r.get("pose_count", 5),
            min_successful_poses=r.get("min_successful_poses", 4),
            crop_margin_ratio=r.get("crop_margin_ratio", 0.2),
        )


# ============================================================
# Adaptive Learning Constants
# ============================================================

@dataclass
class AdaptiveConfig:
    """Adaptive refinement constants."""
    # Recognitions below this confidence are ignored
    min_confidence: float = 0.85
    # Minimum number of qualifying recognitions
    min_samples: int = 5

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "AdaptiveConfig":
        """Create from config dictionary."""
        a = _get_nested(config, "adaptive") or {}

        return cls(
            min_confidence=a.get("min_confidence", 0.85),
            min_samples=a.get("min_samples", 5),
        )


# ============================================================
# Live Scanning Constants
# ============================================================

@dataclass
class ScanningConfig:
    """Live scanning and stable-id constants."""
    # Stable id format
    stable_id_prefix: str = "face"
    stable_id_components: int = 8
    stable_id_scale: float = 1000.0
    stable_id_delimiter: str = "-"
    # Cooldowns in seconds
    unknown_face_cooldown: float = 300.0
    recognition_cooldown: float = 60.0
    # Margin around detected face as fraction of size
    crop_margin_ratio: float = 0.2

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ScanningConfig":
        """Create from config dictionary."""
        s = _get_nested(config, "scanning") or {}
        stable_id = s.get("stable_id", {})
        cooldowns = s.get("cooldowns", {})

        return cls(
            stable_id_prefix=stable_id.get("prefix", "face"),
            stable_id_components=stable_id.get("components", 8),
            stable_id_scale=stable_id.get("scale", 1000.0),
            stable_id_delimiter=stable_id.get("delimiter", "-"),
            unknown_face_cooldown=cooldowns.get("unknown_face", 300.0),
            recognition_cooldown=cooldowns.get("recognition", 60.0),
            crop_margin_ratio=s.get("crop_margin_ratio", 0.2),
        )


# ============================================================
# Global Config Instance (lazy loaded)
# ============================================================

class Config:
    """Global configuration singleton."""

    _instance: Optional["Config"] = None
    _config: Dict[str, Any] = {}

    def __new__(cls) -> "Config":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load()
        return cls._instance

    def _load(self, config_path: Optional[Path] = None) -> None:
        """Load configuration from file."""
        self._config = load_config(config_path)
        self._preprocessing: Optional[PreprocessingConfig] = None
        self._features: Optional[FeatureConfig] = None
        self._quality: Optional[QualityConfig] = None
        self._matching: Optional[MatchingConfig] = None
        self._registration: Optional[RegistrationConfig] = None
        self._adaptive: Optional[AdaptiveConfig] = None
        self._scanning: Optional[ScanningConfig] = None

    def reload(self, config_path: Optional[Path] = None) -> None:
        """Reload configuration from file and reset cached sections."""
        self._load(config_path)

    @property
    def preprocessing(self) -> PreprocessingConfig:
        """Get preprocessing config."""
        if self._preprocessing is None:
            self._preprocessing = PreprocessingConfig.from_config(self._config)
        return self._preprocessing

    @property
    def features(self) -> FeatureConfig:
        """Get feature extraction config."""
        if self._features is None:
            self._features = FeatureConfig.from_config(self._config)
        return self._features

    @property
    def quality(self) -> QualityConfig:
        """Get quality gate config."""
        if self._quality is None:
            self._quality = QualityConfig.from_config(self._config)
        return self._quality

    @property
    def matching(self) -> MatchingConfig:
        """Get matching config."""
        if self._matching is None:
            self._matching = MatchingConfig.from_config(self._config)
        return self._matching

    @property
    def registration(self) -> RegistrationConfig:
        """Get registration config."""
        if self._registration is None:
            self._registration = RegistrationConfig.from_config(self._config)
        return self._registration

    @property
    def adaptive(self) -> AdaptiveConfig:
        """Get adaptive learning config."""
        if self._adaptive is None:
            self._adaptive = AdaptiveConfig.from_config(self._config)
        return self._adaptive

    @property
    def scanning(self) -> ScanningConfig:
        """Get live scanning config."""
        if self._scanning is None:
            self._scanning = ScanningConfig.from_config(self._config)
        return self._scanning

    def get(self, *keys: str, default: Any = None) -> Any:
        """Get a config value by key path."""
        return _get_nested(self._config, *keys, default=default)


def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()


# Convenience accessors
def get_preprocessing_config() -> PreprocessingConfig:
    """Get preprocessing configuration."""
    return get_config().preprocessing


def get_feature_config() -> FeatureConfig:
    """Get feature extraction configuration."""
    return get_config().features


def get_quality_config() -> QualityConfig:
    """Get quality gate configuration."""
    return get_config().quality


def get_matching_config() -> MatchingConfig:
    """Get matching configuration."""
    return get_config().matching


def get_registration_config() -> RegistrationConfig:
    """Get registration configuration."""
    return get_config().registration


def get_adaptive_config() -> AdaptiveConfig:
    """Get adaptive learning configuration."""
    return get_config().adaptive


def get_scanning_config() -> ScanningConfig:
    """Get live scanning configuration."""
    return get_config().scanning
