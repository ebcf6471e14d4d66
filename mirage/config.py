"""
Configuration management for the Mirage pipeline.

Defines enums, configuration data classes and the core detection records
shared by the normalizer, the risk scorer and the compositing renderer.
"""

import json
import os
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


BOX_SCALE = 1000  # normalized box units


class DetectionCategory(Enum):
    """Closed set of sensitive-data categories."""
    FACE = "face"
    CREDIT_CARD = "credit_card"
    SSN = "ssn"
    PHONE = "phone"
    EMAIL = "email"
    ADDRESS = "address"
    PASSPORT = "passport"
    REFLECTION_EXPOSURE = "reflection_exposure"
    BACKGROUND_SCREEN = "background_screen"
    GPS_LOCATION = "gps_location"
    LICENSE_PLATE = "license_plate"
    BARCODE = "barcode"
    QR_CODE = "qr_code"
    SENSITIVE_DOCUMENT = "sensitive_document"
    NAME = "name"
    OTHER = "other"

    @classmethod
    def from_tag(cls, tag: Any) -> "DetectionCategory":
        """Normalize a collaborator's category tag; unknown tags map to OTHER."""
        if isinstance(tag, cls):
            return tag
        normalized = str(tag or "").strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(normalized)
        except ValueError:
            return cls.OTHER


class ReplacementMode(Enum):
    """How a detection is neutralized."""
    SYNTHETIC = "synthetic"
    BLUR = "blur"
    STRIP = "strip"
    NONE = "none"


# Categories rendered with blur + overlay + label
OBSCURE_CATEGORIES: FrozenSet[DetectionCategory] = frozenset({
    DetectionCategory.FACE,
    DetectionCategory.REFLECTION_EXPOSURE,
    DetectionCategory.BACKGROUND_SCREEN,
    DetectionCategory.LICENSE_PLATE,
    DetectionCategory.BARCODE,
    DetectionCategory.QR_CODE,
    DetectionCategory.SENSITIVE_DOCUMENT,
})

# Categories that live in file metadata rather than pixels
METADATA_CATEGORIES: FrozenSet[DetectionCategory] = frozenset({
    DetectionCategory.GPS_LOCATION,
})


def default_replacement_mode(category: DetectionCategory) -> ReplacementMode:
    """Replacement mode a detection gets when its source does not specify one."""
    if category in OBSCURE_CATEGORIES:
        return ReplacementMode.BLUR
    if category in METADATA_CATEGORIES:
        return ReplacementMode.STRIP
    return ReplacementMode.SYNTHETIC


@dataclass
class Detection:
    """A single flagged region or value."""
    id: str
    category: DetectionCategory
    box: Tuple[float, float, float, float]  # (x1, y1, x2, y2) in 0-1000 units
    confidence: float
    reason: str = ""
    sensitive: bool = True
    replacement_mode: ReplacementMode = ReplacementMode.SYNTHETIC
    redact_by_default: bool = False
    text: Optional[str] = None
    notable: bool = False
    source: str = "unknown"  # "vision", "metadata", ...

    def __post_init__(self):
        """Validate geometry and confidence."""
        if len(self.box) != 4:
            raise ValueError(f"Detection box must have 4 values, got {self.box!r}")
        self.box = tuple(float(v) for v in self.box)
        x1, y1, x2, y2 = self.box
        if not (x1 <= x2 and y1 <= y2):
            raise ValueError(f"Detection box must satisfy x1<=x2 and y1<=y2: {self.box}")
        if any(v < 0 or v > BOX_SCALE for v in self.box):
            raise ValueError(f"Detection box values must lie within [0, {BOX_SCALE}]: {self.box}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Detection confidence must lie within [0, 1]: {self.confidence}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "type": self.category.value,
            "box": list(self.box),
            "confidence": self.confidence,
            "reason": self.reason,
            "sensitive": self.sensitive,
            "replacement_mode": self.replacement_mode.value,
            "redact_by_default": self.redact_by_default,
            "text": self.text,
            "notable": self.notable,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Detection":
        """Create from dictionary."""
        category = DetectionCategory.from_tag(data.get("type", data.get("category")))
        return cls(
            id=data["id"],
            category=category,
            box=tuple(data["box"]),
            confidence=data.get("confidence", 1.0),
            reason=data.get("reason", ""),
            sensitive=data.get("sensitive", True),
            replacement_mode=ReplacementMode(
                data.get("replacement_mode", default_replacement_mode(category).value)
            ),
            redact_by_default=data.get("redact_by_default", False),
            text=data.get("text"),
            notable=data.get("notable", False),
            source=data.get("source", "unknown"),
        )


@dataclass(frozen=True)
class AudienceProfile:
    """Named policy defining which categories are redacted by default."""
    id: str
    label: str
    description: str
    paranoia_level: int
    redact: FrozenSet[DetectionCategory]

    def redacts(self, category: DetectionCategory) -> bool:
        return category in self.redact


def _profile(profile_id: str, label: str, description: str, paranoia: int, redact: List[str]) -> AudienceProfile:
    return AudienceProfile(
        id=profile_id,
        label=label,
        description=description,
        paranoia_level=paranoia,
        redact=frozenset(DetectionCategory(c) for c in redact),
    )


AUDIENCE_PROFILES: Tuple[AudienceProfile, ...] = (
    _profile(
        "public_social", "Social Media", "Public posts, maximum privacy", 90,
        ["face", "credit_card", "ssn", "phone", "email", "address", "passport",
         "reflection_exposure", "background_screen", "gps_location", "license_plate",
         "barcode", "qr_code", "sensitive_document"],
    ),
    _profile(
        "support_ticket", "Support Ticket", "Customer service only", 70,
        ["credit_card", "ssn", "passport", "address", "phone"],
    ),
    _profile(
        "work_colleague", "Work / Slack", "Professional context", 40,
        ["credit_card", "ssn", "passport"],
    ),
    _profile(
        "doctor_lawyer", "Doctor / Lawyer", "Trusted professionals", 15,
        ["background_screen", "reflection_exposure", "gps_location"],
    ),
    _profile(
        "family_friend", "Family / Friend", "Trusted contacts", 25,
        ["credit_card", "ssn", "gps_location"],
    ),
)

DEFAULT_AUDIENCE_ID = "public_social"


def get_audience_profile(profile_id: str) -> AudienceProfile:
    """Look up a built-in audience profile by id."""
    for profile in AUDIENCE_PROFILES:
        if profile.id == profile_id:
            return profile
    raise KeyError(f"Unknown audience profile: {profile_id}")


@dataclass
class RendererConfig:
    """Configuration for the compositing renderer."""
    padding_pixels: int = 10
    blur_kernel_size: int = 99
    blur_sigma: float = 45.0
    overlay_alpha: float = 0.95
    label_text: str = "PROTECTED"
    label_max_font_size: int = 24
    indicator_height: int = 4
    indicator_color: Tuple[int, int, int] = (239, 68, 68)  # RGB
    indicator_alpha: float = 0.8
    sample_margin: int = 3  # ring width sampled for the fill color
    noise_amplitude: int = 6
    noise_seed: Optional[int] = None
    synthetic_seed: Optional[int] = None


@dataclass
class CascadeConfig:
    """Configuration for the three-layer text cascade."""
    remote_risk_threshold: float = 0.5
    local_model_confidence: float = 0.85
    entity_engine: str = "spacy"  # "spacy" or "presidio"
    spacy_model: str = "en_core_web_sm"
    presidio_threshold: float = 0.35
    use_local_model: bool = True
    remote_url: Optional[str] = None
    remote_timeout: float = 30.0


@dataclass
class VisionConfig:
    """Configuration for the remote vision detection service."""
    endpoint: Optional[str] = None
    timeout: float = 60.0
    default_confidence: float = 0.95


@dataclass
class OCRConfig:
    """Configuration for OCR engines."""
    primary_engine: str = "tesseract"  # "easyocr" or "tesseract"
    fallback_engine: str = "easyocr"
    languages: List[str] = field(default_factory=lambda: ["en"])
    confidence_threshold: float = 0.5
    tesseract_config: str = "--oem 3 --psm 6"
    enhance_preprocessing: bool = True


@dataclass
class SwarmConfig:
    """Configuration for the swarm aggregator."""
    metadata_weight: float = 1.0
    other_weight: float = 0.7
    ocr_text_threshold: int = 50  # characters before text counts as a leak


@dataclass
class StorageConfig:
    """Where durable state lives."""
    data_dir: Path = field(default_factory=lambda: Path.home() / ".mirage")
    ledger_db: str = "ledger.db"
    ledger_cache: str = "ledger_cache.json"
    profile_store: str = "privacy_profile.json"
    ledger_cache_limit: int = 50

    @property
    def ledger_db_path(self) -> Path:
        return self.data_dir / self.ledger_db

    @property
    def ledger_cache_path(self) -> Path:
        return self.data_dir / self.ledger_cache

    @property
    def profile_store_path(self) -> Path:
        return self.data_dir / self.profile_store


@dataclass
class MirageConfig:
    """Main configuration class for the Mirage pipeline."""
    renderer: RendererConfig = field(default_factory=RendererConfig)
    cascade: CascadeConfig = field(default_factory=CascadeConfig)
    vision: VisionConfig = field(default_factory=VisionConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    swarm: SwarmConfig = field(default_factory=SwarmConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    audience: str = DEFAULT_AUDIENCE_ID
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MirageConfig":
        """Build a config from a nested dictionary; unknown keys are rejected."""
        sections = {
            "renderer": RendererConfig,
            "cascade": CascadeConfig,
            "vision": VisionConfig,
            "ocr": OCRConfig,
            "swarm": SwarmConfig,
            "storage": StorageConfig,
        }
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key in sections:
                kwargs[key] = _build_section(sections[key], value)
            elif key in ("audience", "log_level"):
                kwargs[key] = value
            else:
                raise ValueError(f"Unknown configuration key: {key}")
        return cls(**kwargs)

    def apply_env(self, environ: Optional[Dict[str, str]] = None) -> "MirageConfig":
        """Apply MIRAGE_* environment overrides in place."""
        env = os.environ if environ is None else environ
        if env.get("MIRAGE_REMOTE_URL"):
            self.cascade.remote_url = env["MIRAGE_REMOTE_URL"]
        if env.get("MIRAGE_VISION_URL"):
            self.vision.endpoint = env["MIRAGE_VISION_URL"]
        if env.get("MIRAGE_DATA_DIR"):
            self.storage.data_dir = Path(env["MIRAGE_DATA_DIR"])
        if env.get("MIRAGE_DISABLE_SPACY", "").lower() == "true":
            self.cascade.use_local_model = False
        if env.get("MIRAGE_LOG_LEVEL"):
            self.log_level = env["MIRAGE_LOG_LEVEL"]
        return self


def _build_section(section_cls, values: Dict[str, Any]):
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown {section_cls.__name__} keys: {sorted(unknown)}")
    values = dict(values)
    if section_cls is StorageConfig and "data_dir" in values:
        values["data_dir"] = Path(values["data_dir"]).expanduser()
    for key in ("indicator_color",):
        if key in values:
            values[key] = tuple(values[key])
    return section_cls(**values)


def load_config(config_path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> MirageConfig:
    """Load configuration from a JSON file (if given) and environment overrides."""
    if config_path:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with open(config_path, "r") as f:
            config = MirageConfig.from_dict(json.load(f))
    else:
        config = MirageConfig()
    return config.apply_env(environ)
