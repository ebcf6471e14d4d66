"""
Detection normalization.

Merges findings from the vision service and local metadata extraction into
uniform Detection records, assigns identities and seeds the decision map
from the active audience profile.
"""

import itertools
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .config import (
    BOX_SCALE,
    AudienceProfile,
    Detection,
    DetectionCategory,
    ReplacementMode,
    default_replacement_mode,
)
from .logger import LoggerMixin
from .metadata import GeoTag

DecisionMap = Dict[str, bool]

GPS_MARKER_BOX = (0.0, 0.0, 100.0, 100.0)


@dataclass
class RawFinding:
    """A finding as reported by a detection collaborator, before normalization."""
    category: str
    box: Tuple[float, float, float, float]  # (x1, y1, x2, y2) in 0-1000 units
    reason: str = ""
    confidence: float = 0.95
    text: Optional[str] = None
    notable: bool = False
    sensitive: bool = True
    replacement_mode: Optional[str] = None
    source: str = "vision"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "vision") -> "RawFinding":
        return cls(
            category=data.get("type", data.get("category", "")),
            box=tuple(data.get("box", (0, 0, 0, 0))),
            reason=data.get("reason", ""),
            confidence=data.get("confidence", 0.95),
            text=data.get("text"),
            notable=bool(data.get("notable", data.get("wow_moment", False))),
            sensitive=data.get("sensitive", True),
            replacement_mode=data.get("replacement_mode"),
            source=data.get("source", source),
        )


@dataclass
class NormalizationResult:
    """Normalized detections plus the decision map seeded from their defaults."""
    detections: List[Detection]
    decisions: DecisionMap


def _clamp_box(box: Iterable[Any]) -> Tuple[float, float, float, float]:
    values = [min(max(float(v), 0.0), float(BOX_SCALE)) for v in box]
    if len(values) != 4:
        raise ValueError(f"Bounding box must have 4 values, got {values}")
    x1, y1, x2, y2 = values
    return (min(x1, x2), min(y1, y2), max(x1, x2), max(y1, y2))


class DetectionNormalizer(LoggerMixin):
    """
    Turns raw findings into Detection records for one session.

    Identities are unique and stable for the lifetime of the normalizer.
    Findings are never merged or dropped: duplicates reported by different
    sources stay separate detections.
    """

    def __init__(self, profile: AudienceProfile, session_id: Optional[str] = None):
        self.profile = profile
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self._counter = itertools.count()

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{self.session_id}-{next(self._counter)}"

    def build_detection(self, finding: Union[RawFinding, Dict[str, Any]]) -> Detection:
        """Normalize a single finding."""
        if isinstance(finding, dict):
            finding = RawFinding.from_dict(finding)

        category = DetectionCategory.from_tag(finding.category)
        if category is DetectionCategory.OTHER:
            self.log_debug(f"Unrecognized category tag {finding.category!r} mapped to 'other'")

        mode = default_replacement_mode(category)
        if finding.replacement_mode:
            try:
                mode = ReplacementMode(str(finding.replacement_mode).strip().lower())
            except ValueError:
                self.log_warning(
                    f"Unknown replacement mode {finding.replacement_mode!r} for {category.value}; "
                    f"using '{mode.value}'"
                )
        confidence = min(max(float(finding.confidence), 0.0), 1.0)

        return Detection(
            id=self._next_id("det"),
            category=category,
            box=_clamp_box(finding.box),
            confidence=confidence,
            reason=finding.reason,
            sensitive=finding.sensitive,
            replacement_mode=mode,
            redact_by_default=finding.sensitive and self.profile.redacts(category),
            text=finding.text,
            notable=finding.notable or category is DetectionCategory.REFLECTION_EXPOSURE,
            source=finding.source,
        )

    def build_gps_detection(self, gps: GeoTag) -> Detection:
        """Synthesize a metadata detection for a GPS tag."""
        return Detection(
            id=self._next_id("gps"),
            category=DetectionCategory.GPS_LOCATION,
            box=GPS_MARKER_BOX,
            confidence=1.0,
            reason=f"GPS coordinates detected: {gps.describe()}",
            sensitive=True,
            replacement_mode=ReplacementMode.STRIP,
            redact_by_default=self.profile.redacts(DetectionCategory.GPS_LOCATION),
            text=f"GPS: {gps.lat}, {gps.lng}",
            source="metadata",
        )

    def normalize(
        self,
        findings: Iterable[Union[RawFinding, Dict[str, Any]]],
        gps: Optional[GeoTag] = None
    ) -> NormalizationResult:
        """
        Normalize findings from every source into one detection list.

        Args:
            findings: Raw findings, in any order and from any number of sources
            gps: Optional GPS tag read from the file's metadata

        Returns:
            NormalizationResult with detections and the initial decision map
        """
        detections = [self.build_detection(f) for f in findings]
        if gps is not None:
            detections.append(self.build_gps_detection(gps))

        decisions = initial_decisions(detections)
        self.log_info(
            f"Normalized {len(detections)} detections for profile '{self.profile.id}' "
            f"({sum(decisions.values())} redacted by default)"
        )
        return NormalizationResult(detections=detections, decisions=decisions)


def initial_decisions(detections: Iterable[Detection]) -> DecisionMap:
    """Decision map with exactly one entry per detection, from its default."""
    return {d.id: d.redact_by_default for d in detections}
