"""
Risk scoring and the paranoia dial.

Both operate on the current (detections, decisions) pair and never mutate it.
"""

from typing import Dict, Iterable, List, Mapping, Optional

from .config import Detection, DetectionCategory
from .logger import LoggerMixin

DecisionMap = Dict[str, bool]

MAX_RISK = 100
DEFAULT_RISK_WEIGHT = 5

RISK_WEIGHTS: Dict[DetectionCategory, int] = {
    DetectionCategory.GPS_LOCATION: 40,
    DetectionCategory.SSN: 35,
    DetectionCategory.SENSITIVE_DOCUMENT: 35,
    DetectionCategory.CREDIT_CARD: 30,
    DetectionCategory.REFLECTION_EXPOSURE: 25,
    DetectionCategory.ADDRESS: 20,
    DetectionCategory.LICENSE_PLATE: 20,
    DetectionCategory.QR_CODE: 20,
    DetectionCategory.BACKGROUND_SCREEN: 15,
    DetectionCategory.BARCODE: 15,
    DetectionCategory.PHONE: 15,
    DetectionCategory.FACE: 10,
    DetectionCategory.EMAIL: 10,
    DetectionCategory.NAME: 8,
}


class RiskScorer:
    """Aggregate exposure score of the detections left unredacted."""

    def __init__(self, weights: Optional[Mapping[DetectionCategory, int]] = None, default_weight: int = DEFAULT_RISK_WEIGHT):
        self.weights = dict(RISK_WEIGHTS if weights is None else weights)
        self.default_weight = default_weight

    def weight(self, category: DetectionCategory) -> int:
        return self.weights.get(category, self.default_weight)

    def score(self, detections: Iterable[Detection], decisions: Mapping[str, bool]) -> int:
        """
        Sum the weights of every detection whose decision is "keep", capped at 100.

        A detection without a decision entry counts as exposed.
        """
        total = sum(self.weight(d.category) for d in detections if not decisions.get(d.id, False))
        return min(total, MAX_RISK)

    def breakdown(self, detections: Iterable[Detection], decisions: Mapping[str, bool]) -> Dict[str, int]:
        """Uncapped per-category contribution of exposed detections."""
        contributions: Dict[str, int] = {}
        for d in detections:
            if decisions.get(d.id, False):
                continue
            contributions[d.category.value] = contributions.get(d.category.value, 0) + self.weight(d.category)
        return contributions


def calculate_risk(detections: Iterable[Detection], decisions: Mapping[str, bool]) -> int:
    """Risk score with the default weight table."""
    return RiskScorer().score(detections, decisions)


def privacy_level(risk_score: int) -> str:
    """Label stamped on exports."""
    if risk_score < 10:
        return "SAFE"
    if risk_score < 40:
        return "MODERATE"
    return "REVIEW NEEDED"


def paranoia_threshold(level: int) -> float:
    """Confidence a sensitive detection needs to be redacted at this dial level."""
    if not 0 <= level <= 100:
        raise ValueError(f"Paranoia level must be between 0 and 100, got {level}")
    return (100 - level) / 100


class ParanoiaAdjuster(LoggerMixin):
    """Maps the 0-100 paranoia dial onto per-detection decisions."""

    def apply(
        self,
        level: int,
        detections: List[Detection],
        decisions: Mapping[str, bool]
    ) -> DecisionMap:
        """
        Bulk-overwrite the decisions of sensitive detections.

        Args:
            level: Dial value in [0, 100]
            detections: Current detections
            decisions: Current decision map (not modified)

        Returns:
            New decision map; non-sensitive detections keep their decision
        """
        threshold = paranoia_threshold(level)
        updated = dict(decisions)
        for d in detections:
            if d.sensitive:
                updated[d.id] = d.confidence >= threshold

        self.log_debug(
            f"Paranoia {level} (threshold {threshold:.2f}): "
            f"{sum(1 for d in detections if updated.get(d.id))}/{len(detections)} redacted"
        )
        return updated
