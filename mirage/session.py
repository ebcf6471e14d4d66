"""
Redaction session.

Owns the detection list and the decision map for one piece of media, and
runs the export flow: render, hash, stamp, ledger, privacy profile.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np

from .config import AudienceProfile, Detection, DetectionCategory
from .ledger import LedgerEntry, LedgerWriter, TrustStamp, build_trust_stamp
from .logger import LoggerMixin
from .normalizer import DecisionMap, initial_decisions
from .privacy_profile import PrivacyProfileAggregator, PrivacyProfileRecord
from .redactor import CompositingRenderer
from .risk import ParanoiaAdjuster, RiskScorer


@dataclass
class ExportResult:
    image: np.ndarray
    png_bytes: bytes
    stamp: TrustStamp
    ledger_status: Optional[str] = None
    profile: Optional[PrivacyProfileRecord] = None
    output_path: Optional[Path] = None


class RedactionSession(LoggerMixin):
    """
    Mutable review state for one image.

    All decision changes go through this object; every read of the risk score
    reflects the current decisions.
    """

    def __init__(
        self,
        image: np.ndarray,
        detections: List[Detection],
        profile: AudienceProfile,
        decisions: Optional[DecisionMap] = None,
        renderer: Optional[CompositingRenderer] = None,
        ledger_writer: Optional[LedgerWriter] = None,
        profile_aggregator: Optional[PrivacyProfileAggregator] = None,
        scorer: Optional[RiskScorer] = None
    ):
        self.image = image
        self.detections = list(detections)
        self.profile = profile
        self.decisions: DecisionMap = (
            dict(decisions) if decisions is not None else initial_decisions(self.detections)
        )
        self.renderer = renderer or CompositingRenderer()
        self.ledger_writer = ledger_writer
        self.profile_aggregator = profile_aggregator
        self.scorer = scorer or RiskScorer()
        self.paranoia_level: Optional[int] = None

        missing = {d.id for d in self.detections} - set(self.decisions)
        for detection_id in missing:
            self.decisions[detection_id] = False

    def _require(self, detection_id: str) -> None:
        if detection_id not in self.decisions:
            raise KeyError(f"Unknown detection id: {detection_id}")

    def get(self, detection_id: str) -> Detection:
        for detection in self.detections:
            if detection.id == detection_id:
                return detection
        raise KeyError(f"Unknown detection id: {detection_id}")

    def toggle(self, detection_id: str) -> bool:
        """Flip one decision; returns the new value."""
        self._require(detection_id)
        self.decisions[detection_id] = not self.decisions[detection_id]
        return self.decisions[detection_id]

    def set_decision(self, detection_id: str, redact: bool) -> None:
        self._require(detection_id)
        self.decisions[detection_id] = bool(redact)

    def apply_paranoia(self, level: int) -> DecisionMap:
        """Move the paranoia dial, overwriting the decisions of sensitive detections."""
        self.decisions = ParanoiaAdjuster().apply(level, self.detections, self.decisions)
        self.paranoia_level = level
        return dict(self.decisions)

    def reset_decisions(self) -> None:
        """Back to the audience profile's defaults."""
        self.decisions = initial_decisions(self.detections)
        self.paranoia_level = None

    @property
    def risk_score(self) -> int:
        return self.scorer.score(self.detections, self.decisions)

    @property
    def risk_before(self) -> int:
        """Score of the untouched media, as if nothing were redacted."""
        return self.scorer.score(self.detections, {})

    @property
    def redacted_count(self) -> int:
        return sum(1 for d in self.detections if self.decisions.get(d.id, False))

    @property
    def faces_protected(self) -> int:
        return sum(
            1 for d in self.detections
            if d.category is DetectionCategory.FACE and self.decisions.get(d.id, False)
        )

    def summary(self) -> Dict[str, object]:
        return {
            "audience": self.profile.id,
            "detections": len(self.detections),
            "redacted": self.redacted_count,
            "risk_score": self.risk_score,
            "paranoia_level": self.paranoia_level,
        }

    def render(self) -> np.ndarray:
        return self.renderer.render(self.image, self.detections, self.decisions)

    def export(self, output_path: Optional[Union[str, Path]] = None) -> ExportResult:
        """
        Render the protected image and record the export.

        The ledger and the privacy profile are updated only when their
        collaborators were provided. A ledger failure never fails the export.
        """
        rendered = self.render()
        png_bytes = self.renderer.encode_png(rendered)

        stamp = build_trust_stamp(
            output_bytes=png_bytes,
            audience_label=self.profile.label,
            risk_before=self.risk_before,
            risk_after=self.risk_score,
            items_detected=len(self.detections),
            items_redacted=self.redacted_count,
            faces_protected=self.faces_protected,
            metadata_stripped=True,
        )

        saved_path = None
        if output_path:
            saved_path = Path(output_path)
            saved_path.parent.mkdir(parents=True, exist_ok=True)
            saved_path.write_bytes(png_bytes)
            self.log_info(f"Exported protected image to {saved_path}")

        ledger_status = None
        if self.ledger_writer is not None:
            ledger_status = self.ledger_writer.write(LedgerEntry.from_stamp(stamp))

        profile_record = None
        if self.profile_aggregator is not None:
            try:
                profile_record = self.profile_aggregator.record(
                    self.detections, self.decisions, self.profile.id
                )
            except Exception as e:
                self.log_error(f"Failed to update privacy profile: {e}")

        self.log_info(
            f"Export {stamp.stamp_id}: risk {stamp.risk_score_before} -> {stamp.risk_score_after} "
            f"({stamp.privacy_level}), ledger {ledger_status}"
        )
        return ExportResult(
            image=rendered,
            png_bytes=png_bytes,
            stamp=stamp,
            ledger_status=ledger_status,
            profile=profile_record,
            output_path=saved_path,
        )
