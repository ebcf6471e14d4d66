"""
Tests for the redaction session and export flow.
"""

import hashlib

import pytest

from mirage.config import RendererConfig
from mirage.ledger import LEDGER_CACHED, LedgerWriter, LocalLedgerCache
from mirage.privacy_profile import InMemoryProfileStore, PrivacyProfileAggregator
from mirage.redactor import CompositingRenderer
from mirage.session import RedactionSession

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


class FailingStore:
    def append(self, entry):
        raise ConnectionError("store offline")

    def list_recent(self, limit=50):
        raise ConnectionError("store offline")


@pytest.fixture
def detections(make_detection):
    return [
        make_detection("face", "face", confidence=0.95, redact_by_default=True),
        make_detection("email", "email", box=(500, 500, 900, 600), confidence=0.4),
        make_detection("gps", "gps_location", box=(0, 0, 100, 100), confidence=1.0, redact_by_default=True),
    ]


@pytest.fixture
def session(noise_image, detections, social_profile):
    return RedactionSession(
        noise_image,
        detections,
        social_profile,
        renderer=CompositingRenderer(RendererConfig(noise_seed=0, synthetic_seed=0)),
    )


class TestDecisions:
    """Test decision changes."""

    def test_initial_from_defaults(self, session):
        assert session.decisions == {"face": True, "email": False, "gps": True}
        assert session.risk_score == 10

    def test_missing_decisions_filled(self, noise_image, detections, social_profile):
        """Test that every detection gets a decision entry."""
        session = RedactionSession(noise_image, detections, social_profile, decisions={"face": True})
        assert session.decisions == {"face": True, "email": False, "gps": False}

    def test_toggle(self, session):
        """Test toggling flips one decision and updates risk."""
        assert session.toggle("email") is True
        assert session.risk_score == 0
        assert session.toggle("email") is False
        assert session.risk_score == 10

    def test_unknown_id(self, session):
        with pytest.raises(KeyError):
            session.toggle("nope")
        with pytest.raises(KeyError):
            session.set_decision("nope", True)

    def test_paranoia_then_toggle(self, session):
        """Test a manual toggle after the dial sticks."""
        session.apply_paranoia(0)
        assert session.decisions == {"face": False, "email": False, "gps": True}

        session.toggle("face")
        assert session.decisions["face"] is True
        assert session.paranoia_level == 0

    def test_reset(self, session):
        session.apply_paranoia(100)
        session.reset_decisions()
        assert session.decisions == {"face": True, "email": False, "gps": True}
        assert session.paranoia_level is None

    def test_counts(self, session):
        assert session.risk_before == 60
        assert session.redacted_count == 2
        assert session.faces_protected == 1
        assert session.summary()["redacted"] == 2


class TestExport:
    """Test the export flow."""

    def test_export_without_collaborators(self, session):
        """Test that ledger and profile are optional."""
        result = session.export()

        assert result.png_bytes.startswith(PNG_SIGNATURE)
        assert result.ledger_status is None
        assert result.profile is None
        assert result.output_path is None

    def test_export_records_everything(self, session, tmp_path):
        """Test stamp, ledger fallback, profile and file output."""
        cache = LocalLedgerCache(tmp_path / "cache.json")
        session.ledger_writer = LedgerWriter(FailingStore(), cache)
        session.profile_aggregator = PrivacyProfileAggregator(InMemoryProfileStore())
        output = tmp_path / "protected.png"

        result = session.export(output)

        assert result.ledger_status == LEDGER_CACHED
        assert result.stamp.output_hash_sha256 == hashlib.sha256(result.png_bytes).hexdigest()
        assert result.stamp.risk_score_before == 60
        assert result.stamp.risk_score_after == 10
        assert result.stamp.privacy_level == "MODERATE"
        assert result.stamp.faces_protected == 1
        assert result.stamp.audience_profile == "Social Media"
        assert result.profile.total_scans == 1
        assert output.read_bytes() == result.png_bytes
        assert cache.load()[0].id == result.stamp.stamp_id

    def test_profile_failure_does_not_fail_export(self, session):
        class BrokenStore:
            def get(self, key):
                raise OSError("disk gone")

            def set(self, key, value):
                raise OSError("disk gone")

        session.profile_aggregator = PrivacyProfileAggregator(BrokenStore())
        result = session.export()

        assert result.profile is None
        assert result.png_bytes.startswith(PNG_SIGNATURE)
