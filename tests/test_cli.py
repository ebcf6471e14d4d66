"""
Tests for the command-line interface.
"""

import json

import pytest
from PIL import Image

from mirage.cli import create_parser, main


@pytest.fixture
def cli_env(monkeypatch, tmp_path, restore_root_logger):
    """Isolated data directory, no local entity model."""
    monkeypatch.setenv("MIRAGE_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("MIRAGE_DISABLE_SPACY", "true")
    monkeypatch.delenv("MIRAGE_REMOTE_URL", raising=False)
    monkeypatch.delenv("MIRAGE_VISION_URL", raising=False)
    return tmp_path


@pytest.fixture
def photo(tmp_path):
    path = tmp_path / "photo.png"
    Image.new("RGB", (100, 100), (90, 120, 150)).save(path)
    return path


@pytest.fixture
def findings_file(tmp_path):
    path = tmp_path / "findings.json"
    path.write_text(json.dumps({"detections": [
        {"type": "face", "box_2d": [100, 100, 500, 500], "reason": "Person"},
        {"type": "email", "box_2d": [600, 100, 700, 900], "text": "a@b.io"},
    ]}))
    return path


class TestParser:

    def test_redact_image_arguments(self):
        args = create_parser().parse_args([
            "redact-image", "in.png", "-o", "out.png", "--audience", "support_ticket", "--paranoia", "80",
        ])
        assert args.command == "redact-image"
        assert args.audience == "support_ticket"
        assert args.paranoia == 80

    def test_unknown_audience(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["redact-image", "in.png", "--audience", "strangers"])


class TestCommands:
    """Test end-to-end commands."""

    def test_scan_text(self, cli_env, capsys):
        assert main(["scan-text", "call me at 555-123-4567"]) == 0
        assert "call me at [PHONE]" in capsys.readouterr().out

    def test_redact_image(self, cli_env, photo, findings_file, capsys):
        """Test redaction with precomputed findings and ledger recording."""
        output = cli_env / "safe.png"

        code = main(["redact-image", str(photo), "--findings", str(findings_file), "-o", str(output)])

        assert code == 0
        assert output.exists()
        out = capsys.readouterr().out
        assert '"ledger_status": "recorded"' in out
        assert "MRG-" in out

        assert main(["ledger"]) == 0
        assert "MRG-" in capsys.readouterr().out

    def test_redact_image_dry_run(self, cli_env, photo, findings_file, capsys):
        code = main([
            "redact-image", str(photo), "--findings", str(findings_file),
            "--audience", "work_colleague", "--dry-run",
        ])

        assert code == 0
        assert not (cli_env / "photo_protected.png").exists()
        assert '"redact": false' in capsys.readouterr().out

    def test_profile(self, cli_env, capsys):
        assert main(["profile"]) == 0
        assert "insufficient_data" in capsys.readouterr().out

    def test_swarm(self, cli_env, photo, capsys):
        assert main(["swarm", str(photo)]) == 0
        assert "GPS Tracker" in capsys.readouterr().out

    def test_missing_input(self, cli_env):
        assert main(["redact-image", str(cli_env / "missing.png")]) == 1

    def test_missing_config(self, cli_env):
        assert main(["--config", str(cli_env / "missing.json"), "profile"]) == 1
