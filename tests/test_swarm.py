"""
Tests for the risk-assessment swarm.
"""

import pytest

from mirage.metadata import GeoTag
from mirage.normalizer import RawFinding
from mirage.swarm import ACTION_MESSAGES, SwarmAgent, SwarmAggregator, action_level


class FakeVision:
    def __init__(self, findings=None, error=None):
        self.findings = findings or []
        self.error = error
        self.calls = 0

    async def detect(self, data):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.findings)


class FakeTranscriber:
    def __init__(self, transcript):
        self.transcript = transcript

    async def transcribe(self, data):
        return self.transcript


def risky_swarm(**overrides):
    """Swarm where GPS, scene, text and reflection agents all fire."""
    kwargs = dict(
        vision_detector=FakeVision([RawFinding(category="reflection_exposure", box=(0, 0, 10, 10))]),
        text_extractor=lambda data: "x" * 60,
        gps_reader=lambda data: GeoTag(lat=48.8584, lng=2.2945),
    )
    kwargs.update(overrides)
    return SwarmAggregator(**kwargs)


class TestActionLevel:
    """Test score thresholds."""

    @pytest.mark.parametrize("score,level", [
        (0.0, "safe"), (0.2, "safe"), (0.21, "caution"), (0.5, "caution"),
        (0.51, "warning"), (0.8, "warning"), (0.81, "critical"), (1.0, "critical"),
    ])
    def test_boundaries(self, score, level):
        assert action_level(score) == level


class TestCombine:
    """Test the weighted mean."""

    def test_capped(self):
        swarm = SwarmAggregator(config=None)
        agents = [SwarmAgent(id="gps", name="GPS", kind="metadata", risk_score=6.0)]
        assert swarm.combine(agents) == 1.0

    def test_empty(self):
        assert SwarmAggregator().combine([]) == 0.0


class TestAnalyze:
    """Test running the agents."""

    @pytest.mark.asyncio
    async def test_combined_score(self):
        """Test (1.0 + 0.7 * (0.8 + 0.6 + 0.9 + 0)) / 5."""
        vision = FakeVision([RawFinding(category="reflection_exposure", box=(0, 0, 10, 10))])
        result = await risky_swarm(vision_detector=vision).analyze(b"image", "image/jpeg")

        assert result.risk_score == pytest.approx(0.522)
        assert result.action_level == "warning"
        assert result.action_message == ACTION_MESSAGES["warning"]
        assert [a.status for a in result.agents] == ["complete"] * 5
        assert vision.calls == 1

    @pytest.mark.asyncio
    async def test_failing_agent_isolated(self):
        """Test that one failure leaves the other agents' verdicts intact."""
        def broken_extractor(data):
            raise RuntimeError("OCR engine crashed")

        result = await risky_swarm(text_extractor=broken_extractor).analyze(b"image", "image/png")
        agents = {a.id: a for a in result.agents}

        assert agents["ocr"].status == "error"
        assert agents["ocr"].risk_score == 0.0
        assert agents["ocr"].confidence == 0.0
        assert agents["ocr"].explanation == "OCR engine crashed"
        assert agents["gps"].risk_score == 1.0
        assert agents["reflection"].risk_score == 0.9
        assert result.risk_score == pytest.approx((1.0 + 0.7 * (0.8 + 0.9)) / 5)

    @pytest.mark.asyncio
    async def test_vision_failure_hits_both_vision_agents(self):
        result = await risky_swarm(vision_detector=FakeVision(error=ValueError("quota"))).analyze(b"image")
        agents = {a.id: a for a in result.agents}

        assert agents["scene"].status == "error"
        assert agents["reflection"].status == "error"
        assert agents["gps"].status == "complete"

    @pytest.mark.asyncio
    async def test_progress_updates(self):
        """Test one start notification plus one per agent."""
        snapshots = []
        await risky_swarm().analyze(b"image", on_update=snapshots.append)

        assert len(snapshots) == 6
        assert all(a.status == "analyzing" for a in snapshots[0])
        assert all(a.status == "complete" for a in snapshots[-1])

    @pytest.mark.asyncio
    async def test_failing_callback_ignored(self):
        def callback(agents):
            raise RuntimeError("UI gone")

        result = await risky_swarm().analyze(b"image", on_update=callback)
        assert result.action_level == "warning"

    @pytest.mark.asyncio
    async def test_safe_image(self):
        swarm = SwarmAggregator(
            vision_detector=FakeVision(),
            text_extractor=lambda data: "",
            gps_reader=lambda data: None,
        )
        result = await swarm.analyze(b"image")

        assert result.risk_score == pytest.approx(0.7 * 0.1 / 5)
        assert result.action_level == "safe"

    @pytest.mark.asyncio
    async def test_audio(self):
        """Test audio media skips the image agents."""
        vision = FakeVision([RawFinding(category="reflection_exposure", box=(0, 0, 10, 10))])
        swarm = risky_swarm(
            vision_detector=vision,
            gps_reader=lambda data: None,
            transcriber=FakeTranscriber("my number is 555-123-4567"),
        )

        result = await swarm.analyze(b"audio", "audio/wav")
        agents = {a.id: a for a in result.agents}

        assert agents["scene"].explanation == "Not an image"
        assert agents["ocr"].risk_score == 0.0
        assert agents["audio"].risk_score == 0.7
        assert vision.calls == 0
        assert result.risk_score == pytest.approx(0.7 * 0.7 / 5)

    @pytest.mark.asyncio
    async def test_audio_without_transcriber(self):
        result = await SwarmAggregator(gps_reader=lambda data: None).analyze(b"audio", "audio/mpeg")
        agents = {a.id: a for a in result.agents}
        assert agents["audio"].risk_score == 0.2
