"""
Tests for vision detection adapters.
"""

import base64
import json

import httpx
import pytest

from mirage.config import VisionConfig
from mirage.visual_detector import (
    RemoteVisionDetector,
    StaticVisionDetector,
    parse_box_2d,
    parse_detection,
)


def make_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestParsing:
    """Test the service wire format."""

    def test_box_2d_order(self):
        """Test [ymin, xmin, ymax, xmax] becomes (x1, y1, x2, y2)."""
        assert parse_box_2d([10, 20, 30, 40]) == (20.0, 10.0, 40.0, 30.0)

    def test_box_2d_wrong_length(self):
        with pytest.raises(ValueError):
            parse_box_2d([1, 2, 3])

    def test_parse_detection(self):
        finding = parse_detection({
            "type": "reflection_exposure",
            "box_2d": [100, 200, 300, 400],
            "reason": "Mirror",
            "wow_moment": True,
        })
        assert finding.category == "reflection_exposure"
        assert finding.box == (200.0, 100.0, 400.0, 300.0)
        assert finding.notable is True
        assert finding.confidence == 0.95
        assert finding.source == "vision"


class TestRemoteVisionDetector:
    """Test the HTTP adapter."""

    def test_requires_endpoint(self):
        with pytest.raises(ValueError):
            RemoteVisionDetector(VisionConfig())

    @pytest.mark.asyncio
    async def test_detect(self):
        """Test request payload and response parsing."""
        seen = {}

        def handler(request):
            seen["payload"] = json.loads(request.content)
            return httpx.Response(200, json={"detections": [
                {"type": "face", "box_2d": [0, 0, 500, 500], "reason": "Person"},
                {"type": "email"},
            ]})

        async with make_client(handler) as client:
            detector = RemoteVisionDetector(VisionConfig(endpoint="http://vision.test/detect"), client=client)
            findings = await detector.detect(b"\x89PNG")

        assert base64.b64decode(seen["payload"]["image"]) == b"\x89PNG"
        # The malformed second item is skipped
        assert len(findings) == 1
        assert findings[0].category == "face"

    @pytest.mark.asyncio
    async def test_list_response(self):
        def handler(request):
            return httpx.Response(200, json=[{"type": "qr_code", "box_2d": [1, 2, 3, 4]}])

        async with make_client(handler) as client:
            detector = RemoteVisionDetector(VisionConfig(endpoint="http://vision.test/detect"), client=client)
            findings = await detector.detect(b"img")

        assert [f.category for f in findings] == ["qr_code"]

    @pytest.mark.asyncio
    async def test_failure_returns_empty(self):
        """Test that service errors yield no findings."""
        def handler(request):
            return httpx.Response(503, json={"error": "overloaded"})

        async with make_client(handler) as client:
            detector = RemoteVisionDetector(VisionConfig(endpoint="http://vision.test/detect"), client=client)
            assert await detector.detect(b"img") == []


class TestStaticVisionDetector:

    @pytest.mark.asyncio
    async def test_returns_copies(self):
        detector = StaticVisionDetector([{"type": "face", "box": [0, 0, 10, 10]}])
        first = await detector.detect(b"")
        first.clear()
        assert len(await detector.detect(b"")) == 1
