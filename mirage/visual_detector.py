"""
Vision detection adapters.

The detection service is an external collaborator. This module only speaks
its wire format and turns the answer into RawFinding records.
"""

import base64
from typing import Any, Dict, List, Optional

import httpx

from .config import VisionConfig
from .logger import LoggerMixin
from .normalizer import RawFinding


class VisionDetector(LoggerMixin):
    """Base class for vision detection collaborators."""

    async def detect(self, image_bytes: bytes) -> List[RawFinding]:
        raise NotImplementedError("Subclasses must implement detect")


def parse_box_2d(box_2d: List[float]) -> tuple:
    """Convert a service box [ymin, xmin, ymax, xmax] into (x1, y1, x2, y2)."""
    if len(box_2d) != 4:
        raise ValueError(f"box_2d must have 4 values, got {box_2d!r}")
    ymin, xmin, ymax, xmax = (float(v) for v in box_2d)
    return (xmin, ymin, xmax, ymax)


def parse_detection(item: Dict[str, Any], default_confidence: float = 0.95) -> RawFinding:
    """One service detection as a RawFinding."""
    if "box_2d" in item:
        box = parse_box_2d(item["box_2d"])
    else:
        box = tuple(item["box"])
    return RawFinding(
        category=str(item.get("type", "")),
        box=box,
        reason=item.get("reason", ""),
        confidence=float(item.get("confidence", default_confidence)),
        text=item.get("text"),
        notable=bool(item.get("wow_moment", item.get("notable", False))),
        sensitive=bool(item.get("sensitive", True)),
        replacement_mode=item.get("replacement_mode"),
        source="vision",
    )


class RemoteVisionDetector(VisionDetector):
    """
    Posts a base64 image to a detection endpoint.

    The endpoint answers with a JSON list (or {"detections": [...]}) of
    objects carrying `type`, `box_2d`, `reason` and optionally `text` and
    `wow_moment`. Any failure yields an empty list.
    """

    def __init__(self, config: VisionConfig, client: Optional[httpx.AsyncClient] = None):
        if not config.endpoint:
            raise ValueError("Vision endpoint is not configured")
        self.config = config
        self._client = client

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.config.endpoint, json=payload, timeout=self.config.timeout)
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout)) as client:
            return await client.post(self.config.endpoint, json=payload)

    async def detect(self, image_bytes: bytes) -> List[RawFinding]:
        payload = {"image": base64.b64encode(image_bytes).decode("ascii")}
        try:
            response = await self._post(payload)
            response.raise_for_status()
            data = response.json()
            items = data.get("detections", []) if isinstance(data, dict) else data

            findings = []
            for item in items:
                try:
                    findings.append(parse_detection(item, self.config.default_confidence))
                except (KeyError, TypeError, ValueError) as e:
                    self.log_warning(f"Skipping malformed detection {item!r}: {e}")

            self.log_info(f"Vision service returned {len(findings)} detections")
            return findings

        except Exception as e:
            self.log_error(f"Vision detection failed: {e}")
            return []


class StaticVisionDetector(VisionDetector):
    """Returns findings loaded ahead of time, e.g. from a JSON file."""

    def __init__(self, items: List[Dict[str, Any]], default_confidence: float = 0.95):
        self.findings = [parse_detection(item, default_confidence) for item in items]

    async def detect(self, image_bytes: bytes) -> List[RawFinding]:
        return list(self.findings)
