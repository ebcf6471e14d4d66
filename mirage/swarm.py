"""
Risk-assessment swarm.

Five independent agents look at the same media concurrently; their weighted
verdicts are folded into one score and an action level.
"""

import asyncio
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config import DetectionCategory, SwarmConfig
from .logger import LoggerMixin
from .metadata import extract_gps
from .normalizer import RawFinding
from .pii_cascade import PatternLayer

STATUS_IDLE = "idle"
STATUS_ANALYZING = "analyzing"
STATUS_COMPLETE = "complete"
STATUS_ERROR = "error"

ACTION_MESSAGES = {
    "critical": "HIGH RISK - Multiple agents detected location data. Strongly recommend redaction.",
    "warning": "MEDIUM RISK - Some location indicators found. Consider redacting sensitive areas.",
    "caution": "LOW RISK - Minor location clues detected. Review before sharing.",
    "safe": "SAFE - No significant location data detected.",
}


@dataclass
class SwarmAgent:
    """Snapshot of one agent's state."""
    id: str
    name: str
    kind: str  # "metadata", "vision", "ocr" or "audio"
    status: str = STATUS_IDLE
    risk_score: float = 0.0
    explanation: str = ""
    confidence: float = 0.0
    processing_time: Optional[float] = None


@dataclass
class AgentVerdict:
    risk_score: float
    explanation: str
    confidence: float


@dataclass
class SwarmResult:
    risk_score: float
    action_level: str
    action_message: str
    agents: List[SwarmAgent] = field(default_factory=list)
    processing_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def action_level(score: float) -> str:
    if score > 0.8:
        return "critical"
    if score > 0.5:
        return "warning"
    if score > 0.2:
        return "caution"
    return "safe"


AGENT_ROSTER = (
    ("gps", "GPS Tracker", "metadata"),
    ("scene", "Scene Analyzer", "vision"),
    ("ocr", "Text Reader", "ocr"),
    ("reflection", "Reflection Detector", "vision"),
    ("audio", "Sound Analyzer", "audio"),
)

UpdateCallback = Callable[[List[SwarmAgent]], None]


class SwarmAggregator(LoggerMixin):
    """
    Scatter/gather over the five agents.

    Collaborators:
        vision_detector: object with `async detect(image_bytes) -> List[RawFinding]`
        text_extractor: callable `(image_bytes) -> str`, run in a worker thread
        transcriber: object with `async transcribe(data) -> str` (optional)
        gps_reader: callable `(data) -> Optional[GeoTag]`
    """

    def __init__(
        self,
        vision_detector: Any = None,
        text_extractor: Optional[Callable[[bytes], str]] = None,
        transcriber: Any = None,
        gps_reader: Callable[[bytes], Any] = extract_gps,
        config: Optional[SwarmConfig] = None
    ):
        self.vision_detector = vision_detector
        self.text_extractor = text_extractor
        self.transcriber = transcriber
        self.gps_reader = gps_reader
        self.config = config or SwarmConfig()

    def weight(self, agent: SwarmAgent) -> float:
        return self.config.metadata_weight if agent.kind == "metadata" else self.config.other_weight

    def combine(self, agents: List[SwarmAgent]) -> float:
        """Weighted mean over all agents, capped at 1."""
        if not agents:
            return 0.0
        total = sum(agent.risk_score * self.weight(agent) for agent in agents)
        return min(total / len(agents), 1.0)

    async def analyze(
        self,
        data: bytes,
        mime_type: str = "image/png",
        on_update: Optional[UpdateCallback] = None
    ) -> SwarmResult:
        """
        Run every agent on the media and combine the verdicts.

        Args:
            data: Raw media bytes
            mime_type: Media type; the audio agent only inspects audio/* media
            on_update: Called with agent snapshots whenever an agent changes state

        Returns:
            SwarmResult; a failing agent is reported with status "error"
        """
        start_time = time.perf_counter()
        agents = [
            SwarmAgent(id=agent_id, name=name, kind=kind, status=STATUS_ANALYZING,
                       explanation="Starting analysis...")
            for agent_id, name, kind in AGENT_ROSTER
        ]
        self._notify(on_update, agents)

        is_audio = mime_type.startswith("audio/")

        # Scene and reflection agents share one vision request
        vision_task: Optional[asyncio.Future] = None
        if self.vision_detector is not None and not is_audio:
            vision_task = asyncio.ensure_future(self.vision_detector.detect(data))

        runners: List[Callable[[], Awaitable[AgentVerdict]]] = [
            lambda: self._run_gps_agent(data),
            lambda: self._not_an_image() if is_audio else self._run_scene_agent(vision_task),
            lambda: self._not_an_image() if is_audio else self._run_ocr_agent(data),
            lambda: self._not_an_image() if is_audio else self._run_reflection_agent(vision_task),
            lambda: self._run_audio_agent(data, mime_type),
        ]

        async def run_agent(index: int) -> None:
            agent_start = time.perf_counter()
            try:
                verdict = await runners[index]()
                agents[index] = replace(
                    agents[index],
                    status=STATUS_COMPLETE,
                    risk_score=verdict.risk_score,
                    explanation=verdict.explanation,
                    confidence=verdict.confidence,
                )
            except Exception as e:
                self.log_warning(f"Swarm agent '{agents[index].id}' failed: {e}")
                agents[index] = replace(
                    agents[index],
                    status=STATUS_ERROR,
                    risk_score=0.0,
                    explanation=str(e),
                    confidence=0.0,
                )
            agents[index].processing_time = time.perf_counter() - agent_start
            self._notify(on_update, agents)

        await asyncio.gather(*(run_agent(i) for i in range(len(agents))))

        score = self.combine(agents)
        level = action_level(score)
        self.log_info(f"Swarm finished: score {score:.2f} ({level})")
        return SwarmResult(
            risk_score=score,
            action_level=level,
            action_message=ACTION_MESSAGES[level],
            agents=[replace(agent) for agent in agents],
            processing_time=time.perf_counter() - start_time,
        )

    def _notify(self, on_update: Optional[UpdateCallback], agents: List[SwarmAgent]) -> None:
        if on_update is None:
            return
        try:
            on_update([replace(agent) for agent in agents])
        except Exception as e:
            self.log_warning(f"Swarm progress callback failed: {e}")

    # Agents

    async def _run_gps_agent(self, data: bytes) -> AgentVerdict:
        gps = await asyncio.to_thread(self.gps_reader, data)
        if gps is not None:
            return AgentVerdict(1.0, f"GPS coordinates found: {gps.describe()}", 1.0)
        return AgentVerdict(0.0, "No GPS metadata found", 1.0)

    @staticmethod
    async def _findings(vision_task: Optional[asyncio.Future]) -> List[RawFinding]:
        if vision_task is None:
            raise RuntimeError("No vision detector available for this media")
        return await vision_task

    async def _run_scene_agent(self, vision_task: Optional[asyncio.Future]) -> AgentVerdict:
        findings = await self._findings(vision_task)
        scene_categories = {DetectionCategory.BACKGROUND_SCREEN, DetectionCategory.REFLECTION_EXPOSURE}
        risks = [f for f in findings if DetectionCategory.from_tag(f.category) in scene_categories]
        if risks:
            return AgentVerdict(0.8, f"Detected {len(risks)} environmental risks (screens/reflections)", 0.9)
        return AgentVerdict(0.1, "Environment appears safe", 0.8)

    async def _run_reflection_agent(self, vision_task: Optional[asyncio.Future]) -> AgentVerdict:
        findings = await self._findings(vision_task)
        reflections = [
            f for f in findings
            if DetectionCategory.from_tag(f.category) is DetectionCategory.REFLECTION_EXPOSURE
        ]
        if reflections:
            return AgentVerdict(0.9, "High-risk reflections detected in mirrors/windows", 0.95)
        return AgentVerdict(0.0, "No sensitive reflections found", 0.8)

    @staticmethod
    async def _not_an_image() -> AgentVerdict:
        return AgentVerdict(0.0, "Not an image", 1.0)

    async def _run_ocr_agent(self, data: bytes) -> AgentVerdict:
        if self.text_extractor is None:
            raise RuntimeError("No text extractor configured")
        text = await asyncio.to_thread(self.text_extractor, data)
        if len(text) > self.config.ocr_text_threshold:
            return AgentVerdict(0.6, f"Extracted {len(text)} characters of text. Potential PII leak.", 0.8)
        return AgentVerdict(0.0, "No significant text detected", 0.9)

    async def _run_audio_agent(self, data: bytes, mime_type: str) -> AgentVerdict:
        if not mime_type.startswith("audio/"):
            return AgentVerdict(0.0, "Not an audio file", 1.0)
        if self.transcriber is not None:
            transcript = await self.transcriber.transcribe(data)
            spoken = PatternLayer().scan(transcript)
            if spoken:
                categories = ", ".join(d.category for d in spoken)
                return AgentVerdict(0.7, f"Spoken personal data detected: {categories}", 0.8)
        return AgentVerdict(0.2, "Ambient sound analysis: low risk", 0.7)
