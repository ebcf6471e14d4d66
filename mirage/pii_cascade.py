"""
Three-layer PII cascade for text.

Layer 1 matches regex patterns, layer 2 asks a local entity tagger, and
layer 3 escalates to a remote reviewer only when the local layers found
enough to make the text look risky.
"""

import asyncio
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern

import httpx

from .config import CascadeConfig
from .logger import LoggerMixin

SOURCE_PATTERN = "pattern"
SOURCE_LOCAL_MODEL = "local_model"
SOURCE_REMOTE_MODEL = "remote_model"

TRIGGER_PATTERN = "layer1_pattern"
TRIGGER_LOCAL_MODEL = "layer2_local_model"
TRIGGER_REMOTE_MODEL = "layer3_remote_model"

NOTE_LOCAL = "100% local: no data transmitted"
NOTE_HYBRID = "Hybrid mode: some data processed via remote API"


@dataclass
class RegexPattern:
    """Regex pattern for PII detection."""
    pattern: Pattern
    category: str
    description: str = ""


# Applied in this order
PII_PATTERNS: List[RegexPattern] = [
    RegexPattern(
        pattern=re.compile(r'[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}'),
        category="EMAIL",
        description="Standard email format",
    ),
    RegexPattern(
        pattern=re.compile(r'\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b'),
        category="CREDIT_CARD",
        description="16-digit card number, optionally grouped",
    ),
    RegexPattern(
        # Not the first three groups of a card number
        pattern=re.compile(r'(?<!\d\s)\b\d{4}\s\d{4}\s\d{4}\b(?!\s\d)'),
        category="AADHAAR",
        description="12-digit Aadhaar number in groups of four",
    ),
    RegexPattern(
        pattern=re.compile(r'\b\d{3}-\d{2}-\d{4}\b'),
        category="SSN",
        description="US social security number",
    ),
    RegexPattern(
        pattern=re.compile(r'\b[A-Z]{5}[0-9]{4}[A-Z]\b'),
        category="PAN",
        description="PAN card format",
    ),
    RegexPattern(
        pattern=re.compile(r'(?<![\w+])(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}(?!\d)'),
        category="PHONE",
        description="Phone number with optional country code",
    ),
]


TAG_PATTERN = re.compile(r"(\[[A-Z_]+\])")


def category_tag(category: str) -> str:
    return f"[{category}]"


@dataclass
class PIIDetection:
    """One category found by one layer, with its distinct literal values."""
    category: str
    values: List[str]
    source: str
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.category, "values": list(self.values), "source": self.source}
        if self.confidence is not None:
            data["confidence"] = self.confidence
        return data


@dataclass
class CascadeResult:
    redacted_text: str
    risk_score: float
    triggered_by: List[str] = field(default_factory=list)
    layers_used: List[str] = field(default_factory=list)
    detections: List[PIIDetection] = field(default_factory=list)
    privacy_note: str = NOTE_LOCAL
    data_left_device: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "redacted_text": self.redacted_text,
            "risk_score": self.risk_score,
            "triggered_by": list(self.triggered_by),
            "layers_used": list(self.layers_used),
            "detections": [d.to_dict() for d in self.detections],
            "privacy_note": self.privacy_note,
            "data_left_device": self.data_left_device,
        }


def _distinct(values) -> List[str]:
    return list(dict.fromkeys(values))


class PatternLayer(LoggerMixin):
    """Layer 1: regex matching over the original text."""

    def __init__(self, patterns: Optional[List[RegexPattern]] = None):
        self.patterns = PII_PATTERNS if patterns is None else patterns

    def scan(self, text: str) -> List[PIIDetection]:
        detections = []
        for pattern_info in self.patterns:
            matches = [m.group() for m in pattern_info.pattern.finditer(text)]
            if matches:
                detections.append(PIIDetection(
                    category=pattern_info.category,
                    values=_distinct(matches),
                    source=SOURCE_PATTERN,
                ))
        return detections

    @staticmethod
    def redact(working_text: str, detections: List[PIIDetection]) -> str:
        for detection in detections:
            for value in detection.values:
                working_text = working_text.replace(value, category_tag(detection.category))
        return working_text


# Entity tagging

@dataclass
class EntitySpan:
    """A span reported by an entity tagger."""
    entity: str
    word: str
    start: int
    end: int


def map_entity_label(label: str) -> Optional[str]:
    """Collapse a tagger label into PERSON, LOCATION or ORGANIZATION."""
    label = label.upper()
    if "PER" in label:
        return "PERSON"
    if "LOC" in label or "GPE" in label or "FAC" in label:
        return "LOCATION"
    if "ORG" in label:
        return "ORGANIZATION"
    return None


class SpacyEntityTagger(LoggerMixin):
    """spaCy-based entity tagger; the model is loaded on first use."""

    def __init__(self, model_name: str = "en_core_web_sm"):
        self.model_name = model_name
        self.nlp = None

    def _load(self):
        if self.nlp is None:
            import spacy

            self.nlp = spacy.load(
                self.model_name,
                exclude=["parser", "tagger", "lemmatizer", "textcat"]
            )
            self.log_info(f"Loaded spaCy model: {self.model_name}")
        return self.nlp

    def tag(self, text: str) -> List[EntitySpan]:
        doc = self._load()(text)
        return [
            EntitySpan(entity=ent.label_, word=ent.text, start=ent.start_char, end=ent.end_char)
            for ent in doc.ents
        ]


class PresidioEntityTagger(LoggerMixin):
    """Microsoft Presidio-based entity tagger (optional extra)."""

    ENTITIES = ["PERSON", "LOCATION", "ORGANIZATION", "NRP"]

    def __init__(self, model_name: str = "en_core_web_sm", score_threshold: float = 0.35):
        self.model_name = model_name
        self.score_threshold = score_threshold
        self.analyzer = None

    def _load(self):
        if self.analyzer is None:
            from presidio_analyzer import AnalyzerEngine
            from presidio_analyzer.nlp_engine import NlpEngineProvider

            provider = NlpEngineProvider(nlp_configuration={
                "nlp_engine_name": "spacy",
                "models": [{"lang_code": "en", "model_name": self.model_name}],
            })
            self.analyzer = AnalyzerEngine(nlp_engine=provider.create_engine())
            self.log_info("Presidio analyzer initialized")
        return self.analyzer

    def tag(self, text: str) -> List[EntitySpan]:
        results = self._load().analyze(
            text=text,
            language="en",
            entities=self.ENTITIES,
            score_threshold=self.score_threshold,
        )
        return [
            EntitySpan(entity=r.entity_type, word=text[r.start:r.end], start=r.start, end=r.end)
            for r in results
        ]


def create_entity_tagger(config: CascadeConfig):
    """Tagger for the configured engine, or None when the local model is disabled."""
    if not config.use_local_model or os.environ.get("MIRAGE_DISABLE_SPACY", "").lower() == "true":
        return None
    if config.entity_engine == "presidio":
        return PresidioEntityTagger(config.spacy_model, config.presidio_threshold)
    if config.entity_engine == "spacy":
        return SpacyEntityTagger(config.spacy_model)
    raise ValueError(f"Unknown entity engine: {config.entity_engine}")


class LocalModelLayer(LoggerMixin):
    """Layer 2: entity tagging over the original text."""

    def __init__(self, tagger: Any, confidence: float = 0.85):
        self.tagger = tagger
        self.confidence = confidence

    async def scan(self, text: str) -> List[PIIDetection]:
        """Group tagged spans per category; raises if the tagger fails."""
        spans = await asyncio.to_thread(self.tagger.tag, text)

        grouped: Dict[str, List[str]] = {}
        for span in spans:
            category = map_entity_label(span.entity)
            word = span.word.strip()
            if category and word:
                grouped.setdefault(category, []).append(word)

        return [
            PIIDetection(
                category=category,
                values=_distinct(words),
                source=SOURCE_LOCAL_MODEL,
                confidence=self.confidence,
            )
            for category, words in grouped.items()
        ]

    @staticmethod
    def redact(working_text: str, detections: List[PIIDetection]) -> str:
        """Replace entity words, leaving tags inserted by earlier layers intact."""
        for detection in detections:
            for value in detection.values:
                pattern = re.compile(re.escape(value))
                tag = category_tag(detection.category)
                # Odd parts of the split are existing tags
                parts = TAG_PATTERN.split(working_text)
                working_text = "".join(
                    part if i % 2 else pattern.sub(tag, part) for i, part in enumerate(parts)
                )
        return working_text


# Remote fallback

@dataclass
class RemoteReview:
    final_text: str
    missed_items: List[Dict[str, str]] = field(default_factory=list)
    risk_score: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteReview":
        final_text = data.get("final_redacted_text", data.get("final_text"))
        if not isinstance(final_text, str):
            raise ValueError("Remote review response has no final text")
        return cls(
            final_text=final_text,
            missed_items=list(data.get("missed_pii", data.get("missed_items", [])) or []),
            risk_score=float(data.get("risk_score", 0.0)),
        )


class RemoteFallbackClient(LoggerMixin):
    """Posts both texts to a remote PII review endpoint over httpx."""

    def __init__(self, url: str, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def review(self, text: str, partially_redacted: str) -> RemoteReview:
        payload = {"text": text, "partially_redacted_text": partially_redacted}
        if self._client is not None:
            response = await self._client.post(self.url, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                response = await client.post(self.url, json=payload)
        response.raise_for_status()
        return RemoteReview.from_dict(response.json())


class PIICascade(LoggerMixin):
    """
    Runs the three layers over one input text.

    Each call is independent; the cascade holds only its collaborators.
    """

    def __init__(
        self,
        config: Optional[CascadeConfig] = None,
        tagger: Any = None,
        remote: Any = None,
        pattern_layer: Optional[PatternLayer] = None
    ):
        self.config = config or CascadeConfig()
        self.pattern_layer = pattern_layer or PatternLayer()
        self.local_layer = LocalModelLayer(tagger, self.config.local_model_confidence) if tagger else None
        self.remote = remote

    @classmethod
    def from_config(cls, config: CascadeConfig) -> "PIICascade":
        remote = RemoteFallbackClient(config.remote_url, config.remote_timeout) if config.remote_url else None
        return cls(config=config, tagger=create_entity_tagger(config), remote=remote)

    # Rounded so that e.g. three detections score exactly 0.6 against the threshold

    @staticmethod
    def interim_risk(detection_count: int) -> float:
        return min(1.0, round(0.2 * detection_count, 6))

    @staticmethod
    def final_risk(detection_count: int, triggered_count: int) -> float:
        return min(1.0, round(0.2 * detection_count + 0.1 * triggered_count, 6))

    async def run(self, text: str) -> CascadeResult:
        """
        Redact one text.

        Args:
            text: Input text

        Returns:
            CascadeResult with the final text and the detections of every layer
        """
        detections: List[PIIDetection] = []
        triggered_by: List[str] = []
        layers_used = [SOURCE_PATTERN]

        # Layer 1
        pattern_detections = self.pattern_layer.scan(text)
        working_text = self.pattern_layer.redact(text, pattern_detections)
        if pattern_detections:
            detections.extend(pattern_detections)
            triggered_by.append(TRIGGER_PATTERN)

        # Layer 2 always sees the original text
        if self.local_layer is not None:
            layers_used.append(SOURCE_LOCAL_MODEL)
            try:
                local_detections = await self.local_layer.scan(text)
            except Exception as e:
                self.log_warning(f"Local entity layer failed, continuing without it: {e}")
                local_detections = []
            if local_detections:
                detections.extend(local_detections)
                triggered_by.append(TRIGGER_LOCAL_MODEL)
                working_text = self.local_layer.redact(working_text, local_detections)

        # Layer 3 only when the local layers suggest real risk
        data_left_device = False
        interim = self.interim_risk(len(detections))
        if self.remote is not None and interim > self.config.remote_risk_threshold:
            layers_used.append(SOURCE_REMOTE_MODEL)
            data_left_device = True
            try:
                review = await self.remote.review(text, working_text)
                remote_detections = [
                    PIIDetection(
                        category=str(item.get("type", "UNKNOWN")),
                        values=[str(item.get("value", ""))],
                        source=SOURCE_REMOTE_MODEL,
                    )
                    for item in review.missed_items
                ]
            except Exception as e:
                self.log_error(f"Remote review failed, keeping local redactions: {e}")
            else:
                working_text = review.final_text
                if remote_detections:
                    detections.extend(remote_detections)
                    triggered_by.append(TRIGGER_REMOTE_MODEL)

        risk = self.final_risk(len(detections), len(triggered_by))
        self.log_info(
            f"Cascade: {len(detections)} detections, layers {layers_used}, risk {risk:.2f}"
        )
        return CascadeResult(
            redacted_text=working_text,
            risk_score=risk,
            triggered_by=triggered_by,
            layers_used=layers_used,
            detections=detections,
            privacy_note=NOTE_HYBRID if data_left_device else NOTE_LOCAL,
            data_left_device=data_left_device,
        )

    def redact_text(self, text: str) -> CascadeResult:
        """Synchronous wrapper around run()."""
        return asyncio.run(self.run(text))
