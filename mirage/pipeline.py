"""
Load-then-process media pipeline.

Wires the collaborators from a MirageConfig and exposes the three entry
points used by the CLI: scan an image into a review session, redact text
through the cascade, and run the risk swarm.
"""

import asyncio
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Union

import numpy as np

from .config import AudienceProfile, MirageConfig, get_audience_profile
from .ledger import LedgerWriter, LocalLedgerCache, SqliteLedgerStore
from .logger import LoggerMixin, get_logger
from .metadata import extract_gps
from .normalizer import DetectionNormalizer, RawFinding
from .ocr import OCRManager
from .pii_cascade import CascadeResult, PIICascade
from .privacy_profile import JsonProfileStore, PrivacyProfileAggregator
from .redactor import CompositingRenderer
from .session import ExportResult, RedactionSession
from .swarm import SwarmAggregator, SwarmResult, UpdateCallback
from .visual_detector import RemoteVisionDetector

logger = get_logger(__name__)


@dataclass
class MediaItem:
    """Raw bytes plus the decoded BGR buffer of one image."""
    data: bytes
    image: np.ndarray
    mime_type: str = "image/png"
    path: Optional[Path] = None


async def load_media(source: Union[str, Path, bytes], mime_type: Optional[str] = None) -> MediaItem:
    """
    Read and decode an image.

    Raises:
        FileNotFoundError: if the path does not exist
        ValueError: if the bytes are not a decodable image
    """
    path = None
    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)
    else:
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Input file not found: {path}")
        data = await asyncio.to_thread(path.read_bytes)
        mime_type = mime_type or mimetypes.guess_type(path.name)[0]

    image = await asyncio.to_thread(CompositingRenderer().load_image, data)
    if image is None:
        raise ValueError(f"Could not decode image{f' {path}' if path else ''}")

    return MediaItem(data=data, image=image, mime_type=mime_type or "image/png", path=path)


class ProtectionPipeline(LoggerMixin):
    """Holds the configured collaborators for scanning, redaction and export."""

    def __init__(
        self,
        config: Optional[MirageConfig] = None,
        vision_detector: Any = None,
        cascade: Optional[PIICascade] = None,
        ledger_writer: Optional[LedgerWriter] = None,
        profile_aggregator: Optional[PrivacyProfileAggregator] = None,
        text_extractor: Any = None,
        transcriber: Any = None
    ):
        self.config = config or MirageConfig()
        self.vision_detector = vision_detector
        self.cascade = cascade or PIICascade(self.config.cascade)
        self.ledger_writer = ledger_writer
        self.profile_aggregator = profile_aggregator
        self.text_extractor = text_extractor
        self.transcriber = transcriber

    @classmethod
    def from_config(cls, config: MirageConfig) -> "ProtectionPipeline":
        """Build every collaborator the config enables."""
        storage = config.storage

        vision_detector = RemoteVisionDetector(config.vision) if config.vision.endpoint else None

        store = None
        try:
            store = SqliteLedgerStore(storage.ledger_db_path)
        except Exception as e:
            logger.warning(f"Ledger database unavailable, using local cache only: {e}")
        ledger_writer = LedgerWriter(
            store, LocalLedgerCache(storage.ledger_cache_path, storage.ledger_cache_limit)
        )

        return cls(
            config=config,
            vision_detector=vision_detector,
            cascade=PIICascade.from_config(config.cascade),
            ledger_writer=ledger_writer,
            profile_aggregator=PrivacyProfileAggregator(JsonProfileStore(storage.profile_store_path)),
        )

    def audience(self, profile_id: Optional[str] = None) -> AudienceProfile:
        return get_audience_profile(profile_id or self.config.audience)

    async def _detect(self, data: bytes) -> List[RawFinding]:
        if self.vision_detector is None:
            self.log_info("No vision detector configured; only metadata will be scanned")
            return []
        try:
            return await self.vision_detector.detect(data)
        except Exception as e:
            self.log_error(f"Vision detection failed: {e}")
            return []

    async def scan(
        self,
        media: MediaItem,
        profile: Optional[AudienceProfile] = None,
        session_id: Optional[str] = None
    ) -> RedactionSession:
        """
        Detect, normalize and open a review session for one image.

        Vision detection and GPS extraction run concurrently.
        """
        profile = profile or self.audience()
        findings, gps = await asyncio.gather(
            self._detect(media.data),
            asyncio.to_thread(extract_gps, media.data),
        )

        normalized = DetectionNormalizer(profile, session_id).normalize(findings, gps=gps)
        return RedactionSession(
            image=media.image,
            detections=normalized.detections,
            profile=profile,
            decisions=normalized.decisions,
            renderer=CompositingRenderer(self.config.renderer),
            ledger_writer=self.ledger_writer,
            profile_aggregator=self.profile_aggregator,
        )

    async def scan_text(self, text: str) -> CascadeResult:
        return await self.cascade.run(text)

    def export(self, session: RedactionSession, output_path: Optional[Union[str, Path]] = None) -> ExportResult:
        return session.export(output_path)

    def _default_text_extractor(self):
        try:
            return OCRManager(self.config.ocr).extract_plain_text
        except Exception as e:
            self.log_warning(f"OCR unavailable for the swarm: {e}")
            return None

    def build_swarm(self) -> SwarmAggregator:
        return SwarmAggregator(
            vision_detector=self.vision_detector,
            text_extractor=self.text_extractor or self._default_text_extractor(),
            transcriber=self.transcriber,
            config=self.config.swarm,
        )

    async def run_swarm(
        self,
        data: bytes,
        mime_type: str = "image/png",
        on_update: Optional[UpdateCallback] = None
    ) -> SwarmResult:
        return await self.build_swarm().analyze(data, mime_type, on_update)
