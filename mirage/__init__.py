"""
Mirage - privacy-preserving redaction for images and text.

This package provides tools for:
- Turning detector findings into per-item redaction decisions (audience profiles, paranoia dial, risk score)
- Compositing type-specific replacements onto image buffers
- A three-layer PII cascade for text
- A longitudinal privacy profile and a redaction ledger
- A five-agent risk-assessment swarm
"""

__version__ = "0.1.0"
__author__ = "Mirage Team"
__license__ = "MIT"

from .config import (
    AUDIENCE_PROFILES,
    AudienceProfile,
    Detection,
    DetectionCategory,
    MirageConfig,
    ReplacementMode,
    get_audience_profile,
    load_config,
)
from .logger import get_logger

__all__ = [
    "AUDIENCE_PROFILES",
    "AudienceProfile",
    "Detection",
    "DetectionCategory",
    "MirageConfig",
    "ReplacementMode",
    "get_audience_profile",
    "load_config",
    "get_logger",
]
