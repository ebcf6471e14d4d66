"""
Shared fixtures for the Mirage test suite.
"""

import logging

import numpy as np
import pytest

from mirage.config import Detection, DetectionCategory, default_replacement_mode, get_audience_profile


@pytest.fixture
def social_profile():
    """The maximum-privacy audience profile."""
    return get_audience_profile("public_social")


@pytest.fixture
def work_profile():
    """The work colleague audience profile."""
    return get_audience_profile("work_colleague")


@pytest.fixture
def make_detection():
    """Factory for Detection records with sensible defaults."""
    def _make(
        det_id,
        category,
        box=(100, 100, 300, 300),
        confidence=0.95,
        sensitive=True,
        redact_by_default=False,
        **kwargs
    ):
        category = DetectionCategory.from_tag(category)
        return Detection(
            id=det_id,
            category=category,
            box=box,
            confidence=confidence,
            sensitive=sensitive,
            replacement_mode=kwargs.pop("replacement_mode", default_replacement_mode(category)),
            redact_by_default=redact_by_default,
            **kwargs
        )
    return _make


@pytest.fixture
def gray_image():
    """Uniform mid-gray BGR image, 200x200."""
    return np.full((200, 200, 3), 128, dtype=np.uint8)


@pytest.fixture
def noise_image():
    """Random BGR image, 200x200, fixed seed."""
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, size=(200, 200, 3), dtype=np.uint8)


@pytest.fixture
def restore_root_logger():
    """Undo handler changes made by setup_root_logger."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
