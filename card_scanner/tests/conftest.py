"""
Pytest configuration and shared fixtures for card scanner tests.

This module provides:
- Synthetic card photos drawn with OpenCV (no image files needed)
- Fake recognizers and detectors for driving the pipeline without an
  OCR engine
- Orchestrator factory wired with the fakes and a mock AI enhancer

Usage:
    pytest card_scanner/tests/ -v
    pytest card_scanner/tests/test_phone.py -v
    pytest card_scanner/tests/ -m "not requires_engine" -v
"""

import sys
from pathlib import Path
from typing import List, Optional

import cv2
import numpy as np
import pytest

# Add repository root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from card_scanner.ai_enhancement import MockCardEnhancer  # noqa: E402
from card_scanner.core.config import PipelineConfig  # noqa: E402
from card_scanner.core.errors import EngineFailure, NoTextFound, RectangleNotFound  # noqa: E402
from card_scanner.core.pipeline import PipelineOrchestrator  # noqa: E402
from card_scanner.core.utils import (  # noqa: E402
    DetectedQuadrilateral, NormalizedBox, RecognitionResult, RecognizedTextBlock,
)


# =============================================================================
# Card Text Constants
# =============================================================================

KEVIN_SU_LINES = [
    "Kevin Su",
    "ABC Technology Co., Ltd.",
    "Manager",
    "0912-345-678",
    "kevin@abc.com",
]

CJK_CARD_LINES = [
    "王小明",
    "產品經理",
    "科技股份有限公司",
    "電話: 02-2720-1234 #123",
    "手機: 0912-345-678",
    "傳真: 02-2720-5678",
    "台北市信義區信義路五段7號12樓",
    "ming@tech.com.tw",
    "www.tech.com.tw",
]


# =============================================================================
# Synthetic Images
# =============================================================================

def draw_card(
    image_size=(800, 1000),
    corners=((200, 200), (800, 200), (800, 560), (200, 560)),
    background: int = 40,
    card: int = 235
) -> np.ndarray:
    """Dark background with a light card polygon (corners TL, TR, BR, BL)."""
    h, w = image_size
    image = np.full((h, w, 3), background, dtype=np.uint8)
    pts = np.array(corners, dtype=np.int32).reshape(-1, 1, 2)
    cv2.fillPoly(image, [pts], (card, card, card))

    # A few dark text-like bars so the card is not a flat patch
    x0, y0 = corners[0]
    for i in range(3):
        y = y0 + 60 + i * 70
        cv2.rectangle(image, (x0 + 60, y), (x0 + 300, y + 18), (30, 30, 30), -1)
    return image


@pytest.fixture
def card_image() -> np.ndarray:
    """Upright 600x360 card (aspect 0.6) on a 1000x800 background."""
    return draw_card()


@pytest.fixture
def tilted_card_image() -> np.ndarray:
    """Card seen at an angle: a non-rectangular quadrilateral."""
    return draw_card(corners=((230, 180), (820, 240), (790, 600), (190, 540)))


@pytest.fixture
def blank_image() -> np.ndarray:
    """Uniform gray frame with nothing to detect."""
    return np.full((600, 800, 3), 128, dtype=np.uint8)


@pytest.fixture
def png_bytes(card_image) -> bytes:
    ok, buffer = cv2.imencode(".png", card_image)
    assert ok
    return buffer.tobytes()


# =============================================================================
# Fakes
# =============================================================================

def make_blocks(lines: List[str], confidence: float = 0.9) -> List[RecognizedTextBlock]:
    """Lines stacked top to bottom, evenly spaced over the card."""
    n = max(1, len(lines))
    step = 1.0 / n
    return [
        RecognizedTextBlock(
            text=text,
            confidence=confidence,
            bbox=NormalizedBox(x=0.1, y=i * step + 0.02, width=0.6, height=step * 0.5),
            candidates=[text],
        )
        for i, text in enumerate(lines)
    ]


class FakeRecognizer:
    """Returns canned lines instead of running an OCR engine."""

    def __init__(self, lines: List[str], confidence: float = 0.9, fail: bool = False):
        self.lines = lines
        self.confidence = confidence
        self.fail = fail
        self.images = []

    def recognize(self, image: np.ndarray) -> RecognitionResult:
        self.images.append(image)
        if self.fail:
            try:
                raise RuntimeError("engine crashed")
            except RuntimeError as e:
                raise EngineFailure("fake", str(e)) from e
        if not self.lines:
            raise NoTextFound("no text blocks recognized")
        return RecognitionResult.from_blocks(make_blocks(self.lines, self.confidence), 0.01)


class FakeDetector:
    """Detector returning a fixed quad, or nothing."""

    def __init__(self, quad: Optional[DetectedQuadrilateral] = None):
        self.quad = quad
        self.calls = 0

    def detect(self, image: np.ndarray) -> DetectedQuadrilateral:
        self.calls += 1
        if self.quad is None:
            raise RectangleNotFound("no card-shaped quadrilateral found")
        return self.quad


@pytest.fixture
def fake_recognizer():
    return FakeRecognizer(KEVIN_SU_LINES)


@pytest.fixture
def mock_enhancer():
    return MockCardEnhancer()


@pytest.fixture
def make_orchestrator():
    """
    Build an orchestrator with a fake recognizer.

    Usage:
        orchestrator = make_orchestrator(lines=[...], enhancer=..., ai_timeout=0.1)
    """
    created = []

    def _make(
        lines: List[str] = None,
        recognizer=None,
        detector=None,
        enhancer=None,
        ai_enabled: bool = False,
        ai_timeout: float = 20.0,
        **kwargs
    ) -> PipelineOrchestrator:
        config = PipelineConfig()
        config.ai_enabled = ai_enabled
        config.ai_timeout = ai_timeout
        orchestrator = PipelineOrchestrator(
            config=config,
            recognizer=recognizer or FakeRecognizer(KEVIN_SU_LINES if lines is None else lines),
            detector=detector,
            enhancer=enhancer,
            **kwargs
        )
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        orchestrator.close()


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "requires_engine: marks tests that need an installed OCR engine"
    )


def pytest_report_header(config):
    """Add project info to test report header."""
    return [
        "Card Scanner Test Suite",
        f"Project Root: {PROJECT_ROOT}",
    ]
