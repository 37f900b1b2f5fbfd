"""
AI enhancer interface used by the pipeline.

The HTTP clients live in card_scanner.ai_enhancement; the pipeline only
depends on this contract.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .utils import ParsedContactRecord


@dataclass
class EnhancementRequest:
    """What the enhancer gets to see."""
    ocr_text: str
    image_bytes: Optional[bytes] = None  # JPEG
    language: str = "zh-TW"


class CardEnhancerBase(ABC):
    """Abstract base class for AI card enhancers."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the enhancer is configured and reachable."""
        pass

    @abstractmethod
    def enhance(self, request: EnhancementRequest) -> ParsedContactRecord:
        """Parse the card. Raises AIRequestFailed on any failure."""
        pass
