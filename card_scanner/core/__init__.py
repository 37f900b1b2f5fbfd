"""
Core module for the card scanner.

This package contains modular components for card processing:
- utils: Data classes, image I/O, and the persistence payload
- config: Tunables and environment overrides
- preprocessing: Resize, contrast, sharpening
- detection: Card outline detection and line grouping
- rectification: Perspective correction
- recognition: OCR engine wrappers (EasyOCR, Tesseract, PaddleOCR)
- normalization: OCR artifact cleanup
- extraction / phone: Rule-based contact field extraction
- scoring: Record confidence
- enhancer: AI enhancer interface
- pipeline: The async orchestrator tying the stages together
"""

# Data classes
from .utils import (
    BoundingBox,
    NormalizedBox,
    DetectedQuadrilateral,
    RecognizedTextBlock,
    RecognitionResult,
    ParsedContactRecord,
    PipelineState,
    Success,
    RecognitionFailed,
    Error,
)

# File I/O utilities
from .utils import (
    load_image,
    encode_jpeg,
    build_contact_payload,
    save_outcome_json,
    draw_annotations,
)

# Errors and configuration
from .errors import (
    CardScannerError,
    ImageInvalid,
    RectangleNotFound,
    CroppingFailed,
    NoTextFound,
    EngineFailure,
    AIRequestFailed,
)
from .config import PipelineConfig
from .enhancer import CardEnhancerBase, EnhancementRequest

# Stages
from .preprocessing import ImagePreprocessor
from .detection import RectangleDetector, LineGrouper
from .rectification import PerspectiveRectifier
from .recognition import TextRecognizer
from .normalization import TextNormalizer
from .extraction import FieldExtractor
from .scoring import ConfidenceScorer

# Main pipeline
from .pipeline import PipelineOrchestrator


__all__ = [
    # Data classes
    "BoundingBox",
    "NormalizedBox",
    "DetectedQuadrilateral",
    "RecognizedTextBlock",
    "RecognitionResult",
    "ParsedContactRecord",
    "PipelineState",
    "Success",
    "RecognitionFailed",
    "Error",
    # File I/O
    "load_image",
    "encode_jpeg",
    "build_contact_payload",
    "save_outcome_json",
    "draw_annotations",
    # Errors and configuration
    "CardScannerError",
    "ImageInvalid",
    "RectangleNotFound",
    "CroppingFailed",
    "NoTextFound",
    "EngineFailure",
    "AIRequestFailed",
    "PipelineConfig",
    "CardEnhancerBase",
    "EnhancementRequest",
    # Stages
    "ImagePreprocessor",
    "RectangleDetector",
    "LineGrouper",
    "PerspectiveRectifier",
    "TextRecognizer",
    "TextNormalizer",
    "FieldExtractor",
    "ConfidenceScorer",
    # Pipeline
    "PipelineOrchestrator",
]
