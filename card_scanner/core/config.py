"""
Configuration dataclasses for the card scanning pipeline.

Every tunable lives here: detector thresholds, recognizer languages,
spatial regions, scorer weights, AI client settings. Values that have no
documented derivation (scorer weights, extension lengths, region bounds)
are deliberately kept as plain defaults so callers can override them.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


# Normalized region: (y_min, y_max) with a top-left origin
Region = Tuple[float, float]


@dataclass
class PreprocessConfig:
    max_dimension: int = 2048      # longest side after resize
    contrast: float = 1.3
    brightness: float = 0.05       # fraction of full scale
    desaturate: bool = True
    sharpen_radius: float = 2.5
    sharpen_amount: float = 0.8
    denoise_strength: int = 5      # bilateral filter diameter, 0 disables


@dataclass
class DetectorConfig:
    min_aspect_ratio: float = 0.3  # short edge / long edge
    max_aspect_ratio: float = 0.9
    min_area_fraction: float = 0.2
    max_area_fraction: float = 0.98  # rejects the image border itself
    min_confidence: float = 0.5
    max_candidates: int = 3
    max_side_px: int = 1200        # downscale before edge finding
    canny_lo_mult: float = 0.66
    canny_hi_mult: float = 1.33
    dilate_iter: int = 2


@dataclass
class RecognizerConfig:
    engine: str = "easyocr"        # easyocr | tesseract | paddle
    # Tried in order; the first list the engine can load wins
    languages: List[List[str]] = field(
        default_factory=lambda: [["ch_tra", "en"], ["en"]]
    )
    accurate: bool = True
    language_correction: bool = True
    min_text_height: float = 0.02  # fraction of image height
    gpu: bool = False


@dataclass
class ExtractionConfig:
    name_region: Region = (0.0, 0.5)
    company_region: Region = (0.0, 0.5)
    title_region: Region = (0.3, 0.7)
    address_region: Region = (0.5, 1.0)
    name_scan_lines: int = 5
    min_address_indicators: int = 2
    min_address_length: int = 8
    title_fuzzy_threshold: float = 85.0


@dataclass
class ScoringConfig:
    weights: Dict[str, float] = field(default_factory=lambda: {
        "name": 0.25,
        "company": 0.20,
        "email": 0.15,
        "phone": 0.10,
        "mobile": 0.10,
        "job_title": 0.08,
        "address": 0.07,
        "website": 0.05,
    })
    heuristic_weight: float = 0.7
    ocr_weight: float = 0.3


@dataclass
class AIConfig:
    provider: str = "none"         # none | openai | ollama | mock
    model: str = "gpt-4.1-nano"
    api_key: Optional[str] = None
    base_url: str = "https://api.openai.com/v1"
    ollama_url: str = "http://localhost:11434"
    temperature: float = 0.3
    max_tokens: int = 500
    language: str = "zh-TW"
    send_image: bool = False


@dataclass
class PipelineConfig:
    ai_enabled: bool = False
    ai_timeout: float = 20.0       # seconds
    max_workers: int = 2
    jpeg_quality: int = 90
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    recognizer: RecognizerConfig = field(default_factory=RecognizerConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    ai: AIConfig = field(default_factory=AIConfig)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "PipelineConfig":
        """Build a config, overriding defaults from CARD_SCANNER_* variables."""
        env = os.environ if environ is None else environ
        config = cls()

        if "CARD_SCANNER_AI_ENABLED" in env:
            config.ai_enabled = _parse_bool(env["CARD_SCANNER_AI_ENABLED"])
        if "CARD_SCANNER_AI_TIMEOUT" in env:
            config.ai_timeout = float(env["CARD_SCANNER_AI_TIMEOUT"])
        if "CARD_SCANNER_ENGINE" in env:
            config.recognizer.engine = env["CARD_SCANNER_ENGINE"].lower()
        if "CARD_SCANNER_LANGS" in env:
            # "ch_tra+en,en" -> [["ch_tra", "en"], ["en"]]
            config.recognizer.languages = [
                [lang for lang in group.split("+") if lang]
                for group in env["CARD_SCANNER_LANGS"].split(",")
                if group.strip()
            ]
        if "CARD_SCANNER_AI_PROVIDER" in env:
            config.ai.provider = env["CARD_SCANNER_AI_PROVIDER"].lower()
        if "CARD_SCANNER_AI_MODEL" in env:
            config.ai.model = env["CARD_SCANNER_AI_MODEL"]
        if "OPENAI_API_KEY" in env:
            config.ai.api_key = env["OPENAI_API_KEY"]
        if "OPENAI_BASE_URL" in env:
            config.ai.base_url = env["OPENAI_BASE_URL"].rstrip("/")
        if "OLLAMA_URL" in env:
            config.ai.ollama_url = env["OLLAMA_URL"].rstrip("/")

        return config


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")
