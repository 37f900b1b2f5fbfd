"""
OCR recognition engines for the card scanner.

Wraps EasyOCR, Tesseract, and PaddleOCR behind a single TextRecognizer
that returns line-level blocks with normalized boxes.
"""

import logging
import re
import threading
import time
from typing import List, Tuple

import numpy as np

from .config import RecognizerConfig
from .detection import LineGrouper
from .errors import EngineFailure, ImageInvalid, NoTextFound
from .utils import BoundingBox, RecognitionResult, RecognizedTextBlock


logger = logging.getLogger(__name__)

Detection = Tuple[List[List[float]], str, float]

# Engine fallback chain when a library is missing
ENGINE_FALLBACK = {
    "paddle": "easyocr",
    "easyocr": "tesseract",
    "tesseract": None,
}

TESSERACT_LANGS = {"ch_tra": "chi_tra", "ch_sim": "chi_sim", "en": "eng", "ja": "jpn"}
PADDLE_LANGS = {"ch_tra": "chinese_cht", "ch_sim": "ch", "en": "en", "ja": "japan"}

CJK_CHAR = re.compile(r"[\u3400-\u9fff\uf900-\ufaff]")


def join_words(words: List[str]) -> str:
    """Join word texts, without a space between two CJK characters."""
    out = ""
    for word in words:
        word = word.strip()
        if not word:
            continue
        if out and not (CJK_CHAR.match(out[-1]) and CJK_CHAR.match(word[0])):
            out += " "
        out += word
    return out


class TextRecognizer:
    """Runs OCR over an upright card image and returns line blocks."""

    def __init__(self, config: RecognizerConfig = None, alternates_below: float = 0.6):
        self.config = config or RecognizerConfig()
        self.engine_name = self.config.engine.lower()
        self.languages: List[str] = []
        self.engine = None
        self.alternates_below = alternates_below
        self._lock = threading.Lock()
        self._initialize_engine()

    # ------------------------------------------------------------------
    # Engine setup
    # ------------------------------------------------------------------

    def _initialize_engine(self):
        """Initialize the selected engine, walking the fallback chain."""
        if self.engine_name == "paddle":
            try:
                from paddleocr import PaddleOCR
            except ImportError:
                self._fall_back("PaddleOCR not installed")
                return
            self._load_with_languages(
                lambda langs: PaddleOCR(
                    use_angle_cls=True,
                    lang=PADDLE_LANGS.get(langs[0], "en"),
                    use_gpu=self.config.gpu,
                    show_log=False,
                )
            )

        elif self.engine_name == "easyocr":
            try:
                import easyocr
            except ImportError:
                self._fall_back("EasyOCR not installed")
                return
            self._load_with_languages(
                lambda langs: easyocr.Reader(langs, gpu=self.config.gpu, verbose=False)
            )

        elif self.engine_name == "tesseract":
            try:
                import pytesseract
            except ImportError:
                raise EngineFailure("tesseract", "no OCR engine available; install easyocr or pytesseract")
            try:
                installed = set(pytesseract.get_languages(config=""))
            except pytesseract.TesseractNotFoundError as e:
                raise EngineFailure("tesseract", "tesseract binary not found") from e
            for langs in self.config.languages:
                codes = [TESSERACT_LANGS.get(lang, lang) for lang in langs]
                if all(code in installed for code in codes):
                    self.languages = codes
                    break
            else:
                self.languages = ["eng"]
            self.engine = pytesseract
            logger.info("[OCR] Initialized Tesseract (lang=%s)", "+".join(self.languages))

        else:
            raise ValueError(f"Unknown OCR engine: {self.engine_name}")

    def _load_with_languages(self, factory):
        """Try each language set in priority order; CJK+Latin first, Latin last."""
        last_error = None
        for langs in self.config.languages:
            try:
                self.engine = factory(langs)
                self.languages = list(langs)
                logger.info("[OCR] Initialized %s (lang=%s)", self.engine_name, "+".join(langs))
                return
            except Exception as e:
                # Missing model files or an unsupported language combination
                logger.warning("[OCR] %s could not load %s: %s", self.engine_name, langs, e)
                last_error = e
        self._fall_back(f"no usable language set ({last_error})")

    def _fall_back(self, reason: str):
        next_engine = ENGINE_FALLBACK.get(self.engine_name)
        if next_engine is None:
            raise EngineFailure(self.engine_name, reason)
        logger.warning("[OCR] %s unavailable (%s), falling back to %s",
                       self.engine_name, reason, next_engine)
        self.engine_name = next_engine
        self._initialize_engine()

    # ------------------------------------------------------------------
    # Recognition
    # ------------------------------------------------------------------

    def recognize(self, image: np.ndarray) -> RecognitionResult:
        """
        Recognize text lines in an upright image.

        Raises:
            ImageInvalid: empty or malformed input
            EngineFailure: the engine raised; original error is the cause
            NoTextFound: the engine returned nothing usable
        """
        if image is None or not isinstance(image, np.ndarray) or image.size == 0:
            raise ImageInvalid("recognizer received an empty image")

        start = time.perf_counter()
        h, w = image.shape[:2]

        try:
            with self._lock:
                detections = self.detect_and_recognize(image)
        except Exception as e:
            raise EngineFailure(self.engine_name, str(e)) from e

        words = []
        for polygon, text, conf in detections:
            if not text or not text.strip():
                continue
            words.append((BoundingBox.from_polygon(polygon), text.strip(), float(conf), []))

        min_height_px = int(self.config.min_text_height * h * 0.5)
        lines = LineGrouper(min_height_px=min_height_px).group(words)

        blocks = []
        for line_bbox, items in lines:
            text = join_words([t for _, t, _, _ in items])
            confidence = float(np.clip(np.mean([c for _, _, c, _ in items]), 0.0, 1.0))
            candidates = [text]
            if confidence < self.alternates_below:
                candidates.extend(self._alternates(image, line_bbox, text))
            blocks.append(RecognizedTextBlock(
                text=text,
                confidence=confidence,
                bbox=line_bbox.normalized(w, h),
                candidates=candidates[:3],
            ))

        if not blocks:
            raise NoTextFound("no text blocks recognized")

        result = RecognitionResult.from_blocks(blocks, time.perf_counter() - start)
        logger.info("[OCR] %d blocks, mean confidence %.2f, %.2fs",
                    len(blocks), result.confidence, result.processing_time)
        return result

    def _alternates(self, image: np.ndarray, bbox: BoundingBox, text: str) -> List[str]:
        """Re-read a low-confidence line from its own crop."""
        pad = max(2, bbox.height // 4)
        h, w = image.shape[:2]
        crop = image[max(0, bbox.y - pad):min(h, bbox.y + bbox.height + pad),
                     max(0, bbox.x - pad):min(w, bbox.x + bbox.width + pad)]
        with self._lock:
            alt, _ = self.recognize_line(crop)
        return [alt] if alt and alt != text else []

    def detect_and_recognize(self, image: np.ndarray) -> List[Detection]:
        """
        Detect text regions and recognize text.

        Returns:
            List of (polygon_points, text, confidence)
        """
        if self.engine_name == "paddle":
            return self._detect_paddle(image)
        elif self.engine_name == "easyocr":
            return self._detect_easyocr(image)
        elif self.engine_name == "tesseract":
            return self._detect_tesseract(image)
        return []

    def _easyocr_decoder(self) -> str:
        if self.config.language_correction:
            return "wordbeamsearch"
        return "beamsearch" if self.config.accurate else "greedy"

    def _detect_easyocr(self, image: np.ndarray) -> List[Detection]:
        """EasyOCR detection and recognition."""
        min_size = max(5, int(self.config.min_text_height * image.shape[0]))
        ocr_result = self.engine.readtext(
            image,
            decoder=self._easyocr_decoder(),
            beamWidth=10 if self.config.accurate else 5,
            paragraph=False,
            min_size=min_size,
            text_threshold=0.6,
            low_text=0.3,
            width_ths=0.5,
            height_ths=0.5
        )
        return [(item[0], item[1], item[2]) for item in ocr_result]

    def _tesseract_config(self, psm: int) -> str:
        config = f"--oem 1 --psm {psm}"
        if not self.config.language_correction:
            config += " -c load_system_dawg=0 -c load_freq_dawg=0"
        return config

    def _detect_tesseract(self, image: np.ndarray) -> List[Detection]:
        """Tesseract detection and recognition."""
        results = []
        data = self.engine.image_to_data(
            image,
            lang="+".join(self.languages),
            config=self._tesseract_config(psm=11 if self.config.accurate else 3),
            output_type=self.engine.Output.DICT
        )
        for i, text in enumerate(data['text']):
            if text.strip():
                x, y, w, h = data['left'][i], data['top'][i], data['width'][i], data['height'][i]
                raw_conf = float(data['conf'][i])
                conf = raw_conf / 100.0 if raw_conf >= 0 else 0.5
                polygon = [[x, y], [x + w, y], [x + w, y + h], [x, y + h]]
                results.append((polygon, text, conf))
        return results

    def _detect_paddle(self, image: np.ndarray) -> List[Detection]:
        """PaddleOCR detection and recognition."""
        results = []
        ocr_result = self.engine.ocr(image, cls=True)
        if ocr_result and ocr_result[0]:
            for item in ocr_result[0]:
                if item is None:
                    continue
                polygon = item[0]
                text, conf = item[1]
                results.append((polygon, text, conf))
        return results

    def recognize_line(self, line_image: np.ndarray) -> Tuple[str, float]:
        """
        Recognize text in a cropped line image.

        Returns:
            (text, confidence), ("", 0.0) when the engine fails on the crop
        """
        if line_image is None or line_image.size == 0:
            return "", 0.0

        try:
            if self.engine_name == "paddle":
                result = self.engine.ocr(line_image, det=False, cls=True)
                if result and result[0]:
                    texts = [item[0] for item in result[0] if item]
                    confs = [item[1] for item in result[0] if item]
                    if texts:
                        return join_words(texts), sum(confs) / len(confs)

            elif self.engine_name == "easyocr":
                result = self.engine.readtext(line_image, decoder="greedy", paragraph=False)
                if result:
                    confs = [item[2] for item in result]
                    return join_words([item[1] for item in result]), sum(confs) / len(confs)

            elif self.engine_name == "tesseract":
                text = self.engine.image_to_string(
                    line_image,
                    lang="+".join(self.languages),
                    config=self._tesseract_config(psm=7)
                ).strip()
                return text, 0.5  # image_to_string gives no confidence

        except Exception as e:
            # Alternates are optional; the primary read already succeeded
            logger.debug("[OCR] %s recognize_line error: %s", self.engine_name, e)
        return "", 0.0
