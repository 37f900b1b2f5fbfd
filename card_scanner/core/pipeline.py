"""
Card scanning pipeline.

Runs one photo through detection, rectification, recognition, extraction
and the optional AI pass, and reports the outcome together with the
states it went through:

    idle -> detecting -> [rectifying] -> recognizing -> extracting -> done
                                              \\-> failed

A missing card outline or a failed warp is not fatal: recognition runs on
the uncropped photo instead. AI failures of any kind fall back to the
heuristic record.
"""

import asyncio
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from .config import PipelineConfig
from .detection import RectangleDetector
from .enhancer import CardEnhancerBase, EnhancementRequest
from .errors import (
    AIRequestFailed, CroppingFailed, EngineFailure, ImageInvalid,
    NoTextFound, RectangleNotFound,
)
from .extraction import FieldExtractor
from .normalization import TextNormalizer
from .preprocessing import ImagePreprocessor
from .recognition import TextRecognizer
from .rectification import PerspectiveRectifier
from .scoring import ConfidenceScorer
from .utils import (
    Error, ImageSource, ParsedContactRecord, PipelineState, ProcessingOutcome,
    RecognitionFailed, RecognitionResult, Success, encode_jpeg, load_image,
)


logger = logging.getLogger(__name__)


@dataclass
class _RunContext:
    """Per-call state; never stored on the orchestrator."""
    ai_enabled: bool
    states: List[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])

    def enter(self, state: PipelineState):
        logger.debug("[Pipeline] %s -> %s", self.states[-1].value, state.value)
        self.states.append(state)


class PipelineOrchestrator:
    """
    Photo in, ProcessingOutcome out.

    Every collaborator can be injected; the defaults are built from the
    config. The OCR engine is only loaded on first use because model
    loading takes seconds.

    CPU-bound stages run on a thread pool so process() can be awaited from
    an event loop without blocking it. Concurrent process() calls are
    independent.
    """

    def __init__(
        self,
        config: PipelineConfig = None,
        preprocessor: ImagePreprocessor = None,
        detector: RectangleDetector = None,
        rectifier: PerspectiveRectifier = None,
        recognizer: TextRecognizer = None,
        normalizer: TextNormalizer = None,
        extractor: FieldExtractor = None,
        scorer: ConfidenceScorer = None,
        enhancer: Optional[CardEnhancerBase] = None,
        executor: Executor = None
    ):
        self.config = config or PipelineConfig()
        self.preprocessor = preprocessor or ImagePreprocessor(self.config.preprocess)
        self.detector = detector or RectangleDetector(self.config.detector)
        self.rectifier = rectifier or PerspectiveRectifier()
        self.normalizer = normalizer or TextNormalizer()
        self.extractor = extractor or FieldExtractor(self.config.extraction)
        self.scorer = scorer or ConfidenceScorer(self.config.scoring)
        self.enhancer = enhancer

        self._recognizer = recognizer
        self._recognizer_lock = threading.Lock()

        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="card-scanner",
        )

    @property
    def recognizer(self) -> TextRecognizer:
        if self._recognizer is None:
            with self._recognizer_lock:
                if self._recognizer is None:
                    self._recognizer = TextRecognizer(self.config.recognizer)
        return self._recognizer

    def close(self):
        """Shut down the thread pool if this orchestrator created it."""
        if self._owns_executor:
            self.executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def process(self, image: ImageSource, ai_enabled: Optional[bool] = None) -> ProcessingOutcome:
        """
        Process one card photo.

        Args:
            image: Encoded bytes, a file path, or a decoded BGR array
            ai_enabled: Overrides config.ai_enabled for this call

        Returns:
            Success, RecognitionFailed, or Error. Never raises for bad
            input or stage failures.
        """
        ctx = _RunContext(
            ai_enabled=self.config.ai_enabled if ai_enabled is None else bool(ai_enabled)
        )
        loop = asyncio.get_running_loop()

        try:
            raw = await self._run(loop, load_image, image)
            return await self._process_image(loop, ctx, raw)
        except ImageInvalid as e:
            logger.warning("[Pipeline] Invalid image: %s", e)
            ctx.enter(PipelineState.FAILED)
            return Error(str(e), ctx.states)
        except Exception as e:
            logger.exception("[Pipeline] Unexpected failure")
            ctx.enter(PipelineState.FAILED)
            return Error(f"{type(e).__name__}: {e}", ctx.states)

    def process_sync(self, image: ImageSource, ai_enabled: Optional[bool] = None) -> ProcessingOutcome:
        """Blocking wrapper around process() for scripts and the CLI."""
        return asyncio.run(self.process(image, ai_enabled))

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _run(self, loop: asyncio.AbstractEventLoop, fn, *args) -> "asyncio.Future":
        return loop.run_in_executor(self.executor, fn, *args)

    async def _process_image(
        self,
        loop: asyncio.AbstractEventLoop,
        ctx: _RunContext,
        raw: np.ndarray
    ) -> ProcessingOutcome:
        resized = await self._run(loop, self.preprocessor.resize, raw)

        ctx.enter(PipelineState.DETECTING)
        card = resized
        try:
            quad = await self._run(loop, self.detector.detect, resized)
        except RectangleNotFound as e:
            logger.info("[Pipeline] No card outline (%s), using full image", e)
        else:
            ctx.enter(PipelineState.RECTIFYING)
            try:
                card = await self._run(loop, self.rectifier.rectify, resized, quad)
            except CroppingFailed as e:
                logger.warning("[Pipeline] Rectification failed (%s), using full image", e)

        ctx.enter(PipelineState.RECOGNIZING)
        try:
            recognition = await self._run(loop, self._recognize, card)
        except (NoTextFound, EngineFailure) as e:
            logger.warning("[Pipeline] Recognition failed: %s", e)
            ctx.enter(PipelineState.FAILED)
            return RecognitionFailed(raw, str(e), ctx.states)

        ctx.enter(PipelineState.EXTRACTING)
        record, text = await self._run(loop, self._extract, recognition)
        record = await self._enhance(loop, ctx, record, text, card, recognition.confidence)

        ctx.enter(PipelineState.DONE)
        logger.info(
            "[Pipeline] Done: %d fields, confidence %.2f, source %s",
            len(record.filled_fields()), record.confidence, record.source
        )
        return Success(record, card, recognition, ctx.states)

    def _recognize(self, card: np.ndarray) -> RecognitionResult:
        enhanced = self.preprocessor.enhance(card)
        return self.recognizer.recognize(enhanced)

    def _extract(self, recognition: RecognitionResult) -> Tuple[ParsedContactRecord, str]:
        text = self.normalizer.normalize(recognition.full_text)
        blocks = self.normalizer.normalize_blocks(recognition.blocks)
        record = self.extractor.extract(text, blocks)
        record.confidence = self.scorer.score(record, recognition.confidence)
        return record, text

    # ------------------------------------------------------------------
    # AI pass
    # ------------------------------------------------------------------

    def _ask_enhancer(self, request: EnhancementRequest) -> Optional[ParsedContactRecord]:
        if not self.enhancer.is_available():
            logger.info("[AI] Enhancer unavailable, keeping heuristic result")
            return None
        return self.enhancer.enhance(request)

    async def _enhance(
        self,
        loop: asyncio.AbstractEventLoop,
        ctx: _RunContext,
        heuristic: ParsedContactRecord,
        text: str,
        card: np.ndarray,
        ocr_confidence: float
    ) -> ParsedContactRecord:
        if not ctx.ai_enabled or self.enhancer is None:
            return heuristic

        ai_config = self.config.ai
        request = EnhancementRequest(
            ocr_text=text,
            image_bytes=encode_jpeg(card, self.config.jpeg_quality) if ai_config.send_image else None,
            language=ai_config.language,
        )

        timeout = self.config.ai_timeout
        try:
            record = await asyncio.wait_for(
                self._run(loop, self._ask_enhancer, request), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning("[AI] No answer within %.1fs, keeping heuristic result", timeout)
            return heuristic
        except AIRequestFailed as e:
            logger.warning("[AI] Request failed, keeping heuristic result: %s", e)
            return heuristic
        except Exception:
            logger.exception("[AI] Enhancer raised, keeping heuristic result")
            return heuristic

        if record is None:
            return heuristic
        if not record.filled_fields():
            logger.warning("[AI] Empty answer, keeping heuristic result")
            return heuristic

        if not record.confidence:
            record.confidence = self.scorer.score(record, ocr_confidence)
        logger.info("[AI] Adopted AI fields: %s", ", ".join(record.filled_fields()))
        return record
