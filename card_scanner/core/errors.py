"""
Error types raised by the card scanning pipeline.

Only ImageInvalid and the recognition-stage failures ever reach the caller,
as Error / RecognitionFailed outcomes. The rest are absorbed by the
orchestrator through a fallback path.
"""


class CardScannerError(Exception):
    """Base class for all pipeline errors."""


class ImageInvalid(CardScannerError):
    """Input could not be decoded into a usable bitmap."""


class RectangleNotFound(CardScannerError):
    """No card-shaped quadrilateral cleared the detector thresholds."""


class CroppingFailed(CardScannerError):
    """Perspective warp produced no usable image."""


class NoTextFound(CardScannerError):
    """The recognizer returned zero text blocks."""


class EngineFailure(CardScannerError):
    """The OCR engine raised. The original exception is kept as __cause__."""

    def __init__(self, engine: str, message: str = ""):
        self.engine = engine
        super().__init__(f"{engine}: {message}" if message else engine)


class AIRequestFailed(CardScannerError):
    """Remote enhancement failed (network, timeout, malformed response)."""
