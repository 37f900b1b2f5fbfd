"""
Confidence scoring for extracted contact records.
"""

from typing import Iterable, Optional

from .config import ScoringConfig
from .utils import ParsedContactRecord


class ConfidenceScorer:
    """Weighted completeness score, optionally blended with OCR confidence."""

    def __init__(self, config: ScoringConfig = None):
        self.config = config or ScoringConfig()

    def completeness(
        self,
        record: ParsedContactRecord,
        fields: Optional[Iterable[str]] = None
    ) -> float:
        """
        Share of field weight that is filled in.

        Args:
            record: Record to score
            fields: Fields to consider (default: every weighted field)

        Returns:
            Score in [0, 1]; 0 when no weight is considered
        """
        weights = self.config.weights
        considered = list(fields) if fields is not None else list(weights)

        total = sum(weights.get(name, 0.0) for name in considered)
        if total <= 0:
            return 0.0

        score = sum(
            weights.get(name, 0.0)
            for name in considered
            if (getattr(record, name, None) or "").strip()
        )
        return _clamp(score / total)

    def score(self, record: ParsedContactRecord, ocr_confidence: Optional[float] = None) -> float:
        """Completeness, blended 0.7 / 0.3 with OCR confidence when given."""
        heuristic = self.completeness(record)
        if ocr_confidence is None:
            return heuristic
        blended = (
            self.config.heuristic_weight * heuristic
            + self.config.ocr_weight * _clamp(ocr_confidence)
        )
        return _clamp(blended)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))
