"""
Perspective rectification for detected cards.
"""

import logging

import cv2
import numpy as np

from .errors import CroppingFailed
from .utils import DetectedQuadrilateral, rectified_size


logger = logging.getLogger(__name__)


class PerspectiveRectifier:
    """Warps a detected quadrilateral into an upright rectangle."""

    def __init__(self, min_side_px: int = 16, border_trim: int = 0):
        self.min_side_px = min_side_px
        self.border_trim = border_trim

    def rectify(self, image: np.ndarray, quad: DetectedQuadrilateral) -> np.ndarray:
        """
        Args:
            image: Image the quad was detected on (any resolution, same framing)
            quad: Normalized corners, top-left origin like the detector

        Returns:
            Upright BGR card image sized from the quad's longest edges

        Raises:
            CroppingFailed: if the warp yields no usable image
        """
        if image is None or image.size == 0:
            raise CroppingFailed("no source image")

        h, w = image.shape[:2]
        src = quad.to_pixels(w, h)
        out_w, out_h = rectified_size(src)

        if out_w < self.min_side_px or out_h < self.min_side_px:
            raise CroppingFailed(f"degenerate quad ({out_w}x{out_h})")

        destination = np.array(
            [[0, 0], [out_w - 1, 0], [out_w - 1, out_h - 1], [0, out_h - 1]],
            dtype="float32",
        )
        try:
            matrix = cv2.getPerspectiveTransform(src, destination)
            warped = cv2.warpPerspective(image, matrix, (out_w, out_h))
        except cv2.error as e:
            raise CroppingFailed(f"perspective transform failed: {e}") from e

        if warped is None or warped.size == 0:
            raise CroppingFailed("perspective transform produced no image")

        if self.border_trim > 0 and min(out_w, out_h) > 4 * self.border_trim:
            t = self.border_trim
            warped = warped[t:-t, t:-t]

        logger.debug("[Rectify] Warped card to %dx%d", warped.shape[1], warped.shape[0])
        return warped
