"""
Image preprocessing for business card OCR.

Resizing happens once on the raw capture so the detector and rectifier
work at a bounded resolution. Tone enhancement is applied only to the
copy handed to the recognizer; the rectified color card is kept for
the saved photo.
"""

import cv2
import numpy as np

from .config import PreprocessConfig


class ImagePreprocessor:
    """Resize and contrast-enhance card images before recognition."""

    def __init__(self, config: PreprocessConfig = None):
        self.config = config or PreprocessConfig()

    def resize(self, image: np.ndarray) -> np.ndarray:
        """Downscale so the longest side is at most max_dimension."""
        h, w = image.shape[:2]
        longest = max(h, w)
        if longest <= self.config.max_dimension:
            return image

        scale = self.config.max_dimension / longest
        new_size = (max(1, int(round(w * scale))), max(1, int(round(h * scale))))
        return cv2.resize(image, new_size, interpolation=cv2.INTER_AREA)

    def enhance(self, image: np.ndarray) -> np.ndarray:
        """
        Contrast, brightness, desaturation, unsharp mask, light denoise.

        Args:
            image: Input BGR image

        Returns:
            Enhanced BGR image (three identical channels when desaturated)
        """
        if image is None:
            return None

        cfg = self.config
        if len(image.shape) == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)

        if cfg.desaturate:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
            work = gray.astype(np.float32)
        else:
            work = image.astype(np.float32)

        # Contrast around mid-gray, then brightness shift
        work = (work - 127.5) * cfg.contrast + 127.5 + cfg.brightness * 255.0
        work = np.clip(work, 0, 255).astype(np.uint8)

        work = self._unsharp_mask(work)

        # Light denoising (bilateral preserves edges)
        if cfg.denoise_strength > 0:
            work = cv2.bilateralFilter(
                work,
                d=cfg.denoise_strength,
                sigmaColor=50,
                sigmaSpace=50
            )

        if work.ndim == 2:
            work = cv2.cvtColor(work, cv2.COLOR_GRAY2BGR)
        return work

    def _unsharp_mask(self, image: np.ndarray) -> np.ndarray:
        """Sharpen text strokes: image + amount * (image - blur)."""
        if self.config.sharpen_amount <= 0:
            return image
        blurred = cv2.GaussianBlur(image, (0, 0), self.config.sharpen_radius)
        return cv2.addWeighted(
            image, 1.0 + self.config.sharpen_amount,
            blurred, -self.config.sharpen_amount,
            0
        )
