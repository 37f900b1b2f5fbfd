"""
Detection functions for the card scanner.

Contains card boundary detection (RectangleDetector) and grouping of
OCR word boxes into reading-order lines (LineGrouper).
"""

import logging
from typing import List, Tuple

import cv2
import numpy as np

from .config import DetectorConfig
from .errors import RectangleNotFound
from .utils import BoundingBox, DetectedQuadrilateral


logger = logging.getLogger(__name__)

# Typical card short/long ratio (90 x 54 mm)
TARGET_ASPECT = 0.6


def order_pts(pts: np.ndarray) -> np.ndarray:
    """
    Deterministic TL, TR, BR, BL ordering regardless of contour order.
    """
    pts = pts.reshape(4, 2).astype("float32")
    s = pts.sum(axis=1)
    d = np.diff(pts, axis=1)[:, 0]  # y - x

    tl = pts[np.argmin(s)]
    br = pts[np.argmax(s)]
    tr = pts[np.argmin(d)]
    bl = pts[np.argmax(d)]

    return np.array([tl, tr, br, bl], dtype="float32")


def corner_angles(pts: np.ndarray) -> List[float]:
    """Interior angle in degrees at each corner of an ordered quad."""
    angles = []
    for i in range(4):
        a = pts[(i - 1) % 4]
        b = pts[i]
        c = pts[(i + 1) % 4]
        v1, v2 = a - b, c - b
        cos_angle = np.dot(v1, v2) / (np.linalg.norm(v1) * np.linalg.norm(v2) + 1e-9)
        angles.append(float(np.degrees(np.arccos(np.clip(cos_angle, -1, 1)))))
    return angles


def to_quad(contour: np.ndarray):
    """Reduce a contour to four points: polygon, then hull, then min-area rect."""
    perimeter = cv2.arcLength(contour, True)
    approx = cv2.approxPolyDP(contour, 0.02 * perimeter, True)
    if len(approx) == 4 and cv2.isContourConvex(approx):
        return approx.reshape(4, 2).astype("float32"), True

    hull = cv2.convexHull(contour)
    perimeter = cv2.arcLength(hull, True)
    approx = cv2.approxPolyDP(hull, 0.02 * perimeter, True)
    if len(approx) == 4:
        return approx.reshape(4, 2).astype("float32"), True

    rect = cv2.minAreaRect(contour)
    box = cv2.boxPoints(rect)
    if box.shape == (4, 2):
        return box.astype("float32"), False
    return None, False


class RectangleDetector:
    """Finds the card-shaped quadrilateral in a photo."""

    def __init__(self, config: DetectorConfig = None):
        self.config = config or DetectorConfig()

    def detect(self, image: np.ndarray) -> DetectedQuadrilateral:
        """
        Return the best candidate clearing every threshold.

        Raises:
            RectangleNotFound: when no candidate qualifies
        """
        candidates = self.find_candidates(image)
        if not candidates:
            raise RectangleNotFound("no card-shaped quadrilateral found")

        best = candidates[0]
        logger.debug("[Detect] Best quad confidence %.3f (%d candidates)",
                     best.confidence, len(candidates))
        return best

    def find_candidates(self, image: np.ndarray) -> List[DetectedQuadrilateral]:
        """All qualifying quads, best first, capped at max_candidates."""
        if image is None or image.size == 0:
            return []

        cfg = self.config
        H, W = image.shape[:2]
        scale = cfg.max_side_px / max(H, W)
        img = cv2.resize(image, None, fx=scale, fy=scale) if scale < 1 else image
        h, w = img.shape[:2]
        img_area = float(h * w)

        scored = []
        for contour in self._find_contours(img):
            pts, from_polygon = to_quad(contour)
            if pts is None:
                continue
            pts = order_pts(pts)

            area_frac = cv2.contourArea(pts) / img_area
            if area_frac < cfg.min_area_fraction or area_frac > cfg.max_area_fraction:
                continue

            angles = corner_angles(pts)
            if min(angles) < 45 or max(angles) > 135:
                continue

            quad = DetectedQuadrilateral(
                top_left=(float(pts[0][0] / w), float(pts[0][1] / h)),
                top_right=(float(pts[1][0] / w), float(pts[1][1] / h)),
                bottom_left=(float(pts[3][0] / w), float(pts[3][1] / h)),
                bottom_right=(float(pts[2][0] / w), float(pts[2][1] / h)),
            )

            # Measured on the full-resolution image, the same way the rectifier sizes its output
            aspect = quad.aspect_ratio(W, H)
            if not cfg.min_aspect_ratio <= aspect <= cfg.max_aspect_ratio:
                continue

            quad.confidence = self._score(pts, contour, area_frac, aspect, from_polygon)
            if quad.confidence < cfg.min_confidence:
                continue

            if any(self._same_quad(quad, other) for other in scored):
                continue
            scored.append(quad)

        scored.sort(key=lambda q: q.confidence, reverse=True)
        return scored[:cfg.max_candidates]

    def _find_contours(self, img: np.ndarray) -> List[np.ndarray]:
        """Outer contours from an edge map and from an Otsu mask."""
        cfg = self.config
        gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY) if img.ndim == 3 else img.copy()

        clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
        gray = clahe.apply(gray)
        gray = cv2.GaussianBlur(gray, (5, 5), 0)

        # Adaptive Canny thresholds from the median intensity
        v = float(np.median(gray))
        lower = int(max(0, cfg.canny_lo_mult * v))
        upper = int(min(255, max(lower + 1, cfg.canny_hi_mult * v)))
        edges = cv2.Canny(gray, lower, upper)
        if cfg.dilate_iter > 0:
            edges = cv2.dilate(edges, np.ones((3, 3), np.uint8), iterations=cfg.dilate_iter)

        _, mask = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        mask = cv2.morphologyEx(mask, cv2.MORPH_CLOSE, np.ones((5, 5), np.uint8))

        contours = []
        for source in (edges, mask):
            cnts, _ = cv2.findContours(source, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
            contours.extend(cnts)

        contours.sort(key=cv2.contourArea, reverse=True)
        return contours[:20]

    def _score(
        self,
        pts: np.ndarray,
        contour: np.ndarray,
        area_frac: float,
        aspect: float,
        from_polygon: bool
    ) -> float:
        """Blend of area, aspect, and rectangularity, in [0, 1]."""
        area_score = min(1.0, area_frac / 0.5)
        aspect_score = max(0.0, 1.0 - abs(aspect - TARGET_ASPECT) / 0.3)

        # How much of the fitted quad the contour actually fills
        quad_area = cv2.contourArea(pts)
        rectangularity = min(1.0, cv2.contourArea(contour) / quad_area) if quad_area > 0 else 0.0
        if not from_polygon:
            rectangularity *= 0.8

        return 0.45 * area_score + 0.35 * aspect_score + 0.2 * rectangularity

    @staticmethod
    def _same_quad(a: DetectedQuadrilateral, b: DetectedQuadrilateral, tol: float = 0.02) -> bool:
        corners_a = (a.top_left, a.top_right, a.bottom_left, a.bottom_right)
        corners_b = (b.top_left, b.top_right, b.bottom_left, b.bottom_right)
        return all(
            abs(pa[0] - pb[0]) < tol and abs(pa[1] - pb[1]) < tol
            for pa, pb in zip(corners_a, corners_b)
        )


Word = Tuple[BoundingBox, str, float, List[str]]


class LineGrouper:
    """Groups word-level OCR boxes into reading-order lines."""

    def __init__(self, min_height_px: int = 0):
        self.min_height_px = min_height_px

    def group(self, words: List[Word]) -> List[Tuple[BoundingBox, List[Word]]]:
        """
        Group word boxes into lines with column-aware splitting.

        Returns:
            List of (line_bbox, [word, ...]) sorted top-to-bottom, left-to-right
        """
        words = [w for w in words if w[1].strip() and w[0].height >= self.min_height_px]
        if not words:
            return []

        from sklearn.cluster import DBSCAN

        heights = [box.height for box, *_ in words]
        median_height = float(np.median(heights))

        # Cluster by y-center to find horizontal bands
        y_centers = np.array([[box.center_y] for box, *_ in words])
        y_eps = max(median_height * 0.6, 4.0)
        y_clustering = DBSCAN(eps=y_eps, min_samples=1).fit(y_centers)

        # Card text runs in short columns (left block, right block); split on big gaps
        max_word_gap = max(median_height * 2.5, 20.0)

        y_groups = {}
        for i, label in enumerate(y_clustering.labels_):
            y_groups.setdefault(label, []).append(words[i])

        final_lines = []
        for band in y_groups.values():
            band = sorted(band, key=lambda x: x[0].x)

            current_item = [band[0]]
            for i in range(1, len(band)):
                prev_box = band[i - 1][0]
                curr_box = band[i][0]
                gap = curr_box.x - (prev_box.x + prev_box.width)

                if gap > max_word_gap:
                    final_lines.append(current_item)
                    current_item = [band[i]]
                else:
                    current_item.append(band[i])
            final_lines.append(current_item)

        lines = []
        for items in final_lines:
            min_x = min(box.x for box, *_ in items)
            min_y = min(box.y for box, *_ in items)
            max_x = max(box.x + box.width for box, *_ in items)
            max_y = max(box.y + box.height for box, *_ in items)
            lines.append((BoundingBox(min_x, min_y, max_x - min_x, max_y - min_y), items))

        # Bucket y by line height so slightly offset columns read left-to-right
        bucket = max(median_height, 1.0)
        lines.sort(key=lambda x: (round(x[0].center_y / bucket), x[0].x))
        return lines
