"""
Utility functions and data classes for the card scanner.

Contains shared data structures, image loading, and result persistence helpers.
"""

import io
import json
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import ImageInvalid


Point = Tuple[float, float]


# =============================================================================
# Geometry
# =============================================================================

@dataclass
class BoundingBox:
    """Pixel-space box for a detected word or line."""
    x: int
    y: int
    width: int
    height: int

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    @classmethod
    def from_polygon(cls, polygon) -> "BoundingBox":
        pts = np.array(polygon, dtype=float)
        x = int(pts[:, 0].min())
        y = int(pts[:, 1].min())
        return cls(x, y, int(pts[:, 0].max() - x), int(pts[:, 1].max() - y))

    def normalized(self, image_width: int, image_height: int) -> "NormalizedBox":
        return NormalizedBox(
            x=self.x / image_width,
            y=self.y / image_height,
            width=self.width / image_width,
            height=self.height / image_height,
        )


@dataclass
class NormalizedBox:
    """Box in the unit square of the image fed to OCR. Origin is top-left."""
    x: float
    y: float
    width: float
    height: float

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    def intersects_band(self, y_min: float, y_max: float) -> bool:
        """True when the box overlaps the horizontal band [y_min, y_max]."""
        return self.y < y_max and self.y + self.height > y_min


@dataclass
class DetectedQuadrilateral:
    """Card boundary in normalized [0,1] coordinates, top-left origin."""
    top_left: Point
    top_right: Point
    bottom_left: Point
    bottom_right: Point
    confidence: float = 0.0

    def to_pixels(self, width: int, height: int) -> np.ndarray:
        """Corners as a float32 array in TL, TR, BR, BL order."""
        return np.array([
            (self.top_left[0] * width, self.top_left[1] * height),
            (self.top_right[0] * width, self.top_right[1] * height),
            (self.bottom_right[0] * width, self.bottom_right[1] * height),
            (self.bottom_left[0] * width, self.bottom_left[1] * height),
        ], dtype="float32")

    def aspect_ratio(self, width: int, height: int) -> float:
        """Short / long edge ratio of the warped card, measured in pixels."""
        out_w, out_h = rectified_size(self.to_pixels(width, height))
        if max(out_w, out_h) == 0:
            return 0.0
        return min(out_w, out_h) / max(out_w, out_h)


def rectified_size(pts: np.ndarray) -> Tuple[int, int]:
    """Output (width, height) for a TL, TR, BR, BL quad: longest opposite edges."""
    tl, tr, br, bl = pts
    width_a = np.linalg.norm(br - bl)
    width_b = np.linalg.norm(tr - tl)
    height_a = np.linalg.norm(tr - br)
    height_b = np.linalg.norm(tl - bl)
    return int(round(max(width_a, width_b))), int(round(max(height_a, height_b)))


# =============================================================================
# Recognition Results
# =============================================================================

@dataclass
class RecognizedTextBlock:
    """One recognized line of text."""
    text: str
    confidence: float
    bbox: NormalizedBox
    candidates: List[str] = field(default_factory=list)


@dataclass
class RecognitionResult:
    """Output of a single recognizer run."""
    full_text: str
    blocks: List[RecognizedTextBlock] = field(default_factory=list)
    confidence: float = 0.0
    processing_time: float = 0.0

    @classmethod
    def from_blocks(
        cls,
        blocks: List[RecognizedTextBlock],
        processing_time: float = 0.0
    ) -> "RecognitionResult":
        confidence = float(np.mean([b.confidence for b in blocks])) if blocks else 0.0
        return cls(
            full_text="\n".join(b.text for b in blocks),
            blocks=blocks,
            confidence=confidence,
            processing_time=processing_time,
        )


# =============================================================================
# Contact Record
# =============================================================================

# Scored fields, in display order
CONTACT_FIELDS = (
    "name", "job_title", "company", "email",
    "phone", "mobile", "address", "website",
)


@dataclass
class ParsedContactRecord:
    """Extracted contact fields. Any field may be None."""
    name: Optional[str] = None
    job_title: Optional[str] = None
    company: Optional[str] = None
    department: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    fax: Optional[str] = None
    address: Optional[str] = None
    website: Optional[str] = None
    confidence: float = 0.0
    source: str = "heuristic"  # "heuristic" or "ai"

    def filled_fields(self) -> List[str]:
        return [name for name in CONTACT_FIELDS if (getattr(self, name) or "").strip()]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# Pipeline Outcome
# =============================================================================

class PipelineState(Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    RECTIFYING = "rectifying"
    RECOGNIZING = "recognizing"
    EXTRACTING = "extracting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class Success:
    record: ParsedContactRecord
    rectified_image: np.ndarray
    recognition: Optional[RecognitionResult] = None
    states: List[PipelineState] = field(default_factory=list)


@dataclass
class RecognitionFailed:
    original_image: np.ndarray
    reason: str = ""
    states: List[PipelineState] = field(default_factory=list)


@dataclass
class Error:
    reason: str
    states: List[PipelineState] = field(default_factory=list)


ProcessingOutcome = Union[Success, RecognitionFailed, Error]


# =============================================================================
# Image I/O
# =============================================================================

def pil_to_bgr(pil_img: Image.Image) -> np.ndarray:
    rgb = np.array(pil_img.convert("RGB"))
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)


ImageSource = Union[str, Path, bytes, np.ndarray]


def load_image(source: ImageSource) -> np.ndarray:
    """
    Decode an image into an upright BGR array.

    EXIF orientation is applied here so the recognizer never sees a
    rotated card.

    Raises:
        ImageInvalid: if the source cannot be decoded
    """
    if isinstance(source, np.ndarray):
        if source.size == 0 or source.ndim not in (2, 3):
            raise ImageInvalid("empty or malformed image array")
        if source.ndim == 2:
            return cv2.cvtColor(source, cv2.COLOR_GRAY2BGR)
        return source

    try:
        if isinstance(source, (bytes, bytearray)):
            pil_img = Image.open(io.BytesIO(source))
        else:
            pil_img = Image.open(str(source))
        pil_img = ImageOps.exif_transpose(pil_img)
        image = pil_to_bgr(pil_img)
    except (OSError, UnidentifiedImageError, ValueError) as e:
        raise ImageInvalid(f"could not decode image: {e}") from e

    if image.size == 0:
        raise ImageInvalid("decoded image is empty")
    return image


def encode_jpeg(image: np.ndarray, quality: int = 90) -> bytes:
    ok, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return buffer.tobytes()


def list_images(folder: Union[str, Path]) -> List[Path]:
    """Sorted image files in a folder."""
    image_extensions = {'.jpg', '.jpeg', '.png', '.bmp', '.tiff', '.webp', '.heic'}
    return sorted(
        f for f in Path(folder).iterdir()
        if f.suffix.lower() in image_extensions
    )


# =============================================================================
# Persistence Payload
# =============================================================================

def build_contact_payload(outcome: ProcessingOutcome, jpeg_quality: int = 90) -> Optional[Dict[str, Any]]:
    """
    Map a successful outcome onto the record shape the contact store accepts.

    Returns None for failed outcomes; those go to manual entry instead.
    """
    if not isinstance(outcome, Success):
        return None

    record = outcome.record
    return {
        "name": record.name,
        "jobTitle": record.job_title,
        "company": record.company,
        "email": record.email,
        "phone": record.phone,
        "mobile": record.mobile,
        "address": record.address,
        "website": record.website,
        "photo": encode_jpeg(outcome.rectified_image, jpeg_quality),
        "rawOCRText": outcome.recognition.full_text if outcome.recognition else "",
        "parseSource": record.source,
        "confidence": round(record.confidence, 4),
    }


def save_outcome_json(outcome: ProcessingOutcome, out_path: Path, image_name: str) -> Path:
    """Save an outcome to JSON. The card photo goes to a sibling .jpg."""
    out_path = Path(out_path)
    out_path.mkdir(parents=True, exist_ok=True)
    json_path = out_path / f"{image_name}_result.json"

    states = [s.value for s in outcome.states]
    payload = build_contact_payload(outcome)
    if payload is not None:
        photo_path = out_path / f"{image_name}_card.jpg"
        photo_path.write_bytes(payload.pop("photo"))
        result = {"status": "success", "photo": photo_path.name, **payload}
    elif isinstance(outcome, RecognitionFailed):
        result = {"status": "recognition_failed", "reason": outcome.reason}
    else:
        result = {"status": "error", "reason": outcome.reason}
    result["states"] = states

    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(result, f, indent=2, ensure_ascii=False)
    return json_path


def draw_annotations(
    image: np.ndarray,
    blocks: List[RecognizedTextBlock],
    quad: Optional[DetectedQuadrilateral] = None
) -> np.ndarray:
    """Draw block boxes, confidences, and the detected card outline."""
    annotated = image.copy()
    h, w = annotated.shape[:2]

    if quad is not None:
        pts = quad.to_pixels(w, h).astype(np.int32).reshape(-1, 1, 2)
        cv2.polylines(annotated, [pts], True, (0, 0, 255), 3)

    for i, block in enumerate(blocks):
        x1 = int(block.bbox.x * w)
        y1 = int(block.bbox.y * h)
        x2 = int((block.bbox.x + block.bbox.width) * w)
        y2 = int((block.bbox.y + block.bbox.height) * h)

        cv2.rectangle(annotated, (x1, y1), (x2, y2), (0, 255, 0), 2)

        # cv2 cannot render CJK glyphs, so label by index
        cv2.putText(
            annotated, f"B{i} {block.confidence:.2f}",
            (x1, max(0, y1 - 5)),
            cv2.FONT_HERSHEY_SIMPLEX, 0.4,
            (255, 255, 0), 1
        )

    return annotated
