#!/usr/bin/env python3
"""
Business card scanner command line.

Reads a card photo (or a folder of them), runs the scanning pipeline and
writes one JSON result per image plus the cropped card photo.
"""

import argparse
import logging
import sys
from pathlib import Path

import cv2
from tqdm import tqdm

from .ai_enhancement import create_enhancer
from .core.config import PipelineConfig
from .core.pipeline import PipelineOrchestrator
from .core.utils import (
    RecognitionFailed, Success, draw_annotations, list_images, save_outcome_json,
)


def print_outcome(name: str, outcome):
    print("\n" + "=" * 60)
    print(f"CARD: {name}")
    print("=" * 60)
    if isinstance(outcome, Success):
        record = outcome.record
        for label, value in (
            ("Name", record.name),
            ("Title", record.job_title),
            ("Company", record.company),
            ("Department", record.department),
            ("Email", record.email),
            ("Phone", record.phone),
            ("Mobile", record.mobile),
            ("Fax", record.fax),
            ("Address", record.address),
            ("Website", record.website),
        ):
            if value:
                print(f"{label:<11} {value}")
        print("-" * 60)
        print(f"Source: {record.source}  Confidence: {record.confidence:.2f}")
    elif isinstance(outcome, RecognitionFailed):
        print(f"No text recognized ({outcome.reason}), enter manually")
    else:
        print(f"Error: {outcome.reason}")
    print("=" * 60)


def build_config(args) -> PipelineConfig:
    """Environment first, then command line flags."""
    config = PipelineConfig.from_env()
    if args.engine:
        config.recognizer.engine = args.engine
    if args.lang:
        config.recognizer.languages = [
            [lang for lang in group.split("+") if lang]
            for group in args.lang.split(",")
            if group.strip()
        ]
    if args.ai:
        config.ai.provider = args.ai
    if args.model:
        config.ai.model = args.model
    if args.timeout is not None:
        config.ai_timeout = args.timeout
    if args.send_image:
        config.ai.send_image = True
    config.ai_enabled = config.ai.provider != "none"
    return config


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Business card scanner: photo in, contact record out",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scan one card with EasyOCR
  card-scanner --input card.jpg --out_dir out

  # Scan a folder of cards with Tesseract
  card-scanner --input cards/ --out_dir out --engine tesseract

  # Let an OpenAI model refine the fields (needs OPENAI_API_KEY)
  card-scanner --input card.jpg --ai openai --timeout 20

  # Use a local Ollama model and send it the card photo
  card-scanner --input card.jpg --ai ollama --model llava:7b --send_image
        """
    )

    parser.add_argument(
        "--input", "-i", required=True,
        help="Path to a card photo or a folder of photos"
    )
    parser.add_argument(
        "--out_dir", "-o", default="out",
        help="Output directory (default: out)"
    )
    parser.add_argument(
        "--engine", "-e", choices=["easyocr", "tesseract", "paddle"], default=None,
        help="OCR engine (default: easyocr, or CARD_SCANNER_ENGINE)"
    )
    parser.add_argument(
        "--lang", "-l", default=None,
        help="Language sets in priority order, e.g. 'ch_tra+en,en'"
    )
    parser.add_argument(
        "--ai", choices=["none", "openai", "ollama", "mock"], default=None,
        help="AI enhancement provider (default: none, or CARD_SCANNER_AI_PROVIDER)"
    )
    parser.add_argument(
        "--model", default=None,
        help="AI model name (default: gpt-4.1-nano for openai, llava:7b for ollama)"
    )
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="Seconds to wait for the AI before keeping the heuristic result (default: 20)"
    )
    parser.add_argument(
        "--send_image", action="store_true",
        help="Send the cropped card photo to the AI along with the text"
    )
    parser.add_argument(
        "--annotate", action="store_true",
        help="Also save the card photo with recognized blocks drawn on it"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Verbose output"
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    input_path = Path(args.input)
    if input_path.is_dir():
        images = list_images(input_path)
        if not images:
            print(f"Error: No images found in {args.input}")
            return 1
    elif input_path.is_file():
        images = [input_path]
    else:
        print(f"Error: Input path does not exist: {args.input}")
        return 1

    config = build_config(args)
    enhancer = None
    if config.ai_enabled:
        enhancer = create_enhancer(config.ai.provider, config.ai, timeout=config.ai_timeout)

    print(f"[Card Scanner] Input: {args.input}")
    print(f"[Card Scanner] Output: {args.out_dir}")
    print(f"[Card Scanner] Engine: {config.recognizer.engine}")
    print(f"[Card Scanner] AI: {config.ai.provider if enhancer else 'none'}")
    print()

    out_path = Path(args.out_dir)
    pipeline = PipelineOrchestrator(config=config, enhancer=enhancer)
    succeeded = 0
    try:
        iterator = tqdm(images, desc="Scanning cards") if len(images) > 1 else images
        for image_path in iterator:
            outcome = pipeline.process_sync(str(image_path))
            save_outcome_json(outcome, out_path, image_path.stem)

            if isinstance(outcome, Success):
                succeeded += 1
                if args.annotate and outcome.recognition is not None:
                    annotated = draw_annotations(outcome.rectified_image, outcome.recognition.blocks)
                    cv2.imwrite(str(out_path / f"{image_path.stem}_annotated.jpg"), annotated)

            print_outcome(image_path.name, outcome)
    finally:
        pipeline.close()

    if len(images) > 1:
        print(f"\nCards scanned: {succeeded}/{len(images)}")
    return 0 if succeeded else 2


if __name__ == "__main__":
    sys.exit(main())
