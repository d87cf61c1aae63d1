from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import cv2
import numpy as np

from cardbooth.core.capture.burst import BurstCapture
from cardbooth.core.compositing.card import compose
from cardbooth.core.pipeline import PreviewPipeline
from cardbooth.core.segmentation.yolo_seg import YoloSegmentationEngine
from cardbooth.core.templates import get_template
from cardbooth.core.types import Frame, LiveConfig, ProbabilisticSegmentation, ProbabilityMask, SegmentationMode


class _EllipseSegmenter:
    """Stand-in segmenter: a centred soft ellipse, no model download."""

    def segment(self, frame: Frame, mode: SegmentationMode):
        h, w = frame.height, frame.width
        mask = np.zeros((h, w), dtype=np.float32)
        cv2.ellipse(mask, (w // 2, h // 2), (w // 4, int(h * 0.4)), 0, 0, 360, 1.0, -1)
        mask = cv2.GaussianBlur(mask, (31, 31), 0)
        return ProbabilisticSegmentation(mask=ProbabilityMask(mask), mode=mode)


def run(args) -> int:
    cap = cv2.VideoCapture(args.input)
    if not cap.isOpened():
        raise SystemExit(f"Cannot open video {args.input}")
    fps_src = float(cap.get(cv2.CAP_PROP_FPS) or 30.0)

    engine = _EllipseSegmenter() if args.mock else YoloSegmentationEngine(imgsz=args.inference_width)
    pipeline = PreviewPipeline(engine)
    config = LiveConfig(mode=SegmentationMode(args.mode), threshold=args.threshold)

    def _read() -> Frame | None:
        ok, image = cap.read()
        if not ok:
            return None
        pos_ms = float(cap.get(cv2.CAP_PROP_POS_MSEC) or 0.0)
        return Frame(image=image, timestamp=pos_ms / 1000.0)

    # Preview pass: stop at the requested frame (or EOF) and keep the last frame in hand.
    latest: Frame | None = None
    previews = 0
    detected = 0
    while args.max_frames <= 0 or previews < args.max_frames:
        frame = _read()
        if frame is None:
            break
        latest = frame
        result = pipeline.process(frame, config)
        previews += 1
        detected += int(result.cutout is not None)

    handed_over = {"first": latest}

    def _provider() -> Frame | None:
        if handed_over["first"] is not None:
            frame, handed_over["first"] = handed_over["first"], None
            return frame
        # Skip ahead by the inter-attempt delay instead of sleeping.
        for _ in range(max(0, int(round(args.delay_ms / 1000.0 * fps_src)) - 1)):
            if not cap.grab():
                return None
        return _read()

    burst = BurstCapture(
        engine,
        frame_provider=_provider,
        mode_provider=lambda: config.mode,
        threshold_provider=lambda: config.threshold,
        sleep=lambda _s: None,
    )
    outcome = burst.capture_best(args.attempts, args.delay_ms / 1000.0)
    cap.release()

    summary = {
        "preview_frames": previews,
        "preview_frames_with_subject": detected,
        "attempts_run": outcome.attempts_run,
        "skipped": outcome.skipped,
        "score": outcome.best.score if outcome.best else None,
    }
    if outcome.best is None:
        print(json.dumps(summary, indent=2))
        print("Capture failed: no subject found")
        return 1

    card = compose(outcome.best.cutout, get_template(args.template), args.label)
    if card is None:
        print("Compose failed: empty cutout")
        return 1
    out_path = Path(args.output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    cv2.imwrite(str(out_path), card.image)
    if args.cutout:
        cv2.imwrite(str(args.cutout), outcome.best.cutout.rgba)
    summary["card"] = str(out_path)
    print(json.dumps(summary, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Capture the best cutout from a video and render a card")
    parser.add_argument("--input", required=True, help="Path to video file")
    parser.add_argument("--output", required=True, help="Where to save the card PNG")
    parser.add_argument("--label", default="", help="Name printed on the card")
    parser.add_argument("--template", type=int, default=0, help="Template id")
    parser.add_argument(
        "--mode",
        default=SegmentationMode.PERSON_BALANCED.value,
        choices=[m.value for m in SegmentationMode],
    )
    parser.add_argument("--threshold", type=float, default=0.8)
    parser.add_argument("--attempts", type=int, default=3)
    parser.add_argument("--delay-ms", type=float, default=150.0)
    parser.add_argument("--inference-width", type=int, default=None)
    parser.add_argument("--max-frames", type=int, default=30, help="Preview frames before capturing (0 = all)")
    parser.add_argument("--cutout", default=None, help="Optional path for the captured cutout PNG")
    parser.add_argument("--mock", action="store_true", help="Use a synthetic segmenter (no model download)")
    return parser


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    raise SystemExit(run(build_parser().parse_args()))
