from __future__ import annotations

import argparse
import json
import time

import cv2
import numpy as np

from cardbooth.core.compositing.preview import FrameRateMeter
from cardbooth.core.pipeline import PreviewPipeline
from cardbooth.core.segmentation.yolo_seg import YoloSegmentationEngine
from cardbooth.core.types import Frame, LiveConfig, SegmentationMode


def generate_synthetic_frame(width: int, height: int, rng: np.random.Generator) -> np.ndarray:
    """Noise background with a bright upright blob roughly where a sitter would be."""

    frame = rng.integers(0, 80, size=(height, width, 3), dtype=np.uint8)
    cx = int(width * rng.uniform(0.4, 0.6))
    cv2.ellipse(frame, (cx, height // 2), (width // 8, height // 3), 0, 0, 360, (200, 180, 160), -1)
    cv2.circle(frame, (cx, height // 6), width // 14, (190, 170, 150), -1)
    return frame


def _load_frames(path: str | None, count: int, resolution: tuple[int, int]) -> list[Frame]:
    frames: list[Frame] = []
    if path:
        cap = cv2.VideoCapture(path)
        if not cap.isOpened():
            raise SystemExit(f"Cannot open video {path}")
        while len(frames) < count:
            ok, image = cap.read()
            if not ok:
                break
            frames.append(Frame(image=image, timestamp=time.perf_counter()))
        cap.release()
    else:
        rng = np.random.default_rng(0)
        for _ in range(count):
            frames.append(Frame(image=generate_synthetic_frame(*resolution, rng), timestamp=time.perf_counter()))
    if not frames:
        raise SystemExit("No frames to benchmark")
    return frames


def run_benchmark(
    engine: YoloSegmentationEngine,
    mode: SegmentationMode,
    frames: list[Frame],
    threshold: float = 0.8,
    warmup: int = 3,
) -> dict:
    pipeline = PreviewPipeline(engine)
    config = LiveConfig(mode=mode, threshold=threshold)
    for frame in frames[:warmup]:
        pipeline.process(frame, config)

    meter = FrameRateMeter()
    latencies = []
    detected = 0
    start = time.perf_counter()
    for frame in frames:
        t0 = time.perf_counter()
        result = pipeline.process(frame, config)
        latencies.append((time.perf_counter() - t0) * 1000.0)
        meter.tick()
        detected += int(result.cutout is not None)
    total = time.perf_counter() - start

    lat = np.array(latencies)
    return {
        "mode": mode.value,
        "model": engine.model_names[mode],
        "frames": len(frames),
        "fps": float(len(frames) / total) if total > 0 else 0.0,
        "meter_fps": meter.fps,
        "latency_avg_ms": float(lat.mean()),
        "latency_p95_ms": float(np.percentile(lat, 95)),
        "subject_rate": detected / float(len(frames)),
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark segmentation modes")
    parser.add_argument("--input", default=None, help="Optional video file (synthetic frames otherwise)")
    parser.add_argument("--frames", type=int, default=60)
    parser.add_argument("--width", type=int, default=1280)
    parser.add_argument("--height", type=int, default=720)
    parser.add_argument("--inference-width", type=int, default=None)
    parser.add_argument(
        "--modes",
        nargs="*",
        default=[m.value for m in SegmentationMode],
        choices=[m.value for m in SegmentationMode],
    )
    parser.add_argument("--output", default=None, help="Optional JSON results path")
    args = parser.parse_args()

    frames = _load_frames(args.input, args.frames, (args.width, args.height))
    engine = YoloSegmentationEngine(imgsz=args.inference_width)
    results = []
    for mode_s in args.modes:
        res = run_benchmark(engine, SegmentationMode(mode_s), frames)
        print(
            f"{res['mode']:<26} {res['fps']:6.1f} fps  avg {res['latency_avg_ms']:7.1f} ms  "
            f"p95 {res['latency_p95_ms']:7.1f} ms  subject {res['subject_rate']:.0%}"
        )
        results.append(res)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(results, f, indent=2)
        print(f"Saved results to {args.output}")


if __name__ == "__main__":
    main()
