"""
Rectify + crop API demo (synthetic dual-camera rig).

This script is meant to be:
- readable (commented),
- runnable without hardware (synthetic images and lens models).

It does:
1) build a Brown-Conrady lens per camera (slightly different per side),
2) render a checkerboard as the "raw" sensor image,
3) run the stereo pipeline over a few frames,
4) write orig/corr/crop images and print per-camera mapping stats.
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path

import numpy as np

from leaprectify.config import default_config
from leaprectify.core.calibration import BrownDistortion, BrownRayWarp, CameraCalibration, default_leap_parameters
from leaprectify.pipeline import ArrayFrameSource, StereoPipeline
from leaprectify.pipeline.sinks import ImageDirectorySink


RAW_W, RAW_H = 640, 240


def checkerboard(h: int, w: int, square: int, shift: int = 0) -> np.ndarray:
    yy, xx = np.meshgrid(np.arange(h), np.arange(w) + shift, indexing="ij")
    board = ((yy // square + xx // square) % 2).astype(np.uint8)
    return (board * 200 + 30).astype(np.uint8)


def lens(k1: float, cx_shift: float) -> CameraCalibration:
    # Slopes in [-4,4] land on the 640x240 sensor once divided by ~4.
    warp = BrownRayWarp(
        fx=RAW_W / 8.0,
        fy=RAW_H / 6.0,
        cx=RAW_W / 2.0 + cx_shift,
        cy=RAW_H / 2.0,
        distortion=BrownDistortion(k1=k1, k2=0.0005),
        max_slope=4.0,
    )
    return CameraCalibration(default_leap_parameters(), warp)


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--out", type=Path, default=Path("demo_images"))
    parser.add_argument("--frames", type=int, default=3)
    args = parser.parse_args()

    cfg = default_config()
    calibrations = {"left": lens(-0.02, -6.0), "right": lens(-0.025, 6.0)}
    sink = ImageDirectorySink(args.out, image_format="png")
    pipeline = StereoPipeline(cfg, calibrations, sinks=[sink])

    pairs = [
        (checkerboard(RAW_H, RAW_W, 20, shift=4 * i), checkerboard(RAW_H, RAW_W, 20, shift=4 * i + 9))
        for i in range(args.frames)
    ]
    summary = pipeline.run(ArrayFrameSource(pairs))
    sink.close()

    stats = {}
    for cam, cp in pipeline.cameras.items():
        s = cp.rectifier.last_stats
        stats[cam] = {"mapped": s.mapped, "out_of_frustum": s.out_of_frustum, "non_finite": s.non_finite}
    print(json.dumps({"processed": summary.processed, "stats": stats}, indent=2, sort_keys=True))
    print(f"Wrote images to {args.out}")


if __name__ == "__main__":
    main()
