from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from leaprectify.calibration_io import load_calibration, warp_to_dict
from leaprectify.config import CAMERAS, config_to_dict, default_config, load_config
from leaprectify.pipeline.frames import DirectoryFrameSource
from leaprectify.pipeline.orchestrator import CancellationToken, StereoPipeline
from leaprectify.pipeline.sinks import DisplaySink, ImageDirectorySink, QueuedSink

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root = logging.getLogger("leaprectify")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper()))


def run_rectify(args: argparse.Namespace) -> int:
    cfg = load_config(args.config) if args.config else default_config()
    calibrations = load_calibration(args.calibration)
    out_dir = args.out if args.out is not None else cfg.output.dir
    image_format = args.image_format or cfg.output.image_format

    pipeline = StereoPipeline(cfg, calibrations)
    source = DirectoryFrameSource(args.frames_dir)

    token = CancellationToken()
    sinks = [QueuedSink(ImageDirectorySink(out_dir, image_format=image_format, jpeg_quality=cfg.output.jpeg_quality))]
    if args.display:
        sinks.append(DisplaySink(token))
    pipeline.sinks.extend(sinks)
    try:
        summary = pipeline.run(source, token=token, max_frames=args.max_frames)
    except KeyboardInterrupt:
        token.cancel()
        raise
    finally:
        for sink in sinks:
            sink.close()

    print(f"Processed {summary.processed} frame pairs ({summary.skipped} skipped) -> {out_dir}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="leaprectify")
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    rect = sub.add_parser("rectify", help="Rectify and crop a directory of recorded left/right frames.")
    rect.add_argument("frames_dir", type=Path, help="Directory with frames.jsonl, left/ and right/.")
    rect.add_argument("--calibration", type=Path, required=True, help="Calibration JSON (leaprectify.calibration.v0).")
    rect.add_argument("--config", type=Path, default=None, help="Rig config JSON (leaprectify.config.v0).")
    rect.add_argument("--out", type=Path, default=None, help="Output directory (overrides config output.dir).")
    rect.add_argument("--image-format", type=str, default=None, choices=["png", "jpg", "webp"])
    rect.add_argument("--display", action="store_true", help="Show cropped images; ESC stops.")
    rect.add_argument("--max-frames", type=int, default=0, help="Limit processed frames (0=all).")

    chk = sub.add_parser("check-config", help="Validate a rig config (ROIs against the rectified size).")
    chk.add_argument("config", type=Path)

    init = sub.add_parser("init-config", help="Write the default rig config.")
    init.add_argument("out", type=Path)

    show = sub.add_parser("show-calibration", help="Print a calibration file in normalized form.")
    show.add_argument("calibration", type=Path)

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    if args.cmd == "rectify":
        return run_rectify(args)

    if args.cmd == "check-config":
        cfg = load_config(args.config)
        print(json.dumps(config_to_dict(cfg), indent=2, sort_keys=True))
        return 0

    if args.cmd == "init-config":
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_text(json.dumps(config_to_dict(default_config()), indent=2, sort_keys=True), encoding="utf-8")
        print(f"Wrote {args.out}")
        return 0

    if args.cmd == "show-calibration":
        cals = load_calibration(args.calibration)
        out = {
            cam: {
                "ray_offset": list(cals[cam].ray_offset),
                "ray_scale": list(cals[cam].ray_scale),
                "warp": warp_to_dict(cals[cam].warp),
            }
            for cam in CAMERAS
        }
        print(json.dumps(out, indent=2, sort_keys=True))
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
