from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from leaprectify.core.crop import Roi, validate_roi
from leaprectify.core.image_io import IMAGE_FORMATS
from leaprectify.core.rectify import DEFAULT_HEIGHT, DEFAULT_WIDTH

SCHEMA_VERSION = "leaprectify.config.v0"
CAMERAS = ("left", "right")

DEFAULT_ROIS = {
    "left": Roi(x=100, y=185, width=402, height=273),
    "right": Roi(x=110, y=184, width=402, height=273),
}


class ConfigValidationError(ValueError):
    pass


@dataclass(frozen=True)
class OutputConfig:
    dir: Path = Path("images")
    image_format: str = "jpg"
    jpeg_quality: int = 95


@dataclass(frozen=True)
class RectifierConfig:
    width_px: int = DEFAULT_WIDTH
    height_px: int = DEFAULT_HEIGHT
    rois: dict[str, Roi] = field(default_factory=lambda: dict(DEFAULT_ROIS))
    output: OutputConfig = OutputConfig()

    def roi(self, camera: str) -> Roi:
        return self.rois[camera]


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


def default_config() -> RectifierConfig:
    return parse_config({"schema_version": SCHEMA_VERSION})


def load_config(path: Path) -> RectifierConfig:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_config(data)


def parse_config(data: dict[str, Any]) -> RectifierConfig:
    """
    Parse and validate a rig configuration.

    ROIs are checked against the rectified size here; an ROI outside the image
    raises MisconfiguredRoiError so nothing downstream ever sees it.
    """
    _require(isinstance(data, dict), "config must be a JSON object")
    schema_version = data.get("schema_version")
    _require(schema_version == SCHEMA_VERSION, f"schema_version must be {SCHEMA_VERSION}")

    rectified = data.get("rectified", {})
    roi_data = data.get("roi", {})
    output = data.get("output", {})
    _require(isinstance(rectified, dict), "rectified must be an object")
    _require(isinstance(roi_data, dict), "roi must be an object")
    _require(isinstance(output, dict), "output must be an object")

    w = int(rectified.get("width_px", DEFAULT_WIDTH))
    h = int(rectified.get("height_px", DEFAULT_HEIGHT))
    _require(w > 0 and h > 0, "rectified.width_px and rectified.height_px must be > 0")

    unknown = set(roi_data) - set(CAMERAS)
    _require(not unknown, f"roi has unknown cameras: {sorted(unknown)}")

    rois: dict[str, Roi] = {}
    for cam in CAMERAS:
        raw = roi_data.get(cam)
        if raw is None:
            rois[cam] = DEFAULT_ROIS[cam]
            continue
        _require(isinstance(raw, (list, tuple)) and len(raw) == 4, f"roi.{cam} must be [x,y,w,h]")
        rois[cam] = Roi.from_xywh(raw)

    for cam in CAMERAS:
        validate_roi(rois[cam], w, h)

    fmt = str(output.get("image_format", "jpg")).lower()
    if fmt == "jpeg":
        fmt = "jpg"
    _require(fmt in IMAGE_FORMATS, "output.image_format must be png|jpg|webp")
    quality = int(output.get("jpeg_quality", 95))
    _require(0 <= quality <= 100, "output.jpeg_quality must be in [0,100]")

    return RectifierConfig(
        width_px=w,
        height_px=h,
        rois=rois,
        output=OutputConfig(dir=Path(str(output.get("dir", "images"))), image_format=fmt, jpeg_quality=quality),
    )


def config_to_dict(cfg: RectifierConfig) -> dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "rectified": {"width_px": cfg.width_px, "height_px": cfg.height_px},
        "roi": {cam: list(cfg.rois[cam].as_xywh()) for cam in CAMERAS},
        "output": {
            "dir": str(cfg.output.dir),
            "image_format": cfg.output.image_format,
            "jpeg_quality": cfg.output.jpeg_quality,
        },
    }
