from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any

from leaprectify.config import CAMERAS, ConfigValidationError
from leaprectify.core.calibration import (
    BrownRayWarp,
    CalibrationParameters,
    CameraCalibration,
    ConstantWarp,
    ScaledIdentityWarp,
    brown_from_dict,
    brown_to_dict,
)

SCHEMA_VERSION = "leaprectify.calibration.v0"


def _pair(d: dict[str, Any], key: str, default: tuple[float, float]) -> tuple[float, float]:
    raw = d.get(key, list(default))
    if not (isinstance(raw, (list, tuple)) and len(raw) == 2):
        raise ConfigValidationError(f"{key} must be [x,y]")
    x, y = float(raw[0]), float(raw[1])
    if not (math.isfinite(x) and math.isfinite(y)):
        raise ConfigValidationError(f"{key} must be finite")
    return x, y


def warp_from_dict(d: dict[str, Any]):
    model = str(d.get("model", ""))
    if model == "identity":
        return ScaledIdentityWarp(raw_width=int(d["raw_width_px"]), raw_height=int(d["raw_height_px"]))
    if model == "constant":
        return ConstantWarp(px=float(d["px"]), py=float(d["py"]))
    if model == "brown":
        max_slope = d.get("max_slope")
        return BrownRayWarp(
            fx=float(d["fx"]),
            fy=float(d["fy"]),
            cx=float(d["cx"]),
            cy=float(d["cy"]),
            distortion=brown_from_dict(d.get("distortion", {})),
            max_slope=None if max_slope is None else float(max_slope),
        )
    raise ConfigValidationError(f"unsupported warp model: {model!r}")


def warp_to_dict(warp) -> dict[str, Any]:
    if isinstance(warp, ScaledIdentityWarp):
        return {"model": "identity", "raw_width_px": warp.raw_width, "raw_height_px": warp.raw_height}
    if isinstance(warp, ConstantWarp):
        return {"model": "constant", "px": warp.px, "py": warp.py}
    if isinstance(warp, BrownRayWarp):
        return {
            "model": "brown",
            "fx": warp.fx,
            "fy": warp.fy,
            "cx": warp.cx,
            "cy": warp.cy,
            "distortion": brown_to_dict(warp.distortion),
            "max_slope": warp.max_slope,
        }
    raise ConfigValidationError(f"warp {type(warp).__name__} cannot be serialized")


def parse_calibration(data: dict[str, Any]) -> dict[str, CameraCalibration]:
    if not isinstance(data, dict) or data.get("schema_version") != SCHEMA_VERSION:
        raise ConfigValidationError(f"schema_version must be {SCHEMA_VERSION}")
    cameras = data.get("cameras")
    if not isinstance(cameras, dict):
        raise ConfigValidationError("cameras must be an object")

    out: dict[str, CameraCalibration] = {}
    for cam in CAMERAS:
        cam_data = cameras.get(cam)
        if not isinstance(cam_data, dict):
            raise ConfigValidationError(f"cameras.{cam} is required")
        ox, oy = _pair(cam_data, "ray_offset", (0.0, 0.0))
        sx, sy = _pair(cam_data, "ray_scale", (1.0, 1.0))
        warp_data = cam_data.get("warp")
        if not isinstance(warp_data, dict):
            raise ConfigValidationError(f"cameras.{cam}.warp is required")
        try:
            warp = warp_from_dict(warp_data)
        except (KeyError, TypeError) as e:
            raise ConfigValidationError(f"cameras.{cam}.warp invalid: {e}") from e
        out[cam] = CameraCalibration(
            parameters=CalibrationParameters(offset_x=ox, offset_y=oy, scale_x=sx, scale_y=sy),
            warp=warp,
        )
    return out


def load_calibration(path: Path) -> dict[str, CameraCalibration]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_calibration(data)


def save_calibration(path: Path, calibrations: dict[str, CameraCalibration]) -> Path:
    """
    Save left/right calibrations as a single JSON file.

    Only the warp models of this package are serializable; device-backed warps
    (PointwiseWarp) live in memory only.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    cameras: dict[str, Any] = {}
    for cam in CAMERAS:
        c = calibrations[cam]
        cameras[cam] = {
            "ray_offset": [c.parameters.offset_x, c.parameters.offset_y],
            "ray_scale": [c.parameters.scale_x, c.parameters.scale_y],
            "warp": warp_to_dict(c.warp),
        }
    meta = {"schema_version": SCHEMA_VERSION, "cameras": cameras}
    path.write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")
    return path
