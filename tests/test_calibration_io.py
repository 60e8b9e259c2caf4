from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from leaprectify.calibration_io import SCHEMA_VERSION, load_calibration, parse_calibration, save_calibration
from leaprectify.config import ConfigValidationError
from leaprectify.core.calibration import (
    BrownDistortion,
    BrownRayWarp,
    CalibrationParameters,
    CameraCalibration,
    PointwiseWarp,
    ScaledIdentityWarp,
    default_leap_parameters,
)
from leaprectify.core.rectify import rectify


def _cals() -> dict[str, CameraCalibration]:
    return {
        "left": CameraCalibration(default_leap_parameters(), ScaledIdentityWarp(640, 240)),
        "right": CameraCalibration(
            CalibrationParameters(offset_x=0.49, offset_y=0.51, scale_x=0.126, scale_y=0.124),
            BrownRayWarp(
                fx=80.0,
                fy=60.0,
                cx=320.0,
                cy=120.0,
                distortion=BrownDistortion(k1=-0.1, p2=0.003),
                max_slope=4.0,
            ),
        ),
    }


def test_save_load_preserves_rectification(tmp_path: Path) -> None:
    cals = _cals()
    p = save_calibration(tmp_path / "cal" / "calibration.json", cals)
    loaded = load_calibration(p)
    assert loaded["right"].parameters == cals["right"].parameters
    assert loaded["right"].warp == cals["right"].warp

    raw = (np.arange(240 * 640) % 253).astype(np.uint8).reshape(240, 640)
    for cam in ("left", "right"):
        a = rectify(raw, cals[cam], width=32, height=32)
        b = rectify(raw, loaded[cam], width=32, height=32)
        assert a.tobytes() == b.tobytes()


def test_pointwise_warp_is_not_serializable(tmp_path: Path) -> None:
    cals = _cals()
    cals["left"] = CameraCalibration(CalibrationParameters(), PointwiseWarp(lambda rx, ry: None))
    with pytest.raises(ConfigValidationError):
        save_calibration(tmp_path / "calibration.json", cals)


def _doc(**left_overrides):
    left = {"ray_offset": [0.5, 0.5], "ray_scale": [0.125, 0.125], "warp": {"model": "constant", "px": 1, "py": 2}}
    left.update(left_overrides)
    right = {"warp": {"model": "identity", "raw_width_px": 4, "raw_height_px": 4}}
    return {"schema_version": SCHEMA_VERSION, "cameras": {"left": left, "right": right}}


def test_parse_calibration_defaults_offset_and_scale():
    cals = parse_calibration(_doc())
    assert cals["right"].parameters == CalibrationParameters()
    assert cals["left"].ray_scale == (0.125, 0.125)


@pytest.mark.parametrize(
    "doc",
    [
        {"schema_version": "nope", "cameras": {}},
        {"schema_version": SCHEMA_VERSION, "cameras": {"left": {}}},
        _doc(ray_scale=[1.0]),
        _doc(ray_offset=[float("nan"), 0.0]),
        _doc(warp={"model": "fisheye"}),
        _doc(warp={"model": "brown", "fx": 1.0}),
    ],
)
def test_parse_calibration_rejects_malformed(doc):
    with pytest.raises(ConfigValidationError):
        parse_calibration(json.loads(json.dumps(doc, allow_nan=True)))
