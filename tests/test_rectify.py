from __future__ import annotations

import logging

import numpy as np
import pytest

from leaprectify.core.calibration import (
    BrownDistortion,
    BrownRayWarp,
    CalibrationParameters,
    CameraCalibration,
    ConstantWarp,
    PointwiseWarp,
    ScaledIdentityWarp,
    brown_from_dict,
    brown_to_dict,
    default_leap_parameters,
    identity_calibration,
)
from leaprectify.core.rectify import (
    BACKGROUND,
    Rectifier,
    apply_sample_map,
    build_sample_map,
    ray_grid,
    rectify,
    rectify_with_stats,
)


def _ramp(h: int, w: int) -> np.ndarray:
    return (np.arange(h * w, dtype=np.int64).reshape(h, w) * 7 % 251).astype(np.uint8)


def test_identity_calibration_reproduces_raw():
    w, h = 64, 32
    raw = _ramp(h, w)
    out = rectify(raw, identity_calibration(w, h), width=w, height=h)
    assert out.shape == (h, w)
    assert out.dtype == np.uint8
    np.testing.assert_array_equal(out, raw)


def test_single_pixel_source_fills_output():
    raw = np.array([[42]], dtype=np.uint8)
    cal = CameraCalibration(CalibrationParameters(), ConstantWarp(0.0, 0.0))
    out = rectify(raw, cal, width=2, height=2)
    np.testing.assert_array_equal(out, np.array([[42, 42], [42, 42]], dtype=np.uint8))


def test_out_of_bounds_warp_gives_uniform_background():
    raw = _ramp(8, 8)
    cal = CameraCalibration(CalibrationParameters(), ConstantWarp(100.0, -3.0))
    out, stats = rectify_with_stats(raw, cal, width=16, height=12)
    assert out.shape == (12, 16)
    assert np.all(out == BACKGROUND)
    assert stats.out_of_frustum == stats.total == 16 * 12
    assert stats.non_finite == 0
    assert not stats.calibration_unavailable


def test_nearest_sampling_floors_fractional_coordinates():
    raw = np.arange(9, dtype=np.uint8).reshape(3, 3)
    cal = CameraCalibration(CalibrationParameters(), ConstantWarp(1.999, 2.5))
    out = rectify(raw, cal, width=3, height=3)
    assert np.all(out == raw[2, 1])


@pytest.mark.parametrize("px,py", [(-0.5, 0.0), (0.0, -1e-9), (3.0, 0.0), (0.0, 3.0)])
def test_coordinates_outside_half_open_range_are_not_clamped(px, py):
    raw = np.zeros((3, 3), dtype=np.uint8)
    cal = CameraCalibration(CalibrationParameters(), ConstantWarp(px, py))
    out = rectify(raw, cal, width=4, height=4)
    assert np.all(out == BACKGROUND)


def test_rectified_size_is_independent_of_raw_size():
    raw = _ramp(5, 7)
    cal = CameraCalibration(default_leap_parameters(), ScaledIdentityWarp(7, 5))
    assert rectify(raw, cal, width=40, height=30).shape == (30, 40)


def test_rectify_is_deterministic():
    raw = _ramp(120, 160)
    cal = CameraCalibration(
        default_leap_parameters(),
        BrownRayWarp(
            fx=20.0,
            fy=20.0,
            cx=80.0,
            cy=60.0,
            distortion=BrownDistortion(k1=-0.05, k2=0.002, p1=0.001),
            max_slope=3.5,
        ),
    )
    a = rectify(raw, cal, width=64, height=64)
    b = rectify(raw, cal, width=64, height=64)
    assert a.tobytes() == b.tobytes()
    # Some pixels mapped, some fall outside the lens model.
    assert np.any(a != BACKGROUND)
    assert np.any(a == BACKGROUND)


def test_ray_grid_matches_per_pixel_formula():
    params = CalibrationParameters(offset_x=0.5, offset_y=0.25, scale_x=0.125, scale_y=0.5)
    rx, ry = ray_grid(params, 8, 4)
    assert rx.shape == (4, 8)
    for j in range(4):
        for i in range(8):
            assert rx[j, i] == pytest.approx((i / 8 - 0.5) / 0.125)
            assert ry[j, i] == pytest.approx((j / 4 - 0.25) / 0.5)


def test_non_finite_warp_counts_and_background():
    def warp(rx, ry):
        rx = np.asarray(rx, dtype=np.float64)
        return np.full_like(rx, np.nan), np.full_like(rx, np.inf)

    raw = _ramp(4, 4)
    out, stats = rectify_with_stats(raw, CameraCalibration(CalibrationParameters(), warp), width=5, height=5)
    assert np.all(out == BACKGROUND)
    assert stats.non_finite == 25
    assert stats.calibration_unavailable


def test_zero_scale_degrades_to_background():
    raw = _ramp(8, 8)
    cal = CameraCalibration(CalibrationParameters(scale_x=0.0), ScaledIdentityWarp(8, 8))
    out, stats = rectify_with_stats(raw, cal, width=8, height=8)
    assert np.all(out == BACKGROUND)
    assert stats.calibration_unavailable


def test_rectifier_warns_once_when_calibration_unavailable(caplog):
    cal = CameraCalibration(CalibrationParameters(), ConstantWarp(np.nan, np.nan))
    rect = Rectifier("left", width=4, height=4)
    raw = _ramp(4, 4)
    with caplog.at_level(logging.WARNING, logger="leaprectify.core.rectify"):
        for _ in range(3):
            out = rect(raw, cal)
            assert np.all(out == BACKGROUND)
    warnings = [r for r in caplog.records if "no finite coordinates" in r.getMessage()]
    assert len(warnings) == 1
    assert rect.last_stats is not None and rect.last_stats.non_finite == 16


def test_pointwise_warp_adapter_handles_missing_results():
    w, h = 8, 8
    raw = _ramp(h, w)

    def sdk_warp(rx: float, ry: float):
        if rx < 0.5:
            return None
        return rx * w, ry * h

    cal = CameraCalibration(CalibrationParameters(), PointwiseWarp(sdk_warp))
    out = rectify(raw, cal, width=w, height=h)
    assert np.all(out[:, : w // 2] == BACKGROUND)
    np.testing.assert_array_equal(out[:, w // 2 :], raw[:, w // 2 :])


def test_sample_map_reuse_matches_direct_rectify():
    raw1 = _ramp(16, 16)
    raw2 = (255 - raw1).astype(np.uint8)
    cal = CameraCalibration(
        CalibrationParameters(offset_x=0.1, offset_y=-0.1, scale_x=1.2, scale_y=0.9),
        ScaledIdentityWarp(16, 16),
    )
    smap = build_sample_map(16, 16, cal, width=20, height=10)
    np.testing.assert_array_equal(apply_sample_map(raw1, smap), rectify(raw1, cal, width=20, height=10))
    np.testing.assert_array_equal(apply_sample_map(raw2, smap), rectify(raw2, cal, width=20, height=10))
    with pytest.raises(ValueError):
        apply_sample_map(np.zeros((8, 8), dtype=np.uint8), smap)


def test_rectify_rejects_color_input():
    with pytest.raises(ValueError):
        rectify(np.zeros((4, 4, 3), dtype=np.uint8), identity_calibration(4, 4), width=4, height=4)


def test_rectify_rejects_non_uint8_input():
    with pytest.raises(ValueError):
        rectify(np.array([[300.7, 2.2]]), identity_calibration(2, 1), width=2, height=1)
    with pytest.raises(ValueError):
        rectify(np.array([[300, -1]], dtype=np.int16), identity_calibration(2, 1), width=2, height=1)


def test_pointwise_warp_errors_leave_pixels_unmapped():
    w, h = 8, 8
    raw = _ramp(h, w)

    def sdk_warp(rx: float, ry: float):
        if rx >= 0.5:
            raise ValueError("ray outside calibrated frustum")
        return rx * w, ry * h

    cal = CameraCalibration(CalibrationParameters(), PointwiseWarp(sdk_warp))
    out, stats = rectify_with_stats(raw, cal, width=w, height=h)
    np.testing.assert_array_equal(out[:, : w // 2], raw[:, : w // 2])
    assert np.all(out[:, w // 2 :] == BACKGROUND)
    assert stats.non_finite == h * w // 2


@pytest.mark.parametrize(
    "warp",
    [
        lambda rx, ry: None,
        lambda rx, ry: (rx,),
        lambda rx, ry: ("a", "b"),
        lambda rx, ry: (np.zeros(3), np.zeros(3)),
    ],
)
def test_unusable_warp_result_degrades_to_background(warp):
    raw = _ramp(4, 4)
    cal = CameraCalibration(CalibrationParameters(), warp)
    out, stats = rectify_with_stats(raw, cal, width=4, height=4)
    assert np.all(out == BACKGROUND)
    assert stats.calibration_unavailable


def test_brown_lens_bends_rays_radially_and_tangentially():
    rx = np.array([0.0, 0.5, 2.0])
    ry = np.array([0.0, -1.0, 0.0])
    np.testing.assert_array_equal(BrownDistortion().distort(rx, ry), (rx, ry))

    xd, yd = BrownDistortion(k1=0.25).distort(np.array([2.0]), np.array([0.0]))
    np.testing.assert_allclose((xd[0], yd[0]), (4.0, 0.0))

    xd, yd = BrownDistortion(p1=0.5, p2=0.25).distort(np.array([1.0]), np.array([1.0]))
    # r^2 = 2, cross term 2*x*y = 2
    np.testing.assert_allclose((xd[0], yd[0]), (1.0 + 1.0 + 1.0, 1.0 + 0.5 + 2.0))

    lens = BrownDistortion(k1=-0.1, k2=0.01, p1=0.002, p2=-0.003, k3=0.0005)
    assert brown_from_dict(brown_to_dict(lens)) == lens
    assert brown_from_dict({"k1": 0.2}) == BrownDistortion(k1=0.2)
