from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import numpy as np

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationParameters:
    """
    Per-camera constants mapping normalized image coordinates [0,1) to ray slopes.

      rx = (nx - offset_x) / scale_x
      ry = (ny - offset_y) / scale_y
    """

    offset_x: float = 0.0
    offset_y: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0


class WarpFunction(Protocol):
    def __call__(self, rx: np.ndarray, ry: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Map ray slopes to raw pixel coordinates; non-finite outputs mean unmapped."""
        ...


@dataclass(frozen=True)
class CameraCalibration:
    """Calibration of one camera: ray constants plus the bound warp function."""

    parameters: CalibrationParameters
    warp: WarpFunction

    @property
    def ray_offset(self) -> tuple[float, float]:
        return self.parameters.offset_x, self.parameters.offset_y

    @property
    def ray_scale(self) -> tuple[float, float]:
        return self.parameters.scale_x, self.parameters.scale_y


@dataclass(frozen=True)
class ScaledIdentityWarp:
    """Ray (rx, ry) -> pixel (rx * raw_width, ry * raw_height)."""

    raw_width: int
    raw_height: int

    def __call__(self, rx: np.ndarray, ry: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        rx = np.asarray(rx, dtype=np.float64)
        ry = np.asarray(ry, dtype=np.float64)
        return rx * float(self.raw_width), ry * float(self.raw_height)


@dataclass(frozen=True)
class ConstantWarp:
    px: float
    py: float

    def __call__(self, rx: np.ndarray, ry: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        rx = np.asarray(rx, dtype=np.float64)
        ry = np.asarray(ry, dtype=np.float64)
        shape = np.broadcast(rx, ry).shape
        return np.full(shape, float(self.px)), np.full(shape, float(self.py))


_BROWN_TERMS = ("k1", "k2", "k3", "p1", "p2")


@dataclass(frozen=True)
class BrownDistortion:
    """
    Lens term of the synthetic sensor, applied directly in ray-slope space.

    A ray (rx, ry) with radius r is bent radially by 1 + k1 r^2 + k2 r^4 + k3 r^6
    and shifted tangentially by (p1, p2) before `BrownRayWarp` projects it onto
    the raw sensor. All terms zero leaves the ray unchanged.
    """

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0

    def distort(self, rx: np.ndarray, ry: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        rx = np.asarray(rx, dtype=np.float64)
        ry = np.asarray(ry, dtype=np.float64)
        rr = rx * rx + ry * ry
        bend = 1.0 + rr * (self.k1 + rr * (self.k2 + rr * self.k3))
        cross = 2.0 * rx * ry
        shift_x = self.p1 * cross + self.p2 * (rr + 2.0 * rx * rx)
        shift_y = self.p2 * cross + self.p1 * (rr + 2.0 * ry * ry)
        return rx * bend + shift_x, ry * bend + shift_y


@dataclass(frozen=True)
class BrownRayWarp:
    """
    Synthetic lens: ray slopes are distorted, then projected through a pinhole.

      (xd, yd) = distort(rx, ry)
      px = fx * xd + cx,  py = fy * yd + cy

    Rays beyond `max_slope` (radius in slope space) are reported as unmapped
    (NaN), mimicking a lens whose distortion polynomial is only valid inside
    its field of view.
    """

    fx: float
    fy: float
    cx: float
    cy: float
    distortion: BrownDistortion = BrownDistortion()
    max_slope: Optional[float] = None

    def __call__(self, rx: np.ndarray, ry: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        rx = np.asarray(rx, dtype=np.float64)
        ry = np.asarray(ry, dtype=np.float64)
        xd, yd = self.distortion.distort(rx, ry)
        px = self.fx * xd + self.cx
        py = self.fy * yd + self.cy
        if self.max_slope is not None:
            outside = (rx * rx + ry * ry) > float(self.max_slope) ** 2
            px = np.where(outside, np.nan, px)
            py = np.where(outside, np.nan, py)
        return px, py


class PointwiseWarp:
    """
    Adapt a scalar warp call `fn(rx, ry) -> (px, py) | None` to the array contract.

    Device SDKs usually expose the warp one vector at a time; this evaluates it
    over every element. A `None` result, or a call that raises, leaves that
    element NaN (unmapped). The first such error is logged at DEBUG.
    """

    def __init__(self, fn: Callable[[float, float], Optional[tuple[float, float]]]) -> None:
        self.fn = fn
        self._logged_error = False

    def __call__(self, rx: np.ndarray, ry: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        rx, ry = np.broadcast_arrays(np.asarray(rx, dtype=np.float64), np.asarray(ry, dtype=np.float64))
        px = np.full(rx.shape, np.nan, dtype=np.float64)
        py = np.full(rx.shape, np.nan, dtype=np.float64)
        for idx in np.ndindex(rx.shape):
            try:
                res = self.fn(float(rx[idx]), float(ry[idx]))
                if res is None:
                    continue
                px[idx] = float(res[0])
                py[idx] = float(res[1])
            except Exception as exc:
                if not self._logged_error:
                    self._logged_error = True
                    log.debug("warp call failed at ray (%g, %g): %s", rx[idx], ry[idx], exc)
        return px, py


def identity_calibration(raw_width: int, raw_height: int) -> CameraCalibration:
    """Offset 0, scale 1, identity warp scaled to the raw image size."""
    return CameraCalibration(CalibrationParameters(), ScaledIdentityWarp(int(raw_width), int(raw_height)))


def brown_from_dict(d: dict) -> BrownDistortion:
    """Lens terms from a calibration-file warp entry; absent terms are zero."""
    return BrownDistortion(**{name: float(d.get(name, 0.0)) for name in _BROWN_TERMS})


def brown_to_dict(m: BrownDistortion) -> dict:
    return {name: float(getattr(m, name)) for name in _BROWN_TERMS}


def default_leap_parameters() -> CalibrationParameters:
    # Normalized [0,1) -> slope [-4,4].
    return CalibrationParameters(offset_x=0.5, offset_y=0.5, scale_x=0.125, scale_y=0.125)
