"""
Backward-warp rectification of raw sensor images.

For every pixel (i, j) of a fixed-size output grid the normalized coordinate
(i/W, j/H) is turned into a ray slope with the camera's ray offset/scale, the
calibration warp maps the ray to a raw pixel coordinate, and the raw image is
sampled there with nearest-neighbour (floor) lookup.

Notes
-----
- Iterating destination pixels guarantees full coverage of the output (no
  holes), unlike a forward splat of source pixels.
- Rays whose mapped coordinate falls outside [0, raw_w) x [0, raw_h), or is
  not finite, are filled with `BACKGROUND`. This is never an error.
- The grid is evaluated as one vectorised numpy map; every output pixel is
  independent of the others.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from leaprectify.core.calibration import CalibrationParameters, CameraCalibration

log = logging.getLogger(__name__)

BACKGROUND = 255
DEFAULT_WIDTH = 640
DEFAULT_HEIGHT = 640


@dataclass(frozen=True)
class RectifyStats:
    total: int
    out_of_frustum: int
    non_finite: int

    @property
    def mapped(self) -> int:
        return self.total - self.out_of_frustum - self.non_finite

    @property
    def calibration_unavailable(self) -> bool:
        # Every ray came back invalid: nothing the raw image can contribute.
        return self.total > 0 and self.non_finite == self.total


@dataclass(frozen=True)
class SampleMap:
    """
    Flat raw-image index per output pixel (-1 for background).

    Only valid for raw images of exactly (raw_height, raw_width).
    """

    index: np.ndarray  # (H,W) int64
    raw_width: int
    raw_height: int
    stats: RectifyStats

    @property
    def shape(self) -> tuple[int, int]:
        return int(self.index.shape[0]), int(self.index.shape[1])


def ray_grid(params: CalibrationParameters, width: int, height: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Ray slopes (rx, ry) for every output pixel, shaped (H,W).

    rx[j, i] = (i / W - offset_x) / scale_x, and likewise for ry.
    """
    width = int(width)
    height = int(height)
    nx = np.arange(width, dtype=np.float64) / float(width)
    ny = np.arange(height, dtype=np.float64) / float(height)
    with np.errstate(divide="ignore", invalid="ignore"):
        rx = (nx - float(params.offset_x)) / float(params.scale_x)
        ry = (ny - float(params.offset_y)) / float(params.scale_y)
    yy, xx = np.meshgrid(ry, rx, indexing="ij")
    return xx, yy


def _warp_coordinates(
    calibration: CameraCalibration, rx: np.ndarray, ry: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """
    Call the warp and coerce its result to two float arrays shaped like `rx`.

    A `None` result, or anything that is not a pair of grid-compatible numeric
    arrays, marks the whole grid unmapped (NaN).
    """
    res = calibration.warp(rx, ry)
    if res is not None:
        try:
            px, py = res
            px = np.broadcast_to(np.asarray(px, dtype=np.float64), rx.shape)
            py = np.broadcast_to(np.asarray(py, dtype=np.float64), rx.shape)
            return px, py
        except (TypeError, ValueError) as exc:
            log.debug("warp returned an unusable result (%s); treating the grid as unmapped", exc)
    nan = np.full(rx.shape, np.nan, dtype=np.float64)
    return nan, nan


def build_sample_map(
    raw_width: int,
    raw_height: int,
    calibration: CameraCalibration,
    width: int = DEFAULT_WIDTH,
    height: int = DEFAULT_HEIGHT,
) -> SampleMap:
    """Evaluate the calibration warp over the output grid and resolve source indices."""
    raw_width = int(raw_width)
    raw_height = int(raw_height)
    if width <= 0 or height <= 0:
        raise ValueError("rectified width/height must be > 0")

    rx, ry = ray_grid(calibration.parameters, width, height)
    with np.errstate(all="ignore"):
        px, py = _warp_coordinates(calibration, rx, ry)
        finite = np.isfinite(px) & np.isfinite(py)
        inside = finite & (px >= 0.0) & (px < raw_width) & (py >= 0.0) & (py < raw_height)

        index = np.full(rx.shape, -1, dtype=np.int64)
        # Floor, then bounds-check; `inside` already excludes negatives so floor == trunc here.
        col = np.floor(px[inside]).astype(np.int64)
        row = np.floor(py[inside]).astype(np.int64)
    index[inside] = row * raw_width + col

    total = int(index.size)
    non_finite = int(total - np.count_nonzero(finite))
    out_of_frustum = int(total - non_finite - np.count_nonzero(inside))
    stats = RectifyStats(total=total, out_of_frustum=out_of_frustum, non_finite=non_finite)
    return SampleMap(index=index, raw_width=raw_width, raw_height=raw_height, stats=stats)


def apply_sample_map(raw: np.ndarray, sample_map: SampleMap, background: int = BACKGROUND) -> np.ndarray:
    raw = np.asarray(raw)
    if raw.shape != (sample_map.raw_height, sample_map.raw_width):
        raise ValueError(
            f"raw image shape {raw.shape} != sample map raw shape {(sample_map.raw_height, sample_map.raw_width)}"
        )
    flat = raw.reshape(-1)
    out = np.full(sample_map.shape, background, dtype=np.uint8)
    valid = sample_map.index >= 0
    out[valid] = flat[sample_map.index[valid]]
    return out


def rectify(
    raw: np.ndarray,
    calibration: CameraCalibration,
    width: int = DEFAULT_WIDTH,
    height: int = DEFAULT_HEIGHT,
) -> np.ndarray:
    """
    Rectify one raw grayscale image into a (height, width) uint8 image.

    `raw` is indexed raw[row, col] (shape (raw_h, raw_w)).
    """
    out, _stats = rectify_with_stats(raw, calibration, width=width, height=height)
    return out


def rectify_with_stats(
    raw: np.ndarray,
    calibration: CameraCalibration,
    width: int = DEFAULT_WIDTH,
    height: int = DEFAULT_HEIGHT,
) -> tuple[np.ndarray, RectifyStats]:
    raw = np.asarray(raw)
    if raw.ndim != 2:
        raise ValueError("raw image must be single-channel (H,W)")
    if raw.dtype != np.uint8:
        raise ValueError(f"raw image must be uint8, got {raw.dtype}")
    raw_h, raw_w = raw.shape
    smap = build_sample_map(raw_w, raw_h, calibration, width=width, height=height)
    return apply_sample_map(raw, smap), smap.stats


class Rectifier:
    """
    Rectifier bound to one camera and one output size.

    Keeps the stats of the last frame and reports a calibration whose warp never
    yields a finite coordinate once (then keeps producing background images).
    """

    def __init__(self, camera: str, width: int = DEFAULT_WIDTH, height: int = DEFAULT_HEIGHT) -> None:
        if int(width) <= 0 or int(height) <= 0:
            raise ValueError("rectified width/height must be > 0")
        self.camera = str(camera)
        self.width = int(width)
        self.height = int(height)
        self.last_stats: Optional[RectifyStats] = None
        self._warned_unavailable = False

    def __call__(self, raw: np.ndarray, calibration: CameraCalibration) -> np.ndarray:
        out, stats = rectify_with_stats(raw, calibration, width=self.width, height=self.height)
        self.last_stats = stats
        if stats.calibration_unavailable and not self._warned_unavailable:
            self._warned_unavailable = True
            log.warning(
                "%s camera: calibration warp returned no finite coordinates; output is background only",
                self.camera,
            )
        log.debug(
            "%s camera: %d/%d pixels mapped (%d out of frustum, %d non-finite)",
            self.camera,
            stats.mapped,
            stats.total,
            stats.out_of_frustum,
            stats.non_finite,
        )
        return out
