from __future__ import annotations

from dataclasses import dataclass

import numpy as np


class MisconfiguredRoiError(ValueError):
    pass


@dataclass(frozen=True)
class Roi:
    x: int
    y: int
    width: int
    height: int

    @classmethod
    def from_xywh(cls, xywh) -> "Roi":
        x, y, w, h = (int(v) for v in xywh)
        return cls(x=x, y=y, width=w, height=h)

    def as_xywh(self) -> tuple[int, int, int, int]:
        return self.x, self.y, self.width, self.height


def validate_roi(roi: Roi, width: int, height: int) -> Roi:
    """
    Check that `roi` lies inside a (height, width) image. Raises MisconfiguredRoiError.

    Meant to run once when the rig is configured, never per frame.
    """
    if roi.width <= 0 or roi.height <= 0:
        raise MisconfiguredRoiError(f"ROI {roi.as_xywh()} must have width/height > 0")
    if roi.x < 0 or roi.y < 0:
        raise MisconfiguredRoiError(f"ROI {roi.as_xywh()} origin must be >= 0")
    if roi.x + roi.width > int(width) or roi.y + roi.height > int(height):
        raise MisconfiguredRoiError(f"ROI {roi.as_xywh()} exceeds rectified image bounds {(int(width), int(height))}")
    return roi


def crop(rectified: np.ndarray, roi: Roi) -> np.ndarray:
    """Pixel-exact copy of rectified[y:y+h, x:x+w]."""
    return np.array(rectified[roi.y : roi.y + roi.height, roi.x : roi.x + roi.width], dtype=np.uint8, copy=True)
