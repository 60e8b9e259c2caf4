"""
Frame loop: pull raw pairs, rectify + crop each camera, hand results to sinks.

The two cameras are processed independently on a two-worker thread pool and
joined once per frame. Cancellation is cooperative and checked at frame
boundaries only.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

import numpy as np

from leaprectify.config import CAMERAS, RectifierConfig
from leaprectify.core.calibration import CameraCalibration
from leaprectify.core.crop import Roi, crop, validate_roi
from leaprectify.core.rectify import Rectifier, RectifyStats
from leaprectify.pipeline.frames import FramePair, FrameSource, RawImage

log = logging.getLogger(__name__)


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class CameraResult:
    camera: str
    raw: np.ndarray
    rectified: np.ndarray
    cropped: np.ndarray
    stats: RectifyStats


@dataclass(frozen=True)
class FrameResult:
    index: int  # sequential count of processed frames
    frame_id: int
    left: CameraResult
    right: CameraResult

    def camera(self, name: str) -> CameraResult:
        return {"left": self.left, "right": self.right}[name]


class FrameSink(Protocol):
    def consume(self, result: FrameResult) -> None:
        ...

    def close(self) -> None:
        ...


@dataclass(frozen=True)
class RunSummary:
    processed: int
    skipped: int
    cancelled: bool


class CameraPipeline:
    """Rectify-then-crop for one camera. Owns its rectifier and its buffers."""

    def __init__(self, camera: str, calibration: CameraCalibration, roi: Roi, width: int, height: int) -> None:
        self.camera = camera
        self.calibration = calibration
        self.roi = validate_roi(roi, width, height)
        self.rectifier = Rectifier(camera, width=width, height=height)
        self.raw_shape: Optional[tuple[int, int]] = None

    def accepts(self, raw: RawImage) -> bool:
        """
        Raw dimensions are latched on the first frame; a later frame with a
        different size is rejected (the whole pair is then skipped).
        """
        shape = (raw.height, raw.width)
        if self.raw_shape is None:
            self.raw_shape = shape
            return True
        return shape == self.raw_shape

    def process(self, raw: RawImage) -> CameraResult:
        rectified = self.rectifier(raw.data, self.calibration)
        stats = self.rectifier.last_stats
        assert stats is not None
        return CameraResult(
            camera=self.camera,
            raw=raw.data,
            rectified=rectified,
            cropped=crop(rectified, self.roi),
            stats=stats,
        )


class StereoPipeline:
    def __init__(
        self,
        config: RectifierConfig,
        calibrations: dict[str, CameraCalibration],
        sinks: Iterable[FrameSink] = (),
    ) -> None:
        missing = [cam for cam in CAMERAS if cam not in calibrations]
        if missing:
            raise ValueError(f"missing calibration for cameras: {missing}")
        self.config = config
        # ROIs are re-validated here so a hand-built config cannot bypass the check.
        self.cameras = {
            cam: CameraPipeline(cam, calibrations[cam], config.roi(cam), config.width_px, config.height_px)
            for cam in CAMERAS
        }
        self.sinks = list(sinks)

    def process_pair(self, pair: FramePair, index: int, pool: Optional[ThreadPoolExecutor] = None) -> Optional[FrameResult]:
        """Rectify and crop both cameras; None when the pair must be skipped."""
        if not pair.is_valid:
            log.debug("frame %d skipped: missing or invalid raw image", pair.frame_id)
            return None
        assert pair.left is not None and pair.right is not None
        for cam, raw in (("left", pair.left), ("right", pair.right)):
            if not self.cameras[cam].accepts(raw):
                log.warning(
                    "frame %d skipped: %s raw size %dx%d differs from %dx%d",
                    pair.frame_id,
                    cam,
                    raw.width,
                    raw.height,
                    self.cameras[cam].raw_shape[1],
                    self.cameras[cam].raw_shape[0],
                )
                return None

        if pool is None:
            left = self.cameras["left"].process(pair.left)
            right = self.cameras["right"].process(pair.right)
        else:
            fut_l = pool.submit(self.cameras["left"].process, pair.left)
            fut_r = pool.submit(self.cameras["right"].process, pair.right)
            left, right = fut_l.result(), fut_r.result()
        return FrameResult(index=index, frame_id=pair.frame_id, left=left, right=right)

    def run(
        self,
        source: FrameSource,
        token: Optional[CancellationToken] = None,
        max_frames: int = 0,
    ) -> RunSummary:
        """
        Process frames until the source is exhausted, `max_frames` pairs were
        processed (0 = no limit) or the token is cancelled.
        """
        token = token or CancellationToken()
        processed = 0
        skipped = 0
        with ThreadPoolExecutor(max_workers=len(CAMERAS), thread_name_prefix="leaprectify") as pool:
            pairs = iter(source)
            while not token.cancelled:
                pair = next(pairs, None)
                if pair is None:
                    break
                result = self.process_pair(pair, processed, pool)
                if result is None:
                    skipped += 1
                    continue
                for sink in self.sinks:
                    sink.consume(result)
                processed += 1
                if token.cancelled or (max_frames and processed >= max_frames):
                    break
        log.info("processed %d frame pairs, skipped %d", processed, skipped)
        return RunSummary(processed=processed, skipped=skipped, cancelled=token.cancelled)
