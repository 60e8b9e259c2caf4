from __future__ import annotations

import logging
import queue
import threading
from pathlib import Path
from typing import Optional

import cv2

from leaprectify.core.image_io import IMAGE_FORMATS, save_gray_u8
from leaprectify.pipeline.orchestrator import CancellationToken, FrameResult, FrameSink

log = logging.getLogger(__name__)

_PREFIX = {"left": "lImg", "right": "rImg"}
ESC_KEY = 27


class ImageDirectorySink:
    """
    Writes, per camera and processed frame n:

      lImg{n}.orig.{ext}   raw sensor image
      lImg{n}.corr.{ext}   rectified image
      lImg{n}.crop.{ext}   cropped ROI

    and the same with the rImg prefix for the right camera.
    """

    def __init__(self, out_dir: Path, image_format: str = "jpg", jpeg_quality: int = 95) -> None:
        fmt = image_format.lower()
        if fmt == "jpeg":
            fmt = "jpg"
        if fmt not in IMAGE_FORMATS:
            raise ValueError("image_format must be png|jpg|webp")
        self.out_dir = Path(out_dir)
        self.ext = fmt
        self.jpeg_quality = int(jpeg_quality)
        self.out_dir.mkdir(parents=True, exist_ok=True)
        self.written = 0

    def paths(self, camera: str, index: int) -> dict[str, Path]:
        stem = f"{_PREFIX[camera]}{int(index)}"
        return {kind: self.out_dir / f"{stem}.{kind}.{self.ext}" for kind in ("orig", "corr", "crop")}

    def consume(self, result: FrameResult) -> None:
        for cam in ("left", "right"):
            r = result.camera(cam)
            p = self.paths(cam, result.index)
            save_gray_u8(p["orig"], r.raw, quality=self.jpeg_quality)
            save_gray_u8(p["corr"], r.rectified, quality=self.jpeg_quality)
            save_gray_u8(p["crop"], r.cropped, quality=self.jpeg_quality)
        self.written += 1

    def close(self) -> None:
        log.info("wrote %d frame pairs to %s", self.written, self.out_dir)


class DisplaySink:
    """
    Shows the cropped images in two OpenCV windows. ESC cancels the run.

    OpenCV GUI calls must stay on the thread that created the windows, so this
    sink is not meant to be wrapped in QueuedSink.
    """

    def __init__(self, token: CancellationToken, delay_ms: int = 30) -> None:
        self.token = token
        self.delay_ms = int(delay_ms)
        self.windows = {"left": "left_cropped", "right": "right_cropped"}
        for name in self.windows.values():
            cv2.namedWindow(name, cv2.WINDOW_AUTOSIZE)

    def consume(self, result: FrameResult) -> None:
        for cam, name in self.windows.items():
            cv2.imshow(name, result.camera(cam).cropped)
        if cv2.waitKey(self.delay_ms) & 0xFF == ESC_KEY:
            log.info("ESC pressed, stopping")
            self.token.cancel()

    def close(self) -> None:
        cv2.destroyAllWindows()


class QueuedSink:
    """
    Runs a slow sink (file output) on a background thread behind a bounded queue.

    `consume` blocks only when `maxsize` results are already pending. An error
    raised by the wrapped sink stops the worker and is re-raised by the next
    `consume` or by `close`.
    """

    _STOP = object()

    def __init__(self, sink: FrameSink, maxsize: int = 8) -> None:
        self.sink = sink
        self.queue: queue.Queue = queue.Queue(maxsize=int(maxsize))
        self.error: Optional[BaseException] = None
        self.thread = threading.Thread(target=self._run, name="leaprectify-sink", daemon=True)
        self.thread.start()

    def _run(self) -> None:
        while True:
            item = self.queue.get()
            try:
                if item is self._STOP:
                    return
                if self.error is None:
                    self.sink.consume(item)
            except Exception as e:
                self.error = e
                log.error("sink %s failed: %s", type(self.sink).__name__, e)
            finally:
                self.queue.task_done()

    def _raise_pending(self) -> None:
        if self.error is not None:
            raise RuntimeError(f"sink {type(self.sink).__name__} failed") from self.error

    def consume(self, result: FrameResult) -> None:
        self._raise_pending()
        self.queue.put(result)

    def close(self) -> None:
        self.queue.put(self._STOP)
        self.thread.join()
        self.sink.close()
        self._raise_pending()
