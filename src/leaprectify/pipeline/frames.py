from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Protocol

import numpy as np

from leaprectify.core.image_io import load_gray_u8

log = logging.getLogger(__name__)


class InvalidFrameError(ValueError):
    pass


@dataclass(frozen=True)
class RawImage:
    """Single-channel 8-bit sensor image, indexed data[row, col]."""

    camera: str
    data: np.ndarray

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @classmethod
    def from_array(cls, camera: str, arr) -> "RawImage":
        if arr is None:
            raise InvalidFrameError(f"{camera}: image is missing")
        arr = np.asarray(arr)
        if arr.ndim != 2:
            raise InvalidFrameError(f"{camera}: expected a single-channel (H,W) image, got shape {arr.shape}")
        if arr.shape[0] == 0 or arr.shape[1] == 0:
            raise InvalidFrameError(f"{camera}: image is zero-sized")
        if arr.dtype != np.uint8:
            raise InvalidFrameError(f"{camera}: expected uint8 data, got {arr.dtype}")
        return cls(camera=str(camera), data=arr)

    @classmethod
    def from_buffer(cls, camera: str, width: int, height: int, buffer) -> "RawImage":
        """Wrap a flat row-major buffer of width*height bytes."""
        width = int(width)
        height = int(height)
        if buffer is None:
            raise InvalidFrameError(f"{camera}: buffer is missing")
        if width <= 0 or height <= 0:
            raise InvalidFrameError(f"{camera}: image is zero-sized ({width}x{height})")
        if isinstance(buffer, np.ndarray):
            if buffer.dtype != np.uint8:
                raise InvalidFrameError(f"{camera}: expected a uint8 buffer, got {buffer.dtype}")
            flat = buffer.reshape(-1)
        else:
            flat = np.frombuffer(bytes(buffer), dtype=np.uint8)
        if flat.size != width * height:
            raise InvalidFrameError(f"{camera}: buffer length {flat.size} != {width}*{height}")
        return cls.from_array(camera, flat.reshape(height, width))


@dataclass(frozen=True)
class FramePair:
    frame_id: int
    left: Optional[RawImage]
    right: Optional[RawImage]

    @property
    def is_valid(self) -> bool:
        return self.left is not None and self.right is not None


class FrameSource(Protocol):
    def __iter__(self) -> Iterator[FramePair]:
        ...


def _raw_or_none(camera: str, arr) -> Optional[RawImage]:
    try:
        return RawImage.from_array(camera, arr)
    except InvalidFrameError as e:
        log.debug("invalid raw image: %s", e)
        return None


class ArrayFrameSource:
    """In-memory source over (left, right) ndarray pairs; None marks a missing image."""

    def __init__(self, pairs: Iterable[tuple[object, object]]) -> None:
        self.pairs = pairs

    def __iter__(self) -> Iterator[FramePair]:
        for frame_id, (left, right) in enumerate(self.pairs):
            yield FramePair(frame_id=frame_id, left=_raw_or_none("left", left), right=_raw_or_none("right", right))


def load_frames(frames_dir: Path) -> list[dict]:
    frames_path = Path(frames_dir) / "frames.jsonl"
    if not frames_path.exists():
        raise FileNotFoundError(f"Missing {frames_path}")
    frames: list[dict] = []
    for line in frames_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        frames.append(json.loads(line))
    return frames


class DirectoryFrameSource:
    """
    Recorded frame pairs on disk:

      frames_dir/frames.jsonl   one {"frame_id", "left", "right"} object per line
      frames_dir/left/<file>
      frames_dir/right/<file>

    An unreadable or missing image yields None for that camera, so the
    orchestrator can skip the pair.
    """

    def __init__(self, frames_dir: Path) -> None:
        self.frames_dir = Path(frames_dir)
        self.frames = load_frames(self.frames_dir)

    def __len__(self) -> int:
        return len(self.frames)

    def _load(self, camera: str, name) -> Optional[RawImage]:
        if not name:
            return None
        p = self.frames_dir / camera / str(name)
        try:
            arr = load_gray_u8(p)
        except OSError as e:
            log.warning("%s: cannot read %s: %s", camera, p, e)
            return None
        return _raw_or_none(camera, arr)

    def __iter__(self) -> Iterator[FramePair]:
        for i, fr in enumerate(self.frames):
            frame_id = int(fr.get("frame_id", i))
            yield FramePair(
                frame_id=frame_id,
                left=self._load("left", fr.get("left")),
                right=self._load("right", fr.get("right")),
            )
