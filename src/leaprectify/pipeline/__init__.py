from leaprectify.pipeline.frames import ArrayFrameSource, DirectoryFrameSource, FramePair, InvalidFrameError, RawImage
from leaprectify.pipeline.orchestrator import CancellationToken, FrameResult, RunSummary, StereoPipeline

__all__ = [
    "ArrayFrameSource",
    "CancellationToken",
    "DirectoryFrameSource",
    "FramePair",
    "FrameResult",
    "InvalidFrameError",
    "RawImage",
    "RunSummary",
    "StereoPipeline",
]
