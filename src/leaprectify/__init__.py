from leaprectify.core.calibration import CalibrationParameters, CameraCalibration
from leaprectify.core.crop import MisconfiguredRoiError, Roi, crop, validate_roi
from leaprectify.core.rectify import Rectifier, rectify
from leaprectify.pipeline import StereoPipeline

__all__ = [
    "CalibrationParameters",
    "CameraCalibration",
    "MisconfiguredRoiError",
    "Rectifier",
    "Roi",
    "StereoPipeline",
    "crop",
    "rectify",
    "validate_roi",
]
