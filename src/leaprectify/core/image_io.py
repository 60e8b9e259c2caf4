from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
from PIL import Image

IMAGE_FORMATS = ("png", "jpg", "webp")


def load_gray_u8(path: str | Path) -> np.ndarray:
    """
    Load an image as grayscale uint8.

    Primary backend is OpenCV. Pillow is used when OpenCV cannot decode the file
    (some builds lack codecs such as webp); Pillow also raises the proper error
    for missing or unreadable files.
    """
    p = Path(path)
    img = cv2.imread(str(p), cv2.IMREAD_GRAYSCALE)
    if img is not None:
        if img.dtype != np.uint8:
            img = np.clip(img, 0, 255).astype(np.uint8)
        return img

    with Image.open(p) as im:
        im = im.convert("L")
        arr = np.asarray(im, dtype=np.uint8)
    return arr


def save_gray_u8(path: str | Path, img: np.ndarray, quality: int = 95) -> Path:
    p = Path(path)
    arr = np.ascontiguousarray(np.asarray(img, dtype=np.uint8))
    if arr.ndim != 2:
        raise ValueError("expected a single-channel (H,W) image")
    im = Image.fromarray(arr)
    ext = p.suffix.lower().lstrip(".")
    if ext in ("jpg", "jpeg"):
        im.save(p, quality=max(0, min(100, int(quality))), subsampling=0)
    elif ext == "webp":
        im.save(p, lossless=True)
    elif ext == "png":
        im.save(p)
    else:
        raise ValueError("image format must be png|jpg|webp")
    return p
