import logging
from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np

from .errors import PreprocessingError


DEFAULT_TARGET_SIZE = (400, 150)
BINARY_THRESHOLD = 128
SHARPEN_KERNEL = np.array([[0, -1, 0], [-1, 5, -1], [0, -1, 0]], dtype=np.float32)


@dataclass(frozen=True)
class Recipe:
    name: str
    grayscale: bool = True
    enhance_contrast: bool = False
    denoise: bool = False
    sharpen: bool = False
    normalize_size: bool = True
    binarize: bool = True

    @property
    def has_stages(self) -> bool:
        return any((self.grayscale, self.enhance_contrast, self.denoise, self.sharpen,
                    self.normalize_size, self.binarize))


ORIGINAL = Recipe("original", grayscale=False, normalize_size=False, binarize=False)

# Ordered from the most aggressive recipe to the untouched frame
ATTEMPT_LADDER = (
    Recipe("full", enhance_contrast=True, denoise=True, sharpen=True),
    Recipe("contrast+sharpen", enhance_contrast=True, sharpen=True),
    Recipe("contrast", enhance_contrast=True),
    ORIGINAL,
)


def _as_bgr(frame) -> np.ndarray:
    if not isinstance(frame, np.ndarray) or frame.size == 0:
        raise PreprocessingError("frame must be a non-empty numpy array")
    if frame.dtype != np.uint8:
        raise PreprocessingError(f"unsupported frame dtype {frame.dtype}")
    if frame.ndim == 2:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    if frame.ndim == 3 and frame.shape[2] == 3:
        return frame
    if frame.ndim == 3 and frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
    raise PreprocessingError(f"unsupported frame shape {frame.shape}")


def _keep_border(src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    dst[0, :] = src[0, :]
    dst[-1, :] = src[-1, :]
    dst[:, 0] = src[:, 0]
    dst[:, -1] = src[:, -1]
    return dst


def to_grayscale(img: np.ndarray) -> np.ndarray:
    # cv2 uses 0.299 R + 0.587 G + 0.114 B for BGR2GRAY
    gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    return cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)


def equalize_contrast(img: np.ndarray) -> np.ndarray:
    luma = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    hist = np.bincount(luma.ravel(), minlength=256)
    cdf = np.cumsum(hist)
    lut = np.round(cdf / float(luma.size) * 255).astype(np.uint8)
    return cv2.cvtColor(lut[luma], cv2.COLOR_GRAY2BGR)


def median_denoise(img: np.ndarray) -> np.ndarray:
    if img.shape[0] < 3 or img.shape[1] < 3:
        return img.copy()
    return _keep_border(img, cv2.medianBlur(img, 3))


def sharpen(img: np.ndarray) -> np.ndarray:
    if img.shape[0] < 3 or img.shape[1] < 3:
        return img.copy()
    # ddepth=-1 keeps uint8, which saturates to [0, 255]
    return _keep_border(img, cv2.filter2D(img, -1, SHARPEN_KERNEL))


def letterbox(img: np.ndarray, target: Tuple[int, int] = DEFAULT_TARGET_SIZE) -> np.ndarray:
    tw, th = int(target[0]), int(target[1])
    if tw <= 0 or th <= 0:
        raise PreprocessingError(f"invalid target size {target}")
    h, w = img.shape[:2]
    aspect = w / float(h)
    if aspect > tw / float(th):
        dw, dh = tw, max(1, int(round(tw / aspect)))
    else:
        dw, dh = max(1, int(round(th * aspect))), th
    interp = cv2.INTER_AREA if dw < w else cv2.INTER_CUBIC
    resized = cv2.resize(img, (dw, dh), interpolation=interp)
    canvas = np.full((th, tw) + img.shape[2:], 255, dtype=np.uint8)
    x0, y0 = (tw - dw) // 2, (th - dh) // 2
    canvas[y0:y0 + dh, x0:x0 + dw] = resized
    return canvas


def binarize(img: np.ndarray, threshold: int = BINARY_THRESHOLD) -> np.ndarray:
    _, out = cv2.threshold(img, threshold, 255, cv2.THRESH_BINARY)
    return out


class ImagePreprocessor:
    def __init__(self, target_size: Tuple[int, int] = DEFAULT_TARGET_SIZE, threshold: int = BINARY_THRESHOLD):
        self.target_size = tuple(target_size)
        self.threshold = threshold

    def _apply(self, frame, recipe: Recipe) -> np.ndarray:
        if not recipe.has_stages:
            return frame
        img = _as_bgr(frame)
        if recipe.grayscale:
            img = to_grayscale(img)
        if recipe.enhance_contrast:
            img = equalize_contrast(img)
        if recipe.denoise:
            img = median_denoise(img)
        if recipe.sharpen:
            img = sharpen(img)
        if recipe.normalize_size:
            img = letterbox(img, self.target_size)
        if recipe.binarize:
            img = binarize(img, self.threshold)
        if img is frame:
            img = img.copy()
        return img

    def produce_variant(self, frame, recipe: Recipe) -> np.ndarray:
        """Run the recipe's stages; on any failure hand back the original frame."""
        try:
            return self._apply(frame, recipe)
        except Exception as e:
            logging.warning("Preprocessing '%s' failed, using original frame: %s", recipe.name, e)
            return frame
