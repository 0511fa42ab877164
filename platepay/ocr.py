import logging
import shlex
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np
import pytesseract

from .countries import CountryProfile
from .errors import OCRInvocationError


PAGE_SEGMENTATION_MODES = {
    "single-block": 6,
    "single-line": 7,
    "single-word": 8,
    "raw-line": 13,
}

ENGINE_MODES = {
    "legacy": 0,
    "lstm": 1,
    "combined": 2,
    "default": 3,
}


@dataclass(frozen=True)
class OCRSettings:
    character_whitelist: str
    character_blacklist: str = ""
    page_segmentation_mode: str = "single-line"
    engine_mode: Optional[str] = None
    preserve_interword_spaces: bool = True
    timeout: float = 0

    @classmethod
    def for_profile(cls, profile: CountryProfile, timeout: float = 0, page_segmentation_mode: str = "single-line") -> "OCRSettings":
        return cls(
            character_whitelist=profile.character_whitelist,
            character_blacklist=profile.blacklist,
            page_segmentation_mode=page_segmentation_mode,
            engine_mode=profile.engine_mode,
            timeout=timeout,
        )

    def tesseract_config(self) -> str:
        try:
            args = ["--psm", str(PAGE_SEGMENTATION_MODES[self.page_segmentation_mode])]
            if self.engine_mode:
                args = ["--oem", str(ENGINE_MODES[self.engine_mode])] + args
        except KeyError as e:
            raise OCRInvocationError(f"Unknown tesseract mode: {e}") from None
        if self.character_whitelist:
            args += ["-c", f"tessedit_char_whitelist={self.character_whitelist}"]
        if self.character_blacklist:
            args += ["-c", f"tessedit_char_blacklist={self.character_blacklist}"]
        args += ["-c", f"preserve_interword_spaces={1 if self.preserve_interword_spaces else 0}"]
        return " ".join(shlex.quote(a) for a in args)


@dataclass(frozen=True)
class OCRReading:
    text: str
    confidence: float


def _conf(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return -1.0


def reading_from_data(data: dict) -> OCRReading:
    """Rebuild line-separated text and a mean word confidence from image_to_data output."""
    lines = {}
    confs = []
    for i, word in enumerate(data.get("text", [])):
        word = (word or "").strip()
        conf = _conf(data["conf"][i])
        if not word or conf < 0:
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word)
        confs.append(conf)
    text = "\n".join(" ".join(words) for words in lines.values())
    confidence = sum(confs) / len(confs) if confs else 0.0
    return OCRReading(text=text, confidence=max(0.0, min(100.0, confidence)))


class TesseractOCR:
    def __init__(self, enabled: bool = True, tesseract_cmd: str = ""):
        self.enabled = enabled
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def _to_rgb(self, image: np.ndarray) -> np.ndarray:
        if image.ndim == 3 and image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        if image.ndim == 3 and image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2RGB)
        return image

    def recognize(self, image, language: str, settings: OCRSettings) -> OCRReading:
        if not self.enabled:
            logging.debug("OCR disabled, returning empty reading")
            return OCRReading(text="", confidence=0.0)
        config = settings.tesseract_config()
        try:
            data = pytesseract.image_to_data(
                self._to_rgb(image),
                lang=language,
                config=config,
                output_type=pytesseract.Output.DICT,
                timeout=settings.timeout,
            )
        except (pytesseract.TesseractError, OSError, ValueError) as e:
            raise OCRInvocationError(f"Tesseract failed: {e}") from e
        except RuntimeError as e:
            # pytesseract signals a killed process with a bare RuntimeError
            timed_out = "timeout" in str(e).lower()
            raise OCRInvocationError(f"Tesseract failed: {e}", timed_out=timed_out) from e
        return reading_from_data(data)
