from typing import List

import numpy as np
import pytest

from platepay.ocr import OCRReading


class FakeOCR:
    """Replays scripted readings, one per recognize() call."""

    def __init__(self, readings: List):
        self._readings = list(readings)
        self.calls = []

    def recognize(self, image, language, settings):
        self.calls.append((image, language, settings))
        item = self._readings.pop(0) if self._readings else OCRReading("", 0.0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, tuple):
            return OCRReading(*item)
        return item


@pytest.fixture
def frame():
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, size=(60, 200, 3), dtype=np.uint8)


@pytest.fixture
def fake_ocr():
    return FakeOCR
