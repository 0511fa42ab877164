import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .countries import DEFAULT_COUNTRY, CountryProfile, get_profile, validate
from .errors import InvalidManualPlate, OCRInvocationError
from .extract import extract_plate
from .ocr import OCRReading, OCRSettings
from .preprocess import ATTEMPT_LADDER, ImagePreprocessor, Recipe


# Confidence points within which two readings count as equally confident.
# Heuristic, not tuned against field data.
TIE_BAND = 10.0


@dataclass(frozen=True)
class OCRAttemptResult:
    attempt_label: str
    extracted_plate: Optional[str]
    confidence: float
    raw_text: str
    source_image: Any = field(default=None, repr=False, compare=False)
    used_fallback: bool = False


@dataclass(frozen=True)
class ScanOutcome:
    final_plate: Optional[str]
    attempts: Tuple[OCRAttemptResult, ...] = ()
    best: Optional[OCRAttemptResult] = None

    @property
    def detected(self) -> bool:
        return self.final_plate is not None


class MultiAttemptOCR:
    def __init__(
        self,
        engine,
        preprocessor: Optional[ImagePreprocessor] = None,
        ladder: Sequence[Recipe] = ATTEMPT_LADDER,
        language: str = "eng",
        timeout_sec: float = 0,
        page_segmentation_mode: str = "single-line",
        max_workers: int = 1,
        extractor: Callable[[str, CountryProfile], Optional[str]] = extract_plate,
    ):
        self.engine = engine
        self.preprocessor = preprocessor or ImagePreprocessor()
        self.ladder = tuple(ladder)
        self.language = language
        self.timeout_sec = timeout_sec
        self.page_segmentation_mode = page_segmentation_mode
        self.max_workers = max(1, int(max_workers))
        self.extractor = extractor

    def _attempt(self, frame, recipe: Recipe, profile: CountryProfile, settings: OCRSettings) -> Optional[OCRAttemptResult]:
        image = self.preprocessor.produce_variant(frame, recipe)
        fallback = image is frame and recipe.has_stages
        try:
            reading: OCRReading = self.engine.recognize(image, self.language, settings)
        except OCRInvocationError as e:
            kind = "timed out" if e.timed_out else "failed"
            logging.warning("OCR attempt '%s' %s: %s", recipe.name, kind, e)
            return None
        except Exception as e:
            logging.warning("OCR attempt '%s' failed: %s", recipe.name, e)
            return None
        plate = self.extractor(reading.text, profile)
        confidence = max(0.0, min(100.0, float(reading.confidence)))
        if plate:
            logging.info("Attempt '%s': found %s (confidence %.1f)", recipe.name, plate, confidence)
        else:
            logging.info("Attempt '%s': no plate in %r", recipe.name, reading.text.strip())
        return OCRAttemptResult(
            attempt_label=recipe.name,
            extracted_plate=plate,
            confidence=confidence,
            raw_text=reading.text.strip(),
            source_image=image,
            used_fallback=fallback,
        )

    def run(self, frame, country: str = DEFAULT_COUNTRY) -> List[OCRAttemptResult]:
        profile = get_profile(country)
        settings = OCRSettings.for_profile(
            profile, timeout=self.timeout_sec, page_segmentation_mode=self.page_segmentation_mode
        )
        if self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = [pool.submit(self._attempt, frame, r, profile, settings) for r in self.ladder]
                results = [f.result() for f in futures]
        else:
            results = [self._attempt(frame, r, profile, settings) for r in self.ladder]
        return [r for r in results if r is not None]


class ResultSelector:
    def __init__(self, tie_band: float = TIE_BAND):
        self.tie_band = tie_band

    def select(self, results: Sequence[OCRAttemptResult]) -> Optional[OCRAttemptResult]:
        valid = [r for r in results if r.extracted_plate]
        if not valid:
            return None
        top = max(r.confidence for r in valid)
        votes = Counter(r.extracted_plate for r in valid)
        ranked = sorted(
            valid,
            key=lambda r: (r.confidence < top - self.tie_band, -votes[r.extracted_plate], -r.confidence),
        )
        best = ranked[0]
        logging.info(
            "Selected %s from '%s' (confidence %.1f, %d/%d attempts agree)",
            best.extracted_plate, best.attempt_label, best.confidence, votes[best.extracted_plate], len(valid),
        )
        return best


class PlateScanner:
    def __init__(self, ocr: MultiAttemptOCR, selector: Optional[ResultSelector] = None):
        self.ocr = ocr
        self.selector = selector or ResultSelector()

    def scan(self, frame, country: str = DEFAULT_COUNTRY) -> ScanOutcome:
        attempts = self.ocr.run(frame, country)
        best = self.selector.select(attempts)
        if best is None:
            logging.info("No plate detected after %d attempts", len(attempts))
            return ScanOutcome(final_plate=None, attempts=tuple(attempts))
        return ScanOutcome(final_plate=best.extracted_plate, attempts=tuple(attempts), best=best)


def validate_manual_plate(plate: str, country: str = DEFAULT_COUNTRY) -> str:
    """Return the display form of a typed-in plate or raise InvalidManualPlate."""
    profile = get_profile(country)
    if not validate(plate, profile):
        raise InvalidManualPlate(plate, profile.code, [p.example for p in profile.patterns])
    formatted = extract_plate(plate, profile)
    return formatted if formatted else plate.strip().upper()
