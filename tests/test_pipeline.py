import logging

import pytest

from platepay.errors import InvalidManualPlate, OCRInvocationError
from platepay.ocr import OCRReading, OCRSettings
from platepay.pipeline import (
    TIE_BAND,
    MultiAttemptOCR,
    OCRAttemptResult,
    PlateScanner,
    ResultSelector,
    validate_manual_plate,
)
from platepay.preprocess import ATTEMPT_LADDER, ImagePreprocessor


def _result(plate, confidence, label="attempt"):
    return OCRAttemptResult(attempt_label=label, extracted_plate=plate, confidence=confidence, raw_text=plate or "")


class BrokenPreprocessor(ImagePreprocessor):
    def _apply(self, frame, recipe):
        raise RuntimeError("stage exploded")


# -- selector --

def test_select_empty_and_all_none():
    selector = ResultSelector()
    assert selector.select([]) is None
    assert selector.select([_result(None, 90), _result(None, 80)]) is None


def test_select_single_result():
    only = _result("AB12 CDE", 40)
    assert ResultSelector().select([_result(None, 99), only]) is only


def test_agreement_wins_inside_tie_band():
    results = [_result("AB12 CDE", 62, "full"), _result("AB12 CDE", 55, "contrast"), _result("XY99 ZZZ", 70, "original")]
    best = ResultSelector().select(results)
    assert best.extracted_plate == "AB12 CDE"
    assert best.attempt_label == "full"


def test_tie_band_boundary():
    # Documented policy: a 10 point gap is still a tie, 11 is not.
    assert TIE_BAND == 10.0
    at_band = [_result("AB12 CDE", 60), _result("AB12 CDE", 30), _result("XY99 ZZZ", 70)]
    past_band = [_result("AB12 CDE", 59), _result("AB12 CDE", 30), _result("XY99 ZZZ", 70)]
    assert ResultSelector().select(at_band).extracted_plate == "AB12 CDE"
    assert ResultSelector().select(past_band).extracted_plate == "XY99 ZZZ"


def test_higher_confidence_breaks_equal_votes():
    results = [_result("AB12 CDE", 50), _result("XY99 ZZZ", 58)]
    assert ResultSelector().select(results).extracted_plate == "XY99 ZZZ"


def test_tie_band_is_tunable():
    results = [_result("AB12 CDE", 62), _result("AB12 CDE", 55), _result("XY99 ZZZ", 70)]
    assert ResultSelector(tie_band=5).select(results).extracted_plate == "XY99 ZZZ"


# -- multi attempt --

def test_runs_full_ladder_and_keeps_empty_attempts(frame, fake_ocr):
    engine = fake_ocr([("AB12 CDE", 80), ("noise", 30), ("AB12CDE", 75), ("", 0)])
    results = MultiAttemptOCR(engine).run(frame, "UK")
    assert [r.attempt_label for r in results] == [r.name for r in ATTEMPT_LADDER]
    assert [r.extracted_plate for r in results] == ["AB12 CDE", None, "AB12 CDE", None]
    assert results[-1].source_image is frame
    assert len(engine.calls) == 4


def test_ocr_receives_country_settings(frame, fake_ocr):
    engine = fake_ocr([])
    MultiAttemptOCR(engine, language="eng", timeout_sec=3).run(frame, "DE")
    _, language, settings = engine.calls[0]
    assert language == "eng"
    assert isinstance(settings, OCRSettings)
    assert settings.page_segmentation_mode == "single-line"
    assert settings.character_whitelist.startswith("ABC")
    assert "-" in settings.character_whitelist
    assert settings.timeout == 3
    assert settings.preserve_interword_spaces


def test_failed_attempt_does_not_abort_ladder(frame, fake_ocr):
    engine = fake_ocr([
        OCRInvocationError("timeout", timed_out=True),
        RuntimeError("engine crashed"),
        ("AB12 CDE", 70),
        ("AB12 CDE", 60),
    ])
    results = MultiAttemptOCR(engine).run(frame, "UK")
    assert [r.attempt_label for r in results] == ["contrast", "original"]


def test_every_preprocessing_failure_uses_original_frame(frame, fake_ocr):
    engine = fake_ocr([("AB12 CDE", 50)] * 4)
    results = MultiAttemptOCR(engine, preprocessor=BrokenPreprocessor()).run(frame, "UK")
    assert len(results) == 4
    assert all(r.source_image is frame for r in results)
    assert [r.used_fallback for r in results] == [True, True, True, False]
    assert all(call[0] is frame for call in engine.calls)


def test_concurrent_run_keeps_ladder_order(frame):
    class ShapeAwareOCR:
        def recognize(self, image, language, settings):
            # only the letterboxed variants carry a readable plate
            text = "AB12 CDE" if image.shape == (150, 400, 3) else ""
            return OCRReading(text, 60.0)

    results = MultiAttemptOCR(ShapeAwareOCR(), max_workers=4).run(frame, "UK")
    assert [r.attempt_label for r in results] == [r.name for r in ATTEMPT_LADDER]
    assert results[0].extracted_plate == "AB12 CDE"
    assert results[-1].extracted_plate is None


def test_engine_confidence_is_clamped(frame, fake_ocr):
    engine = fake_ocr([("AB12 CDE", 140.0), ("AB12 CDE", -5.0)])
    results = MultiAttemptOCR(engine).run(frame, "UK")
    assert [r.confidence for r in results[:2]] == [100.0, 0.0]


def test_unsupported_country_warns_once_per_run(frame, fake_ocr, caplog):
    engine = fake_ocr([("AB12 CDE", 80)] * 4)
    with caplog.at_level(logging.WARNING):
        results = MultiAttemptOCR(engine).run(frame, "ZZ")
    assert results[0].extracted_plate == "AB12 CDE"
    assert caplog.text.count("not supported") == 1

# -- scanner --

def test_scan_outcome_with_plate(frame, fake_ocr):
    engine = fake_ocr([("AB12 CDE", 62), ("XY99 ZZZ", 70), ("AB12CDE", 55), ("", 0)])
    outcome = PlateScanner(MultiAttemptOCR(engine)).scan(frame, "UK")
    assert outcome.detected
    assert outcome.final_plate == "AB12 CDE"
    assert outcome.best.attempt_label == "full"
    assert len(outcome.attempts) == 4


def test_scan_with_no_plate_is_a_normal_outcome(frame, fake_ocr):
    engine = fake_ocr([OCRInvocationError("down")] * 4)
    outcome = PlateScanner(MultiAttemptOCR(engine)).scan(frame, "UK")
    assert not outcome.detected
    assert outcome.final_plate is None
    assert outcome.attempts == ()


# -- manual entry --

def test_manual_plate_is_formatted():
    assert validate_manual_plate("ab12cde", "UK") == "AB12 CDE"
    assert validate_manual_plate("AB-123-CD", "FR") == "AB-123-CD"
    assert validate_manual_plate("ab12cd", "NL") == "AB-12-CD"


def test_manual_plate_rejected_with_examples():
    with pytest.raises(InvalidManualPlate) as exc:
        validate_manual_plate("HELLO", "UK")
    assert exc.value.country == "UK"
    assert "AB12 CDE" in exc.value.examples
