import numpy as np
import pytest

from platepay.preprocess import (
    ATTEMPT_LADDER,
    ORIGINAL,
    ImagePreprocessor,
    Recipe,
    binarize,
    equalize_contrast,
    letterbox,
    median_denoise,
    sharpen,
    to_grayscale,
)


def test_grayscale_uses_luminance_weights():
    img = np.zeros((2, 2, 3), dtype=np.uint8)
    img[..., 2] = 200  # red channel in BGR
    out = to_grayscale(img)
    expected = round(0.299 * 200)
    assert out.shape == img.shape
    assert np.all(np.abs(out.astype(int) - expected) <= 1)
    assert np.all(out[..., 0] == out[..., 1]) and np.all(out[..., 1] == out[..., 2])


def test_equalize_maps_through_normalized_cdf():
    img = np.zeros((2, 2, 3), dtype=np.uint8)
    img[0, :] = 10
    img[1, :] = 20
    out = equalize_contrast(img)
    # half the pixels are <= 10, all are <= 20
    assert out[0, 0, 0] == 128
    assert out[1, 0, 0] == 255


def test_median_leaves_border_and_removes_speck():
    img = np.full((5, 5, 3), 100, dtype=np.uint8)
    img[2, 2] = 255
    img[0, 0] = 0
    out = median_denoise(img)
    assert out[2, 2, 0] == 100
    assert out[0, 0, 0] == 0


def test_sharpen_clamps_and_keeps_border():
    img = np.full((5, 5, 3), 10, dtype=np.uint8)
    img[2, 2] = 250
    out = sharpen(img)
    assert out[2, 2, 0] == 255
    assert out[2, 1, 0] == 0
    assert np.array_equal(out[0], img[0])


def test_letterbox_preserves_aspect_on_white_canvas():
    img = np.zeros((50, 400, 3), dtype=np.uint8)
    out = letterbox(img, (400, 150))
    assert out.shape == (150, 400, 3)
    # 400x50 fits as 400x50, centered vertically
    assert np.all(out[:50] == 255)
    assert np.all(out[50:100] == 0)
    assert np.all(out[100:] == 255)


def test_letterbox_tall_image_is_pillarboxed():
    img = np.zeros((300, 100, 3), dtype=np.uint8)
    out = letterbox(img, (400, 150))
    assert out.shape == (150, 400, 3)
    assert np.all(out[:, :150] == 255)
    assert np.all(out[:, 250:] == 255)


def test_binarize_threshold():
    img = np.array([[[128, 128, 128], [129, 129, 129]]], dtype=np.uint8)
    out = binarize(img)
    assert out[0, 0, 0] == 0
    assert out[0, 1, 0] == 255


def test_full_recipe_produces_binary_canvas(frame):
    out = ImagePreprocessor().produce_variant(frame, ATTEMPT_LADDER[0])
    assert out.shape == (150, 400, 3)
    assert set(np.unique(out)) <= {0, 255}


def test_stages_do_not_mutate_input(frame):
    before = frame.copy()
    for recipe in ATTEMPT_LADDER:
        ImagePreprocessor().produce_variant(frame, recipe)
    assert np.array_equal(frame, before)


def test_original_recipe_returns_frame_untouched(frame):
    assert ImagePreprocessor().produce_variant(frame, ORIGINAL) is frame


def test_grayscale_and_bgra_inputs_are_accepted():
    gray = np.full((30, 90), 200, dtype=np.uint8)
    bgra = np.full((30, 90, 4), 200, dtype=np.uint8)
    pre = ImagePreprocessor(target_size=(120, 40))
    assert pre.produce_variant(gray, ATTEMPT_LADDER[2]).shape == (40, 120, 3)
    assert pre.produce_variant(bgra, ATTEMPT_LADDER[2]).shape == (40, 120, 3)


def test_stage_failure_falls_back_to_original(frame, monkeypatch, caplog):
    def boom(img):
        raise ValueError("kaboom")

    monkeypatch.setattr("platepay.preprocess.sharpen", boom)
    out = ImagePreprocessor().produce_variant(frame, ATTEMPT_LADDER[0])
    assert out is frame
    assert "kaboom" in caplog.text


def test_invalid_input_falls_back():
    bad = np.zeros((10, 10), dtype=np.float32)
    assert ImagePreprocessor().produce_variant(bad, ATTEMPT_LADDER[0]) is bad


def test_recipe_without_stages():
    assert not ORIGINAL.has_stages
    assert Recipe("gray-only", normalize_size=False, binarize=False).has_stages


@pytest.mark.parametrize("recipe", ATTEMPT_LADDER[:3], ids=lambda r: r.name)
def test_ladder_recipes_normalize_and_binarize(recipe):
    assert recipe.grayscale and recipe.normalize_size and recipe.binarize
