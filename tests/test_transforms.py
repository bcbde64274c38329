"""Tests for letterbox preprocessing and mask postprocessing."""

from __future__ import annotations

import numpy as np
import pytest

from sam2_onnx.errors import InputValidationError
from sam2_onnx.structures import Image, SegmentationResult
from sam2_onnx.utils.transforms import (
    PIXEL_MEAN,
    PIXEL_STD,
    SAM2Transforms,
    compute_letterbox,
    postprocess_mask,
    preprocess_image,
    round_half_up,
)


def _uniform_image(width: int, height: int, value: float = 0.5) -> Image:
    return Image(width=width, height=height, data=np.full((height, width, 3), value, np.float32))


def _result_for(width: int, height: int, masks: np.ndarray) -> SegmentationResult:
    geometry = compute_letterbox(width, height)
    return SegmentationResult(
        masks=masks.astype(np.float32),
        iou_predictions=np.ones(masks.shape[0], dtype=np.float32),
        num_masks=masks.shape[0],
        original_width=width,
        original_height=height,
        scale=geometry.scale,
        x_offset=geometry.x_offset,
        y_offset=geometry.y_offset,
    )


def test_letterbox_landscape_example() -> None:
    geometry = compute_letterbox(800, 600)

    assert geometry.scale == pytest.approx(1.28)
    assert (geometry.resized_width, geometry.resized_height) == (1024, 768)
    assert (geometry.x_offset, geometry.y_offset) == (0, 128)


def test_letterbox_portrait_example() -> None:
    geometry = compute_letterbox(600, 800)

    assert (geometry.resized_width, geometry.resized_height) == (768, 1024)
    assert (geometry.x_offset, geometry.y_offset) == (128, 0)


@pytest.mark.parametrize(
    "width,height",
    [(1, 1), (800, 600), (1920, 1080), (333, 777), (1024, 1024), (3000, 10), (7, 2049)],
)
def test_letterbox_invariants(width: int, height: int) -> None:
    geometry = compute_letterbox(width, height)

    assert geometry.scale == pytest.approx(min(1024 / width, 1024 / height))
    assert geometry.resized_width <= 1024 and geometry.resized_height <= 1024
    assert max(geometry.resized_width, geometry.resized_height) == 1024
    assert geometry.x_offset == (1024 - geometry.resized_width) // 2
    assert geometry.y_offset == (1024 - geometry.resized_height) // 2
    assert geometry.x_offset + geometry.resized_width <= 1024
    assert geometry.y_offset + geometry.resized_height <= 1024


def test_letterbox_keeps_thin_images_visible() -> None:
    geometry = compute_letterbox(100000, 1)

    assert geometry.resized_height == 1
    assert geometry.y_offset == 511


@pytest.mark.parametrize("width,height", [(0, 10), (10, 0), (-5, 5)])
def test_letterbox_rejects_non_positive_sizes(width: int, height: int) -> None:
    with pytest.raises(InputValidationError):
        compute_letterbox(width, height)


def test_round_half_up_is_not_bankers_rounding() -> None:
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2
    assert round(2.5) == 2


def test_preprocess_layout_and_padding() -> None:
    result = preprocess_image(_uniform_image(800, 600))
    canvas = result.canvas

    assert canvas.shape == (3, 1024, 1024)
    assert canvas.dtype == np.float32
    assert (result.scale, result.x_offset, result.y_offset) == (pytest.approx(1.28), 0, 128)

    for c in range(3):
        inside = (0.5 - PIXEL_MEAN[c]) / PIXEL_STD[c]
        padding = -PIXEL_MEAN[c] / PIXEL_STD[c]
        assert np.allclose(canvas[c, 128:896, :], inside, atol=1e-5)
        assert np.allclose(canvas[c, :128, :], padding, atol=1e-5)
        assert np.allclose(canvas[c, 896:, :], padding, atol=1e-5)


def test_preprocess_bilinear_samples_with_clamped_neighbours() -> None:
    data = np.zeros((1, 2, 3), dtype=np.float32)
    data[0, 1, 0] = 1.0
    image = Image(width=2, height=1, data=data)

    result = preprocess_image(image, resolution=4, pixel_mean=(0, 0, 0), pixel_std=(1, 1, 1))

    # scale 2, footprint 4x2 at y_offset 1
    assert result.y_offset == 1
    np.testing.assert_allclose(result.canvas[0, 1], [0.0, 0.5, 1.0, 1.0], atol=1e-6)
    np.testing.assert_allclose(result.canvas[0, 2], [0.0, 0.5, 1.0, 1.0], atol=1e-6)
    np.testing.assert_allclose(result.canvas[0, 0], 0.0)
    np.testing.assert_allclose(result.canvas[0, 3], 0.0)
    np.testing.assert_allclose(result.canvas[1:], 0.0)


def test_preprocess_accepts_flat_buffers() -> None:
    flat = np.full(4 * 2 * 3, 0.25, dtype=np.float32)

    result = preprocess_image(Image(width=4, height=2, data=flat))

    assert result.canvas.shape == (3, 1024, 1024)


def test_preprocess_rejects_buffer_size_mismatch() -> None:
    with pytest.raises(InputValidationError):
        preprocess_image(Image(width=10, height=10, data=np.zeros(10, dtype=np.float32)))


def test_postprocess_all_foreground_mask() -> None:
    result = _result_for(800, 600, np.ones((1, 1024, 1024)))

    final = postprocess_mask(result)

    assert (final.width, final.height) == (800, 600)
    assert final.data.shape == (600, 800)
    assert final.data.dtype == np.uint8
    assert np.all(final.data == 255)


def test_postprocess_threshold_tie_is_background() -> None:
    at_threshold = postprocess_mask(_result_for(800, 600, np.full((1, 1024, 1024), 0.5)))
    above = postprocess_mask(_result_for(800, 600, np.full((1, 1024, 1024), 0.5001)))

    assert np.all(at_threshold.data == 0)
    assert np.all(above.data == 255)


def test_postprocess_crops_the_letterbox_footprint() -> None:
    masks = np.zeros((1, 1024, 1024))
    masks[0, :512, :] = 1.0

    final = postprocess_mask(_result_for(800, 600, masks))

    # canvas row 512 is source row 384 of the 768-row footprint
    assert np.all(final.data[:300] == 255)
    assert np.all(final.data[300:] == 0)


def test_postprocess_ignores_padding() -> None:
    masks = np.zeros((1, 1024, 1024))
    masks[0, :128, :] = 1.0
    masks[0, 896:, :] = 1.0

    final = postprocess_mask(_result_for(800, 600, masks))

    assert not final.data.any()


def test_postprocess_returns_fresh_buffers() -> None:
    result = _result_for(40, 30, np.ones((1, 1024, 1024)))

    first = postprocess_mask(result)
    second = postprocess_mask(result)
    first.data[:] = 0

    assert np.all(second.data == 255)


def test_postprocess_rejects_bad_index_and_size() -> None:
    with pytest.raises(InputValidationError):
        postprocess_mask(_result_for(800, 600, np.ones((1, 1024, 1024))), mask_index=1)
    with pytest.raises(InputValidationError):
        postprocess_mask(_result_for(800, 600, np.ones((1, 512, 512))))


def test_transforms_module_round_trip_geometry() -> None:
    transforms = SAM2Transforms(mask_threshold=0.5)

    preprocessed = transforms(_uniform_image(640, 480))
    geometry = preprocessed.geometry
    result = SegmentationResult(
        masks=np.ones((1, 1024, 1024), dtype=np.float32),
        iou_predictions=np.array([0.8], dtype=np.float32),
        num_masks=1,
        original_width=geometry.original_width,
        original_height=geometry.original_height,
        scale=geometry.scale,
        x_offset=geometry.x_offset,
        y_offset=geometry.y_offset,
    )
    final = transforms.postprocess_masks(result)

    assert preprocessed.canvas.shape == (3, 1024, 1024)
    assert final.data.shape == (480, 640)
    assert np.all(final.data == 255)
