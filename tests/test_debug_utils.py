"""Tests for debug-state capture, overlays and visualization output."""

from __future__ import annotations

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from sam2_onnx.debug_utils import (
    SAM2Visualizer,
    capture_debug_state,
    clear_debug_states,
    create_overlay,
    disable_debug_mode,
    enable_debug_mode,
    get_debug_states,
    is_debug_enabled,
    visualize_debug_states,
)
from sam2_onnx.sam2_image_predictor import SAM2OnnxImagePredictor
from sam2_onnx.structures import FinalMask, PromptSet


@pytest.fixture
def debug_mode():
    enable_debug_mode()
    yield
    disable_debug_mode()


def _full_mask(width: int, height: int, value: int = 255) -> FinalMask:
    return FinalMask(width=width, height=height, data=np.full((height, width), value, np.uint8))


def test_capture_is_off_by_default() -> None:
    assert not is_debug_enabled()

    capture_debug_state("component", "state", np.zeros(3))

    assert get_debug_states() == {}


def test_capture_stores_copies(debug_mode) -> None:
    data = np.arange(4, dtype=np.float32)

    capture_debug_state("component", "state", data, metadata={"stage": "input"})
    data[:] = 0

    state = get_debug_states()["component"]["state"]
    np.testing.assert_array_equal(state["data"], [0, 1, 2, 3])
    assert state["shape"] == (4,)
    assert state["metadata"] == {"stage": "input"}

    clear_debug_states()
    assert get_debug_states() == {}


def test_predictor_debug_mode_captures_stages(debug_mode, sam_model, small_image, center_prompt) -> None:
    predictor = SAM2OnnxImagePredictor(sam_model, debug_mode=True)

    predictor.segment(small_image, center_prompt)

    states = get_debug_states()
    assert states["image_encoder"]["input_image"]["shape"] == (1, 3, 1024, 1024)
    assert states["image_encoder"]["image_embed"]["shape"] == (1, 256, 64, 64)
    assert states["mask_decoder"]["mask_logits"]["shape"] == (1, 1, 1024, 1024)


def test_overlay_tints_masked_pixels() -> None:
    image = np.zeros((20, 20, 3), dtype=np.uint8)
    mask = np.zeros((20, 20), dtype=np.uint8)
    mask[:, :10] = 255
    mask[:, 10] = 128

    overlay = create_overlay(image, FinalMask(width=20, height=20, data=mask))

    assert tuple(overlay[0, 0]) == (0, 76, 0)
    assert tuple(overlay[0, 10]) == (0, 0, 0)
    assert tuple(overlay[0, 15]) == (0, 0, 0)
    assert not np.shares_memory(overlay, image)


def test_overlay_draws_clamped_prompt_points() -> None:
    image = np.zeros((20, 20, 3), dtype=np.uint8)
    prompts = PromptSet(points=[(0.0, 0.0), (1.0, 1.0)], labels=[1, 0])

    overlay = create_overlay(image, _full_mask(20, 20, value=0), prompts)

    # centres are kept 5 pixels inside the border
    assert tuple(overlay[5, 5]) == (0, 0, 255)
    assert tuple(overlay[5, 7]) == (0, 0, 255)
    assert tuple(overlay[7, 7]) == (0, 0, 0)
    assert tuple(overlay[14, 14]) == (255, 0, 0)
    assert tuple(overlay[16, 14]) == (255, 0, 0)


def test_overlay_defaults_missing_labels_to_foreground() -> None:
    image = np.zeros((20, 20, 3), dtype=np.uint8)
    prompts = PromptSet(points=[(0.5, 0.5)], labels=[])

    overlay = create_overlay(image, _full_mask(20, 20, value=0), prompts)

    assert tuple(overlay[10, 10]) == (0, 0, 255)


def test_overlay_rejects_size_mismatch() -> None:
    with pytest.raises(ValueError):
        create_overlay(np.zeros((20, 20, 3), dtype=np.uint8), _full_mask(10, 10))


def test_visualize_segmentation_saves_figure(tmp_path) -> None:
    image = np.zeros((20, 30, 3), dtype=np.uint8)

    SAM2Visualizer().visualize_segmentation(
        image, _full_mask(30, 20), iou_score=0.9, save_path=str(tmp_path)
    )

    assert (tmp_path / "segmentation.png").exists()


def test_visualize_debug_states_writes_summary(tmp_path) -> None:
    states = {
        "image_encoder": {
            "input_image": {
                "data": np.zeros((1, 3, 8, 8), dtype=np.float32),
                "shape": (1, 3, 8, 8),
                "dtype": np.float32,
                "metadata": {"stage": "input"},
            }
        },
        "mask_decoder": {
            "mask_logits": {
                "data": np.zeros((1, 1, 8, 8), dtype=np.float32),
                "shape": (1, 1, 8, 8),
                "dtype": np.float32,
                "metadata": {},
            }
        },
    }

    visualize_debug_states(states, save_path=str(tmp_path))

    assert (tmp_path / "canvas.png").exists()
    assert (tmp_path / "mask_probabilities.png").exists()
    summary = (tmp_path / "debug_summary.txt").read_text()
    assert "Component: image_encoder" in summary
    assert "State: mask_logits" in summary
