# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Debug Utilities for SAM2 ONNX Pipeline Inspection

This module provides tools for capturing and visualizing the intermediate
tensors that flow through the SAM2 ONNX pipeline: the letterboxed canvas, the
encoder feature maps, the raw decoder logits and the final masks.

Key Features:

1. **Non-intrusive Capture**: stages only record tensors when debug mode is on
2. **On-demand Activation**: a global switch, off by default
3. **Mask Overlays**: the same green-tinted overlay with prompt markers that
   interactive front-ends show to users
4. **Summaries**: per-state shape/dtype/statistics written to a text file

Usage:
    # Enable debug mode on the predictor
    predictor = SAM2OnnxImagePredictor(model, debug_mode=True)
    enable_debug_mode()

    mask, iou = predictor.segment(image, prompts)

    # Inspect captured states
    from sam2_onnx.debug_utils import get_debug_states, visualize_debug_states
    visualize_debug_states(get_debug_states(), save_path="debug_output/")
"""

import logging
import os
from collections import defaultdict
from typing import Dict, Optional

import matplotlib.pyplot as plt
import numpy as np
import torch

from sam2_onnx.structures import FinalMask, PromptSet

# Overlay appearance
OVERLAY_COLOR = (0, 255, 0)
OVERLAY_ALPHA = 0.3
FOREGROUND_POINT_COLOR = (0, 0, 255)
BACKGROUND_POINT_COLOR = (255, 0, 0)
POINT_RADIUS = 2
POINT_MARGIN = 5


class DebugStateCapture:
    """
    Central registry for captured pipeline states.

    States are stored per component as CPU numpy copies together with their
    shape, dtype and free-form metadata.
    """

    def __init__(self):
        self.states = defaultdict(dict)
        self.enabled = False

    def enable(self):
        self.enabled = True

    def disable(self):
        """Disable debug capture and clear stored states."""
        self.enabled = False
        self.clear()

    def clear(self):
        self.states.clear()

    def capture(
        self,
        component_name: str,
        state_name: str,
        data,
        metadata: Optional[Dict] = None,
    ):
        """
        Capture a tensor state from a pipeline component.

        Args:
            component_name: Name of the component (e.g. 'image_encoder')
            state_name: Name of the specific state (e.g. 'input_image')
            data: numpy array or torch tensor to capture
            metadata: Additional metadata about the captured state
        """
        if not self.enabled:
            return

        if isinstance(data, torch.Tensor):
            data = data.detach().cpu().numpy()
        data = np.array(data, copy=True)

        self.states[component_name][state_name] = {
            "data": data,
            "shape": data.shape,
            "dtype": data.dtype,
            "metadata": metadata or {},
        }

    def get_state(self, component_name: str, state_name: str = None):
        if state_name is None:
            return self.states.get(component_name, {})
        return self.states.get(component_name, {}).get(state_name)

    def get_all_states(self):
        return dict(self.states)


# Global debug capture instance
_debug_capture = DebugStateCapture()


def enable_debug_mode():
    """Enable global debug capture."""
    _debug_capture.enable()


def disable_debug_mode():
    """Disable global debug capture and drop captured states."""
    _debug_capture.disable()


def capture_debug_state(
    component_name: str, state_name: str, data, metadata: Optional[Dict] = None
):
    """Capture debug state using the global capture instance."""
    _debug_capture.capture(component_name, state_name, data, metadata)


def get_debug_states():
    return _debug_capture.get_all_states()


def clear_debug_states():
    _debug_capture.clear()


def is_debug_enabled():
    return _debug_capture.enabled


def _draw_point(pixels: np.ndarray, cx: int, cy: int, color) -> None:
    height, width = pixels.shape[:2]
    for dy in range(-POINT_RADIUS, POINT_RADIUS + 1):
        for dx in range(-POINT_RADIUS, POINT_RADIUS + 1):
            if dx * dx + dy * dy > POINT_RADIUS * POINT_RADIUS:
                continue
            x, y = cx + dx, cy + dy
            if 0 <= x < width and 0 <= y < height:
                pixels[y, x] = color


def create_overlay(
    image_rgb: np.ndarray,
    final_mask: FinalMask,
    prompts: Optional[PromptSet] = None,
) -> np.ndarray:
    """
    Blend a final mask over the original image and mark the prompt points.

    Masked pixels (value > 128) become ``0.7 * pixel + 0.3 * green``; other
    pixels are copied unchanged. Each prompt point is drawn as a small disc,
    blue for foreground and red for background, with its centre kept at least
    ``POINT_MARGIN`` pixels away from the image border.

    Args:
        image_rgb (np.ndarray): Original image, uint8 of shape (H, W, 3).
        final_mask (FinalMask): Mask at the same resolution.
        prompts (PromptSet, optional): Points to draw, normalized to the image.

    Returns:
        np.ndarray: New uint8 (H, W, 3) RGB image.
    """
    image_rgb = np.asarray(image_rgb)
    height, width = image_rgb.shape[:2]
    if final_mask.data.shape != (height, width):
        raise ValueError(
            f"Mask size mismatch: expected {(height, width)}, got {final_mask.data.shape}"
        )

    pixels = image_rgb.astype(np.float32)
    selected = final_mask.data > 128
    tint = np.asarray(OVERLAY_COLOR, dtype=np.float32)
    pixels[selected] = pixels[selected] * (1.0 - OVERLAY_ALPHA) + tint * OVERLAY_ALPHA
    overlay = pixels.astype(np.uint8)

    if prompts is not None:
        for index, (px, py) in enumerate(prompts.points):
            label = prompts.labels[index] if index < len(prompts.labels) else 1
            cx = min(max(int(px * width), POINT_MARGIN), width - POINT_MARGIN - 1)
            cy = min(max(int(py * height), POINT_MARGIN), height - POINT_MARGIN - 1)
            color = FOREGROUND_POINT_COLOR if label > 0 else BACKGROUND_POINT_COLOR
            _draw_point(overlay, cx, cy, color)

    return overlay


class SAM2Visualizer:
    """
    Matplotlib renderings of pipeline inputs and outputs.
    """

    def __init__(self, figsize_base=(12, 8), dpi=100):
        self.figsize_base = figsize_base
        self.dpi = dpi

    def _finish(self, fig, save_path: Optional[str], filename: str, show: bool):
        plt.tight_layout()
        if save_path:
            os.makedirs(save_path, exist_ok=True)
            fig.savefig(os.path.join(save_path, filename), dpi=self.dpi, bbox_inches="tight")
        if show:
            plt.show()
        else:
            plt.close(fig)
        return fig

    def visualize_segmentation(
        self,
        image_rgb: np.ndarray,
        final_mask: FinalMask,
        prompts: Optional[PromptSet] = None,
        iou_score: Optional[float] = None,
        save_path: Optional[str] = None,
        show: bool = False,
    ):
        """
        Show the original image, the binary mask and the overlay side by side.
        """
        overlay = create_overlay(image_rgb, final_mask, prompts)

        fig, axes = plt.subplots(1, 3, figsize=self.figsize_base, dpi=self.dpi)
        axes[0].imshow(image_rgb)
        axes[0].set_title("Image")
        axes[1].imshow(final_mask.data, cmap="gray", vmin=0, vmax=255)
        axes[1].set_title("Mask")
        axes[2].imshow(overlay)
        title = "Overlay"
        if iou_score is not None:
            title += f" (IoU={iou_score:.3f})"
        axes[2].set_title(title)
        for ax in axes:
            ax.axis("off")

        return self._finish(fig, save_path, "segmentation.png", show)

    def visualize_canvas(
        self, canvas: np.ndarray, save_path: Optional[str] = None, show: bool = False
    ):
        """
        Plot each channel of a normalized (3, S, S) encoder canvas.
        """
        fig, axes = plt.subplots(1, 3, figsize=self.figsize_base, dpi=self.dpi)
        for c, name in enumerate(("R", "G", "B")):
            im = axes[c].imshow(canvas[c], cmap="viridis")
            axes[c].set_title(f"{name} (normalized)")
            axes[c].axis("off")
            plt.colorbar(im, ax=axes[c], fraction=0.046)

        return self._finish(fig, save_path, "canvas.png", show)

    def visualize_mask_probabilities(
        self, masks: np.ndarray, save_path: Optional[str] = None, show: bool = False
    ):
        """
        Plot post-sigmoid canvas masks of shape (C, S, S).
        """
        num_masks = masks.shape[0]
        fig, axes = plt.subplots(1, num_masks, figsize=self.figsize_base, dpi=self.dpi)
        axes = np.atleast_1d(axes)
        for i in range(num_masks):
            im = axes[i].imshow(masks[i], cmap="magma", vmin=0.0, vmax=1.0)
            axes[i].set_title(f"Mask {i}")
            axes[i].axis("off")
            plt.colorbar(im, ax=axes[i], fraction=0.046)

        return self._finish(fig, save_path, "mask_probabilities.png", show)


def visualize_debug_states(
    debug_states: Optional[Dict] = None,
    save_path: Optional[str] = None,
    create_summary: bool = True,
):
    """
    Render captured debug states and write a text summary.

    Args:
        debug_states: States to visualize; defaults to the global capture.
        save_path: Directory for figures and the summary file.
        create_summary: Whether to write ``debug_summary.txt``.
    """
    if debug_states is None:
        debug_states = get_debug_states()

    if not debug_states:
        logging.warning("No debug states to visualize")
        return

    visualizer = SAM2Visualizer()
    for component_name, component_states in debug_states.items():
        for state_name, state_info in component_states.items():
            data = state_info["data"]
            if state_name == "input_image" and data.ndim == 4:
                visualizer.visualize_canvas(data[0], save_path=save_path)
            elif state_name == "mask_logits" and data.ndim == 4:
                probs = torch.sigmoid(torch.from_numpy(data[0])).numpy()
                visualizer.visualize_mask_probabilities(probs, save_path=save_path)

    if create_summary and save_path:
        _create_debug_summary(debug_states, save_path)


def _create_debug_summary(debug_states: Dict, save_path: str):
    """Create a text summary of captured debug states."""
    os.makedirs(save_path, exist_ok=True)
    summary_path = os.path.join(save_path, "debug_summary.txt")

    with open(summary_path, "w") as f:
        f.write("SAM2 ONNX Debug States Summary\n")
        f.write("=" * 50 + "\n\n")

        for component_name, component_states in debug_states.items():
            f.write(f"Component: {component_name}\n")
            f.write("-" * 30 + "\n")

            for state_name, state_info in component_states.items():
                data = state_info["data"]
                metadata = state_info.get("metadata", {})

                f.write(f"  State: {state_name}\n")
                f.write(f"    Shape: {state_info['shape']}\n")
                f.write(f"    Dtype: {state_info['dtype']}\n")

                if data.size > 0 and np.issubdtype(data.dtype, np.number):
                    f.write(f"    Min: {data.min():.6f}\n")
                    f.write(f"    Max: {data.max():.6f}\n")
                    f.write(f"    Mean: {data.mean():.6f}\n")
                    f.write(f"    Std: {data.std():.6f}\n")

                if metadata:
                    f.write(f"    Metadata: {metadata}\n")
                f.write("\n")
            f.write("\n")
