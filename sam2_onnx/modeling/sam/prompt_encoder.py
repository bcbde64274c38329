# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Prompt mapping for exported SAM2 decoders.

The exported decoder embeds prompts itself; what it needs from the host is the
point coordinates expressed in canvas pixels. Prompt points arrive normalized to
the original image ([0, 1] on each axis), so they are scaled by the original
extent times the letterbox scale and then shifted by the letterbox offset:

    canvas_x = x_offset + px * W * scale
    canvas_y = y_offset + py * H * scale

Scaling must happen before the offset is added. Applying them in the other
order still yields in-range coordinates, just the wrong ones.
"""

from typing import Sequence, Tuple

import numpy as np
import torch

from sam2_onnx.structures import LetterboxGeometry, PromptSet


class PromptEncoder:
    """Converts normalized prompt points into decoder-ready canvas tensors."""

    def __init__(self, input_image_size: int = 1024):
        self.input_image_size = input_image_size

    def map_points(
        self,
        points: Sequence[Tuple[float, float]],
        width: int,
        height: int,
        scale: float,
        x_offset: int,
        y_offset: int,
    ) -> np.ndarray:
        """
        Map normalized points onto the canvas.

        Returns:
            np.ndarray: Flat float32 array of length ``2 * len(points)``; point
            ``i`` occupies indices ``2i`` (x) and ``2i + 1`` (y). Values are
            clamped to ``[0, input_image_size]``.
        """
        coords = torch.as_tensor(points, dtype=torch.float64).reshape(-1, 2)
        extent = torch.tensor([width * scale, height * scale], dtype=torch.float64)
        offset = torch.tensor([x_offset, y_offset], dtype=torch.float64)

        canvas_coords = (offset + coords * extent).clamp(0.0, float(self.input_image_size))
        return canvas_coords.to(torch.float32).reshape(-1).numpy()

    def forward(self, prompts: PromptSet, geometry: LetterboxGeometry) -> np.ndarray:
        """Validate a prompt set and map its points using the image's letterbox."""
        prompts.validate()
        return self.map_points(
            prompts.points,
            geometry.original_width,
            geometry.original_height,
            geometry.scale,
            geometry.x_offset,
            geometry.y_offset,
        )

    def __call__(self, prompts: PromptSet, geometry: LetterboxGeometry) -> np.ndarray:
        return self.forward(prompts, geometry)
