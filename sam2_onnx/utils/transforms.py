# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Geometric transforms between original images and the SAM2 input canvas.

The exported SAM2 encoder only accepts a fixed square canvas (1024x1024). Images
of any size are letterboxed into it: resized with a single isotropic scale so
that the longer side fills the canvas, then centered, with the remaining area
left as padding. The decoder produces masks on the same canvas, so the inverse
transform crops the letterboxed region back out and resamples it to the
original resolution.

Both directions derive their geometry from ``compute_letterbox``:

    scale          = min(S / W, S / H)
    resized_width  = round(W * scale)
    resized_height = round(H * scale)
    x_offset       = (S - resized_width) // 2
    y_offset       = (S - resized_height) // 2

Rounding is half-up (``floor(v + 0.5)``) everywhere, never Python's
round-half-to-even. Resized extents are kept within [1, S].

Forward path (``preprocess_image``):
1. bilinear resize of the source into the letterbox footprint, sampling source
   coordinate ``dst / scale`` with neighbour indices clamped to the image
2. per-channel normalization of the whole canvas (padding included)
3. HWC -> CHW transpose

Inverse path (``postprocess_mask``):
1. binarization (``p > threshold`` -> 255, else 0)
2. crop of the letterbox footprint
3. nearest-neighbour resample to the original W x H
"""

import logging
import math
from typing import Sequence, Tuple

import numpy as np
import torch
from torch import nn

from sam2_onnx.errors import InputValidationError
from sam2_onnx.structures import (
    FinalMask,
    Image,
    LetterboxGeometry,
    PreprocessResult,
    SegmentationResult,
)

# Natural-image statistics the SAM2 encoder was trained with
PIXEL_MEAN = (0.485, 0.456, 0.406)
PIXEL_STD = (0.229, 0.224, 0.225)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def resized_extent(
    width: int, height: int, scale: float, resolution: int = 1024
) -> Tuple[int, int]:
    """Size of the image footprint inside the canvas for a given scale."""
    resized_width = min(max(round_half_up(width * scale), 1), resolution)
    resized_height = min(max(round_half_up(height * scale), 1), resolution)
    return resized_width, resized_height


def compute_letterbox(width: int, height: int, resolution: int = 1024) -> LetterboxGeometry:
    """
    Compute the scale and offsets that fit a ``width x height`` image into a
    ``resolution x resolution`` canvas while preserving its aspect ratio.

    Raises:
        InputValidationError: if either dimension is not positive.
    """
    if width <= 0 or height <= 0:
        raise InputValidationError(f"Invalid image size {width}x{height}")

    scale = min(resolution / width, resolution / height)
    resized_width, resized_height = resized_extent(width, height, scale, resolution)
    return LetterboxGeometry(
        original_width=width,
        original_height=height,
        scale=scale,
        resized_width=resized_width,
        resized_height=resized_height,
        x_offset=(resolution - resized_width) // 2,
        y_offset=(resolution - resized_height) // 2,
    )


def bilinear_resize(
    image_hwc: torch.Tensor, scale: float, out_width: int, out_height: int
) -> torch.Tensor:
    """
    Resample an (H, W, C) image to (out_height, out_width, C).

    Destination pixel (x, y) samples source coordinate (x / scale, y / scale).
    The interpolation weights come from the unclamped source coordinate, while
    each of the four neighbour indices is clamped to the image independently,
    so pixels that land on the last row or column repeat the edge value.
    """
    in_height, in_width = image_hwc.shape[:2]

    src_y = torch.arange(out_height, dtype=torch.float64) / scale
    src_x = torch.arange(out_width, dtype=torch.float64) / scale
    y0 = src_y.floor()
    x0 = src_x.floor()
    wy = (src_y - y0).to(image_hwc.dtype)[:, None, None]
    wx = (src_x - x0).to(image_hwc.dtype)[None, :, None]

    y0 = y0.long()
    x0 = x0.long()
    y1 = (y0 + 1).clamp(0, in_height - 1)[:, None]
    x1 = (x0 + 1).clamp(0, in_width - 1)[None, :]
    y0 = y0.clamp(0, in_height - 1)[:, None]
    x0 = x0.clamp(0, in_width - 1)[None, :]

    p00 = image_hwc[y0, x0]
    p01 = image_hwc[y0, x1]
    p10 = image_hwc[y1, x0]
    p11 = image_hwc[y1, x1]

    return (
        p00 * (1 - wx) * (1 - wy)
        + p01 * wx * (1 - wy)
        + p10 * (1 - wx) * wy
        + p11 * wx * wy
    )


def preprocess_image(
    image: Image,
    resolution: int = 1024,
    pixel_mean: Sequence[float] = PIXEL_MEAN,
    pixel_std: Sequence[float] = PIXEL_STD,
) -> PreprocessResult:
    """
    Letterbox an RGB image into the normalized, channel-major encoder canvas.

    Args:
        image (Image): RGB image with float values in [0, 1].
        resolution (int): Side of the square canvas.
        pixel_mean (Sequence[float]): Per-channel mean subtracted after resizing.
        pixel_std (Sequence[float]): Per-channel std dividing after mean removal.

    Returns:
        PreprocessResult: float32 canvas of shape (3, resolution, resolution)
        and the letterbox geometry needed to invert the transform.

    Raises:
        InputValidationError: for non-positive sizes or a buffer whose size is
        not ``width * height * 3``.
    """
    geometry = compute_letterbox(image.width, image.height, resolution)

    data = np.asarray(image.data, dtype=np.float32)
    expected = image.width * image.height * 3
    if data.size != expected:
        raise InputValidationError(
            f"Input image data size mismatch: expected {expected}, got {data.size}"
        )

    logging.info(
        f"Image preprocessing: {image.width}x{image.height} -> "
        f"{geometry.resized_width}x{geometry.resized_height}, "
        f"scale={geometry.scale:.3f}, offset=({geometry.x_offset},{geometry.y_offset})"
    )

    source = torch.from_numpy(data.reshape(image.height, image.width, 3))
    resized = bilinear_resize(
        source, geometry.scale, geometry.resized_width, geometry.resized_height
    )

    canvas = torch.zeros((resolution, resolution, 3), dtype=torch.float32)
    y0, x0 = geometry.y_offset, geometry.x_offset
    canvas[y0 : y0 + geometry.resized_height, x0 : x0 + geometry.resized_width] = resized

    mean = torch.as_tensor(pixel_mean, dtype=torch.float32)
    std = torch.as_tensor(pixel_std, dtype=torch.float32)
    canvas = (canvas - mean) / std

    # HWC -> CHW, the layout the encoder graph expects
    canvas = canvas.permute(2, 0, 1).contiguous()
    return PreprocessResult(canvas=canvas.numpy(), geometry=geometry)


def postprocess_mask(
    result: SegmentationResult,
    mask_index: int = 0,
    mask_threshold: float = 0.5,
    resolution: int = 1024,
) -> FinalMask:
    """
    Map one canvas-space probability mask back to the original image.

    The mask is binarized (``p > mask_threshold`` -> 255, so a probability of
    exactly the threshold is background), the letterbox footprint is cropped
    out (canvas indices outside the canvas read as 0) and the crop is resampled
    to the original size with nearest-neighbour lookup
    ``src = round(dst * resized / original)`` clamped to the crop.

    Raises:
        InputValidationError: for an out-of-range ``mask_index``, a mask that
        is not ``resolution x resolution``, or invalid original dimensions.
    """
    mask = np.asarray(result.get_mask(mask_index), dtype=np.float32)
    if mask.size != resolution * resolution:
        raise InputValidationError(
            f"Invalid mask data size: {mask.size}, expected: {resolution * resolution}"
        )
    width, height = result.original_width, result.original_height
    if width <= 0 or height <= 0:
        raise InputValidationError(f"Invalid original dimensions {width}x{height}")

    resized_width, resized_height = resized_extent(width, height, result.scale, resolution)

    binary = (torch.from_numpy(mask.reshape(resolution, resolution)) > mask_threshold).to(
        torch.uint8
    ) * 255

    canvas_y = torch.arange(resized_height) + result.y_offset
    canvas_x = torch.arange(resized_width) + result.x_offset
    inside = ((canvas_y >= 0) & (canvas_y < resolution))[:, None] & (
        (canvas_x >= 0) & (canvas_x < resolution)
    )[None, :]
    region = binary[
        canvas_y.clamp(0, resolution - 1)[:, None],
        canvas_x.clamp(0, resolution - 1)[None, :],
    ]
    region = torch.where(inside, region, torch.zeros_like(region))

    inv_scale_x = resized_width / width
    inv_scale_y = resized_height / height
    src_x = (torch.arange(width, dtype=torch.float64) * inv_scale_x + 0.5).floor().long()
    src_y = (torch.arange(height, dtype=torch.float64) * inv_scale_y + 0.5).floor().long()
    src_x = src_x.clamp(0, resized_width - 1)
    src_y = src_y.clamp(0, resized_height - 1)

    final = region[src_y[:, None], src_x[None, :]]

    logging.info(
        f"Mask postprocessing completed: {resolution}x{resolution} -> "
        f"{resized_width}x{resized_height} -> {width}x{height}"
    )
    return FinalMask(width=width, height=height, data=final.numpy().copy())


class SAM2Transforms(nn.Module):
    """
    Forward and inverse canvas transforms bound to one resolution, normalization
    and mask threshold. Calling the module preprocesses an image.
    """

    def __init__(
        self,
        resolution: int = 1024,
        mask_threshold: float = 0.5,
        pixel_mean: Sequence[float] = PIXEL_MEAN,
        pixel_std: Sequence[float] = PIXEL_STD,
    ):
        super().__init__()
        self.resolution = resolution
        self.mask_threshold = mask_threshold
        self.register_buffer(
            "pixel_mean", torch.as_tensor(pixel_mean, dtype=torch.float32), persistent=False
        )
        self.register_buffer(
            "pixel_std", torch.as_tensor(pixel_std, dtype=torch.float32), persistent=False
        )

    def forward(self, image: Image) -> PreprocessResult:
        return preprocess_image(
            image,
            resolution=self.resolution,
            pixel_mean=self.pixel_mean.tolist(),
            pixel_std=self.pixel_std.tolist(),
        )

    def postprocess_masks(self, result: SegmentationResult, mask_index: int = 0) -> FinalMask:
        return postprocess_mask(
            result,
            mask_index=mask_index,
            mask_threshold=self.mask_threshold,
            resolution=self.resolution,
        )
