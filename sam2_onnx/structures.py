# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Data structures exchanged between the stages of the SAM2 ONNX pipeline.

The pipeline moves through the following records:

    Image --preprocess--> PreprocessResult --encode--> EncoderFeatures
    PromptSet + EncoderFeatures --decode--> SegmentationResult
    SegmentationResult --postprocess--> FinalMask

``LetterboxGeometry`` is the only link between the forward (preprocess) and
inverse (postprocess) transforms. It is always derived from the original image
size by ``sam2_onnx.utils.transforms.compute_letterbox`` and copied into every
``SegmentationResult`` so postprocessing can run later on its own.
"""

from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np
from PIL import Image as PILImage

from sam2_onnx.errors import InputValidationError

FOREGROUND = 1
BACKGROUND = 0


@dataclass(frozen=True)
class Image:
    """
    An RGB image with float values in [0, 1].

    ``data`` is row-major with interleaved channels, either flat (``W*H*3``
    values) or shaped ``(H, W, 3)``. The pipeline only reads it.
    """

    width: int
    height: int
    data: np.ndarray

    @classmethod
    def from_array(cls, array: np.ndarray) -> "Image":
        """
        Wrap an ``(H, W, 3)`` array. uint8 input is scaled to [0, 1];
        floating point input is assumed to already be in [0, 1].
        """
        array = np.asarray(array)
        if array.ndim != 3 or array.shape[2] != 3:
            raise InputValidationError(
                f"Expected an HxWx3 RGB array, got shape {array.shape}"
            )
        if array.dtype == np.uint8:
            data = array.astype(np.float32) / 255.0
        else:
            data = array.astype(np.float32)
        height, width = array.shape[:2]
        return cls(width=width, height=height, data=data)

    @classmethod
    def from_pil(cls, image: PILImage.Image) -> "Image":
        return cls.from_array(np.asarray(image.convert("RGB")))


@dataclass(frozen=True)
class LetterboxGeometry:
    original_width: int
    original_height: int
    scale: float
    resized_width: int
    resized_height: int
    x_offset: int
    y_offset: int


@dataclass(frozen=True)
class PreprocessResult:
    """Channel-major normalized canvas of shape (3, S, S) plus its letterbox geometry."""

    canvas: np.ndarray
    geometry: LetterboxGeometry

    @property
    def scale(self) -> float:
        return self.geometry.scale

    @property
    def x_offset(self) -> int:
        return self.geometry.x_offset

    @property
    def y_offset(self) -> int:
        return self.geometry.y_offset


@dataclass(frozen=True)
class EncoderFeatures:
    """Encoder outputs for one image, kept as full NCHW float32 arrays."""

    image_embed: np.ndarray
    high_res_feats_0: np.ndarray
    high_res_feats_1: np.ndarray


@dataclass
class PromptSet:
    """
    Ordered prompt points with their labels.

    Points are normalized (x, y) coordinates in [0, 1] relative to the original
    image. Labels are 1 for foreground and 0 for background; ``labels[i]``
    belongs to ``points[i]``.
    """

    points: List[Tuple[float, float]] = field(default_factory=list)
    labels: List[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.points)

    def add_point(self, x: float, y: float, foreground: bool = True) -> None:
        self.points.append((float(x), float(y)))
        self.labels.append(FOREGROUND if foreground else BACKGROUND)

    def clear(self) -> None:
        self.points.clear()
        self.labels.clear()

    def validate(self) -> None:
        if len(self.points) == 0:
            raise InputValidationError("At least one prompt point is required")
        if len(self.points) != len(self.labels):
            raise InputValidationError(
                f"Got {len(self.points)} prompt points but {len(self.labels)} labels"
            )
        for label in self.labels:
            if label not in (FOREGROUND, BACKGROUND):
                raise InputValidationError(
                    f"Prompt labels must be 0 (background) or 1 (foreground), got {label}"
                )
        for x, y in self.points:
            if not (np.isfinite(x) and np.isfinite(y)):
                raise InputValidationError(f"Prompt point ({x}, {y}) is not finite")


@dataclass
class SegmentationResult:
    """
    Decoder output for one prompt set.

    ``masks`` holds ``num_masks`` post-sigmoid probability maps of the canvas
    size, ``iou_predictions`` one confidence per mask. The geometry fields are a
    snapshot of the letterbox that produced the encoded image.
    """

    masks: np.ndarray
    iou_predictions: np.ndarray
    num_masks: int
    original_width: int
    original_height: int
    scale: float
    x_offset: int
    y_offset: int

    def get_mask(self, mask_index: int) -> np.ndarray:
        if mask_index < 0 or mask_index >= self.num_masks:
            raise InputValidationError(
                f"Invalid mask index {mask_index} (total masks: {self.num_masks})"
            )
        return self.masks[mask_index]


@dataclass(frozen=True)
class FinalMask:
    """Single-channel uint8 mask of shape (height, width) with values 0 or 255."""

    width: int
    height: int
    data: np.ndarray

    def to_pil(self) -> PILImage.Image:
        # a 2-D uint8 array maps to a single-channel "L" image
        return PILImage.fromarray(np.ascontiguousarray(self.data, dtype=np.uint8))
