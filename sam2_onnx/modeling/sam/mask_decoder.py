# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Mask Decoder stage for exported SAM2 models.

The exported decoder graph contains SAM2's prompt encoder, two-way transformer
and mask head. It is driven with eight named inputs:

    image_embed       [1, 256, 64, 64]   f32   cached encoder output
    high_res_feats_0  [1, 32, 256, 256]  f32   cached encoder output
    high_res_feats_1  [1, 64, 128, 128]  f32   cached encoder output
    point_coords      [1, N, 2]          f32   prompt points in canvas pixels
    point_labels      [1, N]             f32   1 foreground, 0 background
    mask_input        [1, 1, 256, 256]   f32   zeros (no mask prompt)
    has_mask_input    [1]                f32   0
    orig_im_size      [2]                i32   always the canvas size

and returns

    masks             [1, C, 1024, 1024] f32   mask logits on the canvas
    iou_predictions   [1, C]             f32   predicted IoU per mask

``orig_im_size`` is pinned to the canvas size because the model works entirely
in canvas space; mapping back to the original image happens in
postprocessing. Previous masks are never fed back, so ``mask_input`` is always
empty. The logits are turned into probabilities with a sigmoid here.
"""

import logging

import numpy as np
import torch

from sam2_onnx.errors import EngineError, InputValidationError, SequencingError
from sam2_onnx.modeling.backbones.image_encoder import feature_shapes
from sam2_onnx.modeling.session import NamedTensorSession
from sam2_onnx.structures import (
    EncoderFeatures,
    LetterboxGeometry,
    PromptSet,
    SegmentationResult,
)

DECODER_INPUT_NAMES = [
    "image_embed",
    "high_res_feats_0",
    "high_res_feats_1",
    "point_coords",
    "point_labels",
    "mask_input",
    "has_mask_input",
    "orig_im_size",
]
DECODER_OUTPUT_NAMES = ["masks", "iou_predictions"]


class MaskDecoder:
    """
    Runs the decoder session for one prompt set against cached encoder features.
    """

    def __init__(
        self,
        session: NamedTensorSession,
        image_size: int = 1024,
        mask_input_size: int = 256,
    ) -> None:
        self.session = session
        self.image_size = image_size
        self.mask_input_size = mask_input_size
        self._feat_shapes = feature_shapes(image_size)

    def _build_inputs(
        self, prompts: PromptSet, point_coords: np.ndarray, features: EncoderFeatures
    ):
        num_points = len(prompts)
        coords = np.asarray(point_coords, dtype=np.float32).reshape(-1)
        if coords.size != 2 * num_points:
            raise InputValidationError(
                f"Expected {2 * num_points} coordinates for {num_points} points, "
                f"got {coords.size}"
            )

        inputs = {
            "image_embed": features.image_embed,
            "high_res_feats_0": features.high_res_feats_0,
            "high_res_feats_1": features.high_res_feats_1,
            "point_coords": coords.reshape(1, num_points, 2),
            "point_labels": np.asarray(prompts.labels, dtype=np.float32).reshape(
                1, num_points
            ),
            "mask_input": np.zeros(
                (1, 1, self.mask_input_size, self.mask_input_size), dtype=np.float32
            ),
            "has_mask_input": np.zeros((1,), dtype=np.float32),
            "orig_im_size": np.array([self.image_size, self.image_size], dtype=np.int32),
        }
        for name, shape in self._feat_shapes.items():
            inputs[name] = np.ascontiguousarray(inputs[name], dtype=np.float32).reshape(shape)
        return inputs

    def forward(
        self,
        prompts: PromptSet,
        point_coords: np.ndarray,
        features: EncoderFeatures,
        geometry: LetterboxGeometry,
        debug_name: str = None,
    ) -> SegmentationResult:
        """
        Decode masks for one prompt set.

        Args:
            prompts (PromptSet): Prompt points and labels; labels are forwarded
                as float32.
            point_coords (np.ndarray): Canvas coordinates from the prompt
                encoder, two values per point.
            features (EncoderFeatures): Cached encoder outputs, or None when no
                image has been encoded.
            geometry (LetterboxGeometry): Letterbox of the encoded image, copied
                into the result.
            debug_name (str, optional): Component name for debug capture.

        Returns:
            SegmentationResult: Sigmoid-activated masks, IoU scores and the
            letterbox snapshot.

        Raises:
            SequencingError: If ``features`` is None.
            InputValidationError: If the prompt set is empty or inconsistent.
            EngineError: If the engine fails or returns unexpected outputs.
        """
        if features is None:
            raise SequencingError(
                "An image must be encoded with .set_image(...) before mask prediction."
            )
        prompts.validate()

        inputs = self._build_inputs(prompts, point_coords, features)
        outputs = self.session.run(inputs, DECODER_OUTPUT_NAMES)

        masks = outputs["masks"]
        iou_predictions = outputs["iou_predictions"]
        if (
            masks.ndim != 4
            or masks.shape[0] != 1
            or masks.shape[1] < 1
            or tuple(masks.shape[2:]) != (self.image_size, self.image_size)
        ):
            raise EngineError(f"Decoder returned masks of unexpected shape {masks.shape}")
        num_masks = masks.shape[1]
        if tuple(iou_predictions.shape) != (1, num_masks):
            raise EngineError(
                f"Decoder returned iou_predictions of shape {iou_predictions.shape}, "
                f"expected {(1, num_masks)}"
            )

        if debug_name:
            from sam2_onnx.debug_utils import capture_debug_state

            capture_debug_state(
                component_name=debug_name,
                state_name="mask_logits",
                data=masks,
                metadata={"component_type": "mask_decoder", "stage": "output"},
            )

        # The decoder emits logits; convert to probabilities
        probs = torch.sigmoid(torch.from_numpy(np.array(masks[0], dtype=np.float32)))

        result = SegmentationResult(
            masks=probs.numpy(),
            iou_predictions=np.array(iou_predictions[0], dtype=np.float32),
            num_masks=num_masks,
            original_width=geometry.original_width,
            original_height=geometry.original_height,
            scale=geometry.scale,
            x_offset=geometry.x_offset,
            y_offset=geometry.y_offset,
        )
        logging.info(
            f"Decoder inference completed, masks={num_masks}, "
            f"IoU={float(result.iou_predictions[0]):.3f}"
        )
        return result

    def __call__(
        self,
        prompts: PromptSet,
        point_coords: np.ndarray,
        features: EncoderFeatures,
        geometry: LetterboxGeometry,
        debug_name: str = None,
    ) -> SegmentationResult:
        return self.forward(prompts, point_coords, features, geometry, debug_name=debug_name)
