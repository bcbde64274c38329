# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Image Encoder stage for exported SAM2 models.

The Hiera trunk and FPN neck of SAM2 are baked into the exported encoder graph.
This stage feeds it the letterboxed canvas and collects the three feature maps
the mask decoder consumes:

    image                 [1, 3, S, S]        -> encoder graph
    high_res_feats_0      [1, 32, S/4, S/4]   stride 4 features
    high_res_feats_1      [1, 64, S/8, S/8]   stride 8 features
    image_embed           [1, 256, S/16, S/16] stride 16 image embedding

For the standard 1024 canvas these are 256x256, 128x128 and 64x64 maps. The
features are returned as a fresh ``EncoderFeatures`` record; caching them for
repeated decoding is the predictor's job.
"""

import logging
from typing import Dict, Tuple

import numpy as np

from sam2_onnx.errors import EngineError, InputValidationError
from sam2_onnx.modeling.session import NamedTensorSession
from sam2_onnx.structures import EncoderFeatures

ENCODER_INPUT_NAME = "image"
ENCODER_OUTPUT_NAMES = ["high_res_feats_0", "high_res_feats_1", "image_embed"]


def feature_shapes(image_size: int = 1024) -> Dict[str, Tuple[int, int, int, int]]:
    """Expected NCHW shape of every encoder output for a given canvas size."""
    # Backbone feature maps at strides 4, 8 and 16
    hires_size = image_size // 4
    feat_sizes = [hires_size // (2**k) for k in range(3)]
    return {
        "high_res_feats_0": (1, 32, feat_sizes[0], feat_sizes[0]),
        "high_res_feats_1": (1, 64, feat_sizes[1], feat_sizes[1]),
        "image_embed": (1, 256, feat_sizes[2], feat_sizes[2]),
    }


class ImageEncoder:
    """
    Runs the encoder session on a preprocessed canvas.

    The session must accept a single float32 input named ``image`` and produce
    the three outputs listed in ``ENCODER_OUTPUT_NAMES``.
    """

    def __init__(self, session: NamedTensorSession, image_size: int = 1024) -> None:
        self.session = session
        self.image_size = image_size
        self._feat_shapes = feature_shapes(image_size)

    def forward(self, canvas: np.ndarray, debug_name: str = None) -> EncoderFeatures:
        """
        Encode one canvas.

        Args:
            canvas (np.ndarray): Normalized channel-major canvas with
                ``3 * image_size * image_size`` values.
            debug_name (str, optional): Component name under which to capture
                the input and outputs when debug mode is enabled.

        Returns:
            EncoderFeatures: Copies of the three encoder outputs.

        Raises:
            InputValidationError: If the canvas has the wrong number of values.
            EngineError: If the engine fails or returns unexpected outputs.
        """
        input_shape = (1, 3, self.image_size, self.image_size)
        canvas = np.asarray(canvas, dtype=np.float32)
        if canvas.size != int(np.prod(input_shape)):
            raise InputValidationError(
                f"Canvas must hold {int(np.prod(input_shape))} values, got {canvas.size}"
            )
        image = np.ascontiguousarray(canvas.reshape(input_shape))

        if debug_name:
            from sam2_onnx.debug_utils import capture_debug_state

            capture_debug_state(
                component_name=debug_name,
                state_name="input_image",
                data=image,
                metadata={"component_type": "image_encoder", "stage": "input"},
            )

        outputs = self.session.run({ENCODER_INPUT_NAME: image}, ENCODER_OUTPUT_NAMES)

        for name in ENCODER_OUTPUT_NAMES:
            expected = self._feat_shapes[name]
            if tuple(outputs[name].shape) != expected:
                raise EngineError(
                    f"Encoder output {name} has shape {tuple(outputs[name].shape)}, "
                    f"expected {expected}"
                )

        # Copy so the cache never aliases engine-owned buffers
        features = EncoderFeatures(
            image_embed=np.array(outputs["image_embed"], dtype=np.float32),
            high_res_feats_0=np.array(outputs["high_res_feats_0"], dtype=np.float32),
            high_res_feats_1=np.array(outputs["high_res_feats_1"], dtype=np.float32),
        )

        if debug_name:
            from sam2_onnx.debug_utils import capture_debug_state

            for name in ENCODER_OUTPUT_NAMES:
                capture_debug_state(
                    component_name=debug_name,
                    state_name=name,
                    data=getattr(features, name),
                    metadata={"component_type": "image_encoder", "stage": "output"},
                )

        logging.info(
            f"Encoder inference completed, features: "
            f"feats0={features.high_res_feats_0.size}, "
            f"feats1={features.high_res_feats_1.size}, "
            f"embed={features.image_embed.size}"
        )
        return features

    def __call__(self, canvas: np.ndarray, debug_name: str = None) -> EncoderFeatures:
        return self.forward(canvas, debug_name=debug_name)
