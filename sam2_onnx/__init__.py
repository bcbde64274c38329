# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
SAM2 ONNX - Promptable Image Segmentation with Exported SAM2 Models

This library runs point-prompted segmentation with a SAM2 model exported as
two ONNX graphs: an image encoder and a prompt/mask decoder. Images of any
size are letterboxed into the fixed 1024x1024 encoder canvas, the encoder
features are cached per image, and masks are mapped back to the original
resolution.

The library uses Hydra for configuration management; session options and
model geometry live in YAML files under ``sam2_onnx/configs``.

Main Components:
- SAM2OnnxBase: Encoder/decoder session pair and the stages driving them
- SAM2OnnxImagePredictor: Cached-embedding segmentation interface
- SAM2Transforms: Letterbox preprocessing and mask postprocessing

Usage:
    from sam2_onnx.sam2_image_predictor import SAM2OnnxImagePredictor
    from sam2_onnx.structures import PromptSet

    predictor = SAM2OnnxImagePredictor.from_onnx("encoder.onnx", "decoder.onnx")
"""

from hydra import initialize_config_module
from hydra.core.global_hydra import GlobalHydra

if not GlobalHydra.instance().is_initialized():
    initialize_config_module("sam2_onnx", version_base="1.2")
