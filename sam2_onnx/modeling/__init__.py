# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
SAM2 ONNX Modeling Package

- session.py: NamedTensorSession, the onnxruntime wrapper
- sam2_base.py: SAM2OnnxBase, owner of the encoder and decoder sessions
- backbones/image_encoder.py: encoder stage
- sam/prompt_encoder.py: prompt point mapping onto the canvas
- sam/mask_decoder.py: decoder stage and sigmoid activation
"""
