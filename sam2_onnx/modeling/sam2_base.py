# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
SAM2OnnxBase: an exported SAM2 model as an encoder session plus a decoder session.

The model owns both sessions exclusively and composes the three stages that
drive them. Nothing else holds a reference to the sessions, so ``close()``
releasing them is the whole teardown.
"""

import logging

from sam2_onnx.modeling.backbones.image_encoder import ImageEncoder
from sam2_onnx.modeling.sam.mask_decoder import MaskDecoder
from sam2_onnx.modeling.sam.prompt_encoder import PromptEncoder
from sam2_onnx.modeling.session import NamedTensorSession


class SAM2OnnxBase:
    def __init__(
        self,
        encoder_session: NamedTensorSession,
        decoder_session: NamedTensorSession,
        image_size: int = 1024,
        mask_input_size: int = 256,
    ):
        self.image_size = image_size
        self.encoder_session = encoder_session
        self.decoder_session = decoder_session

        self.image_encoder = ImageEncoder(encoder_session, image_size=image_size)
        self.sam_prompt_encoder = PromptEncoder(input_image_size=image_size)
        self.sam_mask_decoder = MaskDecoder(
            decoder_session, image_size=image_size, mask_input_size=mask_input_size
        )
        self._closed = False

    @property
    def is_loaded(self) -> bool:
        return not self._closed

    def close(self) -> None:
        if self._closed:
            return
        logging.info("Releasing SAM2 encoder and decoder sessions")
        self.encoder_session.close()
        self.decoder_session.close()
        self._closed = True
