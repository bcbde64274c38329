# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
SAM2 ONNX Image Predictor - Promptable Image Segmentation Interface

This module provides the SAM2OnnxImagePredictor class, the entry point for
point-prompted segmentation with an exported SAM2 encoder/decoder pair. The
expensive encoder pass runs once per image; its features are cached so any
number of prompt sets can be decoded against the same image.

Workflow:
1. Build the predictor from two ONNX files (``from_onnx``)
2. Set the target image to compute and cache its features
3. Predict masks for one or more prompt sets
4. Map a predicted mask back to the original image resolution

Predictor state:

    UNINITIALIZED --load--> MODELS_LOADED --set_image--> IMAGE_ENCODED
                                  ^                            |
                                  +------ reset_predictor -----+

``set_image`` in IMAGE_ENCODED replaces the cached features. ``close()``
releases both sessions and returns the predictor to UNINITIALIZED for good.
A failed encode or decode never modifies the cache.

Example Usage:
    with SAM2OnnxImagePredictor.from_onnx("encoder.onnx", "decoder.onnx") as predictor:
        prompts = PromptSet()
        prompts.add_point(0.5, 0.5)
        mask, iou = predictor.segment(Image.from_pil(pil_image), prompts)
        mask.to_pil().save("mask.png")
"""

import logging
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np
import torch
from PIL.Image import Image as PILImage

from sam2_onnx.errors import InputValidationError, SequencingError
from sam2_onnx.modeling.sam2_base import SAM2OnnxBase
from sam2_onnx.structures import (
    EncoderFeatures,
    FinalMask,
    Image,
    LetterboxGeometry,
    PreprocessResult,
    PromptSet,
    SegmentationResult,
)
from sam2_onnx.utils.transforms import SAM2Transforms


class PredictorState(Enum):
    UNINITIALIZED = "uninitialized"
    MODELS_LOADED = "models_loaded"
    IMAGE_ENCODED = "image_encoded"


class SAM2OnnxImagePredictor:
    """
    Point-prompted image segmentation with an exported SAM2 model.

    The predictor owns the model (and through it both inference sessions) and
    the encoded-image cache. The cache is a pair of the encoder features and
    the letterbox geometry of the image they were computed from; both are set
    together after a successful encode and cleared together.

    A predictor is synchronous and not meant to be shared between threads.
    """

    def __init__(
        self,
        sam_model: SAM2OnnxBase,
        mask_threshold: float = 0.5,
        debug_mode: bool = False,
    ) -> None:
        """
        Initialize the predictor.

        Args:
            sam_model (SAM2OnnxBase): Loaded encoder/decoder pair.
            mask_threshold (float): Probability above which a mask pixel is
                foreground. A probability equal to the threshold is background.
            debug_mode (bool): Capture stage inputs and outputs through
                ``sam2_onnx.debug_utils`` (global capture must also be enabled).
        """
        self.model = sam_model
        self.mask_threshold = mask_threshold
        self.debug_mode = debug_mode

        self._transforms = SAM2Transforms(
            resolution=self.model.image_size,
            mask_threshold=mask_threshold,
        )

        # Encoded-image cache
        self._features: Optional[EncoderFeatures] = None
        self._geometry: Optional[LetterboxGeometry] = None

    @classmethod
    def from_onnx(
        cls,
        encoder_path,
        decoder_path,
        config_file: str = "configs/sam2_onnx/sam2_hiera_t.yaml",
        hydra_overrides_extra=[],
        **kwargs,
    ) -> "SAM2OnnxImagePredictor":
        """
        Load an encoder/decoder pair and wrap it in a predictor.

        Args:
            encoder_path: Path to the exported encoder ``.onnx`` file.
            decoder_path: Path to the exported decoder ``.onnx`` file.
            config_file (str): Hydra config describing sessions and model.
            hydra_overrides_extra (list): Additional Hydra overrides.
            **kwargs: Passed to the predictor constructor (``mask_threshold``,
                ``debug_mode``). ``mask_threshold`` defaults to the config's
                ``predictor.mask_threshold``.

        Raises:
            ModelNotFoundError: If either file does not exist. Raised before
                any session is created.
            ConfigurationError: If the config cannot be composed or built.
            EngineError: If onnxruntime cannot load either model.
        """
        from sam2_onnx.build_sam import build_sam2_onnx, load_config
        from omegaconf import OmegaConf

        cfg = load_config(config_file, hydra_overrides_extra)
        kwargs.setdefault(
            "mask_threshold", OmegaConf.select(cfg, "predictor.mask_threshold", default=0.5)
        )
        sam_model = build_sam2_onnx(
            encoder_path=encoder_path, decoder_path=decoder_path, cfg=cfg
        )
        return cls(sam_model, **kwargs)

    @property
    def state(self) -> PredictorState:
        if not self.model.is_loaded:
            return PredictorState.UNINITIALIZED
        if self._features is None:
            return PredictorState.MODELS_LOADED
        return PredictorState.IMAGE_ENCODED

    @property
    def is_image_set(self) -> bool:
        return self.state == PredictorState.IMAGE_ENCODED

    def _check_loaded(self) -> None:
        if not self.model.is_loaded:
            raise SequencingError("Predictor has been closed; build a new one to continue.")

    def _debug_name(self, component: str) -> Optional[str]:
        return component if self.debug_mode else None

    def preprocess(self, image: Union[Image, np.ndarray, PILImage]) -> PreprocessResult:
        """
        Letterbox an image into the normalized encoder canvas.

        ``np.ndarray`` input is expected in HxWxC RGB format; uint8 arrays are
        scaled to [0, 1]. PIL images are converted to RGB first.

        Raises:
            InputValidationError: For unsupported image types or malformed
                buffers.
        """
        if isinstance(image, np.ndarray):
            logging.info("For numpy array image, we assume (HxWxC) format")
            image = Image.from_array(image)
        elif isinstance(image, PILImage):
            image = Image.from_pil(image)
        elif not isinstance(image, Image):
            raise InputValidationError(
                f"Image format not supported: {type(image).__name__}"
            )
        return self._transforms(image)

    @torch.no_grad()
    def encode(self, preprocessed: PreprocessResult) -> None:
        """
        Run the encoder on a preprocessed canvas and cache the features.

        The cache is only replaced once the encoder has succeeded; on failure
        the previously encoded image (if any) stays usable.

        Raises:
            SequencingError: If the predictor has been closed.
            EngineError: If the encoder fails or returns unexpected outputs.
        """
        self._check_loaded()
        logging.info("Computing image embeddings for the provided image...")
        features = self.model.image_encoder(
            preprocessed.canvas, debug_name=self._debug_name("image_encoder")
        )
        self._features = features
        self._geometry = preprocessed.geometry
        logging.info("Image embeddings computed.")

    def set_image(self, image: Union[Image, np.ndarray, PILImage]) -> None:
        """
        Compute and cache encoder features for an image.

        Args:
            image (Image, np.ndarray or PIL.Image): Input image in RGB format.

        Raises:
            InputValidationError: If the image buffer is malformed.
            SequencingError: If the predictor has been closed.
            EngineError: If the encoder fails.
        """
        self._check_loaded()
        self.encode(self.preprocess(image))

    @torch.no_grad()
    def predict(self, prompts: PromptSet) -> SegmentationResult:
        """
        Decode masks for a prompt set against the cached image.

        Args:
            prompts (PromptSet): Normalized points and their labels.

        Returns:
            SegmentationResult: Canvas-space probabilities, IoU predictions and
            the letterbox of the encoded image.

        Raises:
            SequencingError: If no image is encoded or the predictor is closed.
            InputValidationError: If the prompt set is empty or inconsistent.
            EngineError: If the decoder fails.
        """
        self._check_loaded()
        if self._features is None:
            raise SequencingError(
                "An image must be set with .set_image(...) before mask prediction."
            )

        point_coords = self.model.sam_prompt_encoder(prompts, self._geometry)
        return self.model.sam_mask_decoder(
            prompts,
            point_coords,
            self._features,
            self._geometry,
            debug_name=self._debug_name("mask_decoder"),
        )

    def postprocess(self, result: SegmentationResult, mask_index: int = 0) -> FinalMask:
        """Map one mask of ``result`` back to the original image resolution."""
        return self._transforms.postprocess_masks(result, mask_index=mask_index)

    def segment(
        self, image: Union[Image, np.ndarray, PILImage], prompts: PromptSet
    ) -> Tuple[FinalMask, float]:
        """
        Encode an image, decode one prompt set and return the first mask at the
        original resolution together with its predicted IoU.

        An invalid prompt set fails before the image is encoded, so the
        cached image and the predictor state are left untouched.
        """
        # Prompts are checked before the encoder runs
        self._check_loaded()
        prompts.validate()
        self.set_image(image)
        result = self.predict(prompts)
        final_mask = self.postprocess(result, mask_index=0)
        iou = float(result.iou_predictions[0])
        logging.info(f"Segmentation completed, IoU={iou:.3f}")
        return final_mask, iou

    def get_image_embedding(self) -> np.ndarray:
        """
        Return the cached image embedding of shape 1x256x64x64.
        """
        if self._features is None:
            raise SequencingError(
                "An image must be set with .set_image(...) to generate an embedding."
            )
        return self._features.image_embed

    def reset_predictor(self) -> None:
        """Drop the encoded image; the models stay loaded."""
        self._features = None
        self._geometry = None

    def close(self) -> None:
        """Release both inference sessions. Any later use raises SequencingError."""
        self.reset_predictor()
        self.model.close()

    def __enter__(self) -> "SAM2OnnxImagePredictor":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
