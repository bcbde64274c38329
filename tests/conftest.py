"""Shared fixtures: in-memory stand-ins for the encoder and decoder sessions."""

from __future__ import annotations

import numpy as np
import pytest

from sam2_onnx.errors import SequencingError
from sam2_onnx.modeling.backbones.image_encoder import feature_shapes
from sam2_onnx.modeling.sam2_base import SAM2OnnxBase
from sam2_onnx.sam2_image_predictor import SAM2OnnxImagePredictor
from sam2_onnx.structures import Image, PromptSet


class FakeSession:
    """Named-tensor session double that records its calls."""

    def __init__(self, outputs_fn):
        self.outputs_fn = outputs_fn
        self.calls = []
        self.fail_with = None
        self.closed = False

    @property
    def is_open(self) -> bool:
        return not self.closed

    def run(self, inputs, output_names):
        if self.closed:
            raise SequencingError("closed")
        self.calls.append((dict(inputs), list(output_names)))
        if self.fail_with is not None:
            raise self.fail_with
        outputs = self.outputs_fn(inputs)
        return {name: outputs[name] for name in output_names}

    def close(self) -> None:
        self.closed = True


def encoder_outputs(fill: float = 0.25):
    def _outputs(inputs):
        return {
            name: np.full(shape, fill, dtype=np.float32)
            for name, shape in feature_shapes(1024).items()
        }

    return _outputs


def decoder_outputs(logit: float = 10.0, iou: float = 0.9):
    def _outputs(inputs):
        return {
            "masks": np.full((1, 1, 1024, 1024), logit, dtype=np.float32),
            "iou_predictions": np.array([[iou]], dtype=np.float32),
        }

    return _outputs


@pytest.fixture
def encoder_session() -> FakeSession:
    return FakeSession(encoder_outputs())


@pytest.fixture
def decoder_session() -> FakeSession:
    return FakeSession(decoder_outputs())


@pytest.fixture
def sam_model(encoder_session: FakeSession, decoder_session: FakeSession) -> SAM2OnnxBase:
    return SAM2OnnxBase(encoder_session, decoder_session)


@pytest.fixture
def predictor(sam_model: SAM2OnnxBase) -> SAM2OnnxImagePredictor:
    return SAM2OnnxImagePredictor(sam_model)


@pytest.fixture
def small_image() -> Image:
    rng = np.random.default_rng(0)
    return Image.from_array(rng.integers(0, 256, size=(60, 80, 3), dtype=np.uint8))


@pytest.fixture
def center_prompt() -> PromptSet:
    prompts = PromptSet()
    prompts.add_point(0.5, 0.5)
    return prompts


@pytest.fixture
def make_session():
    """Build a FakeSession from an ``inputs -> outputs`` callable."""
    return FakeSession


@pytest.fixture
def make_decoder_outputs():
    return decoder_outputs
