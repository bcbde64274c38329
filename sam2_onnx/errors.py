# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Error types raised by the SAM2 ONNX pipeline.

Every failure that leaves this package is a ``SAM2OnnxError``. Exceptions raised
by onnxruntime are caught where a session is created or run and re-raised as
``EngineError`` so that callers only ever have to handle this hierarchy:

- ConfigurationError: missing or unreadable model files, invalid configuration.
  Detected before any engine call is made.
- EngineError: the inference engine rejected a model or a run (corrupt graph,
  shape or name mismatch, unsupported op) or returned unexpected outputs.
- InputValidationError: bad image buffers, empty or inconsistent prompt sets,
  out-of-range mask indices.
- SequencingError: an operation was called in the wrong predictor state, e.g.
  decoding before any image has been encoded.
"""


class SAM2OnnxError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(SAM2OnnxError):
    pass


class ModelNotFoundError(ConfigurationError):
    """Raised when an encoder or decoder model file does not exist."""

    def __init__(self, model_path):
        super().__init__(f"Model file not found: {model_path}")
        self.model_path = model_path


class EngineError(SAM2OnnxError):
    pass


class InputValidationError(SAM2OnnxError, ValueError):
    pass


class SequencingError(SAM2OnnxError, RuntimeError):
    pass
