# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
Named-tensor inference session backed by onnxruntime.

``NamedTensorSession`` is the only place in the package that talks to the
inference engine. It owns one ``onnxruntime.InferenceSession`` and exposes a
single synchronous operation::

    run({"input_name": array, ...}, ["output_a", "output_b"]) -> {"output_a": ..., ...}

Every onnxruntime exception raised while creating or running the session is
converted into ``EngineError`` here, so the stages built on top of it never see
engine-specific exception types.
"""

import logging
import os
from typing import Dict, List, Optional, Sequence

import numpy as np
import onnxruntime as ort

from sam2_onnx.errors import EngineError, ModelNotFoundError, SequencingError


class NamedTensorSession:
    """
    Single-owner handle on one loaded ONNX model.

    Sessions default to one intra-op thread, trading throughput for
    deterministic, low-overhead execution of small models.
    """

    def __init__(
        self,
        model_path,
        intra_op_num_threads: int = 1,
        inter_op_num_threads: int = 1,
        providers: Optional[Sequence[str]] = None,
        log_severity_level: int = 2,
    ) -> None:
        """
        Load an ONNX model.

        Args:
            model_path (str or PathLike): Path to the ``.onnx`` file.
            intra_op_num_threads (int): Threads used inside a single operator.
            inter_op_num_threads (int): Threads used across independent operators.
            providers (Sequence[str], optional): onnxruntime execution providers in
                priority order. Defaults to ``["CPUExecutionProvider"]``.
            log_severity_level (int): onnxruntime log level (0=verbose .. 4=fatal).

        Raises:
            ModelNotFoundError: If ``model_path`` does not exist.
            EngineError: If onnxruntime cannot build a session from the file.
        """
        self.model_path = os.fspath(model_path)
        if not os.path.isfile(self.model_path):
            logging.error(f"Model file not found: {self.model_path}")
            raise ModelNotFoundError(self.model_path)

        options = ort.SessionOptions()
        options.intra_op_num_threads = intra_op_num_threads
        options.inter_op_num_threads = inter_op_num_threads
        options.log_severity_level = log_severity_level
        providers = list(providers) if providers else ["CPUExecutionProvider"]

        try:
            self._session = ort.InferenceSession(
                self.model_path, sess_options=options, providers=providers
            )
        except Exception as e:
            logging.error(f"Failed to create session for {self.model_path}: {e}")
            raise EngineError(
                f"Failed to create inference session for {self.model_path}: {e}"
            ) from e

        self.input_names = [node.name for node in self._session.get_inputs()]
        self.output_names = [node.name for node in self._session.get_outputs()]
        logging.info(
            f"Session created for {os.path.basename(self.model_path)} - "
            f"Inputs: {self.input_names}, Outputs: {self.output_names}"
        )

    @property
    def is_open(self) -> bool:
        return self._session is not None

    def run(
        self, inputs: Dict[str, np.ndarray], output_names: List[str]
    ) -> Dict[str, np.ndarray]:
        """
        Execute the model synchronously and return the requested outputs by name.

        Raises:
            SequencingError: If the session has been closed.
            EngineError: If onnxruntime fails or returns a different number of
                outputs than requested.
        """
        if self._session is None:
            raise SequencingError(f"Session for {self.model_path} has been closed")

        try:
            outputs = self._session.run(list(output_names), inputs)
        except Exception as e:
            logging.error(f"Inference error in {os.path.basename(self.model_path)}: {e}")
            raise EngineError(f"Inference failed for {self.model_path}: {e}") from e

        if len(outputs) != len(output_names):
            raise EngineError(
                f"Model returned unexpected number of outputs: {len(outputs)}, "
                f"expected {len(output_names)}"
            )
        return dict(zip(output_names, outputs))

    def close(self) -> None:
        """Release the underlying onnxruntime session. Safe to call twice."""
        if self._session is not None:
            logging.info(f"Releasing session for {os.path.basename(self.model_path)}")
        self._session = None
