"""Tests for the onnxruntime-backed named-tensor session."""

from __future__ import annotations

from types import SimpleNamespace

import numpy as np
import pytest
import pytest_mock

from sam2_onnx.errors import (
    ConfigurationError,
    EngineError,
    ModelNotFoundError,
    SequencingError,
)
from sam2_onnx.modeling.session import NamedTensorSession


@pytest.fixture
def model_file(tmp_path):
    path = tmp_path / "model.onnx"
    path.write_bytes(b"onnx")
    return path


@pytest.fixture
def ort_session(mocker: pytest_mock.MockerFixture):
    session_cls = mocker.patch("onnxruntime.InferenceSession")
    instance = session_cls.return_value
    instance.get_inputs.return_value = [SimpleNamespace(name="image")]
    instance.get_outputs.return_value = [
        SimpleNamespace(name="high_res_feats_0"),
        SimpleNamespace(name="image_embed"),
    ]
    return session_cls


def test_missing_model_is_a_configuration_error(tmp_path, ort_session) -> None:
    missing = tmp_path / "missing.onnx"

    with pytest.raises(ModelNotFoundError) as excinfo:
        NamedTensorSession(missing)

    assert isinstance(excinfo.value, ConfigurationError)
    assert excinfo.value.model_path == str(missing)
    ort_session.assert_not_called()


def test_session_options_and_io_names(model_file, ort_session) -> None:
    session = NamedTensorSession(model_file)

    _, kwargs = ort_session.call_args
    assert kwargs["providers"] == ["CPUExecutionProvider"]
    assert kwargs["sess_options"].intra_op_num_threads == 1
    assert kwargs["sess_options"].inter_op_num_threads == 1
    assert session.input_names == ["image"]
    assert session.output_names == ["high_res_feats_0", "image_embed"]
    assert session.is_open


def test_custom_providers_and_threads(model_file, ort_session) -> None:
    NamedTensorSession(model_file, intra_op_num_threads=4, providers=["CUDAExecutionProvider"])

    _, kwargs = ort_session.call_args
    assert kwargs["providers"] == ["CUDAExecutionProvider"]
    assert kwargs["sess_options"].intra_op_num_threads == 4


def test_engine_load_failure_is_wrapped(model_file, ort_session) -> None:
    ort_session.side_effect = RuntimeError("invalid protobuf")

    with pytest.raises(EngineError) as excinfo:
        NamedTensorSession(model_file)

    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_run_returns_outputs_by_name(model_file, ort_session) -> None:
    a = np.zeros((1, 2), dtype=np.float32)
    b = np.ones((3,), dtype=np.float32)
    ort_session.return_value.run.return_value = [a, b]
    session = NamedTensorSession(model_file)
    inputs = {"image": np.zeros((1, 3, 4, 4), dtype=np.float32)}

    outputs = session.run(inputs, ["high_res_feats_0", "image_embed"])

    ort_session.return_value.run.assert_called_once_with(
        ["high_res_feats_0", "image_embed"], inputs
    )
    assert outputs["high_res_feats_0"] is a
    assert outputs["image_embed"] is b


def test_run_failure_is_wrapped(model_file, ort_session) -> None:
    ort_session.return_value.run.side_effect = RuntimeError("shape mismatch")
    session = NamedTensorSession(model_file)

    with pytest.raises(EngineError):
        session.run({"image": np.zeros(1, dtype=np.float32)}, ["image_embed"])


def test_run_rejects_wrong_output_count(model_file, ort_session) -> None:
    ort_session.return_value.run.return_value = [np.zeros(1, dtype=np.float32)]
    session = NamedTensorSession(model_file)

    with pytest.raises(EngineError):
        session.run({}, ["high_res_feats_0", "image_embed"])


def test_close_releases_session(model_file, ort_session) -> None:
    session = NamedTensorSession(model_file)

    session.close()
    session.close()

    assert not session.is_open
    with pytest.raises(SequencingError):
        session.run({}, ["image_embed"])
