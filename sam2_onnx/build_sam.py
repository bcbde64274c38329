# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

"""
SAM2 ONNX Model Builder

This module constructs ``SAM2OnnxBase`` models from an exported encoder/decoder
pair and a Hydra configuration. The configuration is split into three blocks:

- ``session``: onnxruntime options shared by both sessions (thread counts,
  execution providers, log level)
- ``model``: the ``SAM2OnnxBase`` target and its canvas geometry
- ``predictor``: predictor defaults such as the mask threshold

Sessions are created here rather than through ``instantiate``, which wraps
exceptions raised by targets, so ``ModelNotFoundError`` and ``EngineError``
reach the caller unchanged. Both model files are checked before either
session is created. Config and instantiation failures become
``ConfigurationError``.

Key Functions:
- build_sam2_onnx(): Creates a SAM2OnnxBase from two ONNX files
- load_config(): Composes and resolves a config without building anything
- get_best_available_providers(): Execution provider auto-detection
"""

import logging
import os

import onnxruntime as ort
from hydra import compose
from hydra.utils import instantiate
from omegaconf import OmegaConf

from sam2_onnx.errors import ConfigurationError, ModelNotFoundError
from sam2_onnx.modeling.session import NamedTensorSession

DEFAULT_CONFIG = "configs/sam2_onnx/sam2_hiera_t.yaml"

# Execution providers in order of preference
PREFERRED_PROVIDERS = [
    "CUDAExecutionProvider",
    "CoreMLExecutionProvider",
    "CPUExecutionProvider",
]

# Keyword arguments accepted by NamedTensorSession
SESSION_OPTIONS = {
    "intra_op_num_threads",
    "inter_op_num_threads",
    "providers",
    "log_severity_level",
}


def get_best_available_providers():
    """
    Automatically detect the best available onnxruntime execution provider.

    Checks for available providers in order of preference:
    1. CUDA (NVIDIA GPUs)
    2. CoreML (Apple devices)
    3. CPU - universal fallback

    Returns:
        list: Provider names for ``onnxruntime.InferenceSession``. The CPU
        provider is always included as the last fallback.
    """
    available = ort.get_available_providers()
    for provider in PREFERRED_PROVIDERS[:-1]:
        if provider in available:
            return [provider, "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def load_config(config_file=DEFAULT_CONFIG, hydra_overrides_extra=[]):
    """
    Compose a config with overrides and resolve its interpolations.

    Raises:
        ConfigurationError: If the config cannot be found, an override is
            malformed or an interpolation does not resolve.
    """
    try:
        cfg = compose(config_name=config_file, overrides=hydra_overrides_extra)
        OmegaConf.resolve(cfg)
    except Exception as e:
        logging.error(f"Failed to load config {config_file}: {e}")
        raise ConfigurationError(f"Invalid configuration {config_file}: {e}") from e
    return cfg


def build_sam2_onnx(
    config_file=DEFAULT_CONFIG,
    encoder_path=None,
    decoder_path=None,
    hydra_overrides_extra=[],
    cfg=None,
    **kwargs,
):
    """
    Build a SAM2 ONNX model from an encoder/decoder pair.

    Args:
        config_file (str): Path to the YAML config (relative to the package).
        encoder_path (str or PathLike): Exported encoder ``.onnx`` file.
        decoder_path (str or PathLike): Exported decoder ``.onnx`` file.
        hydra_overrides_extra (list): Additional Hydra overrides, e.g.
            ``["session.intra_op_num_threads=4"]``.
        cfg (DictConfig, optional): An already composed config from
            ``load_config``. When given, ``config_file`` and
            ``hydra_overrides_extra`` are not used.
        **kwargs: Additional arguments (currently unused).

    Returns:
        SAM2OnnxBase: Model owning both sessions.

    Raises:
        ModelNotFoundError: If either model file does not exist.
        ConfigurationError: If the config is missing, malformed or names an
            unknown session option or model target.
        EngineError: If onnxruntime cannot load either model.
    """
    for path in (encoder_path, decoder_path):
        if path is None or not os.path.isfile(os.fspath(path)):
            logging.error(f"Model file not found: {path}")
            raise ModelNotFoundError(path)

    if cfg is None:
        cfg = load_config(config_file, hydra_overrides_extra)
    try:
        session_cfg = OmegaConf.to_container(cfg.session, resolve=True)
    except Exception as e:
        raise ConfigurationError(f"Invalid session configuration: {e}") from e
    unknown = sorted(set(session_cfg) - SESSION_OPTIONS)
    if unknown:
        raise ConfigurationError(f"Unknown session options: {unknown}")
    if not session_cfg.get("providers"):
        session_cfg["providers"] = get_best_available_providers()
    logging.info(f"Using execution providers: {session_cfg['providers']}")

    logging.info(f"Loading encoder from {encoder_path}")
    encoder_session = NamedTensorSession(encoder_path, **session_cfg)
    logging.info(f"Loading decoder from {decoder_path}")
    try:
        decoder_session = NamedTensorSession(decoder_path, **session_cfg)
    except Exception:
        encoder_session.close()
        raise

    # Sessions are plain objects, so they are bound after instantiation
    try:
        model_factory = instantiate(cfg.model, _partial_=True)
        model = model_factory(encoder_session=encoder_session, decoder_session=decoder_session)
    except Exception as e:
        encoder_session.close()
        decoder_session.close()
        logging.error(f"Failed to instantiate model: {e}")
        raise ConfigurationError(f"Invalid model configuration: {e}") from e
    logging.info("SAM2 encoder and decoder loaded successfully")
    return model
