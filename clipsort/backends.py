# -*- encoding: utf-8 -*-
"""
Model capabilities: callables mapping (input_ids, pixel_values, attention_mask)
to the image-vs-label logits, backed by a pretrained CLIP checkpoint.
"""
from __future__ import annotations

import logging as log
import os
import re
from typing import Any, Optional, Sequence, Union

import torch
from transformers import AutoModel

from .config import DEFAULT_MODEL
from .errors import ModelLoadError

logger = log.getLogger(__name__)

# Names served by the OpenAI `clip` package.  Anything else is treated as a
# Hugging Face identifier.
OPENAI_CLIP_MODELS: Sequence[str] = (
    "ViT-B/32",  # same weights as DEFAULT_MODEL
    "ViT-B/16",
    "ViT-L/14",
    "ViT-L/14@336px",
    "RN50",
    "RN101",
    "RN50x4",
    "RN50x16",
    "RN50x64",
)

Device = Union[str, torch.device]


class _DownloadRetryCounter(log.Filter):
    # Counts hub download retry failures seen in log records, e.g.
    # 'Fatal Client Error: s3::get_range api call failed: Request failed after 5 retries'.
    # Never raises; the caller decides after the guarded call.

    def __init__(self, threshold: int = 3) -> None:
        super().__init__()
        self.pat = re.compile(r"Fatal Client Error:\s*s3::get_range.*after\s+\d+\s+retries", re.IGNORECASE)
        self.threshold = threshold
        self.count = 0

    def filter(self, record: log.LogRecord) -> bool:
        if self.pat.search(record.getMessage()):
            self.count += 1
        return True


class _CountOnlyHandler(log.Handler):
    # Runs its filters and emits nothing; output stays with the configured handlers.
    def emit(self, record: log.LogRecord) -> None:
        pass


class download_error_watch:
    # Installs a temporary handler on the root logger that counts download
    # retry failures while the weights are fetched.  Records are not printed
    # again and exceptions are not suppressed.
    def __init__(self, logger: Optional[log.Logger] = None, level: int = log.ERROR, threshold: int = 3):
        self.logger = logger or log.getLogger()
        self.filter = _DownloadRetryCounter(threshold=threshold)
        self.handler = _CountOnlyHandler()
        self.handler.setLevel(level)
        self.handler.addFilter(self.filter)

    def __enter__(self) -> _DownloadRetryCounter:
        self.logger.addHandler(self.handler)
        return self.filter

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.logger.removeHandler(self.handler)
        return False


def _is_standard_clip_model(model: Any) -> bool:
    # True when the checkpoint declares a CLIPModel architecture, i.e. its
    # forward takes input_ids/pixel_values/attention_mask and returns
    # logits_per_image.
    cfg = getattr(model, "config", None)
    archs = getattr(cfg, "architectures", None) or []
    return any(isinstance(a, str) and "CLIPModel" in a for a in archs)


def default_device() -> torch.device:
    return torch.device("cuda" if torch.cuda.is_available() else "cpu")


class HFClipBackend:
    """Transformers CLIP model exposed as a model capability."""

    def __init__(self, model: Any, device: Device = "cpu") -> None:
        self.model = model
        self.device = torch.device(device)
        self.dtype = next(model.parameters()).dtype

    @torch.inference_mode()
    def __call__(self, input_ids: torch.Tensor, pixel_values: torch.Tensor, attention_mask: torch.Tensor) -> torch.Tensor:
        outputs = self.model(
            input_ids=input_ids.to(self.device),
            pixel_values=pixel_values.to(self.device, dtype=self.dtype),
            attention_mask=attention_mask.to(self.device),
        )
        return outputs.logits_per_image.float().cpu()


class OpenAIClipBackend:
    # OpenAI CLIP finds the end of each prompt from the highest token id, so
    # the attention mask is accepted but unused.

    def __init__(self, model: Any, device: Device = "cpu") -> None:
        self.model = model
        self.device = torch.device(device)

    @torch.inference_mode()
    def __call__(self, input_ids: torch.Tensor, pixel_values: torch.Tensor, attention_mask: torch.Tensor) -> torch.Tensor:
        image = pixel_values.to(self.device).type(self.model.dtype)
        logits_per_image, _ = self.model(image, input_ids.to(self.device))
        return logits_per_image.float().cpu()


def _openai_model_names() -> set:
    try:
        import clip  # type: ignore
    except ImportError:
        return set(OPENAI_CLIP_MODELS)
    return set(clip.available_models())


def load_backend(model_name: str = DEFAULT_MODEL, device: Optional[Device] = None):
    """
    Load a CLIP checkpoint and wrap it as a model capability.

    Parameters
    ----------
    model_name : str
        OpenAI CLIP name (e.g. ``ViT-B/32``, needs the ``clip`` package) or a
        Hugging Face identifier (default ``openai/clip-vit-base-patch32``).
    device : str or torch.device, optional
        Defaults to CUDA when available.

    Raises
    ------
    ModelLoadError
        If the weights cannot be downloaded or loaded.
    """
    os.environ.setdefault("RUST_LOG", "error")
    device = torch.device(device) if device is not None else default_device()

    if model_name in _openai_model_names():
        try:
            import clip  # type: ignore
        except ImportError as e:
            raise ModelLoadError(
                f"'{model_name}' needs the OpenAI clip package (pip install clipsort[openai])"
            ) from e
        try:
            model, _ = clip.load(model_name, device=device)
        except (RuntimeError, OSError) as e:
            raise ModelLoadError(f"cannot load '{model_name}': {e}") from e
        model.eval()
        logger.info("Loaded OpenAI CLIP %s on %s", model_name, device)
        return OpenAIClipBackend(model, device)

    with download_error_watch(level=log.ERROR, threshold=3) as counter:
        try:
            model = AutoModel.from_pretrained(model_name)
        except (OSError, ValueError) as e:
            raise ModelLoadError(f"cannot load '{model_name}': {e}") from e
        except RuntimeError as e:
            if "CAS service error" in str(e) or "Request failed after" in str(e):
                raise ModelLoadError(f"Download failed for {model_name}: {e}") from e
            raise
    if counter.count > counter.threshold:
        raise ModelLoadError(
            f"Aborting load of '{model_name}': observed {counter.count} download retry failures."
        )
    if not _is_standard_clip_model(model):
        logger.warning("%s is not a CLIPModel checkpoint; logits_per_image may be missing", model_name)

    model = model.to(device)
    model.eval()
    logger.info("Loaded %s on %s", model_name, device)
    return HFClipBackend(model, device)
