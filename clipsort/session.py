# -*- encoding: utf-8 -*-
from __future__ import annotations

import logging as log
import threading
from typing import Optional, Sequence

import torch

from .config import Settings
from .preprocess import ImageInput, preprocess
from .scoring import ModelInvoke, ScoreMap, ScoringPolicy
from .tokenizer import Tokenizer

logger = log.getLogger(__name__)


class ClipSession:
    """
    A tokenizer and a loaded model, ready to score images.

    Preprocessing is pure and may run on any thread.  Calls into the model go
    through a lock, one inference at a time, since the underlying runtime is
    not assumed to be reentrant.
    """

    def __init__(self, tokenizer: Tokenizer, model_invoke: ModelInvoke, policy: Optional[ScoringPolicy] = None) -> None:
        self.tokenizer = tokenizer
        self.model_invoke = model_invoke
        self.policy = policy or ScoringPolicy(tokenizer)
        self._infer_lock = threading.Lock()

    @classmethod
    def open(cls, settings: Settings) -> "ClipSession":
        # Tokenizer tables first: they are small and fail fast.
        from .backends import load_backend

        tokenizer = Tokenizer.from_dir(settings.models_dir)
        backend = load_backend(settings.model_name, device=settings.device)
        return cls(tokenizer, backend)

    def _invoke(self, input_ids: torch.Tensor, pixel_values: torch.Tensor, attention_mask: torch.Tensor) -> torch.Tensor:
        with self._infer_lock:
            return self.model_invoke(input_ids, pixel_values, attention_mask)

    def score(self, pixel_values: torch.Tensor, categories: Sequence[str]) -> ScoreMap:
        return self.policy.classify(pixel_values, categories, self._invoke)

    def classify(self, image: ImageInput, categories: Sequence[str]) -> ScoreMap:
        # Raises DecodeError, InferenceError or NoCategoriesError.
        return self.score(preprocess(image), categories)
