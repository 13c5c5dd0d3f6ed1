# -*- encoding: utf-8 -*-
from __future__ import annotations

import logging as log
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import torch

from .errors import InferenceError, NoCategoriesError
from .preprocess import IMAGE_SIZE
from .tokenizer import PROMPT_TEMPLATE, Tokenizer

logger = log.getLogger(__name__)

# Internal label of the generic prompt every real category has to beat.
BASELINE_LABEL = "uncategorized"
BASELINE_PROMPT = "a photo"

# (input_ids [N, 77] int64, pixel_values [1, 3, 224, 224] float32,
#  attention_mask [N, 77] int64) -> logits_per_image [1, N]
ModelInvoke = Callable[[torch.Tensor, torch.Tensor, torch.Tensor], torch.Tensor]


def softmax(logits: torch.Tensor) -> torch.Tensor:
    # Shift by the max before exponentiating so large logits cannot overflow.
    logits = logits.to(torch.float32)
    exp = torch.exp(logits - logits.max())
    return exp / exp.sum()


class ScoreMap(Mapping[str, float]):
    """
    Label -> probability for one image, baseline included.

    ``entries`` keeps every (label, probability) pair by position.  The mapping
    view is keyed by label, so a category spelled exactly like the baseline
    label (or a repeated category) shadows the earlier entry there; decisions
    are always taken from ``entries``.
    """

    def __init__(self, entries: Sequence[Tuple[str, float]]) -> None:
        self.entries: Tuple[Tuple[str, float], ...] = tuple(entries)
        self._by_label: Dict[str, float] = {}
        for label, p in self.entries:
            self._by_label[label] = p

    def __getitem__(self, label: str) -> float:
        return self._by_label[label]

    def __iter__(self) -> Iterator[str]:
        return iter(self._by_label)

    def __len__(self) -> int:
        return len(self._by_label)

    def __repr__(self) -> str:
        inner = ", ".join(f"{k!r}: {v:.4f}" for k, v in self.entries)
        return f"ScoreMap({{{inner}}})"

    @property
    def baseline(self) -> float:
        return self.entries[0][1]

    @property
    def categories(self) -> Tuple[Tuple[str, float], ...]:
        return self.entries[1:]

    def total(self) -> float:
        return float(sum(p for _, p in self.entries))


@dataclass(frozen=True)
class ClassificationResult:
    path: Optional[str]
    category: Optional[str] = None
    confidence: Optional[float] = None
    skipped: bool = False
    reason: str = ""

    @classmethod
    def skip(cls, path: Optional[str], reason: str) -> "ClassificationResult":
        return cls(path=path, skipped=True, reason=reason)


def best_category(scores: ScoreMap) -> Tuple[str, float]:
    # Strictly highest probability among the real categories, scanned in
    # caller order, so the first of equal scores wins.
    best_label = ""
    best_score = 0.0
    for label, p in scores.categories:
        if p > best_score:
            best_label, best_score = label, p
    return best_label, best_score


def decide(scores: ScoreMap, threshold: float, path: Optional[str] = None) -> ClassificationResult:
    """
    Turn a ScoreMap into an accept or a skip.

    The baseline wins ties: a baseline probability >= the best category skips
    the image whatever the threshold, as does a map where no category has a
    positive probability.  Otherwise the best category must reach
    ``threshold``.
    """
    label, score = best_category(scores)
    baseline = scores.baseline
    if not label or baseline >= score:
        logger.warning(
            "skipping %s (no category matched better than baseline; best was %r at %.1f%%)",
            path, label, score * 100,
        )
        return ClassificationResult.skip(path, "baseline")
    if score < threshold:
        logger.warning(
            "skipping %s (best match %r at %.1f%% confidence, below %.1f%% threshold)",
            path, label, score * 100, threshold * 100,
        )
        return ClassificationResult.skip(path, "below threshold")
    return ClassificationResult(path=path, category=label, confidence=score)


class ScoringPolicy:
    """
    Zero-shot scoring of one image against a list of categories.

    Parameters
    ----------
    tokenizer : Tokenizer
        Shared, read-only tokenizer.
    baseline_label, baseline_prompt : str
        Label and prompt of the catch-all row placed first.
    template : str
        Prompt template for real categories, ``{}`` is the category.
    """

    def __init__(
        self,
        tokenizer: Tokenizer,
        baseline_label: str = BASELINE_LABEL,
        baseline_prompt: str = BASELINE_PROMPT,
        template: str = PROMPT_TEMPLATE,
    ) -> None:
        self.tokenizer = tokenizer
        self.baseline_label = baseline_label
        self.baseline_prompt = baseline_prompt
        self.template = template
        self._text_cache: Dict[Tuple[str, ...], Tuple[torch.Tensor, torch.Tensor]] = {}
        self._cache_lock = threading.Lock()

    def label_set(self, categories: Sequence[str]) -> Tuple[str, ...]:
        if not categories:
            raise NoCategoriesError()
        labels = (self.baseline_label,) + tuple(categories)
        if self.baseline_label in categories:
            logger.warning(
                "category %r collides with the baseline label; scores keyed by label are ambiguous",
                self.baseline_label,
            )
        return labels

    def prompts(self, categories: Sequence[str]) -> List[str]:
        return [self.baseline_prompt] + [self.template.format(c) for c in categories]

    def text_inputs(self, categories: Sequence[str]) -> Tuple[torch.Tensor, torch.Tensor]:
        # (input_ids, attention_mask), both [len(categories) + 1, 77] int64,
        # rows in label set order.  The category list rarely changes between
        # images, so the last few are kept.
        key = tuple(categories)
        with self._cache_lock:
            hit = self._text_cache.get(key)
        if hit is not None:
            return hit
        input_ids = self.tokenizer.encode_batch(self.prompts(categories))
        inputs = (input_ids, Tokenizer.attention_mask(input_ids))
        with self._cache_lock:
            if len(self._text_cache) >= 8:
                self._text_cache.clear()
            self._text_cache[key] = inputs
        return inputs

    def classify(
        self,
        pixel_values: torch.Tensor,
        categories: Sequence[str],
        model_invoke: ModelInvoke,
    ) -> ScoreMap:
        # Raises NoCategoriesError for an empty list and InferenceError when
        # the model call fails or returns something other than one logit per
        # label.
        labels = self.label_set(categories)
        input_ids, attention_mask = self.text_inputs(categories)
        pixels = _as_batch(pixel_values)

        try:
            logits = model_invoke(input_ids, pixels, attention_mask)
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(f"inference failed: {e}") from e

        logits = torch.as_tensor(logits).detach().to("cpu")
        if logits.numel() != len(labels):
            raise InferenceError(
                f"expected {len(labels)} logits (1 x {len(labels)}), got shape {tuple(logits.shape)}"
            )
        if not torch.isfinite(logits).all():
            raise InferenceError(f"model returned non-finite logits: {logits.reshape(-1).tolist()}")
        probs = softmax(logits.reshape(-1))
        return ScoreMap(zip(labels, probs.tolist()))


def _as_batch(pixel_values: torch.Tensor) -> torch.Tensor:
    # Accept the flat channel-major buffer, (3, H, W) or (1, 3, H, W).
    if pixel_values.dim() == 1:
        return pixel_values.reshape(1, 3, IMAGE_SIZE, IMAGE_SIZE)
    if pixel_values.dim() == 3:
        return pixel_values.unsqueeze(0)
    return pixel_values


def classify(
    pixel_values: torch.Tensor,
    categories: Sequence[str],
    model_invoke: ModelInvoke,
    tokenizer: Tokenizer,
) -> ScoreMap:
    return ScoringPolicy(tokenizer).classify(pixel_values, categories, model_invoke)
