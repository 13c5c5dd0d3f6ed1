"""clipsort: zero-shot image sorting with CLIP."""

from importlib.metadata import PackageNotFoundError, version

from .errors import (
    ClipSortError,
    DecodeError,
    InferenceError,
    MergeTableLoadError,
    ModelLoadError,
    NoCategoriesError,
    VocabularyLoadError,
)
from .preprocess import center_crop, preprocess, resize_bilinear, to_tensor
from .scoring import (
    BASELINE_LABEL,
    ClassificationResult,
    ScoreMap,
    ScoringPolicy,
    classify,
    decide,
    softmax,
)
from .tokenizer import CONTEXT_LENGTH, Tokenizer

try:
    __version__ = version("clipsort")
except PackageNotFoundError:
    __version__ = "dev"

__all__ = [
    "Tokenizer",
    "CONTEXT_LENGTH",
    "preprocess",
    "center_crop",
    "resize_bilinear",
    "to_tensor",
    "ScoringPolicy",
    "ScoreMap",
    "ClassificationResult",
    "BASELINE_LABEL",
    "classify",
    "decide",
    "softmax",
    "ClipSortError",
    "DecodeError",
    "InferenceError",
    "MergeTableLoadError",
    "ModelLoadError",
    "NoCategoriesError",
    "VocabularyLoadError",
]
