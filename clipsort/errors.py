# -*- encoding: utf-8 -*-
from __future__ import annotations

from typing import Optional


class ClipSortError(Exception):
    """Base class for every error raised by clipsort."""


# ---- startup / load time (fatal) ------------------------------------------

class VocabularyLoadError(ClipSortError):
    # Raised when vocab.json is missing, unreadable, not a JSON object of
    # token -> id, or lacks the start/end of text markers.
    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        if path:
            message = f"{message} ({path})"
        super().__init__(message)
        self.path = path


class MergeTableLoadError(ClipSortError):
    # Raised when merges.txt cannot be read.
    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        if path:
            message = f"{message} ({path})"
        super().__init__(message)
        self.path = path


class ModelLoadError(ClipSortError):
    # Raised when the CLIP weights cannot be loaded, most commonly because the
    # hub download failed repeatedly.  The CLI surfaces it and exits non-zero.
    pass


class AssetDownloadError(ClipSortError):
    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        if url:
            message = f"{message} [{url}]"
        super().__init__(message)
        self.url = url


class ConfigError(ClipSortError):
    pass


class NoCategoriesError(ClipSortError):
    # An empty category list leaves nothing to compete with the baseline.
    def __init__(self, message: str = "no categories provided") -> None:
        super().__init__(message)


class ScanError(ClipSortError):
    pass


# ---- per image (reported as a skip, the run continues) -------------------

class DecodeError(ClipSortError):
    def __init__(self, message: str, *, source: Optional[str] = None) -> None:
        if source:
            message = f"{message}: {source}"
        super().__init__(message)
        self.source = source


class InferenceError(ClipSortError):
    pass
