# -*- encoding: utf-8 -*-
from __future__ import annotations

import json
import logging as log
import threading
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Sequence, Union

import regex as re
import torch

from .bpe import BYTE_DECODER, END_OF_WORD, BpeMerger, Pair, encode_bytes, load_merges
from .errors import VocabularyLoadError

logger = log.getLogger(__name__)

SOT_TOKEN = "<|startoftext|>"
EOT_TOKEN = "<|endoftext|>"
CONTEXT_LENGTH = 77
PROMPT_TEMPLATE = "a photo of {}"

# Markers, contractions, letter runs, single digits, symbol runs.
CLIP_PATTERN = re.compile(
    r"""<\|startoftext\|>|<\|endoftext\|>|'s|'t|'re|'ve|'m|'ll|'d|[\p{L}]+|[\p{N}]|[^\s\p{L}\p{N}]+"""
)

VOCAB_FILE = "vocab.json"
MERGES_FILE = "merges.txt"


def load_vocab(path: Union[str, Path]) -> Mapping[str, int]:
    # Load vocab.json (token string -> id) and check the invariants the
    # tokenizer relies on: ids 0..n-1 each used once and both text markers.
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise VocabularyLoadError(f"cannot read vocab file: {e}", path=str(path)) from e
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise VocabularyLoadError(f"cannot parse vocab file: {e}", path=str(path)) from e
    return validate_vocab(data, source=str(path))


def validate_vocab(data, source: str = "<memory>") -> Mapping[str, int]:
    if not isinstance(data, dict):
        raise VocabularyLoadError("vocab must be a JSON object of token -> id", path=source)
    seen: Dict[int, str] = {}
    for token, idx in data.items():
        if isinstance(idx, bool) or not isinstance(idx, int) or idx < 0:
            raise VocabularyLoadError(f"invalid id {idx!r} for token {token!r}", path=source)
        if idx in seen:
            raise VocabularyLoadError(
                f"id {idx} assigned to both {seen[idx]!r} and {token!r}", path=source
            )
        seen[idx] = token
    for marker in (SOT_TOKEN, EOT_TOKEN):
        if marker not in data:
            raise VocabularyLoadError(f"vocab lacks {marker}", path=source)
    # Unique ids that are all below len(data) cover 0..len(data)-1 exactly.
    if seen and max(seen) >= len(data):
        raise VocabularyLoadError(
            f"ids must run from 0 to {len(data) - 1}, found {max(seen)}", path=source
        )
    return MappingProxyType(dict(data))


@dataclass
class TokenizerStats:
    # Counters for behaviour that is silent by default.
    encoded: int = 0
    truncated: int = 0
    unknown_dropped: int = 0


class Tokenizer:
    """
    CLIP byte level BPE tokenizer.

    The vocabulary and merge table are read-only once built, so one instance
    can be shared by any number of threads.

    Parameters
    ----------
    encoder : Mapping[str, int]
        Token string -> id, must contain the start and end of text markers.
    ranks : Mapping[Pair, int]
        Merge rank table, lower ranks merge first.
    context_length : int
        Fixed length of every encoded sequence.
    """

    def __init__(
        self,
        encoder: Mapping[str, int],
        ranks: Mapping[Pair, int],
        context_length: int = CONTEXT_LENGTH,
    ) -> None:
        self.encoder = encoder
        self.decoder: Mapping[int, str] = MappingProxyType({v: k for k, v in encoder.items()})
        self.merger = BpeMerger(ranks)
        self.context_length = context_length
        self.sot_id = encoder[SOT_TOKEN]
        self.eot_id = encoder[EOT_TOKEN]
        self.stats = TokenizerStats()
        self._stats_lock = threading.Lock()

    @classmethod
    def from_files(cls, vocab_path: Union[str, Path], merges_path: Union[str, Path]) -> "Tokenizer":
        encoder = load_vocab(vocab_path)
        ranks = load_merges(merges_path)
        logger.debug("Loaded tokenizer: %d tokens, %d merges", len(encoder), len(ranks))
        return cls(encoder, ranks)

    @classmethod
    def from_dir(cls, models_dir: Union[str, Path]) -> "Tokenizer":
        models_dir = Path(models_dir)
        return cls.from_files(models_dir / VOCAB_FILE, models_dir / MERGES_FILE)

    @property
    def vocab_size(self) -> int:
        return len(self.encoder)

    def pre_tokenize(self, text: str) -> List[str]:
        return CLIP_PATTERN.findall(text)

    def tokenize(self, text: str) -> List[int]:
        """Ids for ``text`` wrapped in start/end markers, without padding."""
        text = text.strip().lower()
        ids = [self.sot_id]
        dropped = 0
        for piece in self.pre_tokenize(text):
            for symbol in self.merger.merge(encode_bytes(piece)):
                idx = self.encoder.get(symbol)
                if idx is None:
                    dropped += 1
                    continue
                ids.append(idx)
        ids.append(self.eot_id)
        if dropped:
            logger.debug("Dropped %d unknown symbol(s) while encoding %r", dropped, text)
            with self._stats_lock:
                self.stats.unknown_dropped += dropped
        return ids

    def encode(self, text: str) -> torch.Tensor:
        # Fixed length int64 sequence; zero padded, overflow silently dropped.
        ids = self.tokenize(text)
        out = torch.zeros(self.context_length, dtype=torch.int64)
        n = min(len(ids), self.context_length)
        out[:n] = torch.tensor(ids[:n], dtype=torch.int64)
        with self._stats_lock:
            self.stats.encoded += 1
            if len(ids) > self.context_length:
                self.stats.truncated += 1
        if len(ids) > self.context_length:
            logger.debug("Truncated %d token(s) from %r", len(ids) - self.context_length, text)
        return out

    def encode_batch(self, texts: Sequence[str]) -> torch.Tensor:
        if not texts:
            return torch.zeros((0, self.context_length), dtype=torch.int64)
        return torch.stack([self.encode(t) for t in texts])

    def encode_categories(self, categories: Sequence[str]) -> torch.Tensor:
        # Flat buffer of len(categories) * context_length ids, one
        # "a photo of {category}" row per category in input order.
        return self.encode_batch([PROMPT_TEMPLATE.format(c) for c in categories]).reshape(-1)

    @staticmethod
    def attention_mask(ids: torch.Tensor) -> torch.Tensor:
        return (ids != 0).to(torch.int64)

    def decode(self, ids: Sequence[int]) -> str:
        # Inverse of tokenize for inspection.  Stops at the end marker, which
        # also drops the padding.
        pieces: List[str] = []
        for i in ids:
            i = int(i)
            if i == self.eot_id:
                break
            if i != self.sot_id:
                pieces.append(self.decoder[i])
        text = "".join(pieces).replace(END_OF_WORD, " ")
        data = bytearray(0x20 if c == " " else BYTE_DECODER[c] for c in text)
        return data.decode("utf-8", errors="replace").strip()
