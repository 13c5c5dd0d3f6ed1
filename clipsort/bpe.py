# -*- encoding: utf-8 -*-
"""
Byte level BPE building blocks: the byte -> unicode table and the merge loop.

CLIP learns its merge rules over unicode strings.  Every raw byte is first
mapped to a printable code point so the same rules apply to any UTF-8 input,
including bytes that are control characters or whitespace on their own.
"""
from __future__ import annotations

import logging as log
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Tuple, Union

from .errors import MergeTableLoadError

logger = log.getLogger(__name__)

END_OF_WORD = "</w>"

Pair = Tuple[str, str]


def bytes_to_unicode() -> Dict[int, str]:
    # The 188 bytes that already render as a single visible character map to
    # themselves.  The remaining 68 (controls, space, NBSP, soft hyphen...)
    # are shifted past 255 in byte order: chr(256), chr(257), ...
    printable = (
        list(range(ord("!"), ord("~") + 1))
        + list(range(ord("¡"), ord("¬") + 1))
        + list(range(ord("®"), ord("ÿ") + 1))
    )
    table: Dict[int, str] = {}
    n = 0
    for b in range(256):
        if b in printable:
            table[b] = chr(b)
        else:
            table[b] = chr(256 + n)
            n += 1
    return table


# Computed once at import and never mutated afterwards.
BYTE_ENCODER: Mapping[int, str] = MappingProxyType(bytes_to_unicode())
BYTE_DECODER: Mapping[str, int] = MappingProxyType({v: k for k, v in BYTE_ENCODER.items()})


def encode_bytes(text: str) -> str:
    """Remap the UTF-8 bytes of ``text`` to one printable symbol per byte."""
    return "".join(BYTE_ENCODER[b] for b in text.encode("utf-8"))


def load_merges(path: Union[str, Path]) -> Mapping[Pair, int]:
    # Parse a merges.txt file into a read-only rank table.

    # The first line is skipped when it is a ``#version`` style comment.
    # Blank lines and lines without a separating space are ignored, and rank
    # is the position among the accepted lines, so a skipped line does not
    # leave a gap in the ranks.

    # Raises
    # ------
    # MergeTableLoadError
    #    If the file cannot be read or decoded.
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise MergeTableLoadError(f"cannot read merges file: {e}", path=str(path)) from e
    return parse_merges(text.split("\n"))


def parse_merges(lines: List[str]) -> Mapping[Pair, int]:
    ranks: Dict[Pair, int] = {}
    for i, line in enumerate(lines):
        if i == 0 and line.startswith("#"):
            continue
        line = line.strip()
        if not line:
            continue
        parts = line.split(" ", 1)
        if len(parts) != 2:
            continue
        # A repeated rule is re-ranked at the current table size.
        ranks[(parts[0], parts[1])] = len(ranks)
    return MappingProxyType(ranks)


class BpeMerger:
    """Greedy lowest-rank pair merging over a byte-remapped word."""

    def __init__(self, ranks: Mapping[Pair, int]) -> None:
        self.ranks = ranks
        self._cache: Dict[str, Tuple[str, ...]] = {}

    def __len__(self) -> int:
        return len(self.ranks)

    def merge(self, token: str) -> Tuple[str, ...]:
        # ``token`` is already byte remapped; one character is one symbol.
        if not token:
            return ()
        cached = self._cache.get(token)
        if cached is not None:
            return cached

        word: List[str] = list(token)
        word[-1] = word[-1] + END_OF_WORD

        while len(word) > 1:
            best = self._lowest_ranked_pair(word)
            if best is None:
                break
            word = self._merge_pair(word, best)

        result = tuple(word)
        # dict assignment is atomic, concurrent readers see old or new entry
        self._cache[token] = result
        return result

    def _lowest_ranked_pair(self, word: List[str]):
        best_pair = None
        best_rank = -1
        for pair in zip(word, word[1:]):
            rank = self.ranks.get(pair)
            if rank is None:
                continue
            if best_rank == -1 or rank < best_rank:
                best_rank = rank
                best_pair = pair
        return best_pair

    @staticmethod
    def _merge_pair(word: List[str], pair: Pair) -> List[str]:
        first, second = pair
        merged: List[str] = []
        i = 0
        while i < len(word):
            if i < len(word) - 1 and word[i] == first and word[i + 1] == second:
                merged.append(first + second)
                i += 2
            else:
                merged.append(word[i])
                i += 1
        return merged
