# -*- encoding: utf-8 -*-
from __future__ import annotations

import logging as log
import os
import shutil
import time
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Union

import regex as re

from .categorizer import group_by_category
from .scoring import ClassificationResult

logger = log.getLogger(__name__)

INVALID_PATH_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


@dataclass(frozen=True)
class MoveResult:
    source: Path
    dest: Path
    category: str


def safe_segment(name: str) -> str:
    # Category -> directory name usable on every platform.
    name = unicodedata.normalize("NFKC", name)
    return INVALID_PATH_CHARS.sub("_", name).strip() or "_"


def resolve_conflict(dest: Path) -> Path:
    # name.ext -> name_1.ext, name_2.ext, ... until the path is free.
    if not dest.exists():
        return dest
    for i in range(1, 1_000_000):
        candidate = dest.with_name(f"{dest.stem}_{i}{dest.suffix}")
        if not candidate.exists():
            return candidate
    raise FileExistsError(f"no free name for {dest}")


def _robust_move(src: Path, dst: Path, retries: int = 3, backoff: float = 0.4) -> None:
    # shutil.move with short exponential backoff, e.g. for files still held
    # open by a sync client.
    for attempt in range(retries):
        try:
            shutil.move(os.fspath(src), os.fspath(dst))
            return
        except OSError:
            if attempt == retries - 1:
                raise
            time.sleep(backoff * (2 ** attempt))


def move_files(
    base_dir: Union[str, Path],
    results: Iterable[ClassificationResult],
    dry_run: bool = False,
) -> List[MoveResult]:
    """
    Move every accepted image into ``base_dir/<category>/``.

    In a dry run nothing is created or moved and names are not de-conflicted;
    the returned list shows what would happen.
    """
    base_dir = Path(base_dir)
    moves: List[MoveResult] = []
    for category, items in sorted(group_by_category(results).items()):
        cat_dir = base_dir / safe_segment(category)
        if not dry_run:
            cat_dir.mkdir(parents=True, exist_ok=True)
        for item in items:
            src = Path(item.path)
            dest = cat_dir / src.name
            if dry_run:
                logger.info("[dry-run] %s  →  %s", src, dest)
            else:
                dest = resolve_conflict(dest)
                _robust_move(src, dest)
            moves.append(MoveResult(source=src, dest=dest, category=category))
    return moves
