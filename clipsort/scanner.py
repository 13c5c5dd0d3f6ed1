# -*- encoding: utf-8 -*-
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Union

from .errors import ScanError

# file extensions considered as images
IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".tif", ".tiff"}


@dataclass
class ScanResult:
    image_paths: List[Path] = field(default_factory=list)
    skipped_count: int = 0


def scan(directory: Union[str, Path]) -> ScanResult:
    # Non-recursive.  Hidden entries and sub-directories are ignored, other
    # non-image files are counted as skipped.
    directory = Path(directory)
    if not directory.exists():
        raise FileNotFoundError(f"cannot access directory: {directory}")
    if not directory.is_dir():
        raise NotADirectoryError(f"{directory} is not a directory")

    result = ScanResult()
    for p in sorted(directory.iterdir()):
        if p.name.startswith(".") or not p.is_file():
            continue
        if p.suffix.lower() in IMAGE_EXTS:
            result.image_paths.append(p)
        else:
            result.skipped_count += 1

    if not result.image_paths:
        raise ScanError(f"no image files found in {directory}")
    return result
