# -*- encoding: utf-8 -*-
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, TextIO

from .mover import MoveResult
from .scoring import ClassificationResult


def print_report(
    results: Sequence[ClassificationResult],
    moves: Sequence[MoveResult],
    skipped_non_image: int = 0,
    dry_run: bool = False,
    stream: Optional[TextIO] = None,
) -> None:
    out = stream or sys.stdout
    total = len(results)
    skipped = sum(1 for r in results if r.skipped)

    print(file=out)
    print("=== Dry Run Summary ===" if dry_run else "=== Summary ===", file=out)
    print(f"Images found:        {total}", file=out)
    print(f"Images categorized:  {total - skipped}", file=out)
    print(f"Images skipped:      {skipped}", file=out)
    if skipped_non_image > 0:
        print(f"Non-image files:     {skipped_non_image}", file=out)

    if not moves:
        print("\nNo files to move.", file=out)
        return

    groups: Dict[str, List[MoveResult]] = {}
    for m in moves:
        groups.setdefault(m.category, []).append(m)

    print(f"Categories:          {len(groups)}", file=out)
    print(file=out)
    verb = "Would move" if dry_run else "Moved"
    for cat in sorted(groups):
        items = groups[cat]
        print(f"  {cat}/ ({len(items)} files)", file=out)
        for m in items:
            print(f"    {verb} {m.source.name} → {m.dest}", file=out)
    print(file=out)


def save_map(results: Sequence[ClassificationResult], path: Path) -> None:
    # path -> {category, confidence} (null category for skips), as JSON.
    mapping = {
        r.path: {"category": r.category, "confidence": r.confidence, "reason": r.reason or None}
        for r in results
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(mapping, f, indent=2, ensure_ascii=False)
