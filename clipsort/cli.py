# -*- encoding: utf-8 -*-
from __future__ import annotations

import argparse
import logging as log
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from . import __version__
from .errors import ClipSortError

# -----------------------------------------------------------------------------
# Argument specification
#
# Every CLI option is described once here; build_parser turns the table into
# an argparse parser.  To add or change an option, edit ARG_DEFINITIONS.


@dataclass
class ArgSpec:
    # name: attribute on the argparse.Namespace.
    # cli_flags: flags, or None for a positional argument.
    # type / default / help: passed to argparse.  A None default means "not
    #    given", so the prefs file value is kept.
    # action: e.g. 'store_true' for boolean flags.
    name: str
    cli_flags: Optional[Sequence[str]]
    type: Any
    default: Any
    help: str
    action: Optional[str] = None
    metavar: Optional[str] = None


ARG_DEFINITIONS: List[ArgSpec] = [
    ArgSpec(
        name="directory",
        cli_flags=None,
        type=Path,
        default=None,
        help="Directory of images to sort into category sub-folders",
    ),
    ArgSpec(
        name="categories",
        cli_flags=["--categories"],
        type=str,
        default=None,
        help="Comma-separated list of categories (default: categories file, then built-ins)",
        metavar="LIST",
    ),
    ArgSpec(
        name="confidence",
        cli_flags=["--confidence"],
        type=float,
        default=None,
        help="Minimum confidence threshold for classification, 0.0-1.0 (default: 0.15)",
    ),
    ArgSpec(
        name="dry_run",
        cli_flags=["--dry-run"],
        type=bool,
        default=False,
        help="Show what would be done without moving files",
        action="store_true",
    ),
    ArgSpec(
        name="workers",
        cli_flags=["--workers"],
        type=int,
        default=None,
        help="Threads used to decode and preprocess images (default: 1)",
    ),
    ArgSpec(
        name="model_name",
        cli_flags=["--model"],
        type=str,
        default=None,
        help="CLIP checkpoint: a Hugging Face id or an OpenAI CLIP name such as ViT-B/32",
    ),
    ArgSpec(
        name="models_dir",
        cli_flags=["--models-dir"],
        type=Path,
        default=None,
        help="Where vocab.json and merges.txt are kept (default: ~/.clipsort/models)",
    ),
    ArgSpec(
        name="config",
        cli_flags=["--config"],
        type=Path,
        default=None,
        help="Prefs file (default: ~/.clipsort/clipsort.prefs.json)",
    ),
    ArgSpec(
        name="save_map",
        cli_flags=["--save-map"],
        type=Path,
        default=None,
        help="Optional path to write the per-image results as JSON",
    ),
    ArgSpec(
        name="verbose",
        cli_flags=["-v", "--verbose"],
        type=bool,
        default=False,
        help="Debug logging",
        action="store_true",
    ),
]


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="clipsort",
        description="Sort images into category folders using a local CLIP model (zero-shot).",
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    for spec in ARG_DEFINITIONS:
        flags = [spec.name] if spec.cli_flags is None else list(spec.cli_flags)
        kwargs: Dict[str, Any] = {"help": spec.help}
        if spec.action:
            kwargs["action"] = spec.action
        else:
            kwargs["type"] = spec.type
            if spec.metavar:
                kwargs["metavar"] = spec.metavar
        if spec.cli_flags is not None:
            kwargs["dest"] = spec.name
            kwargs["default"] = spec.default
        ap.add_argument(*flags, **kwargs)
    return ap


def setup_logging(verbose: bool = False) -> None:
    log.basicConfig(level=log.DEBUG if verbose else log.INFO, format=" %(levelname)s | %(message)s ")
    log.captureWarnings(True)
    from transformers import logging as hf_logging

    hf_logging.set_verbosity_error()


# ========================= Main ========================= #
def run_app(args: argparse.Namespace) -> int:
    # Resolve settings, load the model, classify, move, report.  Startup
    # failures raise ClipSortError (handled by main); per-image failures are
    # skips inside categorize.
    from .assets import ensure_assets
    from .categories import parse_category_list, resolve
    from .categorizer import categorize
    from .config import load_settings
    from .mover import move_files
    from .report import print_report, save_map
    from .scanner import scan
    from .session import ClipSession

    init = time.perf_counter()
    settings = load_settings(args.config).merged(
        {
            "confidence": args.confidence,
            "workers": args.workers,
            "model_name": args.model_name,
            "models_dir": args.models_dir,
        }
    )

    cli_cats = parse_category_list(args.categories) if args.categories else None
    cats = resolve(cli_cats, settings.categories_file)
    log.info("Using %d categories", len(cats))

    src_dir = Path(args.directory).resolve()
    log.info("Scanning %s", src_dir)
    found = scan(src_dir)
    log.info("Found %d images (%d non-image files skipped)", len(found.image_paths), found.skipped_count)

    log.info("Checking tokenizer files in %s", settings.models_dir)
    ensure_assets(settings.models_dir)
    log.info("Loading CLIP model %s", settings.model_name)
    session = ClipSession.open(settings)
    init_cost = time.perf_counter() - init

    start = time.perf_counter()
    results = categorize(
        session, found.image_paths, cats, settings.confidence, workers=settings.workers
    )
    elapsed = time.perf_counter() - start

    if args.dry_run:
        log.info("Dry run mode: no files will be moved")
    moves = move_files(src_dir, results, dry_run=args.dry_run)
    print_report(results, moves, found.skipped_count, dry_run=args.dry_run)

    if args.save_map:
        save_map(results, args.save_map)

    stats = session.tokenizer.stats
    if stats.truncated or stats.unknown_dropped:
        log.info("Tokenizer: %d prompt(s) truncated, %d unknown symbol(s) dropped",
                 stats.truncated, stats.unknown_dropped)
    log.info(
        "Initialisation time: %.3f Processing time: %.3f ; sec/file: %.3f ; files: %d",
        init_cost, elapsed, elapsed / max(1, len(results)), len(results),
    )
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        return run_app(args)
    except (ClipSortError, OSError) as e:
        log.error("%s", e)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
