# -*- encoding: utf-8 -*-
from __future__ import annotations

import logging as log
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .assets import APP_DIR
from .errors import ConfigError

logger = log.getLogger(__name__)

CATEGORIES_FILE = APP_DIR / "categories.txt"

# Built-in categories, used when neither the CLI nor a categories file gives any.
DEFAULT_CATEGORIES: Sequence[str] = (
    # People & Social
    "people", "portrait", "selfie", "group photo", "baby", "wedding", "family",
    # Animals
    "dog", "cat", "bird", "wildlife", "pet", "fish", "insect",
    # Nature & Landscapes
    "landscape", "mountain", "forest", "ocean", "lake", "river", "waterfall",
    "desert", "field", "garden", "park", "sunrise", "sunset", "sky", "clouds",
    # Urban & Architecture
    "city", "building", "skyscraper", "bridge", "street", "house", "church",
    "castle", "monument", "ruins",
    # Food & Drink
    "food", "dessert", "coffee", "cocktail", "fruit", "meal",
    # Travel & Transport
    "car", "airplane", "boat", "train", "bicycle", "motorcycle", "road",
    "airport", "harbor",
    # Activities & Sports
    "sports", "hiking", "swimming", "skiing", "concert", "festival", "party",
    # Art & Creative
    "art", "painting", "sculpture", "graffiti", "illustration", "calligraphy",
    # Indoor & Objects
    "indoor", "furniture", "electronics", "book", "toy", "instrument",
    "clothing", "jewelry",
    # Documents & Screenshots
    "document", "screenshot", "whiteboard", "diagram", "chart", "map", "sign",
    "receipt", "menu",
    # Miscellaneous
    "flower", "tree", "night", "fireworks", "snow", "rain", "fog",
    "abstract", "pattern", "texture", "macro", "aerial",
)


def parse_category_list(value: str) -> List[str]:
    # "a, b,,c " -> ["a", "b", "c"]
    return [c.strip() for c in value.split(",") if c.strip()]


def load_custom_categories(path: Union[str, Path, None] = None) -> List[str]:
    # One category per line; blank lines and '#' comments are ignored.
    # A missing file is not an error and yields an empty list.
    path = Path(path) if path else CATEGORIES_FILE
    if not path.exists():
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"cannot read categories file {path}: {e}") from e
    return [ln.strip() for ln in lines if ln.strip() and not ln.strip().startswith("#")]


def resolve(cli_categories: Optional[Sequence[str]] = None, path: Union[str, Path, None] = None) -> List[str]:
    """Final category list: CLI flag, then the custom file, then the defaults."""
    if cli_categories:
        return list(cli_categories)
    custom = load_custom_categories(path)
    if custom:
        logger.info("Using %d categories from %s", len(custom), path or CATEGORIES_FILE)
        return custom
    return list(DEFAULT_CATEGORIES)
