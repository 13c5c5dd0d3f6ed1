# -*- encoding: utf-8 -*-
from __future__ import annotations

import json
import logging as log
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .assets import APP_DIR, models_dir
from .errors import ConfigError

logger = log.getLogger(__name__)

DEFAULT_MODEL = "openai/clip-vit-base-patch32"
PREFS_FILE = APP_DIR / "clipsort.prefs.json"

_PATH_FIELDS = {"models_dir", "categories_file"}


@dataclass(frozen=True)
class Settings:
    # Runtime settings.  Values come from the JSON prefs file and are then
    # overridden by whatever the CLI sets explicitly.
    models_dir: Path = field(default_factory=models_dir)
    model_name: str = DEFAULT_MODEL
    confidence: float = 0.15
    workers: int = 1
    categories_file: Optional[Path] = None
    device: Optional[str] = None

    def merged(self, overrides: Dict[str, Any]) -> "Settings":
        # None means "not given" and keeps the current value.
        given = {k: v for k, v in overrides.items() if v is not None}
        return _validated(replace(self, **_coerce(given)))

    def to_dict(self) -> Dict[str, Any]:
        return {k: (str(v) if isinstance(v, Path) else v) for k, v in asdict(self).items()}


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    # Values from the prefs file are untyped JSON; store them as the field types.
    out = dict(values)
    for k in _PATH_FIELDS:
        if out.get(k) is not None:
            out[k] = Path(out[k]).expanduser()
    if "confidence" in out:
        out["confidence"] = _number("confidence", out["confidence"])
    if "workers" in out:
        workers = _number("workers", out["workers"])
        if not workers.is_integer():
            raise ConfigError(f"workers must be a whole number, got {out['workers']!r}")
        out["workers"] = int(workers)
    for k in ("model_name", "device"):
        if out.get(k) is not None and not isinstance(out[k], str):
            raise ConfigError(f"{k} must be a string, got {out[k]!r}")
    return out


def _number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def _validated(s: Settings) -> Settings:
    if not 0.0 <= s.confidence <= 1.0:
        raise ConfigError(f"confidence must be within 0.0-1.0, got {s.confidence}")
    if s.workers < 1:
        raise ConfigError(f"workers must be at least 1, got {s.workers}")
    return s


def load_settings(path: Union[str, Path, None] = None) -> Settings:
    """
    Read settings from the prefs file (``~/.clipsort/clipsort.prefs.json`` by
    default).  A missing file gives the defaults; unknown keys are ignored
    with a warning.

    Raises
    ------
    ConfigError
        If the file exists but cannot be read or is not a JSON object.
    """
    path = Path(path) if path else PREFS_FILE
    if not path.is_file():
        return Settings()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f) or {}
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"cannot read prefs file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"prefs file {path} must hold a JSON object")

    known = {f.name for f in fields(Settings)}
    for key in sorted(set(data) - known):
        logger.warning("Ignoring unknown setting %r in %s", key, path)
    values = {k: v for k, v in data.items() if k in known}
    try:
        return Settings().merged(values)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value in {path}: {e}") from e
