# -*- encoding: utf-8 -*-
from __future__ import annotations

import hashlib
import logging as log
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

import requests
from tqdm import tqdm

from .errors import AssetDownloadError

logger = log.getLogger(__name__)

HF_BASE_URL = "https://huggingface.co/Xenova/clip-vit-base-patch32/resolve/main"
APP_DIR = Path.home() / ".clipsort"

CHUNK_SIZE = 32 * 1024


@dataclass(frozen=True)
class AssetFile:
    name: str
    url: str
    sha256: str = ""  # empty skips verification


# Tokenizer tables.  Model weights are fetched by the backend itself.
REQUIRED_FILES: List[AssetFile] = [
    AssetFile("vocab.json", f"{HF_BASE_URL}/vocab.json"),
    AssetFile("merges.txt", f"{HF_BASE_URL}/merges.txt"),
]


def models_dir() -> Path:
    return APP_DIR / "models"


def asset_path(name: str, directory: Optional[Union[str, Path]] = None) -> Path:
    path = Path(directory or models_dir()) / name
    if not path.is_file():
        raise FileNotFoundError(f"file not found: {path} (run clipsort once to download it)")
    return path


def missing_assets(directory: Union[str, Path], files: Sequence[AssetFile] = REQUIRED_FILES) -> List[AssetFile]:
    directory = Path(directory)
    return [f for f in files if not (directory / f.name).is_file()]


def ensure_assets(
    directory: Optional[Union[str, Path]] = None,
    files: Sequence[AssetFile] = REQUIRED_FILES,
    progress: bool = True,
    session: Optional[requests.Session] = None,
) -> Path:
    # Download every missing file into ``directory``.  Files already present
    # are never re-fetched or re-verified.
    directory = Path(directory or models_dir())
    directory.mkdir(parents=True, exist_ok=True)
    http = session or requests.Session()
    for asset in missing_assets(directory, files):
        logger.info("Downloading %s", asset.name)
        download_file(directory / asset.name, asset, http, progress=progress)
    return directory


def download_file(dest: Path, asset: AssetFile, http: requests.Session, progress: bool = True) -> None:
    """
    Stream ``asset`` into ``dest`` through a ``.tmp`` sibling, so an
    interrupted download never leaves a truncated file under the final name.

    Raises
    ------
    AssetDownloadError
        On HTTP failure, write failure or checksum mismatch.
    """
    tmp = dest.with_name(dest.name + ".tmp")
    hasher = hashlib.sha256()
    try:
        with http.get(asset.url, stream=True, timeout=30) as resp:
            resp.raise_for_status()
            total = int(resp.headers.get("content-length", 0)) or None
            with open(tmp, "wb") as out, tqdm(
                total=total, unit="B", unit_scale=True, desc=asset.name, disable=not progress
            ) as bar:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    out.write(chunk)
                    hasher.update(chunk)
                    bar.update(len(chunk))
        if asset.sha256 and hasher.hexdigest() != asset.sha256:
            raise AssetDownloadError(
                f"SHA256 mismatch for {asset.name}: expected {asset.sha256}, got {hasher.hexdigest()}",
                url=asset.url,
            )
        os.replace(tmp, dest)
    except requests.RequestException as e:
        raise AssetDownloadError(f"failed to download {asset.name}: {e}", url=asset.url) from e
    except OSError as e:
        raise AssetDownloadError(f"cannot write {dest}: {e}", url=asset.url) from e
    finally:
        if tmp.exists():
            tmp.unlink()
