# -*- encoding: utf-8 -*-
from __future__ import annotations

import itertools
import logging as log
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Deque, Dict, Iterable, Iterator, List, Sequence, Tuple, Union

import torch
from tqdm import tqdm

from .errors import DecodeError, InferenceError, NoCategoriesError
from .preprocess import preprocess
from .scoring import ClassificationResult, decide
from .session import ClipSession

logger = log.getLogger(__name__)

PathLike = Union[str, Path]
_Prepared = Union[torch.Tensor, DecodeError]


def _try_preprocess(path: PathLike) -> _Prepared:
    # A decode failure is handed back in order, not raised from the worker.
    try:
        return preprocess(path)
    except DecodeError as e:
        return e


def _prepared(paths: Sequence[PathLike], workers: int) -> Iterator[Tuple[PathLike, _Prepared]]:
    if workers <= 1:
        for p in paths:
            yield p, _try_preprocess(p)
        return

    # Bounded look-ahead so at most 2 * workers decoded tensors are alive.
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="clipsort-pre") as pool:
        it = iter(paths)
        pending: Deque = deque(
            (p, pool.submit(_try_preprocess, p)) for p in itertools.islice(it, workers * 2)
        )
        while pending:
            p, fut = pending.popleft()
            for nxt in itertools.islice(it, 1):
                pending.append((nxt, pool.submit(_try_preprocess, nxt)))
            yield p, fut.result()


def categorize(
    session: ClipSession,
    image_paths: Sequence[PathLike],
    categories: Sequence[str],
    threshold: float,
    workers: int = 1,
    progress: bool = True,
) -> List[ClassificationResult]:
    """
    Classify every image, one inference at a time.

    A failed decode or inference turns that image into a skip and the run
    moves on; nothing is retried.  Results come back in ``image_paths`` order.

    Parameters
    ----------
    session : ClipSession
        Loaded tokenizer + model.
    image_paths : Sequence[PathLike]
        Images to classify.
    categories : Sequence[str]
        Candidate categories, in caller order.
    threshold : float
        Minimum probability for the best category to be accepted.
    workers : int
        Preprocessing threads; 1 keeps everything on the calling thread.
    progress : bool
        Show a tqdm progress bar.

    Raises
    ------
    NoCategoriesError
        If ``categories`` is empty, before any image is read.
    """
    if not categories:
        raise NoCategoriesError()

    results: List[ClassificationResult] = []
    bar = tqdm(total=len(image_paths), desc="Categorizing", unit="img", disable=not progress)
    try:
        for path, prepared in _prepared(image_paths, workers):
            results.append(_classify_one(session, str(path), prepared, categories, threshold))
            bar.update(1)
    finally:
        bar.close()
    return results


def _classify_one(
    session: ClipSession,
    path: str,
    prepared: _Prepared,
    categories: Sequence[str],
    threshold: float,
) -> ClassificationResult:
    if isinstance(prepared, DecodeError):
        logger.warning("skipping %s: %s", path, prepared)
        return ClassificationResult.skip(path, "error")
    try:
        scores = session.score(prepared, categories)
    except InferenceError as e:
        logger.warning("skipping %s: %s", path, e)
        return ClassificationResult.skip(path, "error")
    return decide(scores, threshold, path=path)


def group_by_category(results: Iterable[ClassificationResult]) -> Dict[str, List[ClassificationResult]]:
    groups: Dict[str, List[ClassificationResult]] = {}
    for r in results:
        if not r.skipped:
            groups.setdefault(r.category, []).append(r)
    return groups
