from __future__ import annotations

import asyncio
import math
import posixpath
import os
from typing import Awaitable, Callable, List, Sequence, Tuple, Type, TypeVar


DEFAULT_CONNECTIONS = 6
DEFAULT_DEBOUNCE_MS = 1000


T = TypeVar("T")


def split_to_n_chunks(items: Sequence[T], n: int) -> List[List[T]]:
    """Split items into n ordered buckets whose sizes differ by at most one.

    Buckets are filled front to back: bucket i takes ceil(remaining / (n - i))
    items, so larger buckets come first and empty buckets trail when there are
    fewer items than buckets.
    """
    if n <= 0:
        raise ValueError(f"n must be greater than 0, got {n}")

    remaining = list(items)
    result: List[List[T]] = []
    for i in range(n, 0, -1):
        take = math.ceil(len(remaining) / i)
        result.append(remaining[:take])
        del remaining[:take]
    return result


def round_to_precision(value: float, digits: int = 2) -> float:
    return round(value, digits)


def remote_relpath(local_path: str, local_root: str) -> str:
    """Map a local file below local_root to a relative POSIX path for the remote side."""
    rel = os.path.relpath(local_path, local_root)
    if rel == os.curdir or rel.startswith(os.pardir + os.sep) or rel == os.pardir:
        raise ValueError(f"{local_path} is not inside {local_root}")
    return posixpath.join(*rel.split(os.sep))


async def async_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int = 5,
    base_delay: float = 0.5,
    exc_types: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    attempt = 0
    while True:
        try:
            return await fn()
        except exc_types:
            attempt += 1
            if attempt > retries:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            await asyncio.sleep(min(delay, 10.0))
