"""Bounded-concurrency worker pool for bulk jobs."""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Sequence

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 50
MAX_CONCURRENCY = 100


def clamp_concurrency(concurrency) -> int:
    try:
        n = int(concurrency)
    except (TypeError, ValueError):
        n = DEFAULT_CONCURRENCY
    return max(1, min(n, MAX_CONCURRENCY))


def run_bounded(items: Sequence[Any], fn: Callable[[Any], Any], concurrency=DEFAULT_CONCURRENCY,
                key: str = 'item') -> List[Dict[str, Any]]:
    """Apply fn to every item with at most `concurrency` workers.

    Workers pull the next untaken index from a shared cursor. A failing item is
    recorded as {key, ok: False, error} and never stops the other workers.
    Results keep the input order.
    """
    items = list(items)
    if not items:
        return []
    results: List[Dict[str, Any]] = [None] * len(items)
    cursor = [0]
    lock = threading.Lock()

    def next_index():
        with lock:
            i = cursor[0]
            if i >= len(items):
                return None
            cursor[0] = i + 1
            return i

    def worker():
        while True:
            i = next_index()
            if i is None:
                return
            item = items[i]
            try:
                results[i] = {key: item, 'ok': True, 'value': fn(item)}
            except Exception as e:
                logger.warning('batch item %s failed: %s', i, e)
                results[i] = {key: item, 'ok': False, 'error': str(e) or e.__class__.__name__}

    n_workers = min(clamp_concurrency(concurrency), len(items))
    with ThreadPoolExecutor(max_workers=n_workers, thread_name_prefix='batch-worker') as pool:
        futures = [pool.submit(worker) for _ in range(n_workers)]
        for f in futures:
            f.result()
    return results
