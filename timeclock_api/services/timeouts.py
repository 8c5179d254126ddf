# timeclock_api/services/timeouts.py
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# model inference and position fixes run here so they can be timed out;
# nothing submitted here may touch the database session
MAX_WORKERS = 4

_lock = threading.Lock()
_executor = ThreadPoolExecutor(max_workers=MAX_WORKERS, thread_name_prefix="timeclock")
# timed-out calls of the current pool that are still occupying a worker
_abandoned = set()


def _name(fn: Callable) -> str:
    return getattr(fn, "__qualname__", None) or repr(fn)


def abandoned_count() -> int:
    with _lock:
        return len(_abandoned)


def call_with_timeout(fn: Callable, timeout: Optional[float], *args):
    """
    Run ``fn(*args)``; raises concurrent.futures.TimeoutError after ``timeout`` seconds.

    A running thread cannot be stopped, so a call that overruns keeps its
    worker until it returns by itself. Once every worker of the pool is held
    that way the pool is replaced, so new calls are not queued behind hung ones.
    """
    global _executor, _abandoned

    if not timeout:
        return fn(*args)
    with _lock:
        executor, abandoned = _executor, _abandoned
        future = executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        if future.cancel():
            raise
        logger.warning("%s still running after %ss; abandoning its worker", _name(fn), timeout)
        with _lock:
            abandoned.add(future)
            if abandoned is _abandoned and len(_abandoned) >= MAX_WORKERS:
                logger.error("All %d workers are held by abandoned calls; starting a new pool", MAX_WORKERS)
                executor.shutdown(wait=False)
                _executor = ThreadPoolExecutor(max_workers=MAX_WORKERS, thread_name_prefix="timeclock")
                _abandoned = set()
        future.add_done_callback(lambda f: _release(abandoned, f))
        raise


def _release(abandoned: set, future):
    with _lock:
        abandoned.discard(future)
