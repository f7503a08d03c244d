"""Detached background work.

Request handlers hand long-running work (local test processes, remote
pipelines, report extraction) to ``spawn`` and return straight away. The
wrapper guarantees that ``on_error`` sees every exception the task raises and
that ``on_done`` runs no matter how the task ended.

Work is split into pools so that long local test processes never hold the
threads that remote scheduling and report work need.
"""
from __future__ import annotations

import atexit
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger(__name__)

LOCAL_POOL = "local"
REMOTE_POOL = "remote"
POOL_SIZES = {LOCAL_POOL: 4, REMOTE_POOL: 8}

_executors: dict[str, ThreadPoolExecutor] = {}
_executor_lock = threading.Lock()


def _get_executor(pool: str) -> ThreadPoolExecutor:
    if pool not in POOL_SIZES:
        raise ValueError(f"Unknown task pool: {pool}")
    with _executor_lock:
        executor = _executors.get(pool)
        if executor is None:
            executor = ThreadPoolExecutor(max_workers=POOL_SIZES[pool], thread_name_prefix=f"runner-{pool}")
            _executors[pool] = executor
        return executor


def shutdown(wait: bool = False) -> None:
    with _executor_lock:
        executors = list(_executors.values())
        _executors.clear()
    for executor in executors:
        executor.shutdown(wait=wait)


atexit.register(shutdown)


def _guarded(
    name: str,
    fn: Callable[..., Any],
    args: tuple,
    on_error: Callable[[BaseException], None] | None,
    on_done: Callable[[], None] | None,
) -> Any:
    try:
        return fn(*args)
    except Exception as exc:
        logger.error(f"[Task {name}] failed: {exc}", exc_info=True)
        if on_error is not None:
            try:
                on_error(exc)
            except Exception as hook_exc:
                logger.error(f"[Task {name}] error hook failed: {hook_exc}", exc_info=True)
        raise
    finally:
        if on_done is not None:
            try:
                on_done()
            except Exception as hook_exc:
                logger.error(f"[Task {name}] completion hook failed: {hook_exc}", exc_info=True)


def spawn(
    name: str,
    fn: Callable[..., Any],
    *args: Any,
    on_error: Callable[[BaseException], None] | None = None,
    on_done: Callable[[], None] | None = None,
    pool: str = REMOTE_POOL,
) -> Future:
    logger.info(f"[Task {name}] dispatched to {pool} pool")
    return _get_executor(pool).submit(_guarded, name, fn, args, on_error, on_done)


def run_inline(
    name: str,
    fn: Callable[..., Any],
    *args: Any,
    on_error: Callable[[BaseException], None] | None = None,
    on_done: Callable[[], None] | None = None,
    pool: str = REMOTE_POOL,
) -> Future:
    """Drop-in for ``spawn`` that runs on the calling thread (tests, CLI use)."""
    future: Future = Future()
    try:
        future.set_result(_guarded(name, fn, args, on_error, on_done))
    except Exception as exc:
        future.set_exception(exc)
    return future
