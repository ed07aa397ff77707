"""
Background Task Runner

Two kinds of fire-and-forget work:

- Short tasks (embedding generation after a save) go to a process-wide
  thread pool.
- Discovery runs can take many minutes each, so every run gets its own
  thread and never occupies a pool slot that short tasks are waiting for.

With BACKGROUND_TASKS_EAGER=true both run inline in the caller, which is
how the test suite drives them.
"""

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Configuration
MAX_WORKERS = int(os.environ.get('BACKGROUND_MAX_WORKERS', '4'))

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()
_threads: set[threading.Thread] = set()
_threads_lock = threading.Lock()


def _eager() -> bool:
    return os.environ.get('BACKGROUND_TASKS_EAGER', 'false').lower() == 'true'


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=MAX_WORKERS, thread_name_prefix='grantscout-bg')
        return _executor


def _log_failure(name: str, future: Future):
    error = future.exception()
    if error is not None:
        logger.error(f"Background task {name} failed: {error}")


def _run_inline(name: str, func: Callable, *args, **kwargs):
    try:
        func(*args, **kwargs)
    except Exception as e:
        logger.error(f"Background task {name} failed: {e}")


def run_in_background(func: Callable, *args, **kwargs) -> Optional[Future]:
    """
    Schedule a short task on the shared pool without waiting for it.

    Failures are logged, never raised to the caller.

    Returns:
        The Future, or None when the task ran eagerly
    """
    name = getattr(func, '__name__', repr(func))

    if _eager():
        _run_inline(name, func, *args, **kwargs)
        return None

    future = _get_executor().submit(func, *args, **kwargs)
    future.add_done_callback(lambda f: _log_failure(name, f))
    return future


def run_in_thread(func: Callable, *args, **kwargs) -> Optional[threading.Thread]:
    """
    Run a long task on a dedicated thread.

    Failures are logged, never raised to the caller.

    Returns:
        The started thread, or None when the task ran eagerly
    """
    name = getattr(func, '__name__', repr(func))

    if _eager():
        _run_inline(name, func, *args, **kwargs)
        return None

    def target():
        try:
            _run_inline(name, func, *args, **kwargs)
        finally:
            with _threads_lock:
                _threads.discard(threading.current_thread())

    thread = threading.Thread(target=target, name=f'grantscout-{name}')
    with _threads_lock:
        _threads.add(thread)
    thread.start()
    return thread


def shutdown(wait: bool = True):
    """Stop accepting pool tasks and optionally wait for all running work."""
    global _executor
    if wait:
        with _threads_lock:
            running = list(_threads)
        for thread in running:
            thread.join()

    with _executor_lock:
        executor, _executor = _executor, None
    if executor is not None:
        executor.shutdown(wait=wait)
