"""
Blocking work off the event loop for check-service-certs.
"""

import asyncio
import threading
from typing import Any, Callable, Optional

from check_service_certs.logger import get_logger

logger = get_logger("threads")


def run_in_thread(
    func: Callable[..., Any], *args: Any, name: Optional[str] = None
) -> "asyncio.Future[Any]":
    """
    Run a blocking call in a daemon thread and return a future for its result.

    Unlike run_in_executor, the thread is never joined: cancelling the future
    abandons the call, and neither asyncio.run nor interpreter exit waits for
    it to return.

    Args:
        func: Blocking callable
        *args: Positional arguments for func
        name: Thread name

    Returns:
        Future resolved on the running loop with the result or exception
    """
    loop = asyncio.get_running_loop()
    future: "asyncio.Future[Any]" = loop.create_future()

    def _resolve(result: Any, error: Optional[Exception]) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def _target() -> None:
        result, error = None, None
        try:
            result = func(*args)
        except Exception as e:
            error = e

        try:
            loop.call_soon_threadsafe(_resolve, result, error)
        except RuntimeError:
            # Loop already closed; the caller gave up on this call
            logger.debug(f"Discarding result of abandoned call {getattr(func, '__name__', func)}")

    threading.Thread(target=_target, name=name, daemon=True).start()
    return future
