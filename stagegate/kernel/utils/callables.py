"""Invoke user callables that may be sync or async."""

import asyncio
import contextvars
import inspect
from collections.abc import Callable
from typing import Any


def is_async_callable(fn: Any) -> bool:
    """True for coroutine functions and objects with an async ``__call__``."""
    if inspect.iscoroutinefunction(fn):
        return True
    call = getattr(fn, "__call__", None)  # noqa: B004
    return call is not None and inspect.iscoroutinefunction(call)


async def call_maybe_async(fn: Callable[..., Any], *args: Any) -> Any:
    """Await *fn* if it is async, otherwise run it in the default executor.

    Context variables are copied into the worker thread so logging context
    (run id) follows sync callables.
    """
    if is_async_callable(fn):
        return await fn(*args)

    ctx = contextvars.copy_context()
    result = await asyncio.get_running_loop().run_in_executor(None, ctx.run, fn, *args)
    if inspect.isawaitable(result):
        return await result
    return result
