"""
Helpers for combining asynchronous success signals.

The vendor client can report the outcome of an operation twice: through the
awaited return value and through a separate notification. `race_with_timeout`
folds both into one result, with the notification taking precedence.
"""
import asyncio

from ..errors import UpstreamTimeout


async def race_with_timeout(operation, signal: asyncio.Future = None,
                            timeout: float = 60.0, description: str = 'operation'):
    """
    Await `operation` and optional `signal`, whichever settles first.

    If `signal` has settled by the time either completes, its result (or
    exception) is returned. Otherwise the operation's result is returned.
    Raises UpstreamTimeout when neither settles within `timeout` seconds.
    """
    task = asyncio.ensure_future(operation)
    waiters = {task}
    if signal is not None:
        waiters.add(signal)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout,
                                     return_when=asyncio.FIRST_COMPLETED)
        if not done:
            raise UpstreamTimeout(f'{description} timed out after {timeout:g}s')

        if signal is not None and signal.done():
            return signal.result()
        return task.result()
    finally:
        if not task.done():
            task.cancel()
