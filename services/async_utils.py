import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, Optional


async def run_rate_limited(
    func: Callable[[Any], Any],
    items: Iterable[Any],
    *,
    max_concurrency: int = 1,
    delay_seconds: float = 0.0,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
) -> List[Any]:
    """
    Run a sync function over items via asyncio.to_thread, bounded by
    max_concurrency. Each worker slot is held for ``delay_seconds`` after its
    call finishes, so at most max_concurrency calls start per delay window.
    Returns results in input order; the first exception propagates.
    """
    sleep = sleep or asyncio.sleep
    sem = asyncio.Semaphore(max(1, max_concurrency))

    async def _run_one(item: Any) -> Any:
        async with sem:
            try:
                return await asyncio.to_thread(func, item)
            finally:
                if delay_seconds > 0:
                    await sleep(delay_seconds)

    tasks = [asyncio.create_task(_run_one(item)) for item in items]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise


def run_rate_limited_sync(func: Callable[[Any], Any], items: Iterable[Any], **kwargs: Any) -> List[Any]:
    """Blocking entry point for batch jobs that are not running an event loop."""
    return asyncio.run(run_rate_limited(func, list(items), **kwargs))
