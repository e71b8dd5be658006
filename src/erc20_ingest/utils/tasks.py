import asyncio
from typing import Any, Coroutine, List, Sequence, TypeVar

T = TypeVar("T")


async def run_all(coros: Sequence[Coroutine[Any, Any, T]], name: str = "task") -> List[T]:
    """Run coroutines concurrently and collect results in order.

    The first failure cancels everything still running before it is re-raised,
    so no task outlives the call.
    """
    tasks = [
        asyncio.create_task(coro, name=f"{name} {i}") for i, coro in enumerate(coros)
    ]

    try:
        for task in tasks:
            await task
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    return [task.result() for task in tasks]
