import asyncio
import typing


T = typing.TypeVar("T")


class AsyncJolt:
    async def __aenter__(self) -> None:
        await asyncio.sleep(0)

    async def __aexit__(self, *args: typing.Any, **kwargs: typing.Any) -> None:
        await asyncio.sleep(0)


async def off_thread(
    func: typing.Callable[..., T],
    *args: typing.Any,
    timeout: float | None = None,
) -> T:
    """Run a blocking call in a worker thread, optionally bounded by `timeout`.

    Raises `TimeoutError` when the bound is exceeded.
    """
    async with AsyncJolt():
        if timeout is None:
            return await asyncio.to_thread(func, *args)
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout)
