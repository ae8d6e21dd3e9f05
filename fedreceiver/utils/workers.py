import asyncio
from typing import Generic
from typing import TypeVar

from loguru import logger

T = TypeVar("T")


class Worker(Generic[T]):
    """Consumes messages from an `asyncio.Queue` until stopped."""

    def __init__(self, queue: "asyncio.Queue[T]") -> None:
        self._queue = queue
        self._stop_event = asyncio.Event()

    async def process_message(self, message: T) -> None:
        raise NotImplementedError

    async def get_next_message(self) -> T | None:
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=2)
        except asyncio.TimeoutError:
            return None

    async def startup(self) -> None:
        return None

    async def _main_loop(self) -> None:
        while not self._stop_event.is_set():
            next_message = await self.get_next_message()
            if next_message is None:
                continue

            try:
                await self.process_message(next_message)
            except Exception:
                logger.exception(f"Failed to process {next_message}")
            finally:
                self._queue.task_done()

    async def _until_stopped(self) -> None:
        await self._stop_event.wait()

    async def run_forever(self) -> None:
        await self.startup()
        task = asyncio.create_task(self._main_loop())
        stop_task = asyncio.create_task(self._until_stopped())

        done, pending = await asyncio.wait(
            {task, stop_task}, return_when=asyncio.FIRST_COMPLETED
        )
        logger.info(f"Waiting for tasks to finish {done=}/{pending=}")
        for pending_task in pending:
            pending_task.cancel()

        try:
            await asyncio.wait_for(
                asyncio.gather(*pending, return_exceptions=True),
                timeout=15,
            )
        except asyncio.TimeoutError:
            logger.info("Tasks failed to cancel")

        logger.info("Worker stopped")

    def stop(self) -> None:
        self._stop_event.set()
