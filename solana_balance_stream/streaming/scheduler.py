"""Timer source used by streaming sessions."""

import asyncio


class Scheduler:
    """Default scheduler backed by the running asyncio loop.

    Sessions only ever wait through ``sleep`` so that tests can substitute
    a scheduler that releases timers on demand.
    """

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)
