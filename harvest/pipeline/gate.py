"""One-shot confirmation handshake between the collect and fetch phases."""

import asyncio
import logging

logger = logging.getLogger(__name__)


class ConfirmationGate:
    """A single-slot future resolved exactly once by an external caller.

    Resolution is idempotent: the first ``resolve`` wins and later calls
    (for example ``stop()`` racing a real ``confirm()``) are ignored.

    Must be created inside a running event loop.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()

    @property
    def pending(self) -> bool:
        return not self._future.done()

    @property
    def decision(self) -> bool | None:
        """The resolved decision, or None while pending."""
        return self._future.result() if self._future.done() else None

    def resolve(self, proceed: bool) -> bool:
        """Release the waiter. Returns False if already resolved."""
        if self._future.done():
            logger.debug("Gate already resolved — ignoring proceed=%s", proceed)
            return False
        self._future.set_result(proceed)
        return True

    async def wait(self) -> bool:
        """Block until resolved; returns the decision."""
        return await asyncio.shield(self._future)
