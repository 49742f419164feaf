"""
Live feeds.

MongoDB is read through short polling loops rather than change streams so the
feeds behave the same against a standalone server. A feed only emits when
its result set differs from the last one it sent, and every loop stops when
its task is cancelled (socket closed) or its work is done.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool

from errors import MarketError
from identity import Identity, IdentityProvider

logger = logging.getLogger(__name__)

Snapshot = Any


class LiveQuery:
    """Re-run ``fetch`` every ``interval`` seconds, yielding changed results."""

    def __init__(self, fetch: Callable[[], Snapshot], interval: float):
        self.fetch = fetch
        self.interval = interval

    async def snapshots(self) -> AsyncIterator[Snapshot]:
        last = None
        first = True
        while True:
            result = await run_in_threadpool(self.fetch)
            if first or result != last:
                first = False
                last = result
                yield result
            await asyncio.sleep(self.interval)


class VerificationWatcher:
    """Poll the identity provider until the user's email is verified.

    Stops after ``max_attempts`` polls, when verification is seen, or when
    the awaiting task is cancelled.
    """

    def __init__(self, provider: IdentityProvider, identity: Identity,
                 on_verified: Callable[[], Any], interval: float = 3.0, max_attempts: int = 100):
        self.provider = provider
        self.identity = identity
        self.on_verified = on_verified
        self.interval = interval
        self.max_attempts = max_attempts
        self.attempts = 0

    async def wait(self) -> bool:
        while self.attempts < self.max_attempts:
            self.attempts += 1
            verified = await run_in_threadpool(self.provider.reload, self.identity)
            if verified:
                await run_in_threadpool(self.on_verified)
                logger.info("Email verified for %s after %d checks", self.identity.id, self.attempts)
                return True
            await asyncio.sleep(self.interval)
        logger.info("Stopped verification checks for %s after %d attempts", self.identity.id, self.attempts)
        return False


async def _until_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass


async def stream(websocket: WebSocket, work: Callable[[], Awaitable[None]]) -> None:
    """Run ``work`` until it finishes or the client goes away, whichever is first."""
    job = asyncio.create_task(work())
    closed = asyncio.create_task(_until_disconnect(websocket))
    done, pending = await asyncio.wait({job, closed}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    if job in done and job.exception() is not None:
        error = job.exception()
        if not isinstance(error, MarketError):
            raise error
        logger.warning("Live feed stopped: %s", error.message)
        await websocket.send_json({"error": error.to_dict()})
        await websocket.close(code=1011)
    elif job in done:
        await websocket.close()
