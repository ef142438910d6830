"""Request-scoped cancellation.

A ``CancellationToken`` travels with every scheduling operation. The store
checks it before each read or write; compensation writes skip the check so a
rollback always runs to completion. ``run_cancellable`` bridges the token to
an HTTP request by cancelling it when the client disconnects.
"""

import asyncio
import logging
import threading

from fastapi import Request
from fastapi.concurrency import run_in_threadpool

from clinic_scheduler.core import config
from clinic_scheduler.core.errors import OperationCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled('Operation cancelled by the caller.')


async def _watch_disconnect(request: Request, token: CancellationToken) -> None:
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info('Client disconnected from %s; cancelling operation.', request.url.path)
            token.cancel()
            return
        await asyncio.sleep(config.DISCONNECT_POLL_SECONDS)


async def run_cancellable(request: Request, func, *args, **kwargs):
    """Run a blocking scheduling operation in the threadpool with a live token.

    The worker thread is not interrupted when the awaiting task is cancelled,
    so any compensation already under way finishes in the background.
    """
    token = CancellationToken()
    watcher = asyncio.create_task(_watch_disconnect(request, token))
    try:
        return await run_in_threadpool(func, *args, token=token, **kwargs)
    finally:
        watcher.cancel()
