"""
Notification channel between the operations and their listeners.
"""
import asyncio
import logging
from typing import NamedTuple

from lnnetkit.lib.network_components import BitcoinNode

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class BlocksMined(NamedTuple):
    blocks: int
    node: BitcoinNode


class EventChannel(object):
    """
    Delivers events to subscribed coroutine functions.

    Emitting doesn't wait for the listeners, each listener runs in its own
    task. Use :meth:`join` to wait for the listeners that are still running.
    """
    def __init__(self):
        self.listeners = []
        self.pending = set()

    def subscribe(self, listener):
        self.listeners.append(listener)

    def unsubscribe(self, listener):
        self.listeners.remove(listener)

    def emit(self, event):
        logger.debug("Event %s to %d listeners", event, len(self.listeners))
        for listener in self.listeners:
            task = asyncio.ensure_future(listener(event))
            self.pending.add(task)
            task.add_done_callback(self._done)

    def _done(self, task):
        self.pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Event listener failed: %s", task.exception())

    async def join(self):
        """
        Waits until all listeners scheduled so far have finished.
        """
        while self.pending:
            tasks = list(self.pending)
            await asyncio.gather(*tasks, return_exceptions=True)
            self.pending.difference_update(tasks)
