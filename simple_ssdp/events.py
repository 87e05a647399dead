#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpEventSink -- typed publish/subscribe for the three events an SsdpServer emits:

  discover  a datagram that is neither an M-SEARCH nor a NOTIFY (typically a search response)
  notify    a NOTIFY advertisement or withdrawal from another device
  error     a human-readable description of a transport failure
"""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum

from simple_ssdp.internal_types import *
from .pkg_logging import logger
from .ssdp_message import SsdpMessage

SsdpMessageHandler = Callable[[SsdpMessage], Any]
"""A callback for discover and notify events. May be a coroutine function."""

SsdpErrorHandler = Callable[[str], Any]
"""A callback for error events. May be a coroutine function."""

class SsdpEventKind(Enum):
    DISCOVER = "discover"
    NOTIFY = "notify"
    ERROR = "error"

class SsdpEventSink:
    """Holds the handlers subscribed to each event kind and delivers published events to them.

    Handlers are called in the order they were added. If a handler returns an awaitable, it is
    scheduled as a task on the running event loop. A handler that raises is logged and does not
    prevent delivery to the remaining handlers.
    """

    _handlers: Dict[SsdpEventKind, Dict[int, Callable[[Any], Any]]]
    """Handlers for each event kind, indexed by handler ID."""

    _i_next_handler: int = 0
    """The next handler ID to assign."""

    _pending_tasks: Set[asyncio.Task[Any]]
    """Tasks created for coroutine handlers that have not yet finished."""

    def __init__(self):
        self._handlers = { kind: {} for kind in SsdpEventKind }
        self._pending_tasks = set()

    def _add_handler(self, kind: SsdpEventKind, handler: Callable[[Any], Any]) -> int:
        i = self._i_next_handler
        self._i_next_handler += 1
        self._handlers[kind][i] = handler
        return i

    def on_discover(self, handler: SsdpMessageHandler) -> int:
        """Adds a handler for discover events. Returns an ID that can be passed to remove_handler()."""
        return self._add_handler(SsdpEventKind.DISCOVER, handler)

    def on_notify(self, handler: SsdpMessageHandler) -> int:
        """Adds a handler for notify events. Returns an ID that can be passed to remove_handler()."""
        return self._add_handler(SsdpEventKind.NOTIFY, handler)

    def on_error(self, handler: SsdpErrorHandler) -> int:
        """Adds a handler for error events. Returns an ID that can be passed to remove_handler()."""
        return self._add_handler(SsdpEventKind.ERROR, handler)

    def remove_handler(self, i: int) -> None:
        """Removes a previously added handler of any kind. Raises KeyError if there is no such handler."""
        for handlers in self._handlers.values():
            if i in handlers:
                del handlers[i]
                return
        raise KeyError(f"No SSDP event handler with ID {i}")

    def num_handlers(self, kind: SsdpEventKind) -> int:
        return len(self._handlers[kind])

    def _publish(self, kind: SsdpEventKind, payload: Any) -> None:
        handlers = list(self._handlers[kind].values())
        for handler in handlers:
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending_tasks.add(task)
                    task.add_done_callback(self._on_task_done)
            except Exception as e:
                logger.warning(f"Handler raised exception processing {kind.value} event {payload}: {e}")

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Async event handler raised exception: {task.exception()}")

    def publish_discover(self, message: SsdpMessage) -> None:
        self._publish(SsdpEventKind.DISCOVER, message)

    def publish_notify(self, message: SsdpMessage) -> None:
        self._publish(SsdpEventKind.NOTIFY, message)

    def publish_error(self, message: str) -> None:
        logger.warning(f"SSDP error: {message}")
        self._publish(SsdpEventKind.ERROR, message)

    async def wait_for_handlers(self) -> None:
        """Waits until all scheduled coroutine handlers have finished."""
        while len(self._pending_tasks) > 0:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)
