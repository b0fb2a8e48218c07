"""Event channel shared with the host shell.

Each event name has at most one owner, the only party allowed to emit it.
Delivery is always scheduled on the event loop, never run inline.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Set

from visual_sync.logger import get_logger, log_failure

logger = get_logger()

Listener = Callable[[Any], Awaitable[None] | None]


class ChannelError(RuntimeError):
    """Raised when an event is claimed twice or emitted by a non-owner."""


class Channel:
    def __init__(self) -> None:
        self._owners: Dict[str, object] = {}
        self._listeners: Dict[str, List[Listener]] = {}
        self._pending: Set[asyncio.Task[None]] = set()

    def claim(self, event: str, owner: object) -> None:
        current = self._owners.get(event)
        if current is not None and current is not owner:
            raise ChannelError(f"Event {event!r} already has an owner.")
        self._owners[event] = owner

    def release(self, event: str, owner: object) -> None:
        if self._owners.get(event) is owner:
            del self._owners[event]

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        self._listeners.setdefault(event, []).append(listener)

        def _off() -> None:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)

        return _off

    def emit(self, event: str, payload: Any = None, *, owner: object = None) -> None:
        current = self._owners.get(event)
        if current is not None and current is not owner:
            raise ChannelError(f"Only the owner of {event!r} may emit it.")

        loop = asyncio.get_running_loop()
        for listener in list(self._listeners.get(event, [])):
            task = loop.create_task(self._deliver(event, listener, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for every delivery scheduled so far, including ones they schedule."""

        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def _deliver(self, event: str, listener: Listener, payload: Any) -> None:
        try:
            outcome = listener(payload)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            log_failure(logger, f"Listener for {event!r} failed", exc)
