"""Sticky per-session state kept in a key-value store, written through a debounced writer."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Dict, List, Protocol

from visual_sync.constants import ADDON_ID, STATE_WRITE_DELAY_SECONDS
from visual_sync.logger import get_logger

logger = get_logger()

StoreListener = Callable[[str, object], None]
ValueListener = Callable[[Any], None]

STATE_PREFIX = f"{ADDON_ID}/state"


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, *, origin: object = None) -> None: ...

    def delete(self, key: str, *, origin: object = None) -> None: ...

    def subscribe(self, listener: StoreListener) -> Callable[[], None]: ...


class MemoryStore:
    """In-process store. Listeners hear about every write with the writer's origin."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}
        self._listeners: List[StoreListener] = []

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str, *, origin: object = None) -> None:
        self._items[key] = value
        self._notify(key, origin)

    def delete(self, key: str, *, origin: object = None) -> None:
        if self._items.pop(key, None) is not None:
            self._notify(key, origin)

    def keys(self) -> List[str]:
        return list(self._items)

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, key: str, origin: object) -> None:
        for listener in list(self._listeners):
            listener(key, origin)


class DebouncedWriter:
    """Calls ``write`` on the leading edge of a burst and again on the trailing edge.

    Must be cancelled on teardown, otherwise a trailing write can land after
    the owner is gone.
    """

    def __init__(self, write: Callable[[Any], None], delay: float) -> None:
        self._write = write
        self._delay = delay
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def __call__(self, value: Any) -> None:
        if self._handle is not None:
            self.cancel()
        else:
            self._write(value)

        if self._delay <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to schedule on: the leading write is the only one.
            return
        self._handle = loop.call_later(self._delay, self._flush, value)

    def _flush(self, value: Any) -> None:
        self._handle = None
        self._write(value)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class SessionState:
    """JSON values stored under ``<prefix>/<key>``, with an index of keys under ``<prefix>``."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        prefix: str = STATE_PREFIX,
        write_delay: float = STATE_WRITE_DELAY_SECONDS,
    ) -> None:
        self._store = store
        self._prefix = prefix
        self._write_delay = write_delay
        self._values: Dict[str, Any] = {}
        self._writers: Dict[str, DebouncedWriter] = {}
        self._listeners: Dict[str, List[ValueListener]] = {}
        self._unsubscribe = store.subscribe(self._on_store_change)

    def _item_key(self, key: str) -> str:
        return f"{self._prefix}/{key}"

    def _read(self, key: str, default: Any) -> Any:
        raw = self._store.get(self._item_key(key))
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring unreadable session state for {key!r}")
            return default

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._values:
            self._values[key] = self._read(key, default)
        return self._values[key]

    def set(self, key: str, value: Any) -> None:
        if key in self._values and self._values[key] == value:
            return
        self._values[key] = value
        self._emit(key, value)
        writer = self._writers.get(key)
        if writer is None:
            writer = DebouncedWriter(lambda v, k=key: self._persist(k, v), self._write_delay)
            self._writers[key] = writer
        writer(value)

    def subscribe(self, key: str, listener: ValueListener) -> Callable[[], None]:
        self._listeners.setdefault(key, []).append(listener)
        return lambda: self._listeners.get(key, []).remove(listener)

    def close(self) -> None:
        for writer in self._writers.values():
            writer.cancel()
        self._writers.clear()
        self._unsubscribe()

    def _index(self) -> List[str]:
        raw = self._store.get(self._prefix) or ""
        return [item for item in raw.split(";") if item]

    def _persist(self, key: str, value: Any) -> None:
        keys = self._index()
        if value is None:
            self._store.delete(self._item_key(key), origin=self)
            keys = [item for item in keys if item != key]
        else:
            self._store.set(self._item_key(key), json.dumps(value), origin=self)
            if key not in keys:
                keys.append(key)
        self._store.set(self._prefix, ";".join(keys), origin=self)

    def _on_store_change(self, store_key: str, origin: object) -> None:
        if origin is self or not store_key.startswith(f"{self._prefix}/"):
            return
        key = store_key[len(self._prefix) + 1 :]
        value = self._read(key, None)
        if self._values.get(key) != value:
            self._values[key] = value
            self._emit(key, value)

    def _emit(self, key: str, value: Any) -> None:
        for listener in list(self._listeners.get(key, [])):
            listener(value)


def clear_session_state(store: KeyValueStore, *keys: str, prefix: str = STATE_PREFIX) -> None:
    """Remove the given keys, or every key in the index when none are given."""

    items = [item for item in (store.get(prefix) or "").split(";") if item]
    if keys:
        for key in keys:
            store.delete(f"{prefix}/{key}")
        store.set(prefix, ";".join(item for item in items if item not in keys))
    else:
        for item in items:
            store.delete(f"{prefix}/{item}")
        store.delete(prefix)
