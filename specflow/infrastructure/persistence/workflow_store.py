"""Workflow persistence - durable key-value stores and the debounced state persister."""

import asyncio
import logging
import re
import threading
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from specflow.domain.entities.workflow_state import WorkflowState
from specflow.domain.ports.store import KeyValueStore, StoreListener

logger = logging.getLogger(__name__)

WORKFLOW_STATE_KEY = "workflow-state"

_UNSAFE_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]")


class _Listeners:
    """Change listeners shared by the store implementations."""

    def __init__(self) -> None:
        self._listeners: list[StoreListener] = []

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, key: str, value: str | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(key, value)
            except Exception:
                logger.warning("Store listener failed for key %s", key, exc_info=True)


class InMemoryStore:
    """Dict-backed store (tests, ephemeral sessions)."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._listeners = _Listeners()

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._listeners.notify(key, value)

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._listeners.notify(key, None)

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        return self._listeners.subscribe(listener)


class JsonFileStore:
    """One JSON file per key under data_dir.

    Writes go to a temp file first, then an atomic rename. Thread-safe.
    """

    def __init__(self, data_dir: str | Path) -> None:
        self._dir = Path(data_dir)
        self._lock = threading.Lock()
        self._listeners = _Listeners()

    def _path(self, key: str) -> Path:
        return self._dir / f"{_UNSAFE_KEY_RE.sub('_', key)}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        with self._lock:
            if not path.exists():
                return None
            try:
                return path.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning("Cannot read store file %s: %s", path, e)
                return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        with self._lock:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp_file = path.with_suffix(".tmp")
            try:
                tmp_file.write_text(value, encoding="utf-8")
                tmp_file.replace(path)
            except OSError:
                tmp_file.unlink(missing_ok=True)
                raise
        self._listeners.notify(key, value)

    def delete(self, key: str) -> None:
        path = self._path(key)
        with self._lock:
            existed = path.exists()
            path.unlink(missing_ok=True)
        if existed:
            self._listeners.notify(key, None)

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        return self._listeners.subscribe(listener)


class WorkflowStatePersister:
    """Load and save WorkflowState under one store key, debounced.

    schedule() keeps only the latest state and writes it debounce_seconds
    after the last call (loop.call_later). flush() writes a pending state
    immediately; clear() drops it and deletes the record.
    """

    def __init__(
        self,
        store: KeyValueStore,
        debounce_seconds: float = 2.0,
        key: str = WORKFLOW_STATE_KEY,
    ) -> None:
        self._store = store
        self._debounce = debounce_seconds
        self._key = key
        self._pending: WorkflowState | None = None
        self._handle: asyncio.TimerHandle | None = None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def load(self) -> WorkflowState:
        """Stored state, or the default state when missing, malformed or invalid.

        A restored state never claims an in-flight generation.
        """
        raw = self._store.get(self._key)
        if not raw:
            return WorkflowState()
        try:
            state = WorkflowState.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding invalid stored workflow state: %s", e.errors()[:3])
            return WorkflowState()
        if state.is_generating:
            state = state.model_copy(update={"is_generating": False})
        return state

    def save(self, state: WorkflowState) -> None:
        """Write state now."""
        self._store.set(self._key, state.model_dump_json())

    def schedule(self, state: WorkflowState) -> None:
        """Debounced save of the latest state."""
        self._pending = state
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        if self._debounce <= 0:
            self.flush()
            return
        self._handle = loop.call_later(self._debounce, self._write_pending)

    def _write_pending(self) -> None:
        self._handle = None
        try:
            self.flush()
        except (OSError, TypeError, ValueError):
            logger.warning("Failed to persist workflow state", exc_info=True)

    def flush(self) -> None:
        """Write a pending state immediately."""
        self._cancel_timer()
        if self._pending is None:
            return
        # Cleared only after a successful write
        self.save(self._pending)
        self._pending = None

    def clear(self) -> None:
        """Drop any pending write and delete the stored record."""
        self._cancel_timer()
        self._pending = None
        self._store.delete(self._key)

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
