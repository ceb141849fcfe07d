"""Store Port - durable key-value store with change notification."""

from typing import Callable, Protocol

# Called with (key, new_value); new_value is None on delete
StoreListener = Callable[[str, str | None], None]


class KeyValueStore(Protocol):
    """Interface for durable string records."""

    def get(self, key: str) -> str | None:
        """Return the stored value or None."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store value under key."""
        ...

    def delete(self, key: str) -> None:
        """Remove key if present."""
        ...

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        ...
