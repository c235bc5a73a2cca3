from __future__ import annotations

from typing import Any

from .constants import DEFAULT_MESSAGE_STORE_SIZE


class RetransmissionStore:
    """
    Bounded cache of message content the protocol library may ask to resend.

    Eviction is strict FIFO by first insertion: overwriting a key keeps its
    original position, and reads do not refresh anything. A miss is a normal
    outcome; the library handles "content no longer available" itself.
    """

    def __init__(self, capacity: int = DEFAULT_MESSAGE_STORE_SIZE) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        # dicts keep insertion order, and re-assigning a key does not move it.
        self._items: dict[tuple[str, str], Any] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def put(self, chat_id: str, message_id: str, content: Any) -> None:
        self._items[(chat_id, message_id)] = content
        while len(self._items) > self.capacity:
            oldest = next(iter(self._items))
            del self._items[oldest]

    def get(self, chat_id: str, message_id: str) -> Any | None:
        return self._items.get((chat_id, message_id))

    async def get_message(self, chat_id: str, message_id: str) -> Any | None:
        """Content provider callback handed to the protocol library."""

        return self.get(chat_id, message_id)


class RetryCounterStore:
    """Per-message retry attempt counters, kept for the life of the process."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}

    def get(self, key: str) -> int | None:
        return self._counts.get(key)

    def set(self, key: str, value: int) -> None:
        self._counts[key] = value

    def delete(self, key: str) -> None:
        self._counts.pop(key, None)

    def increment(self, key: str) -> int:
        n = self._counts.get(key, 0) + 1
        self._counts[key] = n
        return n
