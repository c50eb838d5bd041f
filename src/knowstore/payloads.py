"""
Payload containers attached to items.

An item carries at most one payload. Each container knows its kind and
can enumerate the values it references, which is all the dumper needs
to walk the graph through it.
"""

from collections import deque
from enum import Enum
from typing import Any, Iterator, Optional

from knowstore.errors import PayloadError
from knowstore.values import check_value


class PayloadKind(Enum):
    """Kind of payload; the enum value is the wire ``payloadkind`` string."""
    VECTOR = "vector"
    BUFFER = "buffer"
    QUEUE = "queue"
    DICTIONARY = "dictionnary"
    CLOSURE = "closure"


class VectorPayload:
    """Resizable random-access sequence of values."""
    kind = PayloadKind.VECTOR

    def __init__(self, capacity: int = 0):
        self.capacity = max(0, capacity)
        self._values: list = []

    def __len__(self) -> int:
        return len(self._values)

    def nth(self, index: int) -> Optional[Any]:
        if -len(self._values) <= index < len(self._values):
            return self._values[index]
        return None

    def put_nth(self, index: int, value: Any) -> None:
        if not -len(self._values) <= index < len(self._values):
            raise PayloadError(f"vector index {index} out of range 0..{len(self._values)}")
        self._values[index] = check_value(value)

    def append(self, value: Any) -> None:
        self._values.append(check_value(value))
        self.capacity = max(self.capacity, len(self._values))

    def resize(self, length: int) -> None:
        """Truncate to ``length`` or pad with None up to it."""
        if length < 0:
            raise PayloadError(f"negative vector length {length}")
        del self._values[length:]
        self._values.extend([None] * (length - len(self._values)))
        self.capacity = max(self.capacity, length)

    def values(self) -> Iterator[Any]:
        return iter(self._values)


class BufferPayload:
    """Mutable text buffer, serialized line by line."""
    kind = PayloadKind.BUFFER

    def __init__(self, capacity: int = 0):
        self.capacity = max(0, capacity)
        self._chunks: list[str] = []

    def reserve(self, size: int) -> None:
        self.capacity = max(self.capacity, size)

    def append(self, text: str) -> None:
        if not isinstance(text, str):
            raise PayloadError(f"buffer expects text, got {type(text).__name__}")
        self._chunks.append(text)

    @property
    def text(self) -> str:
        if len(self._chunks) > 1:
            self._chunks = ["".join(self._chunks)]
        return self._chunks[0] if self._chunks else ""

    @property
    def byte_length(self) -> int:
        return len(self.text.encode("utf-8"))

    def lines(self) -> list[str]:
        return self.text.split("\n")

    def values(self) -> Iterator[Any]:
        # Buffers hold text only
        return iter(())


class QueuePayload:
    """First-in first-out sequence of values."""
    kind = PayloadKind.QUEUE

    def __init__(self):
        self._values: deque = deque()

    def __len__(self) -> int:
        return len(self._values)

    def append(self, value: Any) -> None:
        self._values.append(check_value(value))

    def pop(self) -> Optional[Any]:
        return self._values.popleft() if self._values else None

    def peek(self) -> Optional[Any]:
        return self._values[0] if self._values else None

    def values(self) -> Iterator[Any]:
        return iter(self._values)


class DictionaryPayload:
    """String-keyed mapping with a reserved capacity.

    The capacity grows when entries are added past it and never drops
    below what was reserved.
    """
    kind = PayloadKind.DICTIONARY

    def __init__(self, capacity: int = 0):
        self.capacity = max(0, capacity)
        self._entries: dict[str, Any] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def reserve(self, size: int) -> None:
        self.capacity = max(self.capacity, size)

    def put(self, key: str, value: Any) -> None:
        if not isinstance(key, str):
            raise PayloadError(f"dictionary key must be a str, got {type(key).__name__}")
        if value is None:
            self._entries.pop(key, None)
            return
        self._entries[key] = check_value(value)
        if len(self._entries) > self.capacity:
            self.capacity = len(self._entries) + len(self._entries) // 8 + 5

    def get(self, key: str) -> Optional[Any]:
        return self._entries.get(key)

    def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._entries)

    def items(self) -> list[tuple[str, Any]]:
        return [(key, self._entries[key]) for key in self.keys()]

    def values(self) -> Iterator[Any]:
        return iter([self._entries[key] for key in self.keys()])


class ClosurePayload:
    """A named closure function with one captured value per declared slot."""
    kind = PayloadKind.CLOSURE

    def __init__(self, function, values=None):
        self.function = function
        self._captures: list = [None] * function.arity
        if values is not None:
            values = list(values)
            if len(values) > function.arity:
                raise PayloadError(
                    f"closure {function.name} takes {function.arity} values, got {len(values)}"
                )
            for ix, value in enumerate(values):
                self._captures[ix] = check_value(value)

    @property
    def arity(self) -> int:
        return len(self._captures)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._captures):
            raise PayloadError(
                f"closure {self.function.name} index {index} out of range 0..{len(self._captures)}"
            )

    def nth(self, index: int) -> Optional[Any]:
        self._check_index(index)
        return self._captures[index]

    def set_nth(self, index: int, value: Any) -> None:
        self._check_index(index)
        self._captures[index] = check_value(value)

    def values(self) -> Iterator[Any]:
        return iter(self._captures)
