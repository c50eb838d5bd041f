"""
Items: identified, mutable entities of the store.

An item has an immutable id, a dataspace, an attribute table keyed by
other items, a content value and at most one payload. Items compare and
hash by id.
"""

from typing import Any, Iterable, Iterator, Optional

from knowstore.errors import InvariantError, PayloadError
from knowstore.payloads import (
    BufferPayload,
    ClosurePayload,
    DictionaryPayload,
    PayloadKind,
    QueuePayload,
    VectorPayload,
)
from knowstore.values import INT64, ValueKind, check_value, is_item


class Item:
    """A uniquely identified entity carrying attributes, content and a payload.

    Runtime code obtains items from ``Session.make_item``; the loader
    creates them with no dataspace and assigns it once the item's record
    is read.
    """
    kind = ValueKind.ITEM

    __slots__ = ("_ident", "_dataspace", "_attributes", "_content", "_payload", "__weakref__")

    def __init__(self, ident: int, dataspace=None):
        if isinstance(ident, bool) or not isinstance(ident, int) or not 0 < ident <= INT64.max:
            raise InvariantError(f"item id must be a positive 64-bit int, got {ident!r}")
        self._ident = ident
        self._dataspace = dataspace
        self._attributes: dict = {}
        self._content = None
        self._payload = None

    @property
    def ident(self) -> int:
        return self._ident

    @property
    def dataspace(self):
        return self._dataspace

    def _assign_dataspace(self, dataspace) -> None:
        """Set the dataspace of an item that has none yet.

        Only the loader calls this, when it reads the item's record.
        """
        if self._dataspace is not None:
            raise InvariantError(
                f"item #{self._ident} already belongs to dataspace {self._dataspace.name}"
            )
        self._dataspace = dataspace

    @property
    def is_transient(self) -> bool:
        """True if the item would never be dumped."""
        return self._dataspace is None or self._dataspace.transient

    def __eq__(self, other):
        if not isinstance(other, Item):
            return NotImplemented
        return self._ident == other._ident

    def __hash__(self):
        return hash(self._ident)

    def __repr__(self):
        space = self._dataspace.name if self._dataspace is not None else "-"
        return f"<Item #{self._ident} in {space}>"

    # ------------------------------------------------------------------ #
    # Content and attributes
    # ------------------------------------------------------------------ #

    @property
    def content(self) -> Optional[Any]:
        return self._content

    @content.setter
    def content(self, value: Any) -> None:
        self._content = check_value(value)

    def put_attr(self, key: "Item", value: Any) -> None:
        """Set attribute ``key`` to ``value``; a None value removes it."""
        if not is_item(key):
            raise InvariantError(f"attribute key must be an item, got {key!r}")
        if value is None:
            self._attributes.pop(key, None)
            return
        self._attributes[key] = check_value(value)

    def get_attr(self, key: "Item") -> Optional[Any]:
        if not is_item(key):
            return None
        return self._attributes.get(key)

    def remove_attr(self, key: "Item") -> None:
        self._attributes.pop(key, None)

    def attr_keys(self) -> list["Item"]:
        """Attribute keys in no particular order."""
        return list(self._attributes)

    def attributes(self) -> Iterator[tuple["Item", Any]]:
        """(key, value) pairs sorted by key id."""
        for key in sorted(self._attributes, key=lambda k: k.ident):
            yield key, self._attributes[key]

    @property
    def number_attributes(self) -> int:
        return len(self._attributes)

    # ------------------------------------------------------------------ #
    # Payload
    # ------------------------------------------------------------------ #

    @property
    def payload(self):
        return self._payload

    @property
    def payload_kind(self) -> Optional[PayloadKind]:
        return self._payload.kind if self._payload is not None else None

    def clear_payload(self) -> None:
        self._payload = None

    def _payload_of(self, kind: PayloadKind, create=None):
        """Active payload of ``kind``; create one if the item has no payload."""
        if self._payload is None and create is not None:
            self._payload = create()
        if self._payload is None or self._payload.kind is not kind:
            current = self._payload.kind.value if self._payload is not None else "no"
            raise PayloadError(f"item #{self._ident} has {current} payload, not {kind.value}")
        return self._payload

    def _peek_payload(self, kind: PayloadKind):
        if self._payload is not None and self._payload.kind is kind:
            return self._payload
        return None

    # vector

    def make_vector(self, capacity: int = 0) -> VectorPayload:
        self._payload = VectorPayload(capacity)
        return self._payload

    def vector_length(self) -> int:
        vec = self._peek_payload(PayloadKind.VECTOR)
        return len(vec) if vec is not None else 0

    def vector_nth(self, index: int) -> Optional[Any]:
        vec = self._peek_payload(PayloadKind.VECTOR)
        return vec.nth(index) if vec is not None else None

    def vector_put_nth(self, index: int, value: Any) -> None:
        self._payload_of(PayloadKind.VECTOR).put_nth(index, value)

    def vector_append(self, value: Any) -> None:
        self._payload_of(PayloadKind.VECTOR, VectorPayload).append(value)

    def vector_resize(self, length: int) -> None:
        self._payload_of(PayloadKind.VECTOR, VectorPayload).resize(length)

    # buffer

    def make_buffer(self, capacity: int = 0) -> BufferPayload:
        self._payload = BufferPayload(capacity)
        return self._payload

    def buffer_reserve(self, size: int) -> None:
        self._payload_of(PayloadKind.BUFFER, BufferPayload).reserve(size)

    def buffer_append(self, text: str) -> None:
        self._payload_of(PayloadKind.BUFFER, BufferPayload).append(text)

    def buffer_text(self) -> Optional[str]:
        buf = self._peek_payload(PayloadKind.BUFFER)
        return buf.text if buf is not None else None

    def buffer_length(self) -> int:
        buf = self._peek_payload(PayloadKind.BUFFER)
        return buf.byte_length if buf is not None else 0

    # queue

    def make_queue(self) -> QueuePayload:
        self._payload = QueuePayload()
        return self._payload

    def queue_append(self, value: Any) -> None:
        self._payload_of(PayloadKind.QUEUE, QueuePayload).append(value)

    def queue_pop(self) -> Optional[Any]:
        que = self._peek_payload(PayloadKind.QUEUE)
        return que.pop() if que is not None else None

    def queue_length(self) -> int:
        que = self._peek_payload(PayloadKind.QUEUE)
        return len(que) if que is not None else 0

    # dictionary

    def make_dictionary(self, capacity: int = 0) -> DictionaryPayload:
        self._payload = DictionaryPayload(capacity)
        return self._payload

    def dict_reserve(self, size: int) -> None:
        self._payload_of(PayloadKind.DICTIONARY, DictionaryPayload).reserve(size)

    def dict_put(self, key: str, value: Any) -> None:
        self._payload_of(PayloadKind.DICTIONARY, DictionaryPayload).put(key, value)

    def dict_get(self, key: str) -> Optional[Any]:
        dic = self._peek_payload(PayloadKind.DICTIONARY)
        return dic.get(key) if dic is not None else None

    def dict_remove(self, key: str) -> None:
        dic = self._peek_payload(PayloadKind.DICTIONARY)
        if dic is not None:
            dic.remove(key)

    def dict_keys(self) -> list[str]:
        dic = self._peek_payload(PayloadKind.DICTIONARY)
        return dic.keys() if dic is not None else []

    # closure

    def make_closure(self, function, values: Optional[Iterable[Any]] = None) -> ClosurePayload:
        """Replace the payload with a closure of ``function``.

        ``values`` fills the first capture slots; the rest stay None.
        """
        self._payload = ClosurePayload(function, values)
        return self._payload

    def closure_function(self):
        clo = self._peek_payload(PayloadKind.CLOSURE)
        return clo.function if clo is not None else None

    def closure_nth(self, index: int) -> Optional[Any]:
        return self._payload_of(PayloadKind.CLOSURE).nth(index)

    def closure_set_nth(self, index: int, value: Any) -> None:
        self._payload_of(PayloadKind.CLOSURE).set_nth(index, value)

    def referenced_values(self) -> Iterator[Any]:
        """Values held by the payload, in payload order."""
        if self._payload is None:
            return iter(())
        return self._payload.values()
