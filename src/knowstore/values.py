"""
Value kernel: the closed universe of values held by items.

A value is one of integer, string, node, set or item. ``None`` stands for
the null value. Everything except items is immutable once built; items
are mutable containers compared by identity (see ``knowstore.items``).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Iterable, Iterator, Optional, Sequence

import numpy as np

from knowstore.errors import InvariantError

INT64 = np.iinfo(np.int64)


class ValueKind(Enum):
    """Kind tag of a value; the enum value is the wire tag."""
    INTEGER = "intv"
    STRING = "strv"
    NODE = "nodv"
    SET = "setv"
    ITEM = "itrv"


@dataclass(frozen=True)
class Integer:
    """A signed 64-bit integer value."""
    num: int
    kind: ClassVar[ValueKind] = ValueKind.INTEGER

    def __post_init__(self):
        if isinstance(self.num, bool) or not isinstance(self.num, int):
            raise InvariantError(f"integer value expects an int, got {type(self.num).__name__}")
        if not INT64.min <= self.num <= INT64.max:
            raise InvariantError(f"integer {self.num} outside signed 64-bit range")


@dataclass(frozen=True)
class String:
    """An immutable string value."""
    text: str
    kind: ClassVar[ValueKind] = ValueKind.STRING

    def __post_init__(self):
        if not isinstance(self.text, str):
            raise InvariantError(f"string value expects a str, got {type(self.text).__name__}")


@dataclass(frozen=True)
class Node:
    """A connective item applied to a fixed sequence of son values."""
    conn: Any
    sons: tuple = ()
    kind: ClassVar[ValueKind] = ValueKind.NODE

    @property
    def arity(self) -> int:
        return len(self.sons)

    def son(self, index: int) -> Optional[Any]:
        """Son at ``index``, or None when out of range."""
        if -self.arity <= index < self.arity:
            return self.sons[index]
        return None


@dataclass(frozen=True)
class ItemSet:
    """Items without duplicates, ordered by ascending identity.

    Build with ``make_set``; the constructor does not sort.
    """
    elements: tuple = ()
    kind: ClassVar[ValueKind] = ValueKind.SET

    def __len__(self) -> int:
        return len(self.elements)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.elements)

    def __contains__(self, item: Any) -> bool:
        return item in self.elements

    @property
    def ids(self) -> list[int]:
        return [element.ident for element in self.elements]

    def union(self, other: "ItemSet") -> "ItemSet":
        return make_set(other.elements, base=self)


def is_item(value: Any) -> bool:
    return getattr(value, "kind", None) is ValueKind.ITEM


def is_value(value: Any) -> bool:
    """True for any non-null member of the value universe."""
    return isinstance(getattr(value, "kind", None), ValueKind)


def value_kind(value: Any) -> Optional[ValueKind]:
    """Kind of ``value``, None for the null value.

    Raises InvariantError for objects outside the value universe.
    """
    if value is None:
        return None
    kind = getattr(value, "kind", None)
    if not isinstance(kind, ValueKind):
        raise InvariantError(f"not a value: {value!r}")
    return kind


def check_value(value: Any) -> Any:
    """Return ``value`` unchanged if it is a value or None."""
    value_kind(value)
    return value


def make_int(num: int) -> Integer:
    return Integer(num)


def make_string(text: str) -> String:
    return String(text)


def make_node(conn: Any, sons: Sequence[Any] = ()) -> Node:
    """Build a node from a connective item and its sons.

    Sons may be any value or None; the arity is ``len(sons)``.
    """
    if not is_item(conn):
        raise InvariantError(f"node connective must be an item, got {conn!r}")
    for son in sons:
        check_value(son)
    return Node(conn, tuple(sons))


def make_set(items: Iterable[Any], base: Optional[ItemSet] = None) -> ItemSet:
    """Build a set from ``items`` (and the elements of ``base`` if given).

    None entries are ignored. Members are deduplicated by identity and
    sorted by ascending identity so that equal sets serialize identically.
    """
    members = list(base.elements) if base is not None else []
    for item in items:
        if item is None:
            continue
        if not is_item(item):
            raise InvariantError(f"set element must be an item, got {item!r}")
        members.append(item)
    if not members:
        return ItemSet()

    ids = np.fromiter((member.ident for member in members), dtype=np.int64, count=len(members))
    _, first = np.unique(ids, return_index=True)
    return ItemSet(tuple(members[int(ix)] for ix in first))
