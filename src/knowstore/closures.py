"""
Closure functions: named host functions that closure payloads refer to.

Only the name of a closure function is persisted. On load the name is
looked up in the registry, so plugins must register their functions
before the data files that use them are read.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from knowstore.errors import PayloadError, RegistryError
from knowstore.payloads import PayloadKind

logger = logging.getLogger(__name__)


class CallKind(Enum):
    """Call shape of a closure function."""
    ONE_VALUE = "one_value"       # fn(value, closure_item) -> value
    TWO_VALUES = "two_values"     # fn(value1, value2, closure_item) -> value
    GOBJECT_DO = "gobject_do"     # fn(host_object, closure_item), result ignored


# Number of caller arguments each call shape takes
CALL_ARGUMENTS = {
    CallKind.ONE_VALUE: 1,
    CallKind.TWO_VALUES: 2,
    CallKind.GOBJECT_DO: 1,
}


@dataclass(frozen=True)
class ClosureFunction:
    """Descriptor of a closure function: name, capture count, call shape, code."""
    name: str
    arity: int
    kind: CallKind
    fn: Callable[..., Any]

    def __post_init__(self):
        if not self.name:
            raise RegistryError("closure function needs a name")
        if self.arity < 0:
            raise RegistryError(f"closure function {self.name} has negative arity {self.arity}")


class ClosureRegistry:
    """Mapping from name to closure function descriptor."""

    def __init__(self):
        self._functions: dict[str, ClosureFunction] = {}

    def register(self, descriptor: ClosureFunction) -> ClosureFunction:
        """Add ``descriptor``; registering the same descriptor again is a no-op."""
        existing = self._functions.get(descriptor.name)
        if existing is not None and existing != descriptor:
            raise RegistryError(f"closure function {descriptor.name} already registered")
        self._functions[descriptor.name] = descriptor
        logger.debug(f"Registered closure function {descriptor.name}/{descriptor.arity}")
        return descriptor

    def find(self, name: Optional[str]) -> Optional[ClosureFunction]:
        if not name:
            return None
        return self._functions.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def __iter__(self) -> Iterator[ClosureFunction]:
        return iter(list(self._functions.values()))

    def __len__(self) -> int:
        return len(self._functions)

    def names(self) -> list[str]:
        return sorted(self._functions)


def apply_closure(closure_item, *args: Any) -> Any:
    """Call the closure function held by ``closure_item`` with ``args``.

    The closure item is passed last so the function can read its captures.
    """
    payload = closure_item.payload
    if payload is None or payload.kind is not PayloadKind.CLOSURE:
        raise PayloadError(f"item #{closure_item.ident} has no closure payload")
    function = payload.function
    expected = CALL_ARGUMENTS[function.kind]
    if len(args) != expected:
        raise PayloadError(
            f"closure function {function.name} ({function.kind.value}) "
            f"takes {expected} arguments, got {len(args)}"
        )
    result = function.fn(*args, closure_item)
    if function.kind is CallKind.GOBJECT_DO:
        return None
    return result
