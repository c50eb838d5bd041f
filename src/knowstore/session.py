"""
Process-wide state of the item store.

A Session groups the registries (dataspaces, closure functions, plugin
modules), the item id counter, the top item and a weak index of live
items. ``current()`` is the process singleton; ``reset()`` starts over.
"""

import logging
import weakref
from contextlib import contextmanager
from typing import Optional

from knowstore.closures import ClosureRegistry
from knowstore.dataspace import Dataspace, DataspaceRegistry
from knowstore.errors import InvariantError
from knowstore.items import Item

logger = logging.getLogger(__name__)


class Session:
    """Registries and roots shared by runtime code, the loader and the dumper."""

    def __init__(self):
        self.dataspaces = DataspaceRegistry()
        self.closures = ClosureRegistry()
        # name -> module object, in load order
        self.modules: dict = {}
        self.last_ident = 0
        self.top_item: Optional[Item] = None
        self._live: "weakref.WeakValueDictionary[int, Item]" = weakref.WeakValueDictionary()

    @property
    def transient(self) -> Dataspace:
        return self.dataspaces.transient

    def dataspace(self, name: str) -> Dataspace:
        return self.dataspaces.get(name)

    def advance_ident(self, ident: int) -> None:
        """Make sure later allocations stay above ``ident``."""
        if ident > self.last_ident:
            self.last_ident = ident

    def make_item(self, dataspace: Dataspace) -> Item:
        """Allocate a fresh item in ``dataspace``."""
        if not isinstance(dataspace, Dataspace):
            raise InvariantError(f"new item needs a dataspace, got {dataspace!r}")
        self.last_ident += 1
        item = Item(self.last_ident, dataspace)
        self._live[item.ident] = item
        return item

    def adopt_item(self, item: Item) -> None:
        """Index an item created outside ``make_item`` (the loader does this)."""
        live = self._live.get(item.ident)
        if live is not None and live is not item:
            raise InvariantError(f"item #{item.ident} already exists in this session")
        self._live[item.ident] = item
        self.advance_ident(item.ident)

    def forget_item(self, item: Item) -> None:
        """Drop ``item`` from the live index (a failed load does this)."""
        if self._live.get(item.ident) is item:
            del self._live[item.ident]

    def find_item(self, ident: int) -> Optional[Item]:
        return self._live.get(ident)

    def live_count(self) -> int:
        return len(self._live)


_current = Session()


def current() -> Session:
    return _current


@contextmanager
def activated(session: Session):
    """Make ``session`` current for the duration of the block.

    Plugins register their closure functions into the current session,
    so loading into another session runs them inside this block.
    """
    global _current
    previous = _current
    _current = session
    try:
        yield session
    finally:
        _current = previous


def reset() -> Session:
    """Replace the process session with an empty one."""
    global _current
    _current = Session()
    logger.debug("Session reset")
    return _current


def dataspace(name: str) -> Dataspace:
    return _current.dataspace(name)


def make_item(space: Dataspace) -> Item:
    return _current.make_item(space)
