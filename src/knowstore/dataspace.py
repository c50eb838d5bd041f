"""
Dataspaces: named partitions of items.

Each persistent dataspace is dumped to its own data file. The transient
dataspace is never dumped.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from knowstore.config import TRANSIENT_DATASPACE, is_valid_name
from knowstore.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Dataspace:
    """A named partition; ``transient`` ones are never persisted."""
    name: str
    transient: bool = False


class DataspaceRegistry:
    """Mapping from name to dataspace, created on first request."""

    def __init__(self, transient_name: str = TRANSIENT_DATASPACE):
        self._spaces: dict[str, Dataspace] = {}
        self.transient = Dataspace(transient_name, transient=True)
        self._spaces[transient_name] = self.transient

    def get(self, name: str) -> Dataspace:
        """Return the dataspace called ``name``, creating it if needed."""
        space = self._spaces.get(name)
        if space is not None:
            return space
        if not is_valid_name(name):
            raise ConfigurationError(f"invalid dataspace name {name!r}")
        space = Dataspace(name)
        self._spaces[name] = space
        logger.debug(f"Created dataspace {name}")
        return space

    def find(self, name: str) -> Optional[Dataspace]:
        return self._spaces.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._spaces

    def __iter__(self) -> Iterator[Dataspace]:
        return iter(list(self._spaces.values()))

    def __len__(self) -> int:
        return len(self._spaces)

    def names(self) -> list[str]:
        return sorted(self._spaces)
