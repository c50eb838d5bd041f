"""
Dump engine: writes the persistent part of the item graph to a state directory.

The dump starts at a root item (normally the session's top item) and
walks everything reachable from it breadth first. Items in the transient
dataspace, or with no dataspace at all, are never queued; values that
depend on them are pruned at container boundaries:

- a node whose connective is transient is written as null,
- a set drops its transient members,
- an attribute whose key or value is transient is left out.

Each persistent dataspace gets one ``<name>.json`` data file, and a
manifest lists the plugin modules, the data files and the top item.
"""

import json
import logging
import os
import tempfile
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from knowstore import session as _session
from knowstore.config import DATA_SUFFIX, DEFAULT_STATE_DIR, DUMP_DIR_MODE, FORMAT_VERSION, MANIFEST_NAME
from knowstore.errors import DumpError, InvariantError
from knowstore.items import Item
from knowstore.payloads import PayloadKind
from knowstore.values import ValueKind, value_kind

logger = logging.getLogger(__name__)


@dataclass
class DumpReport:
    """What a dump wrote."""
    directory: Path
    top_ident: int
    items_per_dataspace: dict[str, int] = field(default_factory=dict)
    files: list[Path] = field(default_factory=list)

    @property
    def item_count(self) -> int:
        return sum(self.items_per_dataspace.values())


class Dumper:
    """Reachability scan and JSON encoding for one dump.

    A Dumper is single use: its seen set and scan queue live only for
    the dump that created it.
    """

    def __init__(self, session=None):
        self.session = session or _session.current()
        self._seen: set[int] = set()
        self._queue: deque[Item] = deque()
        # Items in order of first discovery
        self._order: list[Item] = []

    # ------------------------------------------------------------------ #
    # Scan
    # ------------------------------------------------------------------ #

    def enqueue(self, value: Any) -> bool:
        """Queue an item for scanning.

        Returns True when the value must be skipped: it is not an item,
        or the item is transient. Already queued items return False.
        """
        if value is None or value_kind(value) is not ValueKind.ITEM:
            return True
        if value.ident in self._seen:
            return False
        if value.is_transient:
            return True
        self._seen.add(value.ident)
        self._queue.append(value)
        self._order.append(value)
        return False

    def is_dumped(self, item: Optional[Item]) -> bool:
        return item is not None and item.ident in self._seen

    def scan_value(self, value: Any) -> None:
        pending = [value]
        while pending:
            val = pending.pop()
            kind = value_kind(val)
            if kind is None or kind in (ValueKind.INTEGER, ValueKind.STRING):
                continue
            if kind is ValueKind.NODE:
                if self.enqueue(val.conn):
                    continue
                pending.extend(reversed(val.sons))
            elif kind is ValueKind.SET:
                for element in val.elements:
                    self.enqueue(element)
            elif kind is ValueKind.ITEM:
                self.enqueue(val)
            else:
                raise InvariantError(f"unexpected value kind {kind}")

    def scan_item(self, item: Item) -> None:
        self.scan_value(item.content)
        for key, val in item.attributes():
            if self.enqueue(key):
                continue
            self.scan_value(val)
        for val in item.referenced_values():
            self.scan_value(val)

    def scan(self, root: Item) -> list[Item]:
        """Walk the graph from ``root``; return the persistent items found."""
        if self.enqueue(root):
            raise DumpError(f"root {root!r} is transient and can't be dumped")
        while self._queue:
            self.scan_item(self._queue.popleft())
        return list(self._order)

    # ------------------------------------------------------------------ #
    # Encoding
    # ------------------------------------------------------------------ #

    def encode_value(self, value: Any) -> Optional[dict]:
        kind = value_kind(value)
        if kind is None:
            return None
        if kind is ValueKind.INTEGER:
            return {"kd": kind.value, "int": value.num}
        if kind is ValueKind.STRING:
            return {"kd": kind.value, "str": value.text}
        if kind is ValueKind.NODE:
            if not self.is_dumped(value.conn):
                return None
            return {
                "kd": kind.value,
                "conid": value.conn.ident,
                "sons": [self.encode_value(son) for son in value.sons],
            }
        if kind is ValueKind.SET:
            return {
                "kd": kind.value,
                "elemids": [elem.ident for elem in value.elements if self.is_dumped(elem)],
            }
        if kind is ValueKind.ITEM:
            if not self.is_dumped(value):
                return None
            return {"kd": kind.value, "id": value.ident}
        raise InvariantError(f"unexpected value kind {kind}")

    def encode_payload(self, item: Item) -> Optional[dict]:
        payload = item.payload
        if payload is None:
            return None
        kind = payload.kind
        if kind is PayloadKind.VECTOR:
            return {
                "payloadkind": kind.value,
                "payloadvector": [self.encode_value(v) for v in payload.values()],
            }
        if kind is PayloadKind.BUFFER:
            return {
                "payloadkind": kind.value,
                "payloadbuflen": payload.byte_length,
                "payloadbuffer": payload.lines(),
            }
        if kind is PayloadKind.QUEUE:
            return {
                "payloadkind": kind.value,
                "payloadqueue": [self.encode_value(v) for v in payload.values()],
            }
        if kind is PayloadKind.DICTIONARY:
            return {
                "payloadkind": kind.value,
                "payloaddictlen": len(payload),
                "payloaddictionnary": {
                    key: self.encode_value(val) for key, val in payload.items()
                },
            }
        if kind is PayloadKind.CLOSURE:
            return {
                "payloadkind": kind.value,
                "payloadclofun": payload.function.name,
                "payloadcloval": [self.encode_value(v) for v in payload.values()],
            }
        raise InvariantError(f"unexpected payload kind {kind}")

    def encode_item(self, item: Item) -> dict:
        attrs = []
        for key, val in item.attributes():
            if not self.is_dumped(key):
                continue
            encoded = self.encode_value(val)
            if encoded is None:
                continue
            attrs.append({"atid": key.ident, "val": encoded})
        return {
            "item": item.ident,
            "itemattrs": attrs,
            "itemcontent": self.encode_value(item.content),
            "itempayload": self.encode_payload(item),
        }

    def records_by_dataspace(self) -> dict[str, list[dict]]:
        """Encoded item records grouped by dataspace name, in discovery order."""
        grouped: dict[str, list[dict]] = {}
        for item in self._order:
            grouped.setdefault(item.dataspace.name, []).append(self.encode_item(item))
        return grouped


def manifest_text(modules: list[str], dataspaces: list[str], top_ident: int) -> str:
    lines = ["# knowstore state manifest", f"# format {FORMAT_VERSION}", ""]
    lines.extend(f"MODULE {name}" for name in modules)
    lines.extend(f"DATA {name}" for name in dataspaces)
    lines.append(f"TOPDICT {top_ident}")
    return "\n".join(lines) + "\n"


def _write_atomic(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` through a temporary file and a rename."""
    temp_fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}_",
        suffix=".tmp"
    )
    try:
        with os.fdopen(temp_fd, 'w', encoding="utf-8") as f:
            f.write(text)
        os.rename(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def dump(directory=None, root: Optional[Item] = None, session=None) -> DumpReport:
    """Dump everything reachable from ``root`` (default: the top item) into ``directory``."""
    session = session or _session.current()
    directory = Path(directory) if directory else DEFAULT_STATE_DIR
    root = root if root is not None else session.top_item
    if root is None:
        raise DumpError("no top item to dump from")

    dumper = Dumper(session)
    items = dumper.scan(root)
    grouped = dumper.records_by_dataspace()
    logger.debug(f"Scanned {len(items)} persistent items from #{root.ident}")

    report = DumpReport(directory=directory, top_ident=root.ident)
    try:
        if not directory.is_dir():
            directory.mkdir(mode=DUMP_DIR_MODE, parents=True)
        for name in sorted(grouped):
            data = {"version": FORMAT_VERSION, "itemcont": grouped[name]}
            path = directory / f"{name}{DATA_SUFFIX}"
            _write_atomic(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
            report.items_per_dataspace[name] = len(grouped[name])
            report.files.append(path)
        manifest = directory / MANIFEST_NAME
        _write_atomic(manifest, manifest_text(list(session.modules), sorted(grouped), root.ident))
        report.files.append(manifest)
    except OSError as e:
        logger.error(f"Failed to dump state to {directory}: {e}")
        raise DumpError(f"failed to dump state to {directory}: {e}") from e

    logger.info(f"Dumped {report.item_count} items in {len(grouped)} dataspaces to {directory}")
    return report
