"""
Load engine: rebuilds the item graph from a state directory.

The manifest is read first. Its directives are then run in file order:

    MODULE <name>   load a plugin module (registers closure functions)
    DATA <space>    read <space>.json into dataspace <space>
    TOPDICT <id>    the root item, bound once everything is loaded

Items are looked up by id in a table local to the load, and created as
empty placeholders on first reference, so records may refer to items
defined later in the same file or in another file. Each record then
fills its item in place.
"""

import inspect
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NoReturn, Optional

from packaging import version as pkg_version

from knowstore import session as _session
from knowstore.config import (
    DATA_SUFFIX,
    DEFAULT_STATE_DIR,
    FORMAT_VERSION,
    MANIFEST_NAME,
    is_valid_name,
    plugin_root,
)
from knowstore.errors import (
    ConfigurationError,
    FormatError,
    InvariantError,
    PluginError,
    SemanticError,
)
from knowstore.items import Item
from knowstore.payloads import PayloadKind
from knowstore.plugins import load_module, run_post_load_hooks
from knowstore.values import INT64, ValueKind, make_int, make_node, make_set, make_string

logger = logging.getLogger(__name__)

DIRECTIVES = ("MODULE", "DATA", "TOPDICT")


@dataclass
class Directive:
    """One recognised manifest line."""
    keyword: str
    argument: str
    lineno: int

    @property
    def ident(self) -> int:
        return int(self.argument)


@dataclass
class LoadReport:
    """What a load read."""
    directory: Path
    modules: list[str] = field(default_factory=list)
    dataspaces: list[str] = field(default_factory=list)
    items_per_dataspace: dict[str, int] = field(default_factory=dict)
    item_count: int = 0
    top_item: Optional[Item] = None


def parse_manifest(path: Path) -> list[Directive]:
    """Read the directives of a manifest file.

    Blank lines and lines starting with ``#`` are skipped, as are lines
    with an unknown keyword.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigurationError("manifest file not found", path=path)
    except OSError as e:
        raise ConfigurationError(f"failed to read manifest: {e}", path=path)

    directives: list[Directive] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        words = line.split()
        keyword = words[0]
        if keyword not in DIRECTIVES:
            logger.warning(f"{path}:{lineno}: ignoring unknown directive {keyword!r}")
            continue
        if len(words) != 2:
            raise ConfigurationError(f"line {lineno}: {keyword} takes exactly one argument", path=path)
        argument = words[1]
        if keyword == "TOPDICT":
            if not (argument.isascii() and argument.isdigit()) or int(argument) <= 0:
                raise ConfigurationError(f"line {lineno}: bad TOPDICT id {argument!r}", path=path)
        elif not is_valid_name(argument):
            raise ConfigurationError(f"line {lineno}: invalid {keyword.lower()} name {argument!r}", path=path)
        directives.append(Directive(keyword, argument, lineno))
    return directives


def _is_int(js: Any) -> bool:
    return isinstance(js, int) and not isinstance(js, bool)


def _version_age(found: str) -> str:
    """Whether a data file version is newer or older than ours."""
    try:
        newer = pkg_version.parse(found) > pkg_version.parse(FORMAT_VERSION)
    except pkg_version.InvalidVersion:
        return "unreadable"
    return "newer" if newer else "older"


class Loader:
    """One load of a state directory into a session.

    The id table, the current file and the current dataspace only live
    for the duration of ``run``.
    """

    def __init__(self, directory, session=None, plugins_from=None):
        self.directory = Path(directory)
        self.session = session or _session.current()
        self.plugin_root = Path(plugins_from) if plugins_from else plugin_root(self.directory)
        self._items: dict[int, Item] = {}
        self._path: Optional[Path] = None
        self._space = None

    # ------------------------------------------------------------------ #
    # Errors
    # ------------------------------------------------------------------ #

    def _fail(self, message: str, error=FormatError, depth: int = 1) -> NoReturn:
        """Raise ``error`` tagged with the current file and the checking line."""
        frame = inspect.currentframe()
        for _ in range(depth):
            if frame is not None:
                frame = frame.f_back
        raise error(message, path=self._path, check_line=frame.f_lineno if frame else 0)

    def _require(self, js: dict, key: str, what: str) -> Any:
        if key not in js:
            self._fail(f"missing {key!r} in {what}", depth=2)
        return js[key]

    # ------------------------------------------------------------------ #
    # Items and values
    # ------------------------------------------------------------------ #

    def retrieve_item(self, ident: Any) -> Item:
        """Item of id ``ident`` for this load, created empty on first use."""
        if not _is_int(ident) or not 0 < ident <= INT64.max:
            self._fail(f"invalid item id {ident!r}", depth=2)
        item = self._items.get(ident)
        if item is not None:
            return item
        item = Item(ident)
        try:
            self.session.adopt_item(item)
        except InvariantError as e:
            self._fail(str(e), error=SemanticError)
        self._items[ident] = item
        return item

    def decode_value(self, js: Any) -> Any:
        if js is None:
            return None
        if isinstance(js, bool):
            self._fail(f"unexpected JSON boolean {js}")
        if _is_int(js):
            return self._integer(js)
        if isinstance(js, str):
            return make_string(js)
        if not isinstance(js, dict):
            self._fail(f"unexpected JSON {type(js).__name__} for a value")

        kd = js.get("kd")
        if not isinstance(kd, str):
            self._fail("missing 'kd' in object")
        if kd == ValueKind.STRING.value:
            text = js.get("str")
            if not isinstance(text, str):
                self._fail("missing 'str' in object for string")
            return make_string(text)
        if kd == ValueKind.INTEGER.value:
            num = js.get("int")
            if not _is_int(num):
                self._fail("missing 'int' in object for integer")
            return self._integer(num)
        if kd == ValueKind.NODE.value:
            conid = js.get("conid")
            if not _is_int(conid) or conid <= 0:
                self._fail("invalid or missing 'conid' in object for node")
            sons = js.get("sons")
            if not isinstance(sons, list):
                self._fail("bad 'sons' in object for node")
            conn = self.retrieve_item(conid)
            return make_node(conn, [self.decode_value(son) for son in sons])
        if kd == ValueKind.SET.value:
            elemids = js.get("elemids")
            if not isinstance(elemids, list):
                self._fail("bad 'elemids' in object for set")
            elements = []
            for ix, elemid in enumerate(elemids):
                if not _is_int(elemid):
                    self._fail(f"element #{ix} in object for set not integer")
                elements.append(self.retrieve_item(elemid))
            return make_set(elements)
        if kd == ValueKind.ITEM.value:
            ident = js.get("id")
            if not _is_int(ident) or ident <= 0:
                self._fail(f"bad or missing id {ident!r} in object for item reference")
            return self.retrieve_item(ident)
        self._fail(f"bad kind string {kd!r} in object")

    def _integer(self, num: int):
        try:
            return make_int(num)
        except InvariantError as e:
            self._fail(str(e), depth=2)

    # ------------------------------------------------------------------ #
    # Records
    # ------------------------------------------------------------------ #

    def load_payload(self, item: Item, js: Any) -> None:
        if js is None:
            item.clear_payload()
            return
        if not isinstance(js, dict):
            self._fail(f"bad item #{item.ident} payload")
        try:
            kind = PayloadKind(js.get("payloadkind"))
        except ValueError:
            self._fail(f"unexpected payload kind {js.get('payloadkind')!r} in item #{item.ident}")

        if kind is PayloadKind.VECTOR:
            values = js.get("payloadvector")
            if not isinstance(values, list):
                self._fail(f"bad item #{item.ident} vector payload")
            item.make_vector(len(values))
            for val in values:
                item.vector_append(self.decode_value(val))
        elif kind is PayloadKind.BUFFER:
            length = js.get("payloadbuflen", 0)
            lines = js.get("payloadbuffer")
            if not _is_int(length) or not isinstance(lines, list):
                self._fail(f"bad item #{item.ident} buffer payload")
            if not all(isinstance(line, str) for line in lines):
                self._fail(f"non-string line in item #{item.ident} buffer payload")
            item.make_buffer(length + 2)
            item.buffer_append("\n".join(lines))
        elif kind is PayloadKind.QUEUE:
            values = js.get("payloadqueue")
            if not isinstance(values, list):
                self._fail(f"bad item #{item.ident} queue payload")
            item.make_queue()
            for val in values:
                item.queue_append(self.decode_value(val))
        elif kind is PayloadKind.DICTIONARY:
            length = js.get("payloaddictlen", 0)
            entries = js.get("payloaddictionnary")
            if not _is_int(length) or not isinstance(entries, dict):
                self._fail(f"bad item #{item.ident} dictionary payload")
            item.make_dictionary(length + length // 8 + 5)
            for key, jsval in entries.items():
                val = self.decode_value(jsval)
                if val is not None:
                    item.dict_put(key, val)
        elif kind is PayloadKind.CLOSURE:
            name = js.get("payloadclofun")
            values = js.get("payloadcloval")
            if not isinstance(name, str) or not isinstance(values, list):
                self._fail(f"bad item #{item.ident} closure payload")
            function = self.session.closures.find(name)
            if function is None:
                self._fail(
                    f"not found function {name} for closure payload of #{item.ident}",
                    error=SemanticError,
                )
            if len(values) != function.arity:
                self._fail(
                    f"closure payload of #{item.ident} has {len(values)} values "
                    f"but {name} takes {function.arity}"
                )
            item.make_closure(function, [self.decode_value(val) for val in values])

    def load_item(self, js: Any) -> Item:
        """Fill the item described by record ``js``."""
        if not isinstance(js, dict):
            self._fail("expecting an object for item content")
        ident = js.get("item")
        if not _is_int(ident) or ident <= 0:
            self._fail(f"invalid id {ident!r} for loaded item content")
        item = self.retrieve_item(ident)
        if item.dataspace is not None:
            self._fail(
                f"loaded item #{ident} already has dataspace {item.dataspace.name}",
                error=SemanticError,
            )
        item._assign_dataspace(self._space)

        attrs = self._require(js, "itemattrs", f"item #{ident}")
        if not isinstance(attrs, list):
            self._fail(f"loaded item #{ident} without itemattrs")
        for entry in attrs:
            if not isinstance(entry, dict):
                self._fail("attribute entry is not a JSON object")
            atid = entry.get("atid")
            if not _is_int(atid) or atid <= 0:
                self._fail(f"bad attribute id {atid!r} in item #{ident} content")
            val = self.decode_value(entry.get("val"))
            if val is None:
                continue
            item.put_attr(self.retrieve_item(atid), val)

        item.content = self.decode_value(self._require(js, "itemcontent", f"item #{ident}"))
        self.load_payload(item, self._require(js, "itempayload", f"item #{ident}"))
        return item

    def load_data(self, spacename: str) -> int:
        """Read the data file of dataspace ``spacename``; return its item count."""
        path = self.directory / f"{spacename}{DATA_SUFFIX}"
        if not path.is_file():
            raise ConfigurationError("data file does not exist", path=path)
        self._path = path
        self._space = self.session.dataspace(spacename)
        if self._space.transient:
            self._fail(f"dataspace {spacename} is transient and can't hold loaded items", error=SemanticError)
        try:
            with open(path, encoding="utf-8") as f:
                root = json.load(f)
        except json.JSONDecodeError as e:
            self._fail(f"JSON error line {e.lineno}: {e.msg}")
        except OSError as e:
            raise ConfigurationError(f"failed to read data file: {e}", path=path)

        if not isinstance(root, dict):
            self._fail("JSON root is not an object")
        version = root.get("version")
        if not isinstance(version, str):
            self._fail("JSON root without version")
        if version != FORMAT_VERSION:
            self._fail(
                f"JSON root with version {version} but expecting {FORMAT_VERSION} "
                f"({_version_age(version)} format)"
            )
        records = root.get("itemcont")
        if not isinstance(records, list):
            self._fail("JSON root without itemcont")

        for record in records:
            self.load_item(record)
        logger.debug(f"Loaded {len(records)} items from {path}")
        self._path = None
        self._space = None
        return len(records)

    # ------------------------------------------------------------------ #
    # Driver
    # ------------------------------------------------------------------ #

    def _rollback(self, previous_top: Optional[Item]) -> None:
        """Undo the session side of a failed load so it can be retried."""
        for item in self._items.values():
            self.session.forget_item(item)
        self.session.top_item = previous_top
        logger.debug(f"Dropped {len(self._items)} items of a failed load of {self.directory}")

    def run(self) -> LoadReport:
        manifest = self.directory / MANIFEST_NAME
        directives = parse_manifest(manifest)
        report = LoadReport(directory=self.directory)
        top_ident: Optional[int] = None
        previous_top = self.session.top_item
        try:
            for directive in directives:
                if directive.keyword == "MODULE":
                    logger.debug(f"module '{directive.argument}'")
                    if directive.argument in self.session.modules:
                        logger.debug(f"Plugin {directive.argument} already resident, not reloading")
                        report.modules.append(directive.argument)
                        continue
                    errstr = load_module(self.plugin_root, directive.argument, self.session)
                    if errstr:
                        raise PluginError(
                            f"failed to load module '{directive.argument}' - {errstr}", path=manifest
                        )
                    report.modules.append(directive.argument)
                elif directive.keyword == "DATA":
                    logger.debug(f"data '{directive.argument}'")
                    report.items_per_dataspace[directive.argument] = self.load_data(directive.argument)
                    report.dataspaces.append(directive.argument)
                elif directive.keyword == "TOPDICT":
                    top_ident = directive.ident

            if top_ident is not None:
                top = self._items.get(top_ident)
                if top is None or top.dataspace is None:
                    raise SemanticError(f"top item #{top_ident} was not loaded", path=manifest)
                self.session.top_item = top
                report.top_item = top
            else:
                logger.warning(f"{manifest}: no TOPDICT directive, top item left unchanged")

            placeholders = [item for item in self._items.values() if item.dataspace is None]
            if placeholders:
                logger.warning(
                    f"{len(placeholders)} referenced items were never loaded, "
                    f"e.g. #{placeholders[0].ident}"
                )
            report.item_count = len(self._items) - len(placeholders)
            run_post_load_hooks(self.session)
        except Exception:
            self._rollback(previous_top)
            raise
        finally:
            self._items = {}
            self._path = None
            self._space = None

        logger.info(
            f"Loaded {report.item_count} items from {len(report.dataspaces)} dataspaces in {self.directory}"
        )
        return report


def load(directory=None, session=None, plugins_from=None) -> LoadReport:
    """Load the state directory ``directory`` (default: the configured state dir)."""
    directory = Path(directory) if directory else DEFAULT_STATE_DIR
    return Loader(directory, session=session, plugins_from=plugins_from).run()
