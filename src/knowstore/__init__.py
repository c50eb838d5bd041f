"""
knowstore: a persistent, reflective item store.

Items carry attributes, a content value and a payload, live in named
dataspaces, and are dumped to / loaded from a directory of JSON data
files indexed by a manifest.
"""

from knowstore.closures import CallKind, ClosureFunction, apply_closure
from knowstore.dataspace import Dataspace
from knowstore.dump import DumpReport, Dumper, dump
from knowstore.errors import (
    ConfigurationError,
    DumpError,
    FormatError,
    InvariantError,
    LoadError,
    PayloadError,
    PluginError,
    RegistryError,
    SemanticError,
    StoreError,
)
from knowstore.items import Item
from knowstore.load import LoadReport, Loader, load
from knowstore.payloads import PayloadKind
from knowstore.plugins import closure_function, register_closure_function
from knowstore.session import Session, current, dataspace, make_item, reset
from knowstore.values import (
    Integer,
    ItemSet,
    Node,
    String,
    ValueKind,
    make_int,
    make_node,
    make_set,
    make_string,
)

__all__ = [
    "CallKind",
    "ClosureFunction",
    "ConfigurationError",
    "Dataspace",
    "DumpError",
    "DumpReport",
    "Dumper",
    "FormatError",
    "Integer",
    "InvariantError",
    "Item",
    "ItemSet",
    "LoadError",
    "LoadReport",
    "Loader",
    "Node",
    "PayloadError",
    "PayloadKind",
    "PluginError",
    "RegistryError",
    "SemanticError",
    "Session",
    "StoreError",
    "String",
    "ValueKind",
    "apply_closure",
    "closure_function",
    "current",
    "dataspace",
    "dump",
    "load",
    "make_int",
    "make_item",
    "make_node",
    "make_set",
    "make_string",
    "register_closure_function",
    "reset",
]
