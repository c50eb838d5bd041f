"""
Plugin modules and the closure-function registration contract.

A plugin is a Python module (or native extension) found under the
``src/`` or ``module/`` directory of a plugin root. Loading executes it
once; while executing it registers its closure functions, for instance:

    from knowstore.plugins import CallKind, closure_function

    @closure_function("greet", arity=2, kind=CallKind.TWO_VALUES)
    def greet(who, greeting, closure_item):
        ...

Loaded plugins stay resident for the lifetime of the session. Their
registrations go to the session the plugin is loaded into. A plugin
may also define ``post_load(session)``, called once a load has bound
the top item.
"""

import importlib.machinery
import importlib.util
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import Callable, Optional

from knowstore import session as _session
from knowstore.closures import CallKind, ClosureFunction
from knowstore.config import PLUGIN_SUBDIRS, is_valid_name

logger = logging.getLogger(__name__)

__all__ = [
    "CallKind",
    "ClosureFunction",
    "closure_function",
    "find_module_file",
    "load_module",
    "register_closure_function",
]

# Python sources first, then native extensions
PLUGIN_SUFFIXES = tuple(importlib.machinery.SOURCE_SUFFIXES) + tuple(importlib.machinery.EXTENSION_SUFFIXES)


def register_closure_function(descriptor: ClosureFunction) -> ClosureFunction:
    """Publish ``descriptor`` in the current session's closure registry."""
    return _session.current().closures.register(descriptor)


def closure_function(name: str, arity: int, kind: CallKind = CallKind.ONE_VALUE) -> Callable:
    """Decorator registering the decorated function as a closure function."""
    def decorator(fn: Callable) -> Callable:
        register_closure_function(ClosureFunction(name=name, arity=arity, kind=kind, fn=fn))
        return fn
    return decorator


def find_module_file(root: Path, name: str) -> Optional[Path]:
    """First file implementing plugin ``name`` under ``root/src`` then ``root/module``."""
    for subdir in PLUGIN_SUBDIRS:
        directory = Path(root) / subdir
        if not directory.is_dir():
            continue
        for suffix in PLUGIN_SUFFIXES:
            candidate = directory / f"{name}{suffix}"
            if candidate.is_file():
                return candidate
    return None


def load_module(root, name: str, session=None) -> Optional[str]:
    """Load plugin ``name`` from ``root``.

    Returns None on success, or a message describing why the plugin
    could not be loaded.
    """
    session = session or _session.current()
    if not root:
        return "empty root directory to load module"
    if not name:
        return "empty module name to load module"
    root = Path(root)
    if not root.is_dir():
        return f"when loading module, {root} is not a directory"
    if not is_valid_name(name):
        return f"when loading module, invalid character in module name {name!r}"
    if name in session.modules:
        return f"module {name} already loaded from {session.modules[name].__file__}"

    path = find_module_file(root, name)
    if path is None:
        subdirs = " or ".join(f"{sub}/" for sub in PLUGIN_SUBDIRS)
        return f"failed to load module {name}: not found in {subdirs} of {root}"

    module_name = f"knowstore_plugin_{name}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        return f"failed to load module {name}: no loader for {path}"

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        with _session.activated(session):
            spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        logger.debug(f"Plugin {name} failed while executing {path}", exc_info=True)
        return f"failed to load module {name} from {path}: {type(e).__name__}: {e}"

    session.modules[name] = module
    logger.info(f"Loaded plugin module {name} from {path}")
    return None


def run_post_load_hooks(session) -> None:
    """Call ``post_load(session)`` on every plugin defining it, in load order."""
    for name, module in list(session.modules.items()):
        hook = getattr(module, "post_load", None)
        if callable(hook):
            logger.debug(f"Running post_load hook of plugin {name}")
            with _session.activated(session):
                hook(session)
