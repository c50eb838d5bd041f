"""
Exceptions raised by the item store, the loader and the dumper.
"""

from pathlib import Path
from typing import Optional


class StoreError(Exception):
    """Base exception for knowstore errors"""
    pass


class ConfigurationError(StoreError):
    """Raised for a missing or malformed manifest, bad names, or missing data files"""

    def __init__(self, message: str, path: Optional[Path] = None):
        self.path = path
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)


class PluginError(ConfigurationError):
    """Raised when a MODULE directive names a plugin that can't be loaded"""
    pass


class LoadError(StoreError):
    """Raised when a data file can't be turned back into items.

    ``check_line`` is the line in the loader where the failing check lives.
    """

    def __init__(self, message: str, path: Optional[Path] = None, check_line: int = 0):
        self.message = message
        self.path = path
        self.check_line = check_line
        super().__init__(self._describe())

    def _describe(self) -> str:
        where = str(self.path) if self.path is not None else "<load>"
        if self.check_line:
            return f"{where}: {self.message} (check at line {self.check_line})"
        return f"{where}: {self.message}"


class FormatError(LoadError):
    """Raised for malformed data: bad version, wrong JSON type, bad ids"""
    pass


class SemanticError(LoadError):
    """Raised for well-formed data that can't be honoured (unknown closure function, ...)"""
    pass


class InvariantError(StoreError):
    """Raised when runtime code breaks a data model invariant"""
    pass


class PayloadError(InvariantError):
    """Raised when a payload operation targets the wrong payload kind or index"""
    pass


class RegistryError(StoreError):
    """Raised on conflicting registrations in a process-wide registry"""
    pass


class DumpError(StoreError):
    """Raised when a dump can't be performed or written"""
    pass
