"""Exceptions raised while reading, patching and writing RDB containers."""


class RdbError(Exception):
    """Base class for all RDB errors."""


class FormatError(RdbError, ValueError):
    """Container bytes or an entry violate the binary layout."""


class EntryNotFound(RdbError, KeyError):
    """No entry carries the requested file KTID."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Entry not found"


class UnsupportedEntryType(RdbError):
    """The entry type has no known externalized header length."""

    def __init__(self, entry_type: int):
        super().__init__(f"Unsupported entry type: {entry_type}")
        self.entry_type = entry_type


class PatchIOError(RdbError, OSError):
    """A payload directory or file could not be read or written."""
