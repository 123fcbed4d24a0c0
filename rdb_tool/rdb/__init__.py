"""RDB container format and patching."""

from .container import Rdb
from .header import RdbEntry, RdbFlags, RdbHeader, VersionGuard
from .patch import PatchMode, PatchResult, PatchStatus, patch_directory, patch_rdb

__all__ = [
    "Rdb",
    "RdbEntry",
    "RdbFlags",
    "RdbHeader",
    "VersionGuard",
    "PatchMode",
    "PatchResult",
    "PatchStatus",
    "patch_directory",
    "patch_rdb",
]
