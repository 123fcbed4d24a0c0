"""Type-info name lookup.

Every entry carries the KTID of its type-info record, e.g.
``TypeInfo::Object::3D::Displayset::TrianglesEx``. The names come from a
``typeinfos.csv`` dump with rows of ``typekind,ktid,typename``; only rows of
kind ``TypeInfo`` are used. Each type is keyed by the hash of its name; the
ktid column is only checked against that hash.
"""

import csv
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

from .ktid import ktid_hash

TYPEINFO_KIND = "TypeInfo"


def _column_matches(text: str, ktid: int) -> bool:
    """True if a ktid column is blank or names ``ktid`` in decimal or hex."""
    text = text.strip()
    if not text:
        return True
    if text[:2].lower() == "0x":
        candidates = [(text[2:], 16)]
    else:
        candidates = [(text, 10), (text, 16)]
    for digits, base in candidates:
        try:
            if int(digits, base) == ktid:
                return True
        except ValueError:
            continue
    return False


class TypeInfoTable:
    """Mapping from type-info KTIDs to type names."""

    def __init__(self, names: Optional[Dict[int, str]] = None):
        self._names: Dict[int, str] = dict(names or {})

    @classmethod
    def from_names(cls, typenames: Iterable[str]) -> "TypeInfoTable":
        """Build a table by hashing each type name."""
        return cls({ktid_hash(name): name for name in typenames})

    @classmethod
    def from_rows(cls, rows: Iterable[Iterable[str]]) -> "TypeInfoTable":
        """Build a table from ``(typekind, ktid, typename)`` rows.

        A ktid column that disagrees with the hash of the type name is an
        error.
        """
        typenames = []
        for row in rows:
            row = list(row)
            if len(row) < 3:
                continue
            typekind, ktid_text, typename = (c.strip() for c in row[:3])
            if typekind != TYPEINFO_KIND or not typename:
                continue
            ktid = ktid_hash(typename)
            if not _column_matches(ktid_text, ktid):
                raise ValueError(f"Bad KTID {ktid_text!r} for {typename} (hash is 0x{ktid:08x})")
            typenames.append(typename)
        return cls.from_names(typenames)

    @classmethod
    def from_csv(cls, path: Union[str, Path]) -> "TypeInfoTable":
        """Load a headerless ``typeinfos.csv``."""
        with open(path, newline="", encoding="utf-8") as f:
            return cls.from_rows(csv.reader(f))

    def name_for(self, ktid: int) -> Optional[str]:
        """Get a type name by its KTID."""
        return self._names.get(int(ktid))

    def describe(self, ktid: int) -> str:
        """Type name if known, otherwise the hex KTID."""
        return self.name_for(ktid) or f"0x{int(ktid):08x}"

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        return f"TypeInfoTable(types={len(self._names)})"
