"""KTID identifiers.

A KTID is the 32-bit hash the asset pipeline uses to name resources, their
external payload files and their type-info records. Resources referenced by
path are hashed through a canonical ``R_<EXT>［<stem>］`` form.
"""

from dataclasses import dataclass
from pathlib import PurePath
from typing import Union

KTID_MASK = 0xFFFFFFFF

# Multiplier and initial key of the hash
KTID_SEED = 31


def ktid_hash(text: Union[str, bytes], key: int = KTID_SEED) -> int:
    """Hash a non-empty string to a 32-bit identifier.

    The first byte is taken as unsigned, every following byte as a signed
    8-bit value. All arithmetic wraps at 32 bits.
    """
    data = text.encode("utf-8") if isinstance(text, str) else bytes(text)
    if not data:
        raise ValueError("Cannot hash an empty string")

    iv = (data[0] * KTID_SEED) & KTID_MASK
    key &= KTID_MASK
    for byte in data[1:]:
        signed = byte - 0x100 if byte & 0x80 else byte
        iv = (iv + KTID_SEED * key * signed) & KTID_MASK
        key = (key * KTID_SEED) & KTID_MASK
    return iv


def canonical_path_name(path: Union[str, PurePath]) -> str:
    """Build the string hashed for a resource path: ``R_EXT［stem］``."""
    path = PurePath(path)
    extension = path.suffix[1:]
    stem = path.stem
    if not extension or not stem:
        raise ValueError(f"Path needs both a stem and an extension: {str(path)!r}")
    return f"R_{extension.upper()}［{stem}］"


@dataclass(frozen=True)
class KTID:
    """A 32-bit resource identifier."""

    value: int

    def __post_init__(self):
        if not 0 <= self.value <= KTID_MASK:
            raise ValueError(f"KTID out of range: {self.value:#x}")

    @classmethod
    def from_string(cls, text: Union[str, bytes]) -> "KTID":
        """Hash an arbitrary string."""
        return cls(ktid_hash(text))

    @classmethod
    def from_path(cls, path: Union[str, PurePath]) -> "KTID":
        """Hash a resource path through its canonical name."""
        return cls(ktid_hash(canonical_path_name(path)))

    @classmethod
    def parse(cls, text: str) -> "KTID":
        """Parse ``0x``-prefixed hex, otherwise hash the text as a string."""
        if text[:2].lower() == "0x":
            return cls(int(text[2:], 16))
        return cls.from_string(text)

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        return f"{self.value:08x}"
