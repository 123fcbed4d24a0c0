"""RDB header, entry and flag structures.

An RDB container is a header followed by ``file_count`` entries. Each entry
describes one resource whose payload is either stored inline or in an
external ``0x<ktid>.file``. Everything is little-endian and entries are
aligned to 4 bytes.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from ..errors import FormatError, UnsupportedEntryType

# Size of the fixed header fields before the path string
HEADER_PREFIX_SIZE = 0x18

# Size of the fixed entry fields before unk_content
ENTRY_PREFIX_SIZE = 0x30

ENTRY_ALIGNMENT = 4

# "0000" in ASCII; marks the revision split of the format
REVISION_MARKER = 0x30303030

# Magic written in front of a standalone sidecar file
SIDECAR_MAGIC = b"IDRK"

# Header length of an externalized entry, by entry type
EXTERNAL_HEADER_SIZES = {
    0: 0x38,
    1: 0x48,
    4: 0x48,
    8: 0x58,
    12: 0x68,
}


def external_header_size(entry_type: int) -> int:
    """Return the externalized header length for an entry type."""
    try:
        return EXTERNAL_HEADER_SIZES[entry_type]
    except KeyError:
        raise UnsupportedEntryType(entry_type) from None


class VersionGuard(Enum):
    """How the version field is checked against REVISION_MARKER."""

    NOT_EQUAL = "ne"
    EQUAL = "eq"
    NONE = "off"

    def accepts(self, version: int) -> bool:
        if self is VersionGuard.NOT_EQUAL:
            return version != REVISION_MARKER
        if self is VersionGuard.EQUAL:
            return version == REVISION_MARKER
        return True

    def check(self, version: int, what: str) -> None:
        if not self.accepts(version):
            relation = "equal to" if self is VersionGuard.EQUAL else "different from"
            raise FormatError(
                f"Unsupported {what} version 0x{version:08X} "
                f"(expected a version {relation} 0x{REVISION_MARKER:08X})"
            )


class RdbFlags:
    """32-bit entry flag word.

    Bit layout (LSB first): 0-15 reserved, 16 external, 17 internal,
    18-19 reserved, 20 zlib, 21 lz4, 22-31 reserved. Reserved bits are kept
    as-is so unknown revisions round-trip.
    """

    EXTERNAL = 1 << 16
    INTERNAL = 1 << 17
    ZLIB_COMPRESSED = 1 << 20
    LZ4_COMPRESSED = 1 << 21

    UNK_MASK = 0x0000FFFF
    UNK2_MASK = 0x000C0000
    UNK3_MASK = 0xFFC00000

    __slots__ = ("value",)

    def __init__(self, value: int = 0):
        self.value = value & 0xFFFFFFFF

    def _get(self, mask: int) -> bool:
        return bool(self.value & mask)

    def _set(self, mask: int, enabled: bool) -> None:
        if enabled:
            self.value |= mask
        else:
            self.value &= ~mask & 0xFFFFFFFF

    @property
    def external(self) -> bool:
        return self._get(self.EXTERNAL)

    @external.setter
    def external(self, enabled: bool) -> None:
        self._set(self.EXTERNAL, enabled)

    @property
    def internal(self) -> bool:
        return self._get(self.INTERNAL)

    @internal.setter
    def internal(self, enabled: bool) -> None:
        self._set(self.INTERNAL, enabled)

    @property
    def zlib_compressed(self) -> bool:
        return self._get(self.ZLIB_COMPRESSED)

    @zlib_compressed.setter
    def zlib_compressed(self, enabled: bool) -> None:
        self._set(self.ZLIB_COMPRESSED, enabled)

    @property
    def lz4_compressed(self) -> bool:
        return self._get(self.LZ4_COMPRESSED)

    @lz4_compressed.setter
    def lz4_compressed(self, enabled: bool) -> None:
        self._set(self.LZ4_COMPRESSED, enabled)

    @property
    def encrypted(self) -> bool:
        # Both compression bits set at once mark an encrypted payload
        return self.zlib_compressed and self.lz4_compressed

    @property
    def unk(self) -> int:
        return self.value & self.UNK_MASK

    @property
    def unk2(self) -> int:
        return (self.value & self.UNK2_MASK) >> 18

    @property
    def unk3(self) -> int:
        return (self.value & self.UNK3_MASK) >> 22

    def describe(self) -> str:
        names = []
        if self.external:
            names.append("external")
        if self.internal:
            names.append("internal")
        if self.encrypted:
            names.append("encrypted")
        elif self.zlib_compressed:
            names.append("zlib")
        elif self.lz4_compressed:
            names.append("lz4")
        return ",".join(names) or "-"

    def __int__(self) -> int:
        return self.value

    def __eq__(self, other) -> bool:
        if isinstance(other, RdbFlags):
            return self.value == other.value
        if isinstance(other, int):
            return self.value == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"RdbFlags(0x{self.value:08X}: {self.describe()})"


@dataclass
class RdbHeader:
    """RDB container header (0x18 bytes + null-terminated path)."""

    magic: int
    version: int
    header_size: int  # Offset of the first entry
    system_id: int
    file_count: int
    ktid: int
    path: bytes = b""

    @property
    def encoded_size(self) -> int:
        """Length of the fixed fields plus the terminated path."""
        return HEADER_PREFIX_SIZE + len(self.path) + 1

    @property
    def path_text(self) -> str:
        return self.path.decode("utf-8", errors="replace")


@dataclass
class RdbEntry:
    """One resource record of an RDB container."""

    magic: int
    version: int
    entry_size: int  # Prefix + unk_content + name
    unk: int
    string_size: int
    unk2: int
    file_size: int
    entry_type: int
    file_ktid: int
    type_info_ktid: int
    flags: RdbFlags = field(default_factory=RdbFlags)
    unk_content: bytes = b""
    name: bytes = b""

    @property
    def expected_size(self) -> int:
        return ENTRY_PREFIX_SIZE + len(self.unk_content) + self.string_size

    def validate(self) -> None:
        """Check the size fields against the variable-length data."""
        if self.string_size != len(self.name):
            raise FormatError(
                f"Entry 0x{self.file_ktid:08x}: string_size {self.string_size} "
                f"does not match name length {len(self.name)}"
            )
        if self.entry_size != self.expected_size:
            raise FormatError(
                f"Entry 0x{self.file_ktid:08x}: entry_size 0x{self.entry_size:X} "
                f"!= 0x{self.expected_size:X}"
            )

    @property
    def external_path(self) -> str:
        """Conventional file name of the external payload."""
        return f"0x{self.file_ktid:08x}.file"

    @property
    def is_external(self) -> bool:
        return self.flags.external

    @property
    def name_text(self) -> str:
        return self.name.decode("utf-8", errors="replace")

    @property
    def size_marker(self) -> Optional[int]:
        """Payload size encoded after '@' in the name, if any."""
        marker = self.name.find(b"@")
        if marker < 0:
            return None
        try:
            return int(self.name[marker + 1 :].rstrip(b"\x00"), 16)
        except ValueError:
            return None

    @property
    def externalized_header_size(self) -> int:
        return external_header_size(self.entry_type)

    def set_name(self, name: bytes) -> None:
        """Replace the name, keeping string_size and entry_size consistent."""
        self.entry_size -= self.string_size
        self.name = bytes(name)
        self.string_size = len(self.name)
        self.entry_size += self.string_size

    def make_external(self) -> None:
        self.flags.external = True
        self.flags.internal = False

    def make_uncompressed(self) -> None:
        self.flags.zlib_compressed = False
        self.flags.lz4_compressed = False

    def set_external_file(self, size: int) -> None:
        """Point the entry at an external payload of ``size`` bytes.

        A name ending in ``@<hex size>`` gets its marker rewritten to the new
        size; other names are kept.
        """
        self.file_size = size
        marker = self.name.find(b"@")
        if marker >= 0:
            self.set_name(self.name[:marker] + f"@{size:x}".encode("ascii"))

    def derive_sidecar(self, payload_size: int) -> "RdbEntry":
        """Build the standalone header written in front of a sidecar payload.

        The result is a new entry; this one is left untouched. The payload
        takes the place of the name, so ``string_size`` is the payload length.
        """
        header_size = self.externalized_header_size
        extra = header_size - ENTRY_PREFIX_SIZE
        unk_content = self.unk_content[:extra].ljust(extra, b"\x00")
        return replace(
            self,
            entry_size=header_size + payload_size,
            string_size=payload_size,
            file_size=payload_size,
            flags=RdbFlags(0),
            unk_content=unk_content,
            name=b"",
        )

    def __repr__(self) -> str:
        return (
            f"RdbEntry(ktid=0x{self.file_ktid:08x}, type={self.entry_type}, "
            f"size=0x{self.entry_size:X}, file_size={self.file_size}, "
            f"flags={self.flags.describe()}, name={self.name_text!r})"
        )
