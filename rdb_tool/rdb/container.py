"""RDB container reader and writer."""

import contextlib
import logging
import os
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from ..errors import EntryNotFound, FormatError, PatchIOError
from ..utils.binary import BinaryReader, BinaryWriter
from .header import (
    ENTRY_ALIGNMENT,
    ENTRY_PREFIX_SIZE,
    RdbEntry,
    RdbFlags,
    RdbHeader,
    VersionGuard,
)

logger = logging.getLogger(__name__)


def read_header(reader: BinaryReader, guard: VersionGuard = VersionGuard.NOT_EQUAL) -> RdbHeader:
    """Read the container header and its null-terminated path."""
    magic = reader.read_u32()
    version = reader.read_u32()
    guard.check(version, "header")

    header = RdbHeader(
        magic=magic,
        version=version,
        header_size=reader.read_u32(),
        system_id=reader.read_u32(),
        file_count=reader.read_u32(),
        ktid=reader.read_u32(),
        path=reader.read_cstring(),
    )

    if header.header_size < header.encoded_size:
        raise FormatError(
            f"header_size 0x{header.header_size:X} is smaller than the "
            f"header itself (0x{header.encoded_size:X})"
        )
    return header


def write_header(writer: BinaryWriter, header: RdbHeader) -> None:
    """Write the header, zero-filled up to header_size."""
    if header.header_size < header.encoded_size:
        raise FormatError(
            f"header_size 0x{header.header_size:X} cannot hold the "
            f"0x{header.encoded_size:X}-byte header"
        )
    start = writer.tell()
    writer.write_u32(header.magic)
    writer.write_u32(header.version)
    writer.write_u32(header.header_size)
    writer.write_u32(header.system_id)
    writer.write_u32(header.file_count)
    writer.write_u32(header.ktid)
    writer.write_cstring(header.path)
    writer.pad_to(start + header.header_size)


def read_entry(reader: BinaryReader, guard: VersionGuard = VersionGuard.NOT_EQUAL) -> RdbEntry:
    """Read one entry and skip the padding that follows it."""
    offset = reader.tell()
    magic = reader.read_u32()
    version = reader.read_u32()
    guard.check(version, "entry")

    entry_size = reader.read_u32()
    unk = reader.read_u32()
    string_size = reader.read_u32()
    unk2 = reader.read_u32()
    file_size = reader.read_u64()
    entry_type = reader.read_u32()
    file_ktid = reader.read_u32()
    type_info_ktid = reader.read_u32()
    flags = RdbFlags(reader.read_u32())

    content_size = entry_size - string_size - ENTRY_PREFIX_SIZE
    if content_size < 0:
        raise FormatError(
            f"Entry at 0x{offset:X}: entry_size 0x{entry_size:X} too small "
            f"for string_size 0x{string_size:X}"
        )

    unk_content = reader.read_bytes(content_size)
    name = reader.read_bytes(string_size)
    reader.align(ENTRY_ALIGNMENT)

    return RdbEntry(
        magic=magic,
        version=version,
        entry_size=entry_size,
        unk=unk,
        string_size=string_size,
        unk2=unk2,
        file_size=file_size,
        entry_type=entry_type,
        file_ktid=file_ktid,
        type_info_ktid=type_info_ktid,
        flags=flags,
        unk_content=unk_content,
        name=name,
    )


def write_entry_header(writer: BinaryWriter, entry: RdbEntry) -> None:
    """Write the fixed fields and unk_content of an entry."""
    writer.write_u32(entry.magic)
    writer.write_u32(entry.version)
    writer.write_u32(entry.entry_size)
    writer.write_u32(entry.unk)
    writer.write_u32(entry.string_size)
    writer.write_u32(entry.unk2)
    writer.write_u64(entry.file_size)
    writer.write_u32(entry.entry_type)
    writer.write_u32(entry.file_ktid)
    writer.write_u32(entry.type_info_ktid)
    writer.write_u32(int(entry.flags))
    writer.write_bytes(entry.unk_content)


def write_entry(writer: BinaryWriter, entry: RdbEntry) -> None:
    """Write a complete entry followed by alignment padding."""
    entry.validate()
    write_entry_header(writer, entry)
    writer.write_bytes(entry.name)
    writer.align(ENTRY_ALIGNMENT)


def encode_entry(entry: RdbEntry) -> bytes:
    """Serialize a single entry on its own."""
    writer = BinaryWriter()
    write_entry(writer, entry)
    return writer.getvalue()


class Rdb:
    """An RDB resource container: one header and its entries in file order."""

    def __init__(self, header: RdbHeader, entries: Optional[List[RdbEntry]] = None):
        self.header = header
        self.entries: List[RdbEntry] = entries if entries is not None else []

    @classmethod
    def from_bytes(cls, data: bytes, guard: VersionGuard = VersionGuard.NOT_EQUAL) -> "Rdb":
        """Decode a container."""
        reader = BinaryReader(data)
        try:
            header = read_header(reader, guard)
            reader.seek(header.header_size)

            entries = []
            for _ in range(header.file_count):
                entries.append(read_entry(reader, guard))
        except EOFError as e:
            raise FormatError(f"Truncated RDB data: {e}") from e

        trailing = reader.remaining()
        if trailing:
            logger.debug("%d bytes after the last entry are dropped", trailing)
        logger.debug("Decoded %d entries (path=%r)", len(entries), header.path_text)
        return cls(header, entries)

    @classmethod
    def from_file(cls, path: Union[str, Path], guard: VersionGuard = VersionGuard.NOT_EQUAL) -> "Rdb":
        """Load a container from disk."""
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            raise PatchIOError(f"Cannot read {path}: {e}") from e
        return cls.from_bytes(data, guard)

    def validate(self) -> None:
        """Check every entry and the entry count before writing."""
        if self.header.file_count != len(self.entries):
            raise FormatError(
                f"file_count {self.header.file_count} does not match "
                f"{len(self.entries)} entries"
            )
        for entry in self.entries:
            entry.validate()

    def to_bytes(self) -> bytes:
        """Encode the container."""
        self.validate()
        writer = BinaryWriter()
        write_header(writer, self.header)
        for entry in self.entries:
            write_entry(writer, entry)
        return writer.getvalue()

    def save(self, path: Union[str, Path]) -> None:
        """Encode and write atomically through a temporary file."""
        data = self.to_bytes()
        write_atomic(Path(path), data)
        logger.info("Wrote %d bytes to %s", len(data), path)

    def lookup(self, ktid: int) -> Optional[RdbEntry]:
        """Return the first entry with the given file KTID, or None."""
        ktid = int(ktid)
        for entry in self.entries:
            if entry.file_ktid == ktid:
                return entry
        return None

    def get_entry(self, ktid: int) -> RdbEntry:
        """Like lookup() but raise EntryNotFound for unknown KTIDs."""
        entry = self.lookup(ktid)
        if entry is None:
            raise EntryNotFound(f"No entry with KTID 0x{int(ktid):08x}")
        return entry

    def find_by_type_info(self, type_info_ktid: int) -> List[RdbEntry]:
        """Return all entries of a given type-info KTID, in file order."""
        type_info_ktid = int(type_info_ktid)
        return [e for e in self.entries if e.type_info_ktid == type_info_ktid]

    def type_counts(self) -> Dict[int, int]:
        """Count entries per type-info KTID."""
        counts: Dict[int, int] = {}
        for entry in self.entries:
            counts[entry.type_info_ktid] = counts.get(entry.type_info_ktid, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[RdbEntry]:
        return iter(self.entries)

    def __repr__(self) -> str:
        return f"Rdb(path={self.header.path_text!r}, entries={len(self.entries)})"


def write_atomic(path: Path, data: bytes) -> None:
    """Write bytes to a temporary sibling file, then rename it over path."""
    tmp = path.with_name(path.name + ".tmp")
    try:
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError as e:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise PatchIOError(f"Failed to write {path}: {e}") from e
