"""Patching RDB entries to load their payload from external files.

A payload directory holds replacement files named after the entry they
replace, either ``0x<ktid>.file`` or the resource's own file name. Each
matching entry is flagged external and uncompressed, then either has the
``@<size>`` marker in its name rewritten (``PatchMode.NAME_MARKER``) or
loses its name while the payload is rewrapped into an ``IDRK`` sidecar file
(``PatchMode.SIDECAR``).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

from ..errors import FormatError, PatchIOError
from ..ktid import KTID
from ..utils.binary import BinaryReader, BinaryWriter
from .container import Rdb, read_entry, write_atomic, write_entry_header
from .header import SIDECAR_MAGIC, RdbEntry, VersionGuard

logger = logging.getLogger(__name__)

class PatchMode(Enum):
    """How an entry is pointed at its external payload."""

    NAME_MARKER = "name-marker"
    SIDECAR = "sidecar"


class PatchStatus(Enum):
    PATCHED = "patched"
    ALREADY_PATCHED = "already patched"
    NOT_FOUND = "not found"


@dataclass
class PatchResult:
    """Outcome of patching one payload file."""

    filename: str
    ktid: int
    status: PatchStatus
    payload_size: int = 0

    @property
    def ok(self) -> bool:
        return self.status is not PatchStatus.NOT_FOUND

    def __str__(self) -> str:
        return f"{self.filename} (0x{self.ktid:08x}): {self.status.value}"


def resolve_ktid(filename: str) -> KTID:
    """Resolve the KTID a payload file name refers to.

    ``0x1234abcd.file`` parses as hex, whatever follows the first ``.``
    is ignored. Any other name is hashed as a resource path
    (``model.g1m`` -> ``R_G1M［model］``).
    """
    if filename.startswith("0x"):
        digits = filename[2:].split(".", 1)[0]
        try:
            return KTID(int(digits, 16))
        except ValueError:
            raise ValueError(f"Not a KTID file name: {filename!r}") from None
    return KTID.from_path(filename)


def read_sidecar(data: bytes) -> Tuple[RdbEntry, bytes]:
    """Split an ``IDRK`` sidecar into its entry header and payload."""
    if data[:4] != SIDECAR_MAGIC:
        raise FormatError(f"Not a sidecar file (magic {data[:4]!r})")

    # The payload sits where the name would be, so decode it as the name
    reader = BinaryReader(data)
    reader.skip(len(SIDECAR_MAGIC))
    try:
        entry = read_entry(reader, VersionGuard.NONE)
    except EOFError as e:
        raise FormatError(f"Truncated sidecar: {e}") from e
    payload = entry.name
    entry.name = b""
    return entry, payload


def build_sidecar(entry: RdbEntry, payload: bytes) -> bytes:
    """Encode ``IDRK`` + externalized header + raw payload for an entry."""
    sidecar = entry.derive_sidecar(len(payload))
    writer = BinaryWriter()
    writer.write_bytes(SIDECAR_MAGIC)
    write_entry_header(writer, sidecar)
    writer.write_bytes(payload)
    return writer.getvalue()


def is_sidecar(path: Path) -> bool:
    with open(path, "rb") as f:
        return f.read(len(SIDECAR_MAGIC)) == SIDECAR_MAGIC


def externalize(entry: RdbEntry, payload_path: Path, mode: PatchMode = PatchMode.NAME_MARKER) -> PatchStatus:
    """Point one entry at the payload stored in ``payload_path``.

    In sidecar mode the payload file is rewritten in place as an ``IDRK``
    sidecar unless it already is one.
    """
    payload_path = Path(payload_path)
    try:
        if mode is PatchMode.SIDECAR and is_sidecar(payload_path):
            sidecar, _ = read_sidecar(payload_path.read_bytes())
            if sidecar.file_ktid != entry.file_ktid:
                raise FormatError(
                    f"{payload_path.name} is a sidecar of 0x{sidecar.file_ktid:08x}, "
                    f"not 0x{entry.file_ktid:08x}"
                )
            _apply_external(entry, sidecar.file_size, mode)
            logger.info("%s is already a sidecar, not rewriting it", payload_path.name)
            return PatchStatus.ALREADY_PATCHED

        payload = payload_path.read_bytes()
    except OSError as e:
        raise PatchIOError(f"Cannot read {payload_path}: {e}") from e

    if not payload:
        logger.warning("%s is empty. Are you sure about that?", payload_path.name)

    if mode is PatchMode.SIDECAR:
        # Build before touching the entry so an unsupported type leaves it intact
        data = build_sidecar(entry, payload)
        _apply_external(entry, len(payload), mode)
        write_atomic(payload_path, data)
    else:
        _apply_external(entry, len(payload), mode)

    return PatchStatus.PATCHED


def _apply_external(entry: RdbEntry, size: int, mode: PatchMode) -> None:
    entry.make_external()
    entry.make_uncompressed()
    if mode is PatchMode.SIDECAR:
        entry.file_size = size
        entry.set_name(b"")
    else:
        entry.set_external_file(size)
    entry.validate()


def patch_file(
    rdb: Rdb,
    payload_path: Path,
    mode: PatchMode = PatchMode.NAME_MARKER,
    ktid: Optional[KTID] = None,
) -> PatchResult:
    """Patch the entry matching one payload file, if the container has it."""
    payload_path = Path(payload_path)
    filename = payload_path.name
    if ktid is None:
        ktid = resolve_ktid(filename)

    entry = rdb.lookup(ktid)
    if entry is None:
        logger.warning("File %s not found in the RDB. Skipping.", filename)
        return PatchResult(filename, int(ktid), PatchStatus.NOT_FOUND)

    logger.info("Patching %s", filename)
    status = externalize(entry, payload_path, mode)
    return PatchResult(filename, int(ktid), status, entry.file_size)


def iter_payload_files(data_dir: Path) -> Iterator[Path]:
    """Yield the regular files of a payload directory in name order."""
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        raise PatchIOError(f"Couldn't find a directory to patch ('{data_dir}' was used)")
    try:
        paths = sorted(data_dir.iterdir())
    except OSError as e:
        raise PatchIOError(f"Cannot list {data_dir}: {e}") from e

    for path in paths:
        # Subdirectories are not searched
        if path.is_file():
            yield path


def patch_directory(rdb: Rdb, data_dir: Path, mode: PatchMode = PatchMode.NAME_MARKER) -> Iterator[PatchResult]:
    """Patch every entry that has a payload in ``data_dir``.

    Unmatched or oddly named files are reported and skipped; I/O errors and
    unsupported entry types propagate and end the batch.
    """
    for path in iter_payload_files(data_dir):
        try:
            ktid = resolve_ktid(path.name)
        except ValueError as e:
            logger.warning("%s. Skipping.", e)
            continue

        yield patch_file(rdb, path, mode, ktid)


def resolve_data_dir(rdb_path: Path, data_dir: Union[str, Path]) -> Path:
    """Resolve a relative payload directory against the container's folder."""
    data_dir = Path(data_dir)
    if data_dir.is_absolute():
        return data_dir
    return Path(rdb_path).resolve().parent / data_dir


def patch_rdb(
    rdb_path: Union[str, Path],
    out_path: Optional[Union[str, Path]] = None,
    data_dir: Union[str, Path] = "data",
    mode: PatchMode = PatchMode.NAME_MARKER,
    guard: VersionGuard = VersionGuard.NOT_EQUAL,
) -> List[PatchResult]:
    """Patch a container from a payload directory and write it out.

    The output is only written once every payload has been applied and the
    container validates; a fatal error leaves it untouched.
    """
    rdb_path = Path(rdb_path)
    out_path = Path(out_path) if out_path is not None else rdb_path

    rdb = Rdb.from_file(rdb_path, guard)
    results = list(patch_directory(rdb, resolve_data_dir(rdb_path, data_dir), mode))
    rdb.save(out_path)
    return results
