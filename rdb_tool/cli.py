"""RDB Tool CLI."""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .errors import RdbError

VERSION_GUARDS = {"ne": "NOT_EQUAL", "eq": "EQUAL", "off": "NONE"}


def load_typeinfos(path: Optional[Path]):
    from .typeinfo import TypeInfoTable

    if path is None:
        return TypeInfoTable()
    return TypeInfoTable.from_csv(path)


def get_guard(name: str):
    from .rdb import VersionGuard

    return VersionGuard[VERSION_GUARDS[name]]


guard_option = click.option(
    "--version-guard",
    type=click.Choice(sorted(VERSION_GUARDS)),
    default="ne",
    help="Accept versions that differ from (ne) or equal (eq) 0x30303030, or skip the check (off)",
)

typeinfos_option = click.option(
    "--typeinfos",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="typeinfos.csv used to name entry types",
)


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", count=True, help="Show patch progress (-v) or codec details (-vv)")
def main(verbose: int):
    """RDB Tool - Simple command-line tool to manipulate RDB files.

    \b
    RDB containers list the resources of a game's asset pipeline. Each
    entry is stored inline or in an external 0x<ktid>.file payload.
    """
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


@main.command()
@click.argument("rdb_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Output RDB path (default: overwrite RDB_FILE)",
)
@click.option(
    "-d",
    "--data",
    "data_dir",
    type=click.Path(path_type=Path),
    default=Path("data"),
    show_default=True,
    help="Directory where the files to patch are located (relative to the RDB)",
)
@click.option(
    "--mode",
    type=click.Choice(["name-marker", "sidecar"]),
    default="name-marker",
    show_default=True,
    help="Rewrite the @size name marker, or drop the name and write IDRK sidecars",
)
@guard_option
def patch(rdb_file: Path, output: Optional[Path], data_dir: Path, mode: str, version_guard: str):
    """Make entries load their payload from external files.

    Every file in the data directory named 0x<ktid>.file (or after the
    resource path) patches the matching entry. Unmatched files are skipped.
    """
    from .rdb import PatchMode, PatchStatus, patch_rdb

    if output is None:
        output = rdb_file

    click.echo(f"Patching: {rdb_file}")

    try:
        results = patch_rdb(
            rdb_file,
            output,
            data_dir,
            mode=PatchMode(mode),
            guard=get_guard(version_guard),
        )
    except (RdbError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    patched = 0
    skipped = 0
    for result in results:
        if result.status is PatchStatus.NOT_FOUND:
            skipped += 1
            click.echo(f"  Skipped: {result.filename} (not in the RDB)")
        else:
            patched += 1
            click.echo(f"  {result.status.value.capitalize()}: {result.filename} ({result.payload_size} bytes)")

    click.echo()
    click.echo(f"Patched: {patched} entries")
    click.echo(f"Skipped: {skipped} files")
    click.echo(f"Created: {output}")


@main.command("print")
@click.argument("rdb_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("identifier")
@typeinfos_option
@guard_option
def print_entry(rdb_file: Path, identifier: str, typeinfos: Optional[Path], version_guard: str):
    """Show the entry for IDENTIFIER.

    IDENTIFIER is a 0x-prefixed KTID or a string to hash.
    """
    from .ktid import KTID
    from .rdb import Rdb

    try:
        ktid = KTID.parse(identifier)
        rdb = Rdb.from_file(rdb_file, get_guard(version_guard))
        entry = rdb.get_entry(ktid)
        types = load_typeinfos(typeinfos)
    except (RdbError, OSError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    marker = entry.size_marker
    click.echo(f"KTID:        0x{entry.file_ktid:08x}")
    click.echo(f"Type info:   {types.describe(entry.type_info_ktid)}")
    click.echo(f"Entry type:  {entry.entry_type}")
    click.echo(f"Entry size:  0x{entry.entry_size:X}")
    click.echo(f"File size:   {entry.file_size}")
    click.echo(f"Flags:       0x{int(entry.flags):08X} ({entry.flags.describe()})")
    click.echo(f"Name:        {entry.name_text}")
    click.echo(f"Size marker: {'-' if marker is None else f'0x{marker:X}'}")
    click.echo(f"External:    {'yes' if entry.is_external else 'no'}")
    click.echo(f"Payload:     {entry.external_path}")


@main.command("list")
@click.argument("rdb_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "-t",
    "--type",
    "type_info",
    help="Only list entries of this type (type name or 0x-prefixed type-info KTID)",
)
@typeinfos_option
@guard_option
def list_entries(rdb_file: Path, type_info: Optional[str], typeinfos: Optional[Path], version_guard: str):
    """List the entries of an RDB file, then count them per type."""
    from .ktid import KTID
    from .rdb import Rdb

    try:
        rdb = Rdb.from_file(rdb_file, get_guard(version_guard))
        types = load_typeinfos(typeinfos)
        type_ktid = KTID.parse(type_info) if type_info else None
    except (RdbError, OSError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    entries = rdb.entries if type_ktid is None else rdb.find_by_type_info(type_ktid)

    click.echo(f"Path:    {rdb.header.path_text}")
    click.echo(f"Entries: {len(entries)}")
    click.echo()
    for entry in entries:
        click.echo(
            f"  0x{entry.file_ktid:08x}  {entry.flags.describe():<18} "
            f"{entry.file_size:>10}  {types.describe(entry.type_info_ktid)}  {entry.name_text}"
        )

    if type_ktid is None:
        click.echo()
        click.echo("Types:")
        for ktid, count in sorted(rdb.type_counts().items(), key=lambda item: -item[1]):
            click.echo(f"  {count:>6}  {types.describe(ktid)}")


@main.command("hash")
@click.argument("text")
@click.option("--path", "as_path", is_flag=True, help="Hash TEXT as a resource path (R_EXT［stem］)")
def hash_text(text: str, as_path: bool):
    """Print the KTID of a string or resource path."""
    from .ktid import KTID

    try:
        ktid = KTID.from_path(text) if as_path else KTID.from_string(text)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"0x{ktid}")


if __name__ == "__main__":
    main()
