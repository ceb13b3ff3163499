"""Protocol table compiler.

Reads the human-maintained message table (``messages.csv``) and turns it
into the lookup structures used at runtime:

- identity -> message name
- identity -> wire length (``VARIABLE`` when the header declares it)
- identity -> channel name

The compiled table is written out as a plain Python module
(``_table.py``) so that importing the package never parses the CSV::

    python -m thorlabs_apt_mcp.protocol.compiler messages.csv -o _table.py

A malformed table raises :class:`~thorlabs_apt_mcp.errors.TableError`, and
the command line exits non-zero, so a bad table never reaches a release.
"""

from __future__ import annotations

import argparse
import csv
import io
import sys
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

from ..config import HEADER_SIZE
from ..errors import TableError

VARIABLE = None
VARIABLE_MARKER = "variable"
COLUMNS = ("name", "id", "length", "channel")

TABLE_PATH = Path(__file__).with_name("messages.csv")
MODULE_PATH = Path(__file__).with_name("_table.py")


@dataclass(frozen=True)
class TableRow:
    """One message type from the protocol table."""

    name: str
    identity: int
    length: int | None
    channel: str = ""

    def __repr__(self) -> str:
        length = VARIABLE_MARKER if self.length is VARIABLE else self.length
        return (
            f"TableRow({self.name}, id=0x{self.identity:04X}, "
            f"length={length}, channel={self.channel or self.name!r})"
        )


@dataclass(frozen=True)
class CompiledTable:
    """Read-only identity lookups built from a validated table."""

    names: Mapping[int, str]
    lengths: Mapping[int, int | None]
    channels: Mapping[int, str]

    def __len__(self) -> int:
        return len(self.names)

    def __contains__(self, identity: object) -> bool:
        return identity in self.names

    @property
    def channel_names(self) -> frozenset[str]:
        return frozenset(self.channels.values())


def _parse_int(text: str, column: str, line: int) -> int:
    value = text.strip()
    try:
        if value.lower().startswith("0x"):
            return int(value, 16)
        return int(value, 10)
    except ValueError:
        raise TableError(f"line {line}: invalid {column} {text!r}") from None


def parse_row(row: Mapping[str, str | None], line: int = 0) -> TableRow:
    """Convert one CSV record into a :class:`TableRow`."""
    name = (row.get("name") or "").strip()
    if not name:
        raise TableError(f"line {line}: missing message name")

    identity = _parse_int(row.get("id") or "", "id", line)

    raw_length = (row.get("length") or "").strip()
    if raw_length.lower() == VARIABLE_MARKER:
        length = VARIABLE
    else:
        length = _parse_int(raw_length, "length", line)

    channel = (row.get("channel") or "").strip()
    return TableRow(name=name, identity=identity, length=length, channel=channel)


def read_rows(source: str | Iterable[str]) -> list[TableRow]:
    """Parse CSV text (or an iterable of lines) into table rows."""
    if isinstance(source, str):
        source = io.StringIO(source)
    reader = csv.DictReader(source)
    if reader.fieldnames is None:
        raise TableError("message table is empty")
    missing = [c for c in COLUMNS if c not in reader.fieldnames]
    if missing:
        raise TableError(f"message table is missing column(s): {', '.join(missing)}")
    return [parse_row(record, reader.line_num) for record in reader]


def compile_table(rows: Iterable[TableRow | tuple]) -> CompiledTable:
    """Validate table rows and build the identity lookups.

    Args:
        rows: ``TableRow`` objects, or ``(name, identity, length, channel)``
            tuples.

    Raises:
        TableError: On a duplicate identity or name, an identity that does
            not fit in two bytes, or a fixed length that is non-positive or
            shorter than the message header.
    """
    names: dict[int, str] = {}
    lengths: dict[int, int | None] = {}
    channels: dict[int, str] = {}
    seen_names: set[str] = set()

    for row in rows:
        if not isinstance(row, TableRow):
            row = TableRow(*row)

        if not 0 <= row.identity <= 0xFFFF:
            raise TableError(f"{row.name}: identity {row.identity:#x} does not fit in 2 bytes")
        if row.identity in names:
            raise TableError(
                f"{row.name}: identity 0x{row.identity:04X} already used by "
                f"{names[row.identity]}"
            )
        if row.name in seen_names:
            raise TableError(f"duplicate message name {row.name}")
        if row.length is not VARIABLE:
            if row.length <= 0:
                raise TableError(f"{row.name}: length must be positive, got {row.length}")
            if row.length < HEADER_SIZE:
                raise TableError(
                    f"{row.name}: length {row.length} is shorter than the "
                    f"{HEADER_SIZE}-byte header"
                )

        seen_names.add(row.name)
        names[row.identity] = row.name
        lengths[row.identity] = row.length
        channels[row.identity] = row.channel or row.name

    return CompiledTable(
        names=MappingProxyType(names),
        lengths=MappingProxyType(lengths),
        channels=MappingProxyType(channels),
    )


def load_table(path: str | Path = TABLE_PATH) -> CompiledTable:
    """Read and compile a message table CSV file."""
    with open(path, newline="", encoding="utf-8") as f:
        return compile_table(read_rows(f))


def render_module(table: CompiledTable, source_name: str = "messages.csv") -> str:
    """Render a compiled table as Python source."""
    order = sorted(table.names)
    lines = [
        f'"""Message lookup tables generated from {source_name}.',
        "",
        "Do not edit by hand. Regenerate with ``python -m",
        "thorlabs_apt_mcp.protocol.compiler``.",
        '"""',
        "",
        "from types import MappingProxyType",
        "",
        "VARIABLE = None",
        "",
        "NAMES = MappingProxyType({",
    ]
    lines += [f"    0x{i:04X}: {table.names[i]!r}," for i in order]
    lines += ["})", "", "LENGTHS = MappingProxyType({"]
    for i in order:
        length = table.lengths[i]
        lines.append(f"    0x{i:04X}: {'VARIABLE' if length is VARIABLE else length},")
    lines += ["})", "", "CHANNELS = MappingProxyType({"]
    lines += [f"    0x{i:04X}: {table.channels[i]!r}," for i in order]
    lines += ["})", ""]
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m thorlabs_apt_mcp.protocol.compiler",
        description="Compile the APT message table into a Python lookup module.",
    )
    parser.add_argument("table", nargs="?", default=str(TABLE_PATH), help="message table CSV")
    parser.add_argument("-o", "--output", default=str(MODULE_PATH), help="module to write")
    parser.add_argument(
        "--check",
        action="store_true",
        help="fail if the output module is out of date instead of writing it",
    )
    args = parser.parse_args(argv)

    try:
        table = load_table(args.table)
    except (OSError, TableError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    source = render_module(table, Path(args.table).name)
    output = Path(args.output)
    if args.check:
        current = output.read_text(encoding="utf-8") if output.exists() else ""
        if current != source:
            print(f"error: {output} is out of date", file=sys.stderr)
            return 1
        return 0

    output.write_text(source, encoding="utf-8")
    print(f"wrote {len(table)} messages to {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
