"""Data access layer for the workbook-backed ledger store.

This module provides low-level helpers that read from and write to the ledger
workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, persisting and reloading the Excel file.
3. Table operations: reading rows as header-keyed mappings and appending or
   updating individual rows. Every worksheet is treated as one relational
   table whose first row holds the column names.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import log
from .constants import EXPECTED_SCHEMA_VERSION, ITEMS_PER_PAGE, LOW_STOCK_DEFAULT, PURCHASE_HISTORY_PAGE_SIZE


CONFIG_FILE_NAME = "config.ini"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    low_stock_alert: int = LOW_STOCK_DEFAULT
    page_size: int = ITEMS_PER_PAGE
    history_page_size: int = PURCHASE_HISTORY_PAGE_SIZE


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for
    ``CONFIG_FILE_NAME``; the first match wins.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Defaults]`` entries are optional and
    fall back to the package constants. Relative ``DataFile`` paths are
    anchored to ``base_path`` (or the current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a numeric default is not an integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    low_stock_alert = parser.getint("Defaults", "LowStockAlert", fallback=LOW_STOCK_DEFAULT)
    page_size = parser.getint("Defaults", "PageSize", fallback=ITEMS_PER_PAGE)
    history_page_size = parser.getint(
        "Defaults", "PurchaseHistoryPageSize", fallback=PURCHASE_HISTORY_PAGE_SIZE)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        low_stock_alert=low_stock_alert,
        page_size=page_size,
        history_page_size=history_page_size,
    )


def load_settings(config_path: Optional[Path] = None) -> ConfigSettings:
    """Locate, read and parse the configuration in one step."""

    located = Path(find_config_file(config_path)).expanduser().resolve()
    parser = read_config(located)
    settings = parse_settings(parser, base_path=located.parent)
    log.debug("Loaded settings from '%s'", located)
    return settings


def ensure_schema_version(settings: ConfigSettings) -> None:
    """Validate workbook compatibility before touching any table.

    Raises:
        RuntimeError: If ``SchemaVersion`` in ``config.ini`` differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            settings.schema_version,
        )
        raise RuntimeError(
            f"Workbook schema mismatch: expected {EXPECTED_SCHEMA_VERSION}, found {settings.schema_version}"
        )
    log.debug("Schema version '%s' validated", settings.schema_version)


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def has_table(workbook: Workbook, table: str) -> bool:
    return table in workbook.sheetnames


def header_map(sheet: Worksheet) -> dict[str, int]:
    """Map column names from the header row to 1-based column indices."""

    return {
        str(cell.value): idx + 1
        for idx, cell in enumerate(sheet[1])
        if cell.value is not None
    }


def iter_records(workbook: Workbook, table: str) -> Iterator[tuple[int, dict[str, Any]]]:
    """Yield ``(row_index, record)`` pairs for every populated row of ``table``.

    The header row and fully empty rows are skipped. Records are keyed by the
    header titles and keep the raw cell values; typing is the job of the
    domain mappers.

    Raises:
        KeyError: If the workbook has no sheet named ``table``.
    """

    sheet = workbook[table]
    columns = [cell.value for cell in sheet[1]]
    for row_idx, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if any(cell is not None for cell in raw):
            yield row_idx, deserialize_record(columns, raw)


def append_record(workbook: Workbook, table: str, record: Mapping[str, Any]) -> None:
    """Append ``record`` to ``table`` in the sheet's column order.

    Raises:
        KeyError: If the table is missing or ``record`` names an unknown column.
    """

    sheet = workbook[table]
    columns = header_map(sheet)
    unknown = set(record) - set(columns)
    if unknown:
        raise KeyError(f"Unknown {table} field(s): {', '.join(sorted(unknown))}")
    sheet.append(serialize_record(columns, record))


def update_record(workbook: Workbook, table: str, row_index: int, *, field_values: Mapping[str, Any]) -> None:
    """Update selected columns of the row at ``row_index``.

    Only the specified fields are modified, leaving other columns untouched.

    Raises:
        KeyError: If any referenced column cannot be found.
    """

    sheet = workbook[table]
    columns = header_map(sheet)
    for field, value in field_values.items():
        if field not in columns:
            raise KeyError(f"Unknown {table} field: {field}")
        sheet.cell(row=row_index, column=columns[field], value=serialize_value(value))


def serialize_value(value: Any) -> Any:
    """Convert a Python value into something a worksheet cell can hold.

    Nested mappings and lists (for example ``payment_data`` blobs) are stored as
    JSON text, dates as ISO strings.
    """

    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def serialize_record(columns: Mapping[str, int], record: Mapping[str, Any]) -> list[object]:
    """Arrange ``record`` values into the worksheet column ordering."""

    width = max(columns.values(), default=0)
    row: list[object] = [None] * width
    for name, index in columns.items():
        row[index - 1] = serialize_value(record.get(name))
    return row


def deserialize_record(columns: Sequence[object], raw_row: Iterable[object]) -> dict[str, Any]:
    """Zip a raw worksheet row with its header into a record mapping.

    Columns without a header title are dropped.
    """

    return {
        str(name): value
        for name, value in zip(columns, raw_row)
        if name is not None
    }
