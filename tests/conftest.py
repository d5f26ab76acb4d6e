"""Shared pytest fixtures and utilities for platform ledger tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Sequence
from unittest.mock import AsyncMock, Mock

import pytest

# Ensure the package is importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from platform_ledger import constants, data_manager  # noqa: E402
from platform_ledger.procedures import PROCEDURES  # noqa: E402
from platform_ledger.setup_excel import TABLE_COLUMNS, create_master_workbook  # noqa: E402
from platform_ledger.store import WorkbookStore  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "LowStockAlert = {low_stock_alert}\n"
    "PageSize = {page_size}\n"
    "PurchaseHistoryPageSize = {history_page_size}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "ledger.xlsx",
        tables: Optional[Sequence[str]] = None,
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        columns = TABLE_COLUMNS if tables is None else {name: TABLE_COLUMNS[name] for name in tables}
        return create_master_workbook(base_dir / filename, table_columns=columns, overwrite=True)

    return _create_workbook


@pytest.fixture
def ledger_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh ledger workbook with every table provisioned."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def seed_rows() -> Callable[[Path, str, Iterable[Mapping[str, Any]]], None]:
    """Append raw rows to a workbook on disk, bypassing the store."""

    def _seed(path: Path, table: str, rows: Iterable[Mapping[str, Any]]) -> None:
        workbook = data_manager.open_workbook(path)
        for row in rows:
            data_manager.append_record(workbook, table, row)
        data_manager.save_workbook(workbook, path)

    return _seed


@pytest.fixture
def store_factory() -> Callable[[Path], WorkbookStore]:
    def _open(path: Path) -> WorkbookStore:
        return WorkbookStore(path, procedures=PROCEDURES)

    return _open


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        low_stock_alert: int = 10,
        page_size: int = 10,
        history_page_size: int = 8,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        bundle_dir = workbook_path.parent
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                low_stock_alert=low_stock_alert,
                page_size=page_size,
                history_page_size=history_page_size,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def mock_store() -> Mock:
    """A store double whose coroutine methods are ``AsyncMock`` instances."""

    store = Mock(name="store")
    store.select = AsyncMock(return_value=[])
    store.insert = AsyncMock(return_value={})
    store.update = AsyncMock(return_value=[])
    store.call = AsyncMock(return_value={})
    return store


def make_platform_row(**overrides: Any) -> dict[str, Any]:
    """Build a ``game_coins`` row with sensible defaults."""

    row: dict[str, Any] = {
        "id": "P1",
        "platform": "Steam",
        "account_type": "Premium",
        "inventory": 10,
        "cost_price": 2,
        "low_stock_alert": 5,
        "created_at": "2024-01-01T00:00:00+00:00",
        "updated_at": "2024-01-01T00:00:00+00:00",
        "deleted_at": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def platform_row() -> Callable[..., dict[str, Any]]:
    return make_platform_row
