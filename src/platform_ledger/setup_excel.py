"""Utility for initializing the ledger workbook.

The module doubles as a script (``ledger-setup``) and as a library used by
tests or other tooling. Each worksheet is one table of the store; the header
row carries the exact column names the repositories rely on.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .constants import TableName


TABLE_COLUMNS: Mapping[str, Sequence[str]] = {
    TableName.PLATFORMS.value: [
        "id",
        "platform",
        "account_type",
        "inventory",
        "cost_price",
        "low_stock_alert",
        "created_at",
        "updated_at",
        "deleted_at",
    ],
    TableName.PURCHASE_HISTORY.value: [
        "id",
        "platform_id",
        "quantity",
        "cost_per_unit",
        "total_cost",
        "supplier",
        "notes",
        "previous_inventory",
        "new_inventory",
        "purchased_by",
        "created_at",
    ],
    TableName.ORDERS.value: [
        "id",
        "order_number",
        "customer_id",
        "created_by",
        "payment_method",
        "total_amount",
        "status",
        "created_at",
    ],
    TableName.ORDER_ITEMS.value: [
        "id",
        "order_id",
        "platform_id",
        "quantity",
        "unit_price",
        "total_price",
        "created_at",
    ],
    TableName.PAYMENT_DETAILS.value: [
        "id",
        "order_id",
        "payment_method",
        "bank_transaction_type",
        "crypto_currency",
        "crypto_network",
        "cash_receipt_number",
        "payment_data",
        "created_at",
    ],
    TableName.CUSTOMERS.value: [
        "id",
        "name",
        "created_at",
    ],
    TableName.USERS.value: [
        "id",
        "username",
        "role",
        "created_at",
    ],
}


def create_master_workbook(
    destination: Path,
    *,
    table_columns: Mapping[str, Sequence[str]] = TABLE_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the ledger workbook at ``destination``.

    ``table_columns`` is overridable so tests can provision a partial schema.
    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing ledger workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for table_name, columns in table_columns.items():
        worksheet = workbook.create_sheet(title=table_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    workbook.save(destination)
    log.info("Created ledger workbook '%s' with %d tables", destination, len(table_columns))
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``DataFile`` in ``config_path``."""

    settings = data_manager.load_settings(config_path)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(
        prog="ledger-setup",
        description="Initialize the platform ledger workbook",
    )
    parser.add_argument(
        "--config",
        default=data_manager.CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``ledger-setup`` script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Platform Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created ledger workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
