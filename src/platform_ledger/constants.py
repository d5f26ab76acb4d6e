"""Enumerations and defaults shared across the platform ledger modules.

Table names, error codes and UI defaults live here so the store, the
repositories and the presentation layers agree on a single set of
identifiers.
"""

from __future__ import annotations

from enum import Enum


# Schema version every workbook-backed store is expected to carry.
EXPECTED_SCHEMA_VERSION = "1.0.0"

LOW_STOCK_DEFAULT = 10
ITEMS_PER_PAGE = 10
PURCHASE_HISTORY_PAGE_SIZE = 8

# Offered in report filters even when no payment row uses them yet.
DEFAULT_PAYMENT_TOKENS = ("bank:transfer", "crypto:USDC")

RECORD_PURCHASE_PROCEDURE = "record_purchase_and_update_inventory"


class TableName(str, Enum):
    """Enumerate the relational tables the store must expose."""

    PLATFORMS = "game_coins"
    PURCHASE_HISTORY = "purchase_history"
    ORDERS = "orders"
    ORDER_ITEMS = "order_items"
    PAYMENT_DETAILS = "payment_details"
    CUSTOMERS = "customers"
    USERS = "users"


class ErrorCode(str, Enum):
    """Machine-readable failure codes carried by :class:`~platform_ledger.results.RepoError`."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    STORE_ERROR = "STORE_ERROR"
    NOT_READY = "NOT_READY"


class StockFilter(str, Enum):
    """Stock-status filters offered by the inventory view."""

    ALL = "all"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class StockStatus(str, Enum):
    """Partition of a platform's on-hand quantity against its threshold."""

    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class PaymentBase(str, Enum):
    """Payment families understood by the report filters."""

    BANK = "bank"
    CASH = "cash"
    CRYPTO = "crypto"


class GroupBy(str, Enum):
    """Dimensions a sales report can be grouped by."""

    NONE = "none"
    CUSTOMER = "customer"
    EMPLOYEE = "employee"
    PAYMENT_METHOD = "payment_method"
    PLATFORM = "platform"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "LOW_STOCK_DEFAULT",
    "ITEMS_PER_PAGE",
    "PURCHASE_HISTORY_PAGE_SIZE",
    "DEFAULT_PAYMENT_TOKENS",
    "RECORD_PURCHASE_PROCEDURE",
    "TableName",
    "ErrorCode",
    "StockFilter",
    "StockStatus",
    "PaymentBase",
    "GroupBy",
]
