"""Shape and range checks applied before any store call."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional

from . import log
from .models import PlatformCreate, PlatformUpdate, PurchaseInput


NAME_MAX_LENGTH = 100
SUPPLIER_MAX_LENGTH = 120
NOTES_MAX_LENGTH = 500


class ValidationError(ValueError):
    """Raised when an input fails one or more checks.

    ``issues`` keeps every ``"field: message"`` line; the exception message
    joins them with newlines.
    """

    def __init__(self, issues: List[str]) -> None:
        super().__init__("\n".join(issues))
        self.issues = list(issues)


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is a strictly positive integer.

    Raises:
        ValueError: If ``quantity`` is not an integer or is below one.
    """
    if not _is_integer(quantity):
        raise ValueError("Must be an integer")
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Must be >= 1")


def require_nonnegative_integer(value: int) -> None:
    if not _is_integer(value):
        raise ValueError("Must be an integer")
    if value < 0:
        raise ValueError("Must be >= 0")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is a finite number not below zero.

    Raises:
        ValueError: If ``amount`` is not numeric or is negative.
    """
    if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
        raise ValueError("Must be a number")
    if isinstance(amount, (float, Decimal)) and not Decimal(str(amount)).is_finite():
        raise ValueError("Must be a number")
    if amount < 0:
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Must be >= 0")


def require_text(value: Any, *, label: str, max_length: int = NAME_MAX_LENGTH) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} is required")
    if len(value) > max_length:
        raise ValueError(f"Max {max_length} characters")


def require_optional_text(value: Optional[str], *, max_length: int) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValueError("Must be text")
    if len(value) > max_length:
        raise ValueError(f"Max {max_length} characters")


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check(issues: List[str], field: str, check, *args, **kwargs) -> None:
    try:
        check(*args, **kwargs)
    except ValueError as exc:
        issues.append(f"{field}: {exc}")


def _raise_if_any(issues: List[str], subject: str) -> None:
    if issues:
        log.warning("%s validation failed: %s", subject, "; ".join(issues))
        raise ValidationError(issues)


def validate_platform_create(data: PlatformCreate) -> None:
    """Check a new platform's fields.

    Names and account types need 1 to 100 characters, inventory must be a
    non-negative integer, the cost non-negative and the alert threshold at
    least one.

    Raises:
        ValidationError: Listing every failed field.
    """
    issues: List[str] = []
    _check(issues, "platform", require_text, data.platform, label="Platform name")
    _check(issues, "account_type", require_text, data.account_type, label="Account type")
    _check(issues, "inventory", require_nonnegative_integer, data.inventory)
    _check(issues, "cost_price", require_nonnegative_money, data.cost_price)
    _check(issues, "low_stock_alert", require_positive_quantity, data.low_stock_alert)
    _raise_if_any(issues, "Platform create")


def validate_platform_update(changes: PlatformUpdate) -> None:
    """Same rules as :func:`validate_platform_create`, only for fields that are set."""
    issues: List[str] = []
    if changes.platform is not None:
        _check(issues, "platform", require_text, changes.platform, label="Platform name")
    if changes.account_type is not None:
        _check(issues, "account_type", require_text, changes.account_type, label="Account type")
    if changes.inventory is not None:
        _check(issues, "inventory", require_nonnegative_integer, changes.inventory)
    if changes.cost_price is not None:
        _check(issues, "cost_price", require_nonnegative_money, changes.cost_price)
    if changes.low_stock_alert is not None:
        _check(issues, "low_stock_alert", require_positive_quantity, changes.low_stock_alert)
    _raise_if_any(issues, "Platform update")


def validate_purchase(data: PurchaseInput) -> None:
    issues: List[str] = []
    _check(issues, "platform_id", require_text, data.platform_id, label="Platform")
    _check(issues, "quantity", require_positive_quantity, data.quantity)
    _check(issues, "cost_per_unit", require_nonnegative_money, data.cost_per_unit)
    _check(issues, "supplier", require_optional_text, data.supplier, max_length=SUPPLIER_MAX_LENGTH)
    _check(issues, "notes", require_optional_text, data.notes, max_length=NOTES_MAX_LENGTH)
    _raise_if_any(issues, "Purchase")
