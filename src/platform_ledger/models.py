"""Domain records and the total mappers that build them from store rows.

Rows coming back from a store are treated as untyped mappings: any field may
be missing, ``None`` or of an unexpected type. The mappers here never raise;
they fall back to documented defaults instead.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from .constants import LOW_STOCK_DEFAULT


@dataclass(frozen=True)
class Platform:
    """A sellable SKU and its on-hand stock."""

    id: str
    platform: str
    account_type: str
    inventory: int
    cost_price: Decimal
    low_stock_alert: int
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class PurchaseHistoryEntry:
    """One immutable inventory-increasing event, enriched for display."""

    id: str
    platform_id: str
    quantity: int
    cost_per_unit: Decimal
    total_cost: Decimal
    supplier: Optional[str]
    notes: Optional[str]
    previous_inventory: int
    new_inventory: int
    purchased_by: Optional[str]
    created_at: Optional[str]
    platform_name: str = ""
    purchased_by_username: str = ""


@dataclass(frozen=True)
class PlatformCreate:
    """Fields required to create a platform."""

    platform: str
    account_type: str
    inventory: int = 0
    cost_price: Decimal = Decimal("0")
    low_stock_alert: int = LOW_STOCK_DEFAULT

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PlatformUpdate:
    """Partial platform changes; ``None`` means "leave unchanged"."""

    platform: Optional[str] = None
    account_type: Optional[str] = None
    inventory: Optional[int] = None
    cost_price: Optional[Decimal] = None
    low_stock_alert: Optional[int] = None

    def to_changes(self) -> Dict[str, Any]:
        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if getattr(self, item.name) is not None
        }


@dataclass(frozen=True)
class PurchaseInput:
    """Request to add purchased stock to a platform."""

    platform_id: str
    quantity: int
    cost_per_unit: Decimal
    purchased_by: Optional[str]
    supplier: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PurchaseResult:
    """Outcome of the atomic purchase procedure."""

    purchase_history_id: str
    previous_inventory: int
    new_inventory: int
    total_cost: Decimal


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _optional_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _timestamp(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _integer(value: Any, default: int = 0) -> int:
    if value is None or value == "" or isinstance(value, bool):
        return default
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError, OverflowError):
        return default


def _decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    if value is None or value == "" or isinstance(value, bool):
        return default
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default
    return number if number.is_finite() else default


def map_row_to_platform(row: Mapping[str, Any]) -> Platform:
    """Build a :class:`Platform` from a raw ``game_coins`` row.

    Missing numerics become ``0`` except ``low_stock_alert`` (``10``), missing
    text becomes ``""`` and missing timestamps ``None``. Never raises.
    """

    return Platform(
        id=_text(row.get("id")),
        platform=_text(row.get("platform")),
        account_type=_text(row.get("account_type")),
        inventory=_integer(row.get("inventory")),
        cost_price=_decimal(row.get("cost_price")),
        low_stock_alert=_integer(row.get("low_stock_alert"), LOW_STOCK_DEFAULT),
        created_at=_timestamp(row.get("created_at")),
        updated_at=_timestamp(row.get("updated_at")),
        deleted_at=_timestamp(row.get("deleted_at")),
    )


def _joined(row: Mapping[str, Any], relation: str, column: str, legacy: str) -> str:
    related = row.get(relation)
    if isinstance(related, Mapping) and related.get(column) not in (None, ""):
        return str(related[column])
    return _text(row.get(legacy))


def map_row_to_purchase_history(row: Mapping[str, Any]) -> PurchaseHistoryEntry:
    """Build a :class:`PurchaseHistoryEntry` from a ledger row.

    The platform and user display names come from the embedded ``game_coins``
    and ``users`` relations, then from legacy denormalized columns, then ``""``.
    """

    return PurchaseHistoryEntry(
        id=_text(row.get("id")),
        platform_id=_text(row.get("platform_id")),
        quantity=_integer(row.get("quantity")),
        cost_per_unit=_decimal(row.get("cost_per_unit")),
        total_cost=_decimal(row.get("total_cost")),
        supplier=_optional_text(row.get("supplier")),
        notes=_optional_text(row.get("notes")),
        previous_inventory=_integer(row.get("previous_inventory")),
        new_inventory=_integer(row.get("new_inventory")),
        purchased_by=_optional_text(row.get("purchased_by")),
        created_at=_timestamp(row.get("created_at")),
        platform_name=_joined(row, "game_coins", "platform", "platform_name"),
        purchased_by_username=_joined(row, "users", "username", "purchased_by_username"),
    )


def map_result_to_purchase(data: Mapping[str, Any]) -> PurchaseResult:
    return PurchaseResult(
        purchase_history_id=_text(data.get("purchase_history_id")),
        previous_inventory=_integer(data.get("previous_inventory")),
        new_inventory=_integer(data.get("new_inventory")),
        total_cost=_decimal(data.get("total_cost")),
    )
