"""Procedures executed by the store inside a single transaction.

Each procedure receives a :class:`~platform_ledger.store.Transaction` and the
call parameters. Raising any exception aborts the transaction and the store
discards every change the procedure made.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping

from . import log
from .constants import RECORD_PURCHASE_PROCEDURE, ErrorCode, TableName
from .store import Filter, Procedure, StoreError, Transaction, now_iso


def _int_param(params: Mapping[str, Any], name: str) -> int:
    value = params.get(name)
    if isinstance(value, bool) or value is None:
        raise StoreError(f"invalid input for {name}: {value!r}", ErrorCode.VALIDATION_ERROR)
    try:
        number = Decimal(str(value))
    except InvalidOperation as exc:
        raise StoreError(f"invalid input for {name}: {value!r}", ErrorCode.VALIDATION_ERROR) from exc
    if number != number.to_integral_value():
        raise StoreError(f"invalid input for {name}: {value!r}", ErrorCode.VALIDATION_ERROR)
    return int(number)


def _money_param(params: Mapping[str, Any], name: str) -> Decimal:
    value = params.get(name)
    if isinstance(value, bool) or value is None:
        raise StoreError(f"invalid input for {name}: {value!r}", ErrorCode.VALIDATION_ERROR)
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise StoreError(f"invalid input for {name}: {value!r}", ErrorCode.VALIDATION_ERROR) from exc


def record_purchase_and_update_inventory(tx: Transaction, params: Mapping[str, Any]) -> Dict[str, Any]:
    """Add purchased stock to a platform and append the matching ledger entry.

    Args:
        tx (Transaction): Open transaction over the store's tables.
        params (Mapping[str, Any]): ``p_platform_id``, ``p_quantity``,
            ``p_cost_per_unit``, ``p_supplier``, ``p_notes`` and
            ``p_purchased_by``.

    Returns:
        dict[str, Any]: ``purchase_history_id``, ``previous_inventory``,
            ``new_inventory`` and ``total_cost``.

    Raises:
        NotReadyError: If the platform or ledger table is not provisioned.
        StoreError: With code ``NOT_FOUND`` when the platform is unknown or
            soft-deleted, or ``VALIDATION_ERROR`` for malformed numbers.
    """

    tx.require_table(TableName.PLATFORMS.value)
    tx.require_table(TableName.PURCHASE_HISTORY.value)

    platform_id = params.get("p_platform_id")
    quantity = _int_param(params, "p_quantity")
    cost_per_unit = _money_param(params, "p_cost_per_unit")
    if quantity <= 0:
        raise StoreError("p_quantity must be greater than zero", ErrorCode.VALIDATION_ERROR)
    if cost_per_unit < 0:
        raise StoreError("p_cost_per_unit must be zero or positive", ErrorCode.VALIDATION_ERROR)

    matches = tx.select(
        TableName.PLATFORMS.value,
        filters=(Filter("id", "eq", platform_id), Filter("deleted_at", "is_null", True)),
    )
    if not matches:
        log.warning("Purchase rejected: platform '%s' not found", platform_id)
        raise StoreError(f"Platform not found: {platform_id}", ErrorCode.NOT_FOUND)

    current = matches[0].get("inventory")
    try:
        previous_inventory = int(Decimal(str(current))) if current not in (None, "") else 0
    except InvalidOperation as exc:
        raise StoreError(f"Corrupt inventory for platform {platform_id}: {current!r}") from exc

    new_inventory = previous_inventory + quantity
    total_cost = cost_per_unit * quantity
    timestamp = now_iso()

    tx.update(
        TableName.PLATFORMS.value,
        (Filter("id", "eq", platform_id),),
        {"inventory": new_inventory, "updated_at": timestamp},
    )
    entry = tx.insert(
        TableName.PURCHASE_HISTORY.value,
        {
            "platform_id": platform_id,
            "quantity": quantity,
            "cost_per_unit": cost_per_unit,
            "total_cost": total_cost,
            "supplier": params.get("p_supplier"),
            "notes": params.get("p_notes"),
            "previous_inventory": previous_inventory,
            "new_inventory": new_inventory,
            "purchased_by": params.get("p_purchased_by"),
            "created_at": timestamp,
        },
    )
    log.info(
        "Recorded purchase '%s' for platform '%s' (%d -> %d, cost=%s)",
        entry["id"],
        platform_id,
        previous_inventory,
        new_inventory,
        total_cost,
    )
    return {
        "purchase_history_id": entry["id"],
        "previous_inventory": previous_inventory,
        "new_inventory": new_inventory,
        "total_cost": total_cost,
    }


PROCEDURES: Dict[str, Procedure] = {
    RECORD_PURCHASE_PROCEDURE: record_purchase_and_update_inventory,
}
