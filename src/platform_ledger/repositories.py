"""Repositories over the store: platforms, purchase history and the atomic purchase.

Every public coroutine returns a :data:`~platform_ledger.results.RepoResult`;
store and filesystem failures are converted into :class:`RepoError` values and
never propagate to the caller.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence

from . import log
from .constants import RECORD_PURCHASE_PROCEDURE, ErrorCode, TableName
from .models import (
    Platform,
    PlatformCreate,
    PlatformUpdate,
    PurchaseHistoryEntry,
    PurchaseInput,
    PurchaseResult,
    map_result_to_purchase,
    map_row_to_platform,
    map_row_to_purchase_history,
)
from .results import RepoError, RepoResult, failure, from_exception, success
from .store import Embed, Filter, Store, StoreError, now_iso
from .validation import ValidationError, validate_platform_create, validate_platform_update, validate_purchase


PLATFORMS = TableName.PLATFORMS.value
PURCHASE_HISTORY = TableName.PURCHASE_HISTORY.value

HISTORY_EMBEDS = (
    Embed("game_coins", PLATFORMS, "platform_id", columns=("platform",)),
    Embed("users", TableName.USERS.value, "purchased_by", columns=("username",)),
)


def _store_failure(action: str, exc: Exception) -> RepoError:
    log.error("%s failed: %s", action, exc)
    return from_exception(exc)


def _validation_failure(exc: ValidationError) -> RepoError:
    return failure(str(exc), ErrorCode.VALIDATION_ERROR)


class PlatformRepository:
    """CRUD and soft-delete over the ``game_coins`` table."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def list(self, include_deleted: bool = False) -> RepoResult[List[Platform]]:
        """Platforms ordered by name; soft-deleted rows only when ``include_deleted``."""

        filters = () if include_deleted else (Filter("deleted_at", "is_null", True),)
        try:
            rows = await self.store.select(PLATFORMS, filters=filters, order_by="platform")
        except (StoreError, OSError) as exc:
            return _store_failure("Listing platforms", exc)
        return success([map_row_to_platform(row) for row in rows])

    async def get(self, platform_id: str) -> RepoResult[Optional[Platform]]:
        """Fetch one platform; an unknown id is a success carrying ``None``."""

        try:
            rows = await self.store.select(PLATFORMS, filters=(Filter("id", "eq", platform_id),))
        except (StoreError, OSError) as exc:
            return _store_failure(f"Loading platform '{platform_id}'", exc)
        return success(map_row_to_platform(rows[0]) if rows else None)

    async def create(self, data: PlatformCreate) -> RepoResult[Platform]:
        try:
            validate_platform_create(data)
        except ValidationError as exc:
            return _validation_failure(exc)

        try:
            if await self._duplicate_exists(data.platform, data.account_type):
                log.warning("Duplicate platform '%s' (%s)", data.platform, data.account_type)
                return failure(
                    f"Platform '{data.platform}' with account type '{data.account_type}' already exists",
                    ErrorCode.CONFLICT,
                )
            timestamp = now_iso()
            row = await self.store.insert(
                PLATFORMS,
                {**data.to_record(), "created_at": timestamp, "updated_at": timestamp},
            )
        except (StoreError, OSError) as exc:
            return _store_failure("Creating platform", exc)

        if not row:
            return failure("Create failed")
        log.info("Created platform '%s' (%s)", row.get("id"), data.platform)
        return success(map_row_to_platform(row))

    async def update(self, platform_id: str, changes: PlatformUpdate) -> RepoResult[Platform]:
        """Apply partial ``changes`` and return the updated row.

        Renaming onto another active platform's name and account type is a
        ``CONFLICT``. ``updated_at`` is always stamped.
        """

        try:
            validate_platform_update(changes)
        except ValidationError as exc:
            return _validation_failure(exc)

        values = changes.to_changes()
        try:
            if "platform" in values or "account_type" in values:
                current = await self.store.select(PLATFORMS, filters=(Filter("id", "eq", platform_id),))
                if current:
                    name = values.get("platform", current[0].get("platform"))
                    account_type = values.get("account_type", current[0].get("account_type"))
                    if await self._duplicate_exists(name, account_type, exclude_id=platform_id):
                        return failure(
                            f"Platform '{name}' with account type '{account_type}' already exists",
                            ErrorCode.CONFLICT,
                        )
            rows = await self.store.update(
                PLATFORMS,
                (Filter("id", "eq", platform_id),),
                {**values, "updated_at": now_iso()},
            )
        except (StoreError, OSError) as exc:
            return _store_failure(f"Updating platform '{platform_id}'", exc)

        if not rows:
            return failure("Update failed")
        log.info("Updated platform '%s' fields: %s", platform_id, ", ".join(sorted(values)) or "none")
        return success(map_row_to_platform(rows[0]))

    async def soft_delete(self, platform_id: str) -> RepoResult[Platform]:
        timestamp = now_iso()
        return await self._set_deleted_at(platform_id, timestamp, "Delete failed")

    async def restore(self, platform_id: str) -> RepoResult[Platform]:
        return await self._set_deleted_at(platform_id, None, "Restore failed")

    async def _set_deleted_at(
        self, platform_id: str, deleted_at: Optional[str], failed_message: str
    ) -> RepoResult[Platform]:
        by_id = (Filter("id", "eq", platform_id),)
        try:
            await self.store.update(PLATFORMS, by_id, {"deleted_at": deleted_at, "updated_at": now_iso()})
            # Re-read so the caller sees what the store actually holds.
            rows = await self.store.select(PLATFORMS, filters=by_id)
        except (StoreError, OSError) as exc:
            return _store_failure(failed_message, exc)

        if not rows:
            log.warning("%s: platform '%s' not found", failed_message, platform_id)
            return failure(failed_message)
        platform = map_row_to_platform(rows[0])
        if (deleted_at is None) == platform.is_deleted:
            return failure(failed_message)
        log.info("%s platform '%s'", "Restored" if deleted_at is None else "Soft-deleted", platform_id)
        return success(platform)

    async def _duplicate_exists(
        self, name: Any, account_type: Any, *, exclude_id: Optional[str] = None
    ) -> bool:
        filters = [
            Filter("platform", "eq", name),
            Filter("account_type", "eq", account_type),
            Filter("deleted_at", "is_null", True),
        ]
        if exclude_id is not None:
            filters.append(Filter("id", "neq", exclude_id))
        return bool(await self.store.select(PLATFORMS, filters=filters))


class PurchaseHistoryRepository:
    """Read access to the purchase ledger plus the raw, non-atomic insert."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def list_for_platform(self, platform_id: str) -> RepoResult[List[PurchaseHistoryEntry]]:
        return await self._list((Filter("platform_id", "eq", platform_id),))

    async def list_all(self) -> RepoResult[List[PurchaseHistoryEntry]]:
        return await self._list(())

    async def _list(self, filters: Sequence[Filter]) -> RepoResult[List[PurchaseHistoryEntry]]:
        try:
            rows = await self.store.select(
                PURCHASE_HISTORY,
                filters=filters,
                order_by="created_at",
                descending=True,
                embeds=HISTORY_EMBEDS,
            )
        except (StoreError, OSError) as exc:
            return _store_failure("Listing purchase history", exc)
        return success([map_row_to_purchase_history(row) for row in rows])

    async def record(self, entry: Mapping[str, Any]) -> RepoResult[None]:
        """Insert a ledger row as-is.

        This does not touch the platform's inventory; use
        :func:`record_purchase_atomic` for a purchase.
        """

        try:
            await self.store.insert(PURCHASE_HISTORY, entry)
        except (StoreError, OSError) as exc:
            return _store_failure("Recording purchase history", exc)
        return success(None)


async def record_purchase_atomic(store: Store, data: PurchaseInput) -> RepoResult[PurchaseResult]:
    """Add stock and append its ledger entry as one store transaction.

    The input is validated locally first; a failure there never reaches the
    store. Otherwise the store's ``record_purchase_and_update_inventory``
    procedure performs the read, both writes and the result in one
    transaction, and its outcome is returned unmodified. A store without the
    procedure fails with ``NOT_READY``.
    """

    try:
        validate_purchase(data)
    except ValidationError as exc:
        return _validation_failure(exc)

    params = {
        "p_platform_id": data.platform_id,
        "p_quantity": data.quantity,
        "p_cost_per_unit": data.cost_per_unit,
        "p_supplier": data.supplier,
        "p_notes": data.notes,
        "p_purchased_by": data.purchased_by,
    }
    try:
        result = await store.call(RECORD_PURCHASE_PROCEDURE, params)
    except (StoreError, OSError) as exc:
        return _store_failure(f"Purchase for platform '{data.platform_id}'", exc)

    if not result:
        return failure("Purchase failed")
    return success(map_result_to_purchase(result))
