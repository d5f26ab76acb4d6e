"""Tests for the platform and purchase history repositories and the atomic purchase."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from platform_ledger import data_manager
from platform_ledger.constants import RECORD_PURCHASE_PROCEDURE, ErrorCode, TableName
from platform_ledger.models import PlatformCreate, PlatformUpdate, PurchaseInput
from platform_ledger.repositories import PlatformRepository, PurchaseHistoryRepository, record_purchase_atomic
from platform_ledger.store import StoreError, WorkbookStore


PLATFORMS = TableName.PLATFORMS.value
HISTORY = TableName.PURCHASE_HISTORY.value
USERS = TableName.USERS.value


@pytest.fixture
def seeded_store(ledger_path, seed_rows, store_factory, platform_row):
    seed_rows(
        ledger_path,
        PLATFORMS,
        [
            platform_row(id="P1", platform="Steam", account_type="Premium", inventory=10),
            platform_row(id="P2", platform="Apple", account_type="Basic", inventory=0),
            platform_row(id="P3", platform="Xbox", account_type="Basic", deleted_at="2024-03-01T00:00:00+00:00"),
        ],
    )
    return store_factory(ledger_path)


def _history_rows(path):
    workbook = data_manager.open_workbook(path)
    return [record for _, record in data_manager.iter_records(workbook, HISTORY)]


# ---------------------------------------------------------------------------
# PlatformRepository
# ---------------------------------------------------------------------------


def test_list_excludes_soft_deleted_and_sorts_by_name(seeded_store):
    result = asyncio.run(PlatformRepository(seeded_store).list())

    assert result.ok
    assert [platform.id for platform in result.data] == ["P2", "P1"]


def test_list_with_deleted_includes_everything(seeded_store):
    result = asyncio.run(PlatformRepository(seeded_store).list(include_deleted=True))

    assert [platform.id for platform in result.data] == ["P2", "P1", "P3"]
    assert result.data[2].is_deleted


def test_get_returns_none_for_unknown_id(seeded_store):
    result = asyncio.run(PlatformRepository(seeded_store).get("missing"))

    assert result.ok
    assert result.data is None


def test_get_maps_row(seeded_store):
    platform = asyncio.run(PlatformRepository(seeded_store).get("P1")).data

    assert platform.platform == "Steam"
    assert platform.inventory == 10
    assert platform.cost_price == Decimal("2")


def test_create_inserts_platform_with_timestamps(seeded_store):
    repo = PlatformRepository(seeded_store)

    result = asyncio.run(
        repo.create(PlatformCreate(platform="Nintendo", account_type="Gold", inventory=3, cost_price=Decimal("1.25")))
    )

    assert result.ok
    assert result.data.id
    assert result.data.created_at == result.data.updated_at
    assert result.data.deleted_at is None
    listed = asyncio.run(repo.list()).data
    assert "Nintendo" in [platform.platform for platform in listed]


def test_create_rejects_duplicate_active_platform(seeded_store):
    result = asyncio.run(
        PlatformRepository(seeded_store).create(PlatformCreate(platform="Steam", account_type="Premium"))
    )

    assert not result.ok
    assert result.code == ErrorCode.CONFLICT.value
    assert "already exists" in result.error


def test_create_allows_name_of_soft_deleted_platform(seeded_store):
    result = asyncio.run(PlatformRepository(seeded_store).create(PlatformCreate(platform="Xbox", account_type="Basic")))

    assert result.ok


def test_create_validation_failure_never_touches_store(mock_store):
    result = asyncio.run(
        PlatformRepository(mock_store).create(PlatformCreate(platform="", account_type="A", inventory=-1))
    )

    assert not result.ok
    assert result.code == ErrorCode.VALIDATION_ERROR.value
    assert "platform: Platform name is required" in result.error
    assert "inventory: Must be >= 0" in result.error
    mock_store.select.assert_not_awaited()
    mock_store.insert.assert_not_awaited()


def test_create_empty_insert_result_is_failure(mock_store):
    mock_store.insert.return_value = {}

    result = asyncio.run(PlatformRepository(mock_store).create(PlatformCreate(platform="Steam", account_type="A")))

    assert not result.ok
    assert result.error == "Create failed"


def test_store_errors_become_failures(mock_store):
    mock_store.select.side_effect = StoreError("connection reset")

    result = asyncio.run(PlatformRepository(mock_store).list())

    assert not result.ok
    assert result.error == "connection reset"
    assert result.code == ErrorCode.STORE_ERROR.value


def test_update_changes_fields_and_stamps_updated_at(seeded_store):
    result = asyncio.run(
        PlatformRepository(seeded_store).update("P1", PlatformUpdate(cost_price=Decimal("3.5"), low_stock_alert=2))
    )

    assert result.ok
    assert result.data.cost_price == Decimal("3.5")
    assert result.data.low_stock_alert == 2
    assert result.data.updated_at != "2024-01-01T00:00:00+00:00"


def test_update_rename_onto_existing_platform_conflicts(seeded_store):
    result = asyncio.run(
        PlatformRepository(seeded_store).update("P2", PlatformUpdate(platform="Steam", account_type="Premium"))
    )

    assert result.code == ErrorCode.CONFLICT.value


def test_update_unknown_id_fails(seeded_store):
    result = asyncio.run(PlatformRepository(seeded_store).update("missing", PlatformUpdate(inventory=1)))

    assert not result.ok
    assert result.error == "Update failed"


def test_update_validation_failure(mock_store):
    result = asyncio.run(PlatformRepository(mock_store).update("P1", PlatformUpdate(low_stock_alert=0)))

    assert result.code == ErrorCode.VALIDATION_ERROR.value
    assert result.error == "low_stock_alert: Must be >= 1"
    mock_store.update.assert_not_awaited()


def test_soft_delete_and_restore_round_trip(seeded_store):
    repo = PlatformRepository(seeded_store)

    deleted = asyncio.run(repo.soft_delete("P1"))
    assert deleted.ok
    assert deleted.data.deleted_at is not None
    assert "P1" not in [platform.id for platform in asyncio.run(repo.list()).data]

    restored = asyncio.run(repo.restore("P1"))
    assert restored.ok
    assert restored.data.deleted_at is None
    assert "P1" in [platform.id for platform in asyncio.run(repo.list()).data]


def test_soft_delete_unknown_platform_fails(seeded_store):
    result = asyncio.run(PlatformRepository(seeded_store).soft_delete("missing"))

    assert not result.ok
    assert result.error == "Delete failed"


def test_restore_unknown_platform_fails(seeded_store):
    result = asyncio.run(PlatformRepository(seeded_store).restore("missing"))

    assert result.error == "Restore failed"


# ---------------------------------------------------------------------------
# PurchaseHistoryRepository
# ---------------------------------------------------------------------------


def test_history_is_newest_first_with_joined_names(ledger_path, seed_rows, seeded_store):
    seed_rows(ledger_path, USERS, [{"id": "U1", "username": "alice", "role": "admin"}])
    seed_rows(
        ledger_path,
        HISTORY,
        [
            {"id": "H1", "platform_id": "P1", "quantity": 1, "purchased_by": "U1", "created_at": "2024-01-01T00:00:00"},
            {"id": "H2", "platform_id": "P1", "quantity": 2, "purchased_by": None, "created_at": "2024-02-01T00:00:00"},
            {"id": "H3", "platform_id": "P2", "quantity": 3, "created_at": "2024-03-01T00:00:00"},
        ],
    )
    store = WorkbookStore(ledger_path)
    repo = PurchaseHistoryRepository(store)

    for_platform = asyncio.run(repo.list_for_platform("P1")).data
    everything = asyncio.run(repo.list_all()).data

    assert [entry.id for entry in for_platform] == ["H2", "H1"]
    assert for_platform[1].platform_name == "Steam"
    assert for_platform[1].purchased_by_username == "alice"
    assert for_platform[0].purchased_by_username == ""
    assert [entry.id for entry in everything] == ["H3", "H2", "H1"]


def test_history_join_falls_back_to_legacy_columns(mock_store):
    mock_store.select.return_value = [
        {"id": "H1", "platform_id": "P1", "game_coins": None, "platform_name": "Legacy", "users": None}
    ]

    entries = asyncio.run(PurchaseHistoryRepository(mock_store).list_all()).data

    assert entries[0].platform_name == "Legacy"
    assert entries[0].purchased_by_username == ""


def test_record_inserts_raw_entry_without_touching_inventory(ledger_path, seeded_store):
    result = asyncio.run(
        PurchaseHistoryRepository(seeded_store).record({"platform_id": "P1", "quantity": 4})
    )

    assert result.ok
    assert result.data is None
    assert len(_history_rows(ledger_path)) == 1
    platform = asyncio.run(PlatformRepository(seeded_store).get("P1")).data
    assert platform.inventory == 10


# ---------------------------------------------------------------------------
# record_purchase_atomic
# ---------------------------------------------------------------------------


def test_purchase_updates_inventory_and_appends_ledger(ledger_path, seeded_store):
    result = asyncio.run(
        record_purchase_atomic(
            seeded_store,
            PurchaseInput(platform_id="P1", quantity=5, cost_per_unit=Decimal("2.50"), purchased_by="U1"),
        )
    )

    assert result.ok
    assert result.data.previous_inventory == 10
    assert result.data.new_inventory == 15
    assert result.data.total_cost == Decimal("12.50")

    platform = asyncio.run(PlatformRepository(seeded_store).get("P1")).data
    assert platform.inventory == 15

    rows = _history_rows(ledger_path)
    assert len(rows) == 1
    assert rows[0]["id"] == result.data.purchase_history_id
    assert rows[0]["previous_inventory"] == 10
    assert rows[0]["new_inventory"] == 15
    assert rows[0]["purchased_by"] == "U1"


def test_purchase_validation_failure_never_calls_procedure(mock_store):
    result = asyncio.run(
        record_purchase_atomic(
            mock_store,
            PurchaseInput(platform_id="P1", quantity=0, cost_per_unit=Decimal("-1"), purchased_by=None),
        )
    )

    assert result.code == ErrorCode.VALIDATION_ERROR.value
    assert result.error.splitlines() == ["quantity: Must be >= 1", "cost_per_unit: Must be >= 0"]
    mock_store.call.assert_not_awaited()


def test_purchase_passes_prefixed_parameters(mock_store):
    mock_store.call.return_value = {
        "purchase_history_id": "H1",
        "previous_inventory": 1,
        "new_inventory": 3,
        "total_cost": "4.00",
    }

    result = asyncio.run(
        record_purchase_atomic(
            mock_store,
            PurchaseInput(
                platform_id="P1", quantity=2, cost_per_unit=Decimal("2"), purchased_by=None, supplier="Acme"
            ),
        )
    )

    assert result.data.total_cost == Decimal("4.00")
    mock_store.call.assert_awaited_once_with(
        RECORD_PURCHASE_PROCEDURE,
        {
            "p_platform_id": "P1",
            "p_quantity": 2,
            "p_cost_per_unit": Decimal("2"),
            "p_supplier": "Acme",
            "p_notes": None,
            "p_purchased_by": None,
        },
    )


def test_purchase_empty_result_is_failure(mock_store):
    result = asyncio.run(
        record_purchase_atomic(
            mock_store, PurchaseInput(platform_id="P1", quantity=1, cost_per_unit=Decimal("1"), purchased_by=None)
        )
    )

    assert result.error == "Purchase failed"


def test_purchase_on_soft_deleted_platform_is_not_found(ledger_path, seeded_store):
    result = asyncio.run(
        record_purchase_atomic(
            seeded_store, PurchaseInput(platform_id="P3", quantity=1, cost_per_unit=Decimal("1"), purchased_by=None)
        )
    )

    assert result.code == ErrorCode.NOT_FOUND.value
    assert _history_rows(ledger_path) == []


def test_purchase_without_procedure_is_not_ready(ledger_path, seed_rows, platform_row):
    seed_rows(ledger_path, PLATFORMS, [platform_row(id="P1")])
    store = WorkbookStore(ledger_path)

    result = asyncio.run(
        record_purchase_atomic(
            store, PurchaseInput(platform_id="P1", quantity=1, cost_per_unit=Decimal("1"), purchased_by=None)
        )
    )

    assert result.code == ErrorCode.NOT_READY.value


def test_purchase_without_ledger_table_rolls_back(workbook_factory, seed_rows, store_factory, platform_row):
    path = workbook_factory(subdir="no_ledger", tables=[PLATFORMS])
    seed_rows(path, PLATFORMS, [platform_row(id="P1", inventory=10)])
    store = store_factory(path)

    result = asyncio.run(
        record_purchase_atomic(
            store, PurchaseInput(platform_id="P1", quantity=1, cost_per_unit=Decimal("1"), purchased_by=None)
        )
    )

    assert result.code == ErrorCode.NOT_READY.value
    assert asyncio.run(PlatformRepository(store).get("P1")).data.inventory == 10


def test_concurrent_purchases_do_not_lose_updates(ledger_path, seeded_store):
    async def buy_twice():
        return await asyncio.gather(
            record_purchase_atomic(
                seeded_store, PurchaseInput(platform_id="P1", quantity=3, cost_per_unit=Decimal("1"), purchased_by=None)
            ),
            record_purchase_atomic(
                seeded_store, PurchaseInput(platform_id="P1", quantity=4, cost_per_unit=Decimal("1"), purchased_by=None)
            ),
        )

    results = asyncio.run(buy_twice())

    assert all(result.ok for result in results)
    assert asyncio.run(PlatformRepository(seeded_store).get("P1")).data.inventory == 17
    assert len(_history_rows(ledger_path)) == 2
