"""Presentation state for the inventory screens.

:class:`InventoryViewModel` keeps the last fetched platform and purchase
history lists and derives the filtered and paginated views from them. It
never patches those lists locally: every mutation is followed by a refetch.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Dict, List, Optional, Sequence, TypeVar

from . import log
from .constants import ITEMS_PER_PAGE, PURCHASE_HISTORY_PAGE_SIZE, ErrorCode, StockFilter, StockStatus
from .models import Platform, PlatformCreate, PlatformUpdate, PurchaseHistoryEntry, PurchaseInput, PurchaseResult
from .repositories import PlatformRepository, PurchaseHistoryRepository, record_purchase_atomic
from .results import RepoError, RepoResult, get_error
from .session import SessionState, acting_user_id
from .store import Store


T = TypeVar("T")

ALL_ACCOUNT_TYPES = "all"

FRIENDLY_MESSAGES: Dict[str, str] = {
    ErrorCode.NOT_READY.value: "Inventory purchases are not available yet: the store has not been provisioned.",
    ErrorCode.CONFLICT.value: "A platform with this name and account type already exists.",
    ErrorCode.NOT_FOUND.value: "The selected platform no longer exists.",
    ErrorCode.STORE_ERROR.value: "The data store could not complete the request. Please try again.",
}


def friendly_message(result: RepoError) -> str:
    """Message to show for a failed result; unknown codes show the raw error."""

    if result.code in FRIENDLY_MESSAGES:
        return FRIENDLY_MESSAGES[result.code]
    return result.error


def stock_status(platform: Platform) -> StockStatus:
    if platform.inventory == 0:
        return StockStatus.OUT_OF_STOCK
    if 0 < platform.inventory < platform.low_stock_alert:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def matches_stock_filter(platform: Platform, stock_filter: StockFilter) -> bool:
    if stock_filter is StockFilter.ALL:
        return True
    if stock_filter is StockFilter.LOW_STOCK:
        return stock_status(platform) is StockStatus.LOW_STOCK
    return stock_status(platform) is StockStatus.OUT_OF_STOCK


@dataclass
class PageWindow:
    """1-based page over a list of ``page_size`` items."""

    page_size: int
    page: int = 1

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ValueError("page_size must be at least 1")

    @property
    def start(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def end(self) -> int:
        return self.start + self.page_size

    def slice(self, items: Sequence[T]) -> List[T]:
        return list(items[self.start:self.end])

    def page_count(self, total: int) -> int:
        return max(1, -(-total // self.page_size))

    def go_to(self, page: int) -> None:
        self.page = max(1, page)

    def reset(self) -> None:
        self.page = 1


class InventoryViewModel:
    """Filtered, paginated views and actions over platforms and their purchases.

    Args:
        store (Store): Store the repositories read from and write to.
        page_size (int): Rows per page of the platform list.
        history_page_size (int): Rows per page of both history views.
        session (SessionState | None): Current session; its user is recorded
            as the purchaser. ``None`` records purchases as system-generated.
    """

    def __init__(
        self,
        store: Store,
        page_size: int = ITEMS_PER_PAGE,
        history_page_size: int = PURCHASE_HISTORY_PAGE_SIZE,
        session: Optional[SessionState] = None,
    ) -> None:
        self.store = store
        self.session = session
        self.platform_repository = PlatformRepository(store)
        self.history_repository = PurchaseHistoryRepository(store)

        self.platforms: List[Platform] = []
        self.deleted_platforms: List[Platform] = []
        self.purchase_history: List[PurchaseHistoryEntry] = []
        self.all_purchase_history: List[PurchaseHistoryEntry] = []
        self.loading = False
        self.error: Optional[str] = None

        self.search_query = ""
        self.account_type_filter = ALL_ACCOUNT_TYPES
        self.stock_filter = StockFilter.ALL

        self.platform_page = PageWindow(page_size)
        self.history_page = PageWindow(history_page_size)
        self.all_history_page = PageWindow(history_page_size)

    # Derived views

    @property
    def filtered(self) -> List[Platform]:
        query = self.search_query.lower()
        return [
            platform
            for platform in self.platforms
            if (self.account_type_filter == ALL_ACCOUNT_TYPES or platform.account_type == self.account_type_filter)
            and matches_stock_filter(platform, self.stock_filter)
            and (not query or query in platform.platform.lower() or query in platform.account_type.lower())
        ]

    @property
    def total(self) -> int:
        return len(self.filtered)

    @property
    def paginated(self) -> List[Platform]:
        return self.platform_page.slice(self.filtered)

    @property
    def unique_account_types(self) -> List[str]:
        return list(dict.fromkeys(platform.account_type for platform in self.platforms))

    @property
    def paginated_history(self) -> List[PurchaseHistoryEntry]:
        return self.history_page.slice(self.purchase_history)

    @property
    def paginated_all_history(self) -> List[PurchaseHistoryEntry]:
        return self.all_history_page.slice(self.all_purchase_history)

    def set_search_query(self, query: str) -> None:
        self.search_query = query
        self.platform_page.reset()

    def set_account_type_filter(self, account_type: str) -> None:
        self.account_type_filter = account_type
        self.platform_page.reset()

    def set_stock_filter(self, stock_filter: StockFilter | str) -> None:
        self.stock_filter = StockFilter(stock_filter)
        self.platform_page.reset()

    # Fetches

    async def fetch_platforms(self) -> RepoResult[List[Platform]]:
        self.error = None
        return await self._tracked(self._load_platforms())

    async def fetch_deleted_platforms(self) -> RepoResult[List[Platform]]:
        return await self._tracked(self._load_deleted_platforms())

    async def fetch_purchase_history_for(self, platform_id: str) -> RepoResult[List[PurchaseHistoryEntry]]:
        return await self._tracked(self._load_history_for(platform_id))

    async def fetch_all_purchase_history(self) -> RepoResult[List[PurchaseHistoryEntry]]:
        async def load():
            result = await self.history_repository.list_all()
            if result.ok:
                self.all_purchase_history = result.data
            else:
                self._fail(result)
            return result

        return await self._tracked(load())

    # Mutations

    async def create_platform(self, data: PlatformCreate) -> RepoResult[Platform]:
        self.error = None
        return await self._tracked(self._mutate(self.platform_repository.create(data), "create platform"))

    async def update_platform(self, platform_id: str, changes: PlatformUpdate) -> RepoResult[Platform]:
        self.error = None
        return await self._tracked(
            self._mutate(self.platform_repository.update(platform_id, changes), "update platform")
        )

    async def soft_delete(self, platform_id: str) -> RepoResult[Platform]:
        self.error = None
        return await self._tracked(
            self._mutate(self.platform_repository.soft_delete(platform_id), "delete platform")
        )

    async def restore(self, platform_id: str) -> RepoResult[Platform]:
        self.error = None

        async def run():
            result = await self.platform_repository.restore(platform_id)
            if not result.ok:
                self._fail(result, "restore platform")
            await asyncio.gather(self._load_platforms(), self._load_deleted_platforms())
            return result

        return await self._tracked(run())

    async def record_purchase(
        self,
        platform_id: str,
        quantity: int,
        cost_per_unit: Decimal,
        *,
        supplier: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> RepoResult[PurchaseResult]:
        """Record a purchase atomically, then refetch the platform list and its history."""

        self.error = None
        data = PurchaseInput(
            platform_id=platform_id,
            quantity=quantity,
            cost_per_unit=cost_per_unit,
            purchased_by=acting_user_id(self.session),
            supplier=supplier,
            notes=notes,
        )

        async def run():
            result = await record_purchase_atomic(self.store, data)
            if not result.ok:
                self._fail(result, "record purchase")
                return result
            await asyncio.gather(self._load_platforms(), self._load_history_for(platform_id))
            return result

        return await self._tracked(run())

    # Internals

    async def _tracked(self, operation: Awaitable[T]) -> T:
        self.loading = True
        try:
            return await operation
        finally:
            self.loading = False

    async def _mutate(self, mutation: Awaitable[RepoResult[T]], action: str) -> RepoResult[T]:
        result = await mutation
        if not result.ok:
            self._fail(result, action)
        await self._load_platforms()
        return result

    def _fail(self, result: RepoError, action: Optional[str] = None) -> None:
        if action is not None:
            log.warning("Could not %s: %s", action, get_error(result))
        self.error = friendly_message(result)

    async def _load_platforms(self) -> RepoResult[List[Platform]]:
        result = await self.platform_repository.list(include_deleted=False)
        if result.ok:
            self.platforms = result.data
        else:
            self._fail(result)
        return result

    async def _load_deleted_platforms(self) -> RepoResult[List[Platform]]:
        result = await self.platform_repository.list(include_deleted=True)
        if result.ok:
            self.deleted_platforms = [platform for platform in result.data if platform.is_deleted]
        else:
            self._fail(result)
        return result

    async def _load_history_for(self, platform_id: str) -> RepoResult[List[PurchaseHistoryEntry]]:
        result = await self.history_repository.list_for_platform(platform_id)
        if result.ok:
            self.purchase_history = result.data
        else:
            self._fail(result)
        return result
