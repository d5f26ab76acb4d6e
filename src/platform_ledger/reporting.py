"""Sales reporting: filter options, filtered order sets, summaries and export.

:class:`ReportRepository` talks to the store and returns result envelopes.
The summary helpers (:func:`summarize_report`, :func:`group_report`) are pure
functions over a :class:`ReportData`, and :func:`export_orders_workbook`
writes the order list to an ``.xlsx`` file with openpyxl.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

import openpyxl
from openpyxl.styles import Font

from . import log
from .constants import GroupBy, TableName
from .payments import PaymentToken, derive_payment_tokens, matches_token
from .results import RepoResult, from_exception, success
from .store import Embed, Filter, Store, StoreError


EXPORT_COLUMNS = ("order_id", "order_number", "created_at", "customer_id", "total_amount")

ITEM_PLATFORM_EMBED = Embed(
    "game_coins", TableName.PLATFORMS.value, "platform_id", columns=("id", "platform", "cost_price")
)


@dataclass(frozen=True)
class ReportFilters:
    """Narrowing options for :meth:`ReportRepository.fetch_orders_with_details`.

    ``date_from`` and ``date_to`` are inclusive ISO timestamps.
    ``payment_method`` is a ``base`` or ``base:subtype`` token.
    """

    date_from: Optional[str] = None
    date_to: Optional[str] = None
    customer_id: Optional[str] = None
    platform_id: Optional[str] = None
    employee_id: Optional[str] = None
    payment_method: Optional[str] = None


@dataclass(frozen=True)
class ReportFilterOptions:
    platforms: List[Dict[str, Any]] = field(default_factory=list)
    customers: List[Dict[str, Any]] = field(default_factory=list)
    employees: List[Dict[str, Any]] = field(default_factory=list)
    payment_methods: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReportData:
    """Orders matching a report's filters plus their items and payments.

    ``payments`` is never narrowed by the payment token; it holds every
    payment row of the fetched orders.
    """

    orders: List[Dict[str, Any]] = field(default_factory=list)
    items: List[Dict[str, Any]] = field(default_factory=list)
    payments: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class ReportTotals:
    sales: Decimal
    profit: Decimal
    orders: int


@dataclass(frozen=True)
class ReportGroup:
    id: str
    label: str
    sales: Decimal
    profit: Decimal
    orders: int


class ReportRepository:
    """Read-only queries behind the sales report."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def fetch_filters(self) -> RepoResult[ReportFilterOptions]:
        """Collect the dropdown options for the report filters.

        Platforms, customers and users are fetched concurrently. Payment rows
        are scanned afterwards to derive the payment-method tokens.
        """

        try:
            platforms, customers, users = await asyncio.gather(
                self.store.select(TableName.PLATFORMS.value, order_by="platform"),
                self.store.select(TableName.CUSTOMERS.value, order_by="name"),
                self.store.select(TableName.USERS.value, order_by="username"),
            )
            payment_rows = await self.store.select(TableName.PAYMENT_DETAILS.value)
        except (StoreError, OSError) as exc:
            log.error("Loading report filters failed: %s", exc)
            return from_exception(exc)

        options = ReportFilterOptions(
            platforms=[_pick(row, "id", "platform", "account_type") for row in platforms],
            customers=[_pick(row, "id", "name") for row in customers],
            employees=[
                _pick(row, "id", "username", "role")
                for row in users
                if row.get("role") not in (None, "")
            ],
            payment_methods=derive_payment_tokens(payment_rows),
        )
        log.debug(
            "Report filters: %d platforms, %d customers, %d employees, %d payment tokens",
            len(options.platforms),
            len(options.customers),
            len(options.employees),
            len(options.payment_methods),
        )
        return success(options)

    async def fetch_orders_with_details(self, filters: ReportFilters) -> RepoResult[ReportData]:
        """Fetch the orders matching ``filters`` with their items and payments.

        Args:
            filters (ReportFilters): Date window, customer, employee, platform
                and payment token narrowing.

        Returns:
            RepoResult[ReportData]: An empty :class:`ReportData` when no order
                matches the base query; no item or payment query is issued
                in that case.
        """

        token = PaymentToken.parse(filters.payment_method) if filters.payment_method else None
        order_filters: List[Filter] = []
        if filters.date_from:
            order_filters.append(Filter("created_at", "gte", filters.date_from))
        if filters.date_to:
            order_filters.append(Filter("created_at", "lte", filters.date_to))
        if filters.customer_id:
            order_filters.append(Filter("customer_id", "eq", filters.customer_id))
        if filters.employee_id:
            order_filters.append(Filter("created_by", "eq", filters.employee_id))
        if token is not None and not token.has_subtype and token.base:
            order_filters.append(Filter("payment_method", "ilike", token.base))

        try:
            orders = await self.store.select(
                TableName.ORDERS.value, filters=order_filters, order_by="created_at", descending=True
            )
            order_ids = [order["id"] for order in orders if order.get("id")]
            if not order_ids:
                log.debug("No orders matched report filters %s", filters)
                return success(ReportData())

            items, payments = await asyncio.gather(
                self.store.select(
                    TableName.ORDER_ITEMS.value,
                    filters=(Filter("order_id", "in", order_ids),),
                    embeds=(ITEM_PLATFORM_EMBED,),
                ),
                self.store.select(
                    TableName.PAYMENT_DETAILS.value, filters=(Filter("order_id", "in", order_ids),)
                ),
            )
        except (StoreError, OSError) as exc:
            log.error("Loading report orders failed: %s", exc)
            return from_exception(exc)

        if filters.platform_id:
            items = [item for item in items if _same_id(item.get("platform_id"), filters.platform_id)]
            with_platform = {str(item.get("order_id")) for item in items}
            orders = [order for order in orders if str(order.get("id")) in with_platform]

        if token is not None and token.has_subtype:
            matched: Set[str] = {
                str(payment.get("order_id")) for payment in payments if matches_token(payment, token)
            }
            orders = [order for order in orders if str(order.get("id")) in matched]

        log.debug(
            "Report matched %d orders, %d items, %d payments", len(orders), len(items), len(payments)
        )
        return success(ReportData(orders=orders, items=items, payments=payments))


def _pick(row: Mapping[str, Any], *columns: str) -> Dict[str, Any]:
    return {column: row.get(column) for column in columns}


def _same_id(left: Any, right: Any) -> bool:
    return left is not None and str(left) == str(right)


def _money(value: Any) -> Decimal:
    if value in (None, "") or isinstance(value, bool):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def _item_profit(item: Mapping[str, Any]) -> Decimal:
    platform = item.get("game_coins") or {}
    cost = _money(platform.get("cost_price"))
    return (_money(item.get("unit_price")) - cost) * _money(item.get("quantity"))


def _item_sales(item: Mapping[str, Any]) -> Decimal:
    total = _money(item.get("total_price"))
    if total:
        return total
    return _money(item.get("unit_price")) * _money(item.get("quantity"))


def summarize_report(report: ReportData) -> ReportTotals:
    """Sales, profit and order count for a report.

    Sales sum the orders' ``total_amount``; profit sums
    ``(unit_price - cost_price) * quantity`` over the items of those orders.
    """

    order_ids = {str(order.get("id")) for order in report.orders}
    sales = sum((_money(order.get("total_amount")) for order in report.orders), Decimal("0"))
    profit = sum(
        (_item_profit(item) for item in report.items if str(item.get("order_id")) in order_ids),
        Decimal("0"),
    )
    return ReportTotals(sales=sales, profit=profit, orders=len(report.orders))


def _lookup(rows: Sequence[Mapping[str, Any]], key: Any, column: str) -> Optional[str]:
    if key in (None, ""):
        return None
    for row in rows:
        if _same_id(row.get("id"), key) and row.get(column):
            return str(row[column])
    return None


def _platform_label(item: Mapping[str, Any], options: ReportFilterOptions) -> str:
    for row in options.platforms:
        if _same_id(row.get("id"), item.get("platform_id")) and row.get("platform") and row.get("account_type"):
            return f"{row['platform']} ({row['account_type']})"
    embedded = item.get("game_coins") or {}
    return str(embedded.get("platform") or item.get("platform_id") or "Unknown")


def group_report(
    report: ReportData,
    group_by: GroupBy | str,
    options: Optional[ReportFilterOptions] = None,
) -> List[ReportGroup]:
    """Break a report down by customer, employee, payment method or platform.

    Order-level groupings add each order's ``total_amount`` and the profit of
    its items. Platform grouping works per item, so one order can count
    towards several platforms. ``GroupBy.NONE`` yields no groups.

    Raises:
        ValueError: If ``group_by`` is not a known dimension.
    """

    group_by = GroupBy(group_by)
    if group_by is GroupBy.NONE:
        return []
    options = options or ReportFilterOptions()

    items_by_order: Dict[str, List[Mapping[str, Any]]] = {}
    for item in report.items:
        items_by_order.setdefault(str(item.get("order_id")), []).append(item)

    totals: Dict[str, Dict[str, Any]] = {}

    def bucket(key: str, label: str) -> Dict[str, Any]:
        return totals.setdefault(
            key, {"label": label, "sales": Decimal("0"), "profit": Decimal("0"), "orders": set()}
        )

    for order in report.orders:
        order_id = str(order.get("id"))
        order_items = items_by_order.get(order_id, [])

        if group_by is GroupBy.PLATFORM:
            for item in order_items:
                entry = bucket(str(item.get("platform_id") or "unknown"), _platform_label(item, options))
                entry["sales"] += _item_sales(item)
                entry["profit"] += _item_profit(item)
                entry["orders"].add(order_id)
            continue

        if group_by is GroupBy.CUSTOMER:
            raw = order.get("customer_id")
            label = _lookup(options.customers, raw, "name") or raw or "Unknown"
        elif group_by is GroupBy.EMPLOYEE:
            raw = order.get("created_by")
            label = _lookup(options.employees, raw, "username") or raw or "Unknown"
        else:
            raw = order.get("payment_method")
            label = raw or "Unknown"

        entry = bucket(str(raw or "unknown"), str(label))
        entry["sales"] += _money(order.get("total_amount"))
        entry["profit"] += sum((_item_profit(item) for item in order_items), Decimal("0"))
        entry["orders"].add(order_id)

    return [
        ReportGroup(
            id=key,
            label=value["label"],
            sales=value["sales"],
            profit=value["profit"],
            orders=len(value["orders"]),
        )
        for key, value in totals.items()
    ]


def export_orders_workbook(report: ReportData, destination: Path, title: Optional[str] = None) -> Path:
    """Write the report's orders to an ``.xlsx`` file and return its path.

    The sheet has a bold header row followed by one row per order. ``title``,
    usually the store name, becomes the workbook's document title.
    """

    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    if title:
        workbook.properties.title = title
    sheet = workbook.active
    sheet.title = "orders"
    sheet.append(list(EXPORT_COLUMNS))
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for order in report.orders:
        sheet.append(
            [
                order.get("id"),
                order.get("order_number"),
                order.get("created_at"),
                order.get("customer_id"),
                _money(order.get("total_amount")),
            ]
        )

    workbook.save(destination)
    log.info("Exported %d orders to '%s'", len(report.orders), destination)
    return destination
