"""Store contract and the workbook-backed transactional store.

The repositories only talk to a :class:`Store`: an asynchronous table gateway
with equality/range filters, single-level embeds (joins) and named remote
procedures. :class:`WorkbookStore` implements the contract on top of the
openpyxl data layer. Every write runs inside a transaction: changes are
applied to the in-memory workbook and saved; if anything raises, the workbook
is reloaded from disk so no partial effect survives.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import ErrorCode


FILTER_OPERATORS = ("eq", "neq", "gte", "lte", "is_null", "in", "ilike")


class StoreError(Exception):
    """Raised by a store when a query, write or procedure fails."""

    def __init__(self, message: str, code: ErrorCode | str | None = ErrorCode.STORE_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.code = code.value if isinstance(code, ErrorCode) else code


class NotReadyError(StoreError):
    """Raised when a table or procedure has not been provisioned yet."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCode.NOT_READY)


@dataclass(frozen=True)
class Filter:
    """A single column predicate.

    ``ilike`` is a case-insensitive substring match; ``is_null`` matches when
    the emptiness of the cell equals ``value``.
    """

    column: str
    op: str
    value: Any = None

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, record: Mapping[str, Any]) -> bool:
        cell = record.get(self.column)
        if self.op == "eq":
            return _same(cell, self.value)
        if self.op == "neq":
            return not _same(cell, self.value)
        if self.op == "is_null":
            return _is_empty(cell) == bool(self.value)
        if self.op == "in":
            return any(_same(cell, candidate) for candidate in self.value)
        if self.op == "ilike":
            return str(self.value).lower() in str(cell or "").lower()
        if _is_empty(cell):
            return False
        left, right = _instant(cell), _instant(self.value)
        if left is None or right is None:
            left, right = _comparable(cell), _comparable(self.value)
        try:
            return left >= right if self.op == "gte" else left <= right
        except TypeError:
            return str(cell) >= str(self.value) if self.op == "gte" else str(cell) <= str(self.value)


@dataclass(frozen=True)
class Embed:
    """Attach the row of ``table`` referenced by ``local_key`` under ``name``.

    The embedded value is ``None`` when the reference is empty or dangling.
    """

    name: str
    table: str
    local_key: str
    columns: Optional[Sequence[str]] = None
    foreign_key: str = "id"


class Store(Protocol):
    """Contract the core requires from the external transactional store."""

    async def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        embeds: Sequence[Embed] = (),
    ) -> List[Dict[str, Any]]: ...

    async def insert(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]: ...

    async def update(
        self, table: str, filters: Sequence[Filter], changes: Mapping[str, Any]
    ) -> List[Dict[str, Any]]: ...

    async def call(self, procedure: str, params: Mapping[str, Any]) -> Dict[str, Any]: ...


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string, the store's timestamp format."""

    return datetime.now(UTC).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _same(cell: Any, value: Any) -> bool:
    if cell == value:
        return True
    if cell is None or value is None:
        return False
    return str(cell) == str(value)


def _comparable(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value)
        except InvalidOperation:
            return value
    return str(value)


def _instant(value: Any) -> Optional[datetime]:
    """Timezone-aware datetime for ISO timestamps and date cells, else ``None``.

    Naive values are taken as UTC. Numeric strings are never read as dates.
    """

    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        if isinstance(_comparable(value), Decimal):
            return None
        try:
            moment = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def _sort_key(value: Any) -> tuple:
    # Only numeric cells sort numerically; text such as "9" and "100" sorts as text.
    if _is_empty(value):
        return (2, "")
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return (0, Decimal(str(value)))
    if isinstance(value, (datetime, date)):
        return (1, value.isoformat())
    return (1, str(value))


class Transaction:
    """Synchronous table operations over one in-memory workbook.

    Instances are handed to procedures and to the write path of
    :class:`WorkbookStore`; they never persist anything themselves.
    """

    def __init__(self, workbook: Workbook) -> None:
        self.workbook = workbook

    def require_table(self, table: str) -> None:
        if not data_manager.has_table(self.workbook, table):
            raise NotReadyError(f'relation "{table}" does not exist')

    def columns(self, table: str) -> Dict[str, int]:
        self.require_table(table)
        return data_manager.header_map(self.workbook[table])

    def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        embeds: Sequence[Embed] = (),
    ) -> List[Dict[str, Any]]:
        self.require_table(table)
        rows = [
            record
            for _, record in data_manager.iter_records(self.workbook, table)
            if all(f.matches(record) for f in filters)
        ]
        if order_by is not None:
            rows.sort(key=lambda record: _sort_key(record.get(order_by)), reverse=descending)
        for embed in embeds:
            self._attach(rows, embed)
        return rows

    def _attach(self, rows: List[Dict[str, Any]], embed: Embed) -> None:
        self.require_table(embed.table)
        index: Dict[str, Dict[str, Any]] = {}
        for _, record in data_manager.iter_records(self.workbook, embed.table):
            key = record.get(embed.foreign_key)
            if not _is_empty(key):
                index.setdefault(str(key), record)
        for row in rows:
            target = row.get(embed.local_key)
            match = index.get(str(target)) if not _is_empty(target) else None
            if match is not None and embed.columns is not None:
                match = {column: match.get(column) for column in embed.columns}
            row[embed.name] = dict(match) if match is not None else None

    def insert(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        columns = self.columns(table)
        record = dict(values)
        if "id" in columns and _is_empty(record.get("id")):
            record["id"] = new_id()
        if "created_at" in columns and _is_empty(record.get("created_at")):
            record["created_at"] = now_iso()
        try:
            data_manager.append_record(self.workbook, table, record)
        except KeyError as exc:
            raise StoreError(str(exc).strip("'\"")) from exc
        return {name: data_manager.serialize_value(record.get(name)) for name in columns}

    def update(
        self, table: str, filters: Sequence[Filter], changes: Mapping[str, Any]
    ) -> List[Dict[str, Any]]:
        self.require_table(table)
        updated: List[Dict[str, Any]] = []
        targets = [
            (row_index, record)
            for row_index, record in data_manager.iter_records(self.workbook, table)
            if all(f.matches(record) for f in filters)
        ]
        for row_index, record in targets:
            try:
                data_manager.update_record(self.workbook, table, row_index, field_values=changes)
            except KeyError as exc:
                raise StoreError(str(exc).strip("'\"")) from exc
            record.update({name: data_manager.serialize_value(value) for name, value in changes.items()})
            updated.append(record)
        return updated


Procedure = Callable[[Transaction, Mapping[str, Any]], Dict[str, Any]]


class WorkbookStore:
    """Asynchronous :class:`Store` backed by an openpyxl workbook on disk.

    All operations are serialised with an ``asyncio.Lock`` and executed in a
    worker thread, so concurrent callers never observe a half-applied write.
    Procedures are registered by name; calling an unknown one raises
    :class:`NotReadyError`.
    """

    def __init__(
        self,
        data_file: Path,
        *,
        workbook: Optional[Workbook] = None,
        procedures: Optional[Mapping[str, Procedure]] = None,
    ) -> None:
        self.data_file = Path(data_file).expanduser().resolve()
        self._workbook = workbook if workbook is not None else data_manager.open_workbook(self.data_file)
        self._procedures: Dict[str, Procedure] = dict(procedures or {})
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    @classmethod
    def open(cls, data_file: Path, *, procedures: Optional[Mapping[str, Procedure]] = None) -> "WorkbookStore":
        store = cls(data_file, procedures=procedures)
        log.info("Opened workbook store '%s'", store.data_file)
        return store

    @property
    def procedures(self) -> Iterable[str]:
        return tuple(self._procedures)

    def register_procedure(self, name: str, procedure: Procedure) -> None:
        self._procedures[name] = procedure

    async def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        embeds: Sequence[Embed] = (),
    ) -> List[Dict[str, Any]]:
        log.debug("select %s filters=%s order_by=%s", table, filters, order_by)
        return await self._read(
            lambda tx: tx.select(
                table, filters=filters, order_by=order_by, descending=descending, embeds=embeds
            )
        )

    async def insert(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._write(lambda tx: tx.insert(table, values))

    async def update(
        self, table: str, filters: Sequence[Filter], changes: Mapping[str, Any]
    ) -> List[Dict[str, Any]]:
        return await self._write(lambda tx: tx.update(table, filters, changes))

    async def call(self, procedure: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        handler = self._procedures.get(procedure)
        if handler is None:
            log.error("Procedure '%s' is not provisioned", procedure)
            raise NotReadyError(f"Could not find the function {procedure} in the schema cache")
        log.info("Calling procedure '%s'", procedure)
        return await self._write(lambda tx: handler(tx, params))

    def _current_lock(self) -> asyncio.Lock:
        # A lock is bound to the loop that first waits on it.
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def _read(self, operation: Callable[[Transaction], Any]) -> Any:
        async with self._current_lock():
            return await asyncio.to_thread(operation, Transaction(self._workbook))

    async def _write(self, operation: Callable[[Transaction], Any]) -> Any:
        async with self._current_lock():
            return await asyncio.to_thread(self._run_transaction, operation)

    def _run_transaction(self, operation: Callable[[Transaction], Any]) -> Any:
        try:
            result = operation(Transaction(self._workbook))
            data_manager.save_workbook(self._workbook, self.data_file)
        except Exception as exc:
            log.warning("Rolling back workbook '%s': %s", self.data_file, exc)
            self._workbook = data_manager.refresh_workbook(self.data_file)
            if isinstance(exc, StoreError):
                raise
            raise StoreError(str(exc) or exc.__class__.__name__) from exc
        return result
