"""Command-line entry points for the platform ledger.

The module only wires argparse to the view model and the report repository;
every rule lives in the library modules so tests and other front-ends reuse
the same behaviour. Sub-command executors are coroutines run with
:func:`asyncio.run`.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, TypeVar

from . import data_manager, log
from .constants import ErrorCode, GroupBy, StockFilter, TableName
from .models import Platform, PlatformCreate, PlatformUpdate
from .procedures import PROCEDURES
from .reporting import (
    ReportFilters,
    ReportRepository,
    export_orders_workbook,
    group_report,
    summarize_report,
)
from .results import RepoError, RepoResult
from .session import LoginSucceeded, SessionState, SessionUser, reduce
from .store import Filter, StoreError, WorkbookStore
from .view_model import InventoryViewModel, friendly_message, stock_status


BUSINESS_ERROR_CODES = (
    ErrorCode.VALIDATION_ERROR.value,
    ErrorCode.CONFLICT.value,
    ErrorCode.NOT_FOUND.value,
    ErrorCode.NOT_READY.value,
)


class CommandFailed(Exception):
    """Raised by an executor when a repository returned a failure."""

    def __init__(self, result: RepoError) -> None:
        super().__init__(friendly_message(result))
        self.result = result


@dataclass(frozen=True)
class CliContext:
    """Settings and the opened store shared by every sub-command."""

    settings: data_manager.ConfigSettings
    store: WorkbookStore


T = TypeVar("T")

Executor = Callable[[CliContext, argparse.Namespace], Awaitable[int]]
SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Executor


def decimal_arg(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid decimal value: {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-cli",
        description="Inventory, purchase ledger and sales reports for the platform store.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare the commands that change platforms or stock."""
    delete_help = "Soft-delete a platform."
    restore_help = "Restore a soft-deleted platform."
    specs = {
        "add-platform": CommandSpec("add-platform", "Create a new platform.", _register_add_platform, run_add_platform),
        "edit-platform": CommandSpec(
            "edit-platform", "Change fields of an existing platform.", _register_edit_platform, run_edit_platform
        ),
        "delete-platform": CommandSpec(
            "delete-platform",
            delete_help,
            _platform_id_registrar("delete-platform", delete_help),
            run_delete_platform,
        ),
        "restore-platform": CommandSpec(
            "restore-platform",
            restore_help,
            _platform_id_registrar("restore-platform", restore_help),
            run_restore_platform,
        ),
        "purchase": CommandSpec("purchase", "Record purchased stock for a platform.", _register_purchase, run_purchase),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare the listing and reporting commands."""
    specs = {
        "platforms": CommandSpec("platforms", "List platforms.", _register_platforms, run_platforms),
        "history": CommandSpec("history", "Show purchase history.", _register_history, run_history),
        "report-filters": CommandSpec(
            "report-filters", "Show report filter options.", _register_report_filters, run_report_filters
        ),
        "report": CommandSpec("report", "Show a sales report.", _register_report, run_report),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _register_add_platform(action: SubParsers) -> argparse.ArgumentParser:
    parser = action.add_parser("add-platform", help="Create a new platform.")
    parser.add_argument("--name", required=True)
    parser.add_argument("--account-type", required=True)
    parser.add_argument("--inventory", type=int, default=0)
    parser.add_argument("--cost-price", type=decimal_arg, default=Decimal("0"))
    parser.add_argument(
        "--low-stock-alert",
        type=int,
        default=None,
        help="Alert threshold (defaults to LowStockAlert from config.ini).",
    )
    parser.set_defaults(command="add-platform")
    return parser


def _register_edit_platform(action: SubParsers) -> argparse.ArgumentParser:
    parser = action.add_parser("edit-platform", help="Change fields of an existing platform.")
    parser.add_argument("--platform-id", required=True)
    parser.add_argument("--name", default=None)
    parser.add_argument("--account-type", default=None)
    parser.add_argument("--inventory", type=int, default=None)
    parser.add_argument("--cost-price", type=decimal_arg, default=None)
    parser.add_argument("--low-stock-alert", type=int, default=None)
    parser.set_defaults(command="edit-platform")
    return parser


def _platform_id_registrar(name: str, help_text: str) -> Callable[[SubParsers], argparse.ArgumentParser]:
    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--platform-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return registrar


def _register_purchase(action: SubParsers) -> argparse.ArgumentParser:
    parser = action.add_parser("purchase", help="Record purchased stock for a platform.")
    parser.add_argument("--platform-id", required=True)
    parser.add_argument("--quantity", type=int, required=True)
    parser.add_argument("--cost-per-unit", type=decimal_arg, required=True)
    parser.add_argument("--supplier", default=None)
    parser.add_argument("--notes", default=None)
    parser.add_argument("--user", default=None, help="Username recorded as the purchaser.")
    parser.set_defaults(command="purchase")
    return parser


def _register_platforms(action: SubParsers) -> argparse.ArgumentParser:
    parser = action.add_parser("platforms", help="List platforms.")
    parser.add_argument("--search", default="")
    parser.add_argument("--account-type", default="all")
    parser.add_argument("--stock", choices=[member.value for member in StockFilter], default=StockFilter.ALL.value)
    parser.add_argument("--page", type=int, default=1)
    parser.add_argument("--deleted", action="store_true", help="List soft-deleted platforms instead.")
    parser.set_defaults(command="platforms")
    return parser


def _register_history(action: SubParsers) -> argparse.ArgumentParser:
    parser = action.add_parser("history", help="Show purchase history.")
    parser.add_argument("--platform-id", default=None)
    parser.add_argument("--page", type=int, default=1)
    parser.set_defaults(command="history")
    return parser


def _register_report_filters(action: SubParsers) -> argparse.ArgumentParser:
    parser = action.add_parser("report-filters", help="Show report filter options.")
    parser.set_defaults(command="report-filters")
    return parser


def _register_report(action: SubParsers) -> argparse.ArgumentParser:
    parser = action.add_parser("report", help="Show a sales report.")
    parser.add_argument("--from", dest="date_from", default=None)
    parser.add_argument("--to", dest="date_to", default=None)
    parser.add_argument("--customer-id", default=None)
    parser.add_argument("--platform-id", default=None)
    parser.add_argument("--employee-id", default=None)
    parser.add_argument("--payment-method", default=None, help="Token such as bank, cash or crypto:USDT.")
    parser.add_argument("--group-by", choices=[member.value for member in GroupBy], default=GroupBy.NONE.value)
    parser.add_argument("--export", type=Path, default=None, help="Write the orders to this .xlsx file.")
    parser.set_defaults(command="report")
    return parser


def load_cli_context(config_path: Optional[Path] = None) -> CliContext:
    """Resolve settings, check the schema version and open the store."""
    target = Path(config_path) if config_path is not None else Path.cwd() / data_manager.CONFIG_FILE_NAME
    settings = data_manager.load_settings(target)
    data_manager.ensure_schema_version(settings)
    store = WorkbookStore.open(settings.data_file, procedures=PROCEDURES)
    return CliContext(settings=settings, store=store)


def build_view_model(context: CliContext, session: Optional[SessionState] = None) -> InventoryViewModel:
    return InventoryViewModel(
        context.store,
        page_size=context.settings.page_size,
        history_page_size=context.settings.history_page_size,
        session=session,
    )


def dispatch_command(
    context: CliContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return asyncio.run(spec.execute(context, args))


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_add_platform(args: argparse.Namespace, settings: data_manager.ConfigSettings) -> PlatformCreate:
    """Translate CLI args into a platform create request."""
    low_stock_alert = args.low_stock_alert if args.low_stock_alert is not None else settings.low_stock_alert
    return PlatformCreate(
        platform=args.name,
        account_type=args.account_type,
        inventory=args.inventory,
        cost_price=args.cost_price,
        low_stock_alert=low_stock_alert,
    )


def translate_edit_platform(args: argparse.Namespace) -> PlatformUpdate:
    """Translate CLI args into partial platform changes."""
    return PlatformUpdate(
        platform=args.name,
        account_type=args.account_type,
        inventory=args.inventory,
        cost_price=args.cost_price,
        low_stock_alert=args.low_stock_alert,
    )


def translate_report_filters(args: argparse.Namespace) -> ReportFilters:
    return ReportFilters(
        date_from=args.date_from,
        date_to=args.date_to,
        customer_id=args.customer_id,
        platform_id=args.platform_id,
        employee_id=args.employee_id,
        payment_method=args.payment_method,
    )


def _checked(result: RepoResult[T]) -> T:
    if not result.ok:
        raise CommandFailed(result)
    return result.data


def _print_platform(platform: Platform) -> None:
    print(
        f"{platform.id} | {platform.platform} | {platform.account_type} | "
        f"{platform.inventory} | {platform.cost_price} | {stock_status(platform).value}"
    )


async def run_add_platform(context: CliContext, args: argparse.Namespace) -> int:
    view = build_view_model(context)
    platform = _checked(await view.create_platform(translate_add_platform(args, context.settings)))
    print(f"Created platform {platform.id}: {platform.platform} ({platform.account_type})")
    return 0


async def run_edit_platform(context: CliContext, args: argparse.Namespace) -> int:
    view = build_view_model(context)
    platform = _checked(await view.update_platform(args.platform_id, translate_edit_platform(args)))
    print(f"Updated platform {platform.id}")
    return 0


async def run_delete_platform(context: CliContext, args: argparse.Namespace) -> int:
    view = build_view_model(context)
    platform = _checked(await view.soft_delete(args.platform_id))
    print(f"Deleted platform {platform.id} at {platform.deleted_at}")
    return 0


async def run_restore_platform(context: CliContext, args: argparse.Namespace) -> int:
    view = build_view_model(context)
    platform = _checked(await view.restore(args.platform_id))
    print(f"Restored platform {platform.id}")
    return 0


async def resolve_session(context: CliContext, username: Optional[str]) -> SessionState:
    """Session for ``username``; an empty session when no user is named.

    Raises:
        LookupError: If no user has that username.
    """
    state = SessionState()
    if not username:
        return state
    rows = await context.store.select(TableName.USERS.value, filters=(Filter("username", "eq", username),))
    if not rows:
        raise LookupError(f"Unknown user: {username}")
    row = rows[0]
    user = SessionUser(id=str(row.get("id")), username=str(row.get("username")), role=str(row.get("role") or ""))
    return reduce(state, LoginSucceeded(user))


async def run_purchase(context: CliContext, args: argparse.Namespace) -> int:
    session = await resolve_session(context, args.user)
    view = build_view_model(context, session)
    outcome = _checked(
        await view.record_purchase(
            args.platform_id,
            args.quantity,
            args.cost_per_unit,
            supplier=args.supplier,
            notes=args.notes,
        )
    )
    print(
        f"Recorded purchase {outcome.purchase_history_id}: inventory "
        f"{outcome.previous_inventory} -> {outcome.new_inventory}, total cost {outcome.total_cost}"
    )
    return 0


async def run_platforms(context: CliContext, args: argparse.Namespace) -> int:
    view = build_view_model(context)
    if args.deleted:
        for platform in _checked(await view.fetch_deleted_platforms()):
            _print_platform(platform)
        return 0

    _checked(await view.fetch_platforms())
    view.set_search_query(args.search)
    view.set_account_type_filter(args.account_type)
    view.set_stock_filter(args.stock)
    view.platform_page.go_to(args.page)
    for platform in view.paginated:
        _print_platform(platform)
    print(f"Page {view.platform_page.page}/{view.platform_page.page_count(view.total)} ({view.total} platforms)")
    return 0


async def run_history(context: CliContext, args: argparse.Namespace) -> int:
    view = build_view_model(context)
    if args.platform_id:
        _checked(await view.fetch_purchase_history_for(args.platform_id))
        window, total = view.history_page, len(view.purchase_history)
    else:
        _checked(await view.fetch_all_purchase_history())
        window, total = view.all_history_page, len(view.all_purchase_history)
    window.go_to(args.page)
    entries = view.paginated_history if args.platform_id else view.paginated_all_history
    for entry in entries:
        print(
            f"{entry.created_at} | {entry.platform_name} | +{entry.quantity} "
            f"({entry.previous_inventory} -> {entry.new_inventory}) | {entry.total_cost} | "
            f"{entry.purchased_by_username or 'system'}"
        )
    print(f"Page {window.page}/{window.page_count(total)} ({total} entries)")
    return 0


async def run_report_filters(context: CliContext, args: argparse.Namespace) -> int:
    options = _checked(await ReportRepository(context.store).fetch_filters())
    print("Platforms: " + ", ".join(f"{row['platform']} ({row['account_type']})" for row in options.platforms))
    print("Customers: " + ", ".join(str(row["name"]) for row in options.customers))
    print("Employees: " + ", ".join(str(row["username"]) for row in options.employees))
    print("Payment methods: " + ", ".join(options.payment_methods))
    return 0


async def run_report(context: CliContext, args: argparse.Namespace) -> int:
    repository = ReportRepository(context.store)
    report = _checked(await repository.fetch_orders_with_details(translate_report_filters(args)))
    totals = summarize_report(report)
    print(f"{context.settings.store_name} sales report")
    print(f"Orders: {totals.orders} | Sales: {totals.sales} | Profit: {totals.profit}")

    group_by = GroupBy(args.group_by)
    if group_by is GroupBy.NONE:
        for order in report.orders:
            print(f"{order.get('order_number')} | {order.get('created_at')} | {order.get('total_amount')}")
    else:
        options = _checked(await repository.fetch_filters())
        for group in group_report(report, group_by, options):
            print(f"{group.label} | orders {group.orders} | sales {group.sales} | profit {group.profit}")

    if args.export is not None:
        path = export_orders_workbook(report, args.export, title=context.settings.store_name)
        print(f"Exported {len(report.orders)} orders to {path}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into exit codes."""
    if isinstance(error, CommandFailed):
        log.error("%s", error.result.error)
        print(f"[ERROR] {error}", file=sys.stderr)
        return 2 if error.result.code in BUSINESS_ERROR_CODES else 1
    if isinstance(error, LookupError) and not isinstance(error, KeyError):
        log.error("%s", error)
        print(f"[ERROR] {error}", file=sys.stderr)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        print(f"[ERROR] {error}", file=sys.stderr)
        return 3
    if isinstance(error, StoreError):
        log.error("%s", error.message)
    else:
        log.error("%s", error)
    print(f"[ERROR] {error}", file=sys.stderr)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_cli_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
