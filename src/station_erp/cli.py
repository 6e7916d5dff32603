"""Command-line entry points for the Station ERP toolkit.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects and service calls of the
business layer. Keeping the CLI thin ensures the same parser configuration can
be reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, inventory, log, reminders, workflow
from .constants import Department, FuelType, Role, WorkflowKind, WorkflowStatus
from .errors import BusinessRuleViolation, StoreUnavailableError


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="station-cli",
        description="Command-line tools for the Station ERP workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands: submissions, approvals and tank movements."""
    specs = {
        "sale": register_sale_command(subparsers),
        "expense": register_expense_command(subparsers),
        "fuel-entry": register_fuel_entry_command(subparsers),
        "advance": register_advance_command(subparsers),
        "approve": register_approve_command(subparsers),
        "reject": register_reject_command(subparsers),
        "register-tank": register_register_tank_command(subparsers),
        "deduct": register_deduct_command(subparsers),
        "refill": register_refill_command(subparsers),
        "retry-deductions": register_retry_deductions_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as tank and backlog reports."""
    specs = {
        "tank": register_tank_command(subparsers),
        "tanks": register_tanks_command(subparsers),
        "movements": register_movements_command(subparsers),
        "pending": register_pending_command(subparsers),
        "remind": register_remind_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_decimal(raw: str) -> Decimal:
    """argparse ``type`` for decimal quantities and amounts."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Not a number: {raw!r}") from exc


def parse_sale_item(raw: str) -> data_manager.SaleItem:
    """argparse ``type`` for ``NAME:QUANTITY:PRICE`` sale lines."""
    try:
        name, quantity, price = raw.rsplit(":", 2)
        quantity_value, price_value = Decimal(quantity), Decimal(price)
    except (ValueError, InvalidOperation) as exc:
        raise argparse.ArgumentTypeError(f"Expected NAME:QUANTITY:PRICE, got {raw!r}") from exc
    return data_manager.SaleItem(
        name=name,
        quantity=quantity_value,
        price=price_value,
        total=quantity_value * price_value,
    )


def _add_actor_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--actor-id", required=True)
    parser.add_argument("--role", choices=[member.value for member in Role], required=True)


def _add_record_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--kind", choices=[member.value for member in WorkflowKind], required=True)
    parser.add_argument("--record-id", required=True)
    parser.add_argument(
        "--expected-status",
        choices=[member.value for member in WorkflowStatus],
        default=None,
        help="Refuse the change if the record is no longer in this status.",
    )


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Submit a sale for approval."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--department", choices=[member.value for member in Department], required=True)
        parser.add_argument("--sale-type", required=True)
        parser.add_argument("--payment-method", required=True)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_sale_item,
            required=True,
            help="Sale line as NAME:QUANTITY:PRICE (repeatable).",
        )
        parser.add_argument("--tax", type=parse_decimal, default=Decimal("0"))
        parser.add_argument("--customer-name", default=None)
        parser.add_argument("--pump-number", default=None)
        parser.add_argument("--created-by", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``expense``."""
    name = "expense"
    help_text = "Submit an expense claim for approval."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--department", choices=[member.value for member in Department], required=True)
        parser.add_argument("--expense-type", required=True)
        parser.add_argument("--description", required=True)
        parser.add_argument("--amount", type=parse_decimal, required=True)
        parser.add_argument("--created-by", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_expense)


def register_fuel_entry_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``fuel-entry``."""
    name = "fuel-entry"
    help_text = "Submit a shift's fuel readings for approval."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--fuel-type", choices=[member.value for member in FuelType], required=True)
        parser.add_argument("--opening-stock", type=parse_decimal, required=True)
        parser.add_argument("--closing-stock", type=parse_decimal, required=True)
        parser.add_argument("--revenue-received", type=parse_decimal, required=True)
        parser.add_argument("--pump-fuel-sold", type=parse_decimal, default=None)
        parser.add_argument("--notes", default=None)
        parser.add_argument("--created-by", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_fuel_entry)


def register_advance_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``advance``."""
    name = "advance"
    help_text = "Move a record to an explicit target status."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_record_arguments(parser)
        _add_actor_arguments(parser)
        parser.add_argument("--to", dest="target_status", choices=[member.value for member in WorkflowStatus], required=True)
        parser.add_argument("--reason", default=None, help="Required when the target is 'rejected'.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_advance)


def register_approve_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``approve``."""
    name = "approve"
    help_text = "Approve the current stage of a record."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_record_arguments(parser)
        _add_actor_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_approve)


def register_reject_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reject``."""
    name = "reject"
    help_text = "Reject a record that is still awaiting approval."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_record_arguments(parser)
        _add_actor_arguments(parser)
        parser.add_argument("--reason", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reject)


def register_register_tank_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``register-tank``."""
    name = "register-tank"
    help_text = "Create the tank row for a fuel type."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--fuel-type", choices=[member.value for member in FuelType], required=True)
        parser.add_argument("--capacity", type=parse_decimal, required=True)
        parser.add_argument("--initial-level", type=parse_decimal, default=Decimal("0"))
        parser.add_argument("--actor-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_register_tank)


def register_deduct_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``deduct``."""
    name = "deduct"
    help_text = "Deduct litres from a tank once per idempotency key."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--fuel-type", choices=[member.value for member in FuelType], required=True)
        parser.add_argument("--amount", type=parse_decimal, required=True)
        parser.add_argument("--key", dest="idempotency_key", required=True)
        parser.add_argument("--actor-id", default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_deduct)


def register_refill_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``refill``."""
    name = "refill"
    help_text = "Record a tank refill."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--fuel-type", choices=[member.value for member in FuelType], required=True)
        parser.add_argument("--amount", type=parse_decimal, required=True)
        parser.add_argument("--actor-id", default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_refill)


def register_retry_deductions_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``retry-deductions``."""
    name = "retry-deductions"
    help_text = "Apply tank deductions missing for fully approved fuel entries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_retry_deductions)


def register_tank_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``tank``."""
    name = "tank"
    help_text = "Display one tank."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--fuel-type", choices=[member.value for member in FuelType], required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_tank_report, mutates=False)


def register_tanks_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``tanks``."""
    name = "tanks"
    help_text = "Display every tank with totals and low-level warnings."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_tanks_report, mutates=False)


def register_movements_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``movements``."""
    name = "movements"
    help_text = "Display the tank movement log."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--fuel-type", choices=[member.value for member in FuelType], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_movements_report, mutates=False)


def register_pending_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pending``."""
    name = "pending"
    help_text = "List records awaiting approval."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--kind", choices=[member.value for member in WorkflowKind], required=True)
        parser.add_argument("--role", choices=[member.value for member in Role], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pending_report, mutates=False)


def register_remind_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remind``."""
    name = "remind"
    help_text = "Summarize approval backlogs per approver role."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--kind", choices=[member.value for member in WorkflowKind], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_remind_report, mutates=False)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_actor(args: argparse.Namespace) -> core_logic.Actor:
    """Translate ``--actor-id``/``--role`` into an :class:`Actor`."""
    return core_logic.Actor(actor_id=args.actor_id, role=Role(args.role))


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        department=Department(args.department),
        sale_type=args.sale_type,
        payment_method=args.payment_method,
        items=tuple(args.items),
        created_by=args.created_by,
        tax=args.tax,
        customer_name=args.customer_name,
        pump_number=args.pump_number,
    )


def translate_expense(args: argparse.Namespace) -> core_logic.ExpenseCommand:
    """Translate CLI args into an expense command object."""
    return core_logic.ExpenseCommand(
        department=Department(args.department),
        expense_type=args.expense_type,
        description=args.description,
        amount=args.amount,
        created_by=args.created_by,
    )


def translate_fuel_entry(args: argparse.Namespace) -> core_logic.FuelEntryCommand:
    """Translate CLI args into a fuel entry command object."""
    return core_logic.FuelEntryCommand(
        fuel_type=FuelType(args.fuel_type),
        opening_stock=args.opening_stock,
        closing_stock=args.closing_stock,
        revenue_received=args.revenue_received,
        created_by=args.created_by,
        pump_fuel_sold=args.pump_fuel_sold,
        notes=args.notes,
    )


def _expected_status(args: argparse.Namespace) -> Optional[WorkflowStatus]:
    return WorkflowStatus(args.expected_status) if args.expected_status else None


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale submission via the BLL."""
    record = core_logic.record_sale(context, translate_sale(args))
    print(f"Submitted sale {record.record_id} ({context.settings.currency} {record.amount:,.2f})")
    return 0


def run_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the expense submission via the BLL."""
    record = core_logic.record_expense(context, translate_expense(args))
    print(f"Submitted expense {record.record_id} ({context.settings.currency} {record.amount:,.2f})")
    return 0


def run_fuel_entry(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the fuel entry submission via the BLL."""
    submission = core_logic.record_fuel_entry(context, translate_fuel_entry(args))
    print(f"Submitted fuel entry {submission.record.record_id} ({submission.record.fuel_sold}L sold)")
    if submission.report.status.value != "OK":
        print(f"Warning: {submission.report.describe()}")
    return 0


def _print_advance(result: workflow.AdvanceResult) -> None:
    record = result.record
    print(f"{record.kind.value} {record.record_id}: {result.previous_status.value} -> {record.status}")
    if result.deduction is not None:
        print(f"Tank {result.deduction.fuel_type} now at {result.deduction.current_level}L")
    if result.deduction_error is not None:
        print(f"Warning: tank deduction failed: {result.deduction_error}")


def run_advance(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute an explicit status transition."""
    result = workflow.advance(
        context,
        args.record_id,
        WorkflowKind(args.kind),
        translate_actor(args),
        WorkflowStatus(args.target_status),
        rejection_reason=args.reason,
        expected_status=_expected_status(args),
    )
    _print_advance(result)
    return 0


def run_approve(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Approve the record's current stage."""
    result = workflow.approve(
        context,
        args.record_id,
        WorkflowKind(args.kind),
        translate_actor(args),
        expected_status=_expected_status(args),
    )
    _print_advance(result)
    return 0


def run_reject(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Reject the record with a reason."""
    result = workflow.reject(
        context,
        args.record_id,
        WorkflowKind(args.kind),
        translate_actor(args),
        args.reason,
        expected_status=_expected_status(args),
    )
    _print_advance(result)
    return 0


def run_register_tank(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    tank = inventory.register_tank(
        context,
        FuelType(args.fuel_type),
        args.capacity,
        initial_level=args.initial_level,
        actor_id=args.actor_id,
    )
    print(format_tank(tank))
    return 0


def run_deduct(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    tank = inventory.deduct(
        context,
        FuelType(args.fuel_type),
        args.amount,
        idempotency_key=args.idempotency_key,
        actor_id=args.actor_id,
        notes=args.notes,
    )
    print(format_tank(tank))
    return 0


def run_refill(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    tank = inventory.refill(context, FuelType(args.fuel_type), args.amount, args.notes, actor_id=args.actor_id)
    print(format_tank(tank))
    return 0


def run_retry_deductions(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Sweep fully approved fuel entries for missing deductions."""
    report = workflow.retry_pending_deductions(context)
    print(f"Applied {len(report.applied)} deduction(s)")
    for record_id, error in report.failed.items():
        print(f"Failed {record_id}: {error}")
    return 0


def run_tank_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print(format_tank(inventory.get_tank(context, FuelType(args.fuel_type))))
    return 0


def run_tanks_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Display every tank, the totals, and low-level warnings."""
    for tank in inventory.list_tanks(context):
        print(format_tank(tank))
    print(
        f"Total: {inventory.total_current_level(context)}L of {inventory.total_capacity(context)}L "
        f"({inventory.utilization_percentage(context):.1f}%)"
    )
    for tank in inventory.low_level_tanks(context):
        print(f"LOW: {tank.fuel_type}")
    return 0


def run_movements_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    fuel_type = FuelType(args.fuel_type) if args.fuel_type else None
    for movement in inventory.list_movements(context, fuel_type):
        print(
            f"{movement.timestamp_iso} {movement.fuel_type} {movement.movement_type} {movement.amount}L "
            f"{movement.level_before}L -> {movement.level_after}L {movement.idempotency_key or ''}".rstrip()
        )
    return 0


def run_pending_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List records of a kind still awaiting approval."""
    role = Role(args.role) if args.role else None
    for record in workflow.list_pending(context, WorkflowKind(args.kind), role):
        print(
            f"{record.record_id} {record.status} {record.department} "
            f"{context.settings.currency} {record.amount:,.2f} by {record.created_by}"
        )
    return 0


def run_remind_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the reminder requests the mailer would receive."""
    kinds = [WorkflowKind(args.kind)] if args.kind else None
    for request in reminders.summarize_all_backlogs(context, kinds):
        print(f"{request.recipient_role.value}: {request.pending_count} pending {request.item_kind.value}")
    return 0


def format_tank(tank: data_manager.TankRow) -> str:
    return f"{tank.fuel_type}: {tank.current_level}L / {tank.capacity}L"


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, StoreUnavailableError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    core_logic.persist_context(context)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        spec = command_table[args.command]
        if spec.mutates:
            core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and spec.mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
