"""Approval backlog summaries."""

from __future__ import annotations

from decimal import Decimal

from station_erp import core_logic, data_manager, reminders, workflow
from station_erp.constants import Department, Role, WorkflowKind


def _expense(context, description: str = "Gas") -> str:
    return core_logic.record_expense(
        context,
        core_logic.ExpenseCommand(Department.RESTAURANT, "supplies", description, Decimal("1000"), "u-chef"),
    ).record_id


def test_empty_backlog_produces_no_requests(context):
    assert reminders.summarize_backlog(context, WorkflowKind.SALE) == []


def test_backlog_counts_per_approver_role(context, accountant, manager):
    first, second, third, fourth = (_expense(context, f"item {i}") for i in range(4))
    workflow.approve(context, second, WorkflowKind.EXPENSE, accountant)
    workflow.approve(context, third, WorkflowKind.EXPENSE, accountant)
    workflow.approve(context, third, WorkflowKind.EXPENSE, manager)
    workflow.reject(context, fourth, WorkflowKind.EXPENSE, accountant, "Receipt missing")

    requests = reminders.summarize_backlog(context, WorkflowKind.EXPENSE)

    assert requests == [
        reminders.ReminderRequest(Role.ACCOUNTANT, WorkflowKind.EXPENSE, 1),
        reminders.ReminderRequest(Role.MANAGER, WorkflowKind.EXPENSE, 1),
        reminders.ReminderRequest(Role.DIRECTOR, WorkflowKind.EXPENSE, 1),
    ]


def test_summarize_all_backlogs_covers_every_kind(context):
    _expense(context)
    core_logic.record_sale(
        context,
        core_logic.SaleCommand(
            Department.SUPERMARKET,
            "retail",
            "cash",
            (data_manager.SaleItem("Soap", Decimal("1"), Decimal("4000"), Decimal("0")),),
            "u-cashier",
        ),
    )

    requests = reminders.summarize_all_backlogs(context)

    assert {(r.item_kind, r.recipient_role, r.pending_count) for r in requests} == {
        (WorkflowKind.SALE, Role.ACCOUNTANT, 1),
        (WorkflowKind.EXPENSE, Role.ACCOUNTANT, 1),
    }
    assert reminders.summarize_all_backlogs(context, [WorkflowKind.FUEL_ENTRY]) == []
