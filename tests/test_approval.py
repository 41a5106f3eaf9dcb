"""Approval workflow tests: approve, partial approval, reject, info loop, cancel."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.attendance.models import AttendanceRecord
from leave_engine.common.constants import (
    AttendanceStatus,
    BalanceCategory,
    LeaveRequestStatus as S,
    PayrollAdjustmentStatus,
    SegmentStatus,
    SplitOption,
    TaskStatus,
    UserRole,
)
from leave_engine.common.exceptions import (
    BalanceConflict,
    ForbiddenException,
    ManagerApprovalRequired,
    StateConflict,
    ValidationException,
)
from leave_engine.core_hr.models import CriticalTask
from leave_engine.database import unit_of_work
from leave_engine.leave.approval import ApprovalWorkflow
from leave_engine.leave.balance import BalanceLedger
from leave_engine.leave.lifecycle import LeaveLifecycle
from leave_engine.payroll.models import PayrollAdjustment
from tests.conftest import (
    FRI,
    MON,
    THU,
    TUE,
    WED,
    acting,
    assert_balance_invariant,
    seed_balance,
    seed_closed_period,
    seed_employee,
    submit_leave,
)


@pytest.fixture
def reviewer(test_manager):
    return acting(test_manager, UserRole.manager)


@pytest.fixture
async def short_employee(db, test_department):
    """Employee with only 3 paid days left, so a Mon-Fri request splits."""
    employee = await seed_employee(db, department_id=test_department.id, first_name="Short")
    await seed_balance(db, employee.id, paid=Decimal("3"))
    return employee


async def _balance(db: AsyncSession, employee_id):
    balance = await BalanceLedger.get_balance(db, employee_id, 2026)
    assert_balance_invariant(balance)
    return balance


async def _attendance(db: AsyncSession, employee_id) -> dict:
    result = await db.execute(
        select(AttendanceRecord).where(AttendanceRecord.employee_id == employee_id)
    )
    return {r.attendance_date: r for r in result.scalars().all()}


async def _adjustments(db: AsyncSession, employee_id) -> list[PayrollAdjustment]:
    result = await db.execute(
        select(PayrollAdjustment)
        .where(PayrollAdjustment.employee_id == employee_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


# ═════════════════════════════════════════════════════════════════════
# Approve
# ═════════════════════════════════════════════════════════════════════


class TestApprove:

    async def test_full_approval(self, db: AsyncSession, test_employee, reviewer):
        out = await submit_leave(db, test_employee)

        outcome = await ApprovalWorkflow.approve(db, out.id, reviewer, comment="Enjoy")
        assert outcome.status == S.approved
        assert outcome.version == out.version + 1
        assert outcome.attendance_dates == [MON, TUE, WED, THU, FRI]
        assert outcome.payroll_adjustment_ids == []

        balance = await _balance(db, test_employee.id)
        assert balance.used_paid_days == Decimal("5")
        assert balance.pending_paid_days == Decimal("0")
        assert BalanceLedger.available(balance, BalanceCategory.paid) == Decimal("19")

        days = await _attendance(db, test_employee.id)
        assert sorted(days) == [MON, TUE, WED, THU, FRI]
        assert {r.status for r in days.values()} == {AttendanceStatus.on_leave}

        request = await LeaveLifecycle.get_request(db, out.id)
        assert request.approved_by == reviewer.employee_id
        assert all(s.status == SegmentStatus.approved for s in request.segments)

    async def test_second_approval_conflicts_and_debits_once(
        self, db: AsyncSession, test_employee, reviewer,
    ):
        employee_id = test_employee.id
        out = await submit_leave(db, test_employee)
        await ApprovalWorkflow.approve(db, out.id, reviewer)

        with pytest.raises(StateConflict):
            await ApprovalWorkflow.approve(db, out.id, reviewer)

        balance = await _balance(db, employee_id)
        assert balance.used_paid_days == Decimal("5")

    async def test_stale_expected_version(self, db: AsyncSession, test_employee, reviewer):
        out = await submit_leave(db, test_employee)
        with pytest.raises(StateConflict):
            await ApprovalWorkflow.approve(db, out.id, reviewer, expected_version=1)

        request = await LeaveLifecycle.get_request(db, out.id)
        assert request.status == S.submitted

    async def test_requires_actor(self, db: AsyncSession, test_employee):
        out = await submit_leave(db, test_employee)
        with pytest.raises(ForbiddenException):
            await ApprovalWorkflow.approve(db, out.id, None)

    async def test_foreign_segment_rejected(self, db: AsyncSession, test_employee, reviewer):
        out = await submit_leave(db, test_employee)
        with pytest.raises(ValidationException):
            await ApprovalWorkflow.approve(db, out.id, reviewer, segment_ids=[uuid.uuid4()])

    async def test_existing_attendance_is_remembered(
        self, db: AsyncSession, test_employee, reviewer,
    ):
        db.add(
            AttendanceRecord(
                employee_id=test_employee.id,
                attendance_date=MON,
                status=AttendanceStatus.absent,
            )
        )
        await db.commit()

        out = await submit_leave(db, test_employee)
        await ApprovalWorkflow.approve(db, out.id, reviewer)

        record = (await _attendance(db, test_employee.id))[MON]
        assert record.status == AttendanceStatus.on_leave
        assert record.previous_status == AttendanceStatus.absent


class TestConcurrentApproval:

    async def test_stale_approver_loses_and_balance_debits_once(
        self, db: AsyncSession, session_factory, test_employee, reviewer,
    ):
        """Two reviewers load the same version; the one committing second is refused."""
        employee_id = test_employee.id
        out = await submit_leave(db, test_employee)

        async with session_factory() as other:
            stale = await LeaveLifecycle.get_request(other, out.id)
            assert stale.version == out.version

            await ApprovalWorkflow.approve(db, out.id, reviewer)

            with pytest.raises((StateConflict, BalanceConflict)):
                async with unit_of_work(other):
                    await ApprovalWorkflow._approve_in_transaction(
                        other, stale, reviewer.employee_id,
                    )

        balance = await _balance(db, employee_id)
        assert balance.used_paid_days == Decimal("5")
        assert balance.pending_paid_days == Decimal("0")
        assert BalanceLedger.available(balance, BalanceCategory.paid) == Decimal("19")

        request = await LeaveLifecycle.get_request(db, out.id)
        assert request.status == S.approved
        assert request.version == out.version + 1
        assert len(await _attendance(db, employee_id)) == 5


class TestPartialApproval:

    async def test_approve_paid_segment_only(self, db: AsyncSession, short_employee, reviewer):
        out = await submit_leave(db, short_employee)
        assert out.status == S.submitted_auto_split
        paid, unpaid = out.segments

        outcome = await ApprovalWorkflow.approve(db, out.id, reviewer, segment_ids=[paid.id])
        assert outcome.status == S.partially_approved
        assert outcome.approved_segment_ids == [paid.id]

        balance = await _balance(db, short_employee.id)
        assert balance.used_paid_days == Decimal("3")
        assert balance.used_unpaid_days == Decimal("0")

        outcome = await ApprovalWorkflow.approve(db, out.id, reviewer)
        assert outcome.status == S.approved
        assert outcome.approved_segment_ids == [unpaid.id]
        balance = await _balance(db, short_employee.id)
        assert balance.used_unpaid_days == Decimal("2")

    async def test_approve_one_reject_other(self, db: AsyncSession, short_employee, reviewer):
        out = await submit_leave(db, short_employee)
        paid, unpaid = out.segments

        await ApprovalWorkflow.approve(db, out.id, reviewer, segment_ids=[paid.id])
        outcome = await ApprovalWorkflow.reject(
            db, out.id, reviewer, reason="Too long", segment_ids=[unpaid.id],
        )
        assert outcome.status == S.partially_approved
        assert outcome.rejected_segment_ids == [unpaid.id]

    async def test_acting_on_decided_segment_conflicts(
        self, db: AsyncSession, short_employee, reviewer,
    ):
        out = await submit_leave(db, short_employee)
        paid, _ = out.segments
        await ApprovalWorkflow.approve(db, out.id, reviewer, segment_ids=[paid.id])
        with pytest.raises(StateConflict):
            await ApprovalWorkflow.reject(db, out.id, reviewer, reason="x", segment_ids=[paid.id])


class TestPayrollRouting:

    async def test_closed_period_queues_adjustment(
        self, db: AsyncSession, short_employee, reviewer,
    ):
        await seed_closed_period(db, date(2026, 3, 1), date(2026, 3, 31), "2026-03")
        out = await submit_leave(db, short_employee)

        outcome = await ApprovalWorkflow.approve(db, out.id, reviewer)
        assert len(outcome.payroll_adjustment_ids) == 1

        (adjustment,) = await _adjustments(db, short_employee.id)
        assert adjustment.period_code == "2026-03"
        assert adjustment.amount == Decimal("4000.00")
        assert adjustment.status == PayrollAdjustmentStatus.pending
        assert adjustment.leave_segment_id == out.segments[1].id

        request = await LeaveLifecycle.get_request(db, out.id)
        assert request.segments[1].payroll_processed is True

    async def test_open_period_queues_nothing(self, db: AsyncSession, short_employee, reviewer):
        out = await submit_leave(db, short_employee)
        outcome = await ApprovalWorkflow.approve(db, out.id, reviewer)
        assert outcome.payroll_adjustment_ids == []
        assert await _adjustments(db, short_employee.id) == []


class TestManagerSignOff:

    async def test_override_needs_manager_approval(
        self, db: AsyncSession, short_employee, reviewer,
    ):
        out = await submit_leave(db, short_employee, split_option=SplitOption.override)
        assert out.status == S.needs_override

        with pytest.raises(ManagerApprovalRequired):
            await ApprovalWorkflow.approve(db, out.id, reviewer)

        outcome = await ApprovalWorkflow.approve(db, out.id, reviewer, manager_approved=True)
        assert outcome.status == S.approved

    async def test_critical_task_blocks_approval(
        self, db: AsyncSession, test_employee, reviewer,
    ):
        employee_id = test_employee.id
        db.add(
            CriticalTask(
                employee_id=employee_id,
                title="Quarterly release",
                deadline=WED,
                priority="high",
                is_critical=True,
                status=TaskStatus.pending,
            )
        )
        await db.commit()
        out = await submit_leave(db, test_employee)

        with pytest.raises(ManagerApprovalRequired) as exc:
            await ApprovalWorkflow.approve(db, out.id, reviewer)
        workload = exc.value.errors["workload"]
        assert workload["requires_manager_approval"] is True
        assert workload["critical_role_adjustment"] == 20
        assert workload["critical_tasks"][0]["title"] == "Quarterly release"

        balance = await _balance(db, employee_id)
        assert balance.used_paid_days == Decimal("0")
        assert balance.pending_paid_days == Decimal("5")


# ═════════════════════════════════════════════════════════════════════
# Reject / info loop
# ═════════════════════════════════════════════════════════════════════


class TestReject:

    async def test_reject_releases_reservation(self, db: AsyncSession, test_employee, reviewer):
        out = await submit_leave(db, test_employee)

        outcome = await ApprovalWorkflow.reject(db, out.id, reviewer, reason="Release week")
        assert outcome.status == S.rejected

        request = await LeaveLifecycle.get_request(db, out.id)
        assert request.rejection_reason == "Release week"
        assert request.rejected_by == reviewer.employee_id

        balance = await _balance(db, test_employee.id)
        assert balance.pending_paid_days == Decimal("0")
        assert BalanceLedger.available(balance, BalanceCategory.paid) == Decimal("24")

    async def test_rejected_request_cannot_be_approved(
        self, db: AsyncSession, test_employee, reviewer,
    ):
        out = await submit_leave(db, test_employee)
        await ApprovalWorkflow.reject(db, out.id, reviewer, reason="No")
        with pytest.raises(StateConflict):
            await ApprovalWorkflow.approve(db, out.id, reviewer)


class TestInfoLoop:

    async def test_request_info_then_resubmit(self, db: AsyncSession, test_employee, reviewer):
        owner = acting(test_employee)
        out = await submit_leave(db, test_employee)

        request = await ApprovalWorkflow.request_info(db, out.id, reviewer, "Who covers on-call?")
        assert request.status == S.pending_info
        assert request.info_request == "Who covers on-call?"

        with pytest.raises(StateConflict):
            await ApprovalWorkflow.approve(db, out.id, reviewer)

        request = await ApprovalWorkflow.resubmit(
            db, out.id, owner, "Priya covers it",
        )
        assert request.status == S.submitted

        outcome = await ApprovalWorkflow.approve(db, out.id, reviewer)
        assert outcome.status == S.approved


# ═════════════════════════════════════════════════════════════════════
# Cancel
# ═════════════════════════════════════════════════════════════════════


class TestCancel:

    async def test_cancel_pending_releases(self, db: AsyncSession, test_employee):
        out = await submit_leave(db, test_employee)
        request = await ApprovalWorkflow.cancel(db, out.id, acting(test_employee), "Plans changed")
        assert request.status == S.cancelled
        assert request.cancelled_at is not None

        balance = await _balance(db, test_employee.id)
        assert balance.pending_paid_days == Decimal("0")
        assert BalanceLedger.available(balance, BalanceCategory.paid) == Decimal("24")

    async def test_cancel_approved_unwinds_everything(
        self, db: AsyncSession, short_employee, reviewer,
    ):
        await seed_closed_period(db, date(2026, 3, 1), date(2026, 3, 31), "2026-03")
        db.add(
            AttendanceRecord(
                employee_id=short_employee.id,
                attendance_date=MON,
                status=AttendanceStatus.absent,
            )
        )
        await db.commit()
        out = await submit_leave(db, short_employee)
        await ApprovalWorkflow.approve(db, out.id, reviewer)

        request = await ApprovalWorkflow.cancel(db, out.id, acting(short_employee))
        assert request.status == S.cancelled
        assert all(s.status == SegmentStatus.cancelled for s in request.segments)

        balance = await _balance(db, short_employee.id)
        assert balance.used_paid_days == Decimal("0")
        assert balance.used_unpaid_days == Decimal("0")
        assert BalanceLedger.available(balance, BalanceCategory.paid) == Decimal("3")

        days = await _attendance(db, short_employee.id)
        assert list(days) == [MON]
        assert days[MON].status == AttendanceStatus.absent
        assert days[MON].leave_segment_id is None

        (adjustment,) = await _adjustments(db, short_employee.id)
        assert adjustment.status == PayrollAdjustmentStatus.cancelled

    async def test_cancel_twice_conflicts(self, db: AsyncSession, test_employee):
        out = await submit_leave(db, test_employee)
        await ApprovalWorkflow.cancel(db, out.id, acting(test_employee))
        with pytest.raises(StateConflict):
            await ApprovalWorkflow.cancel(db, out.id, acting(test_employee))
