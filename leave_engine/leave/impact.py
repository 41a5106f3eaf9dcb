"""Impact analysis for reviewers: workload risk, productivity, payroll, conflicts.

Everything here is read-only and takes no locks. ``assess_workload`` is the
piece the approval workflow consults; ``analyze`` assembles the full report
served by ``GET /leave/{id}/impact``.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leave_engine.attendance.calendar import HolidayCalendar
from leave_engine.attendance.service import AttendanceService
from leave_engine.auth.models import RoleAssignment
from leave_engine.common.constants import (
    DEDUCTIBLE_SEGMENT_TYPES,
    REVIEWER_ROLES,
    LeaveRequestStatus,
    RiskLevel,
    SegmentStatus,
    TaskStatus,
)
from leave_engine.config import settings
from leave_engine.core_hr.models import CriticalTask, Employee
from leave_engine.leave.lifecycle import LeaveLifecycle
from leave_engine.leave.models import LeaveRequest, LeaveSegment
from leave_engine.leave.schemas import (
    AlternativeWindow,
    CriticalTaskBrief,
    ImpactReport,
    LeaveHistoryLine,
    PayrollImpact,
    PayrollImpactLine,
    ProductivityImpact,
    TeamConflict,
    WorkloadRisk,
)

logger = logging.getLogger(__name__)

CRITICAL_TASK_ADJUSTMENT = 20
MANAGER_ADJUSTMENT = 10
MANAGER_APPROVAL_THRESHOLD = 60
CONFLICT_PENALTY = 20
ALTERNATIVE_CANDIDATES = 10
ALTERNATIVE_HORIZON_DAYS = 90
MAX_ALTERNATIVES = 3
HISTORY_DAYS = 183

LIVE_SEGMENT_STATUSES = (SegmentStatus.pending, SegmentStatus.approved)
CLOSED_REQUEST_STATUSES = (LeaveRequestStatus.cancelled, LeaveRequestStatus.rejected)
OPEN_TASK_STATUSES = (TaskStatus.pending, TaskStatus.in_progress)


def risk_level(score: float) -> RiskLevel:
    if score < 30:
        return RiskLevel.low
    if score < MANAGER_APPROVAL_THRESHOLD:
        return RiskLevel.medium
    return RiskLevel.high


def live_segments(request: LeaveRequest) -> list[LeaveSegment]:
    return [s for s in request.segments if s.status in LIVE_SEGMENT_STATUSES]


class ImpactAnalysis:

    # ── Team coverage ───────────────────────────────────────────────

    @staticmethod
    async def team_conflicts(
        db: AsyncSession,
        department_id: Optional[uuid.UUID],
        exclude_employee_id: uuid.UUID,
        ranges: Sequence[tuple[date, date]],
    ) -> list[TeamConflict]:
        """Department colleagues with live leave overlapping any of *ranges*."""
        if department_id is None or not ranges:
            return []
        overlap = or_(
            *(
                and_(LeaveSegment.start_date <= end, LeaveSegment.end_date >= start)
                for start, end in ranges
            )
        )
        result = await db.execute(
            select(LeaveSegment, Employee)
            .join(LeaveRequest, LeaveRequest.id == LeaveSegment.leave_request_id)
            .join(Employee, Employee.id == LeaveRequest.employee_id)
            .where(
                Employee.department_id == department_id,
                Employee.is_active.is_(True),
                Employee.id != exclude_employee_id,
                LeaveSegment.status.in_(LIVE_SEGMENT_STATUSES),
                LeaveRequest.status.not_in(CLOSED_REQUEST_STATUSES),
                overlap,
            )
            .order_by(LeaveSegment.start_date)
        )
        return [
            TeamConflict(
                employee_id=employee.id,
                employee_name=employee.full_name,
                start_date=segment.start_date,
                end_date=segment.end_date,
                segment_status=segment.status,
            )
            for segment, employee in result.all()
        ]

    @staticmethod
    async def count_conflicts(
        db: AsyncSession,
        department_id: Optional[uuid.UUID],
        exclude_employee_id: uuid.UUID,
        ranges: Sequence[tuple[date, date]],
    ) -> int:
        """Distinct colleagues off during *ranges*."""
        conflicts = await ImpactAnalysis.team_conflicts(
            db, department_id, exclude_employee_id, ranges,
        )
        return len({c.employee_id for c in conflicts})

    @staticmethod
    async def team_size(db: AsyncSession, department_id: Optional[uuid.UUID]) -> int:
        if department_id is None:
            return 1
        result = await db.execute(
            select(func.count(Employee.id)).where(
                Employee.department_id == department_id,
                Employee.is_active.is_(True),
            )
        )
        return result.scalar_one() or 0

    # ── Workload risk ───────────────────────────────────────────────

    @staticmethod
    async def assess_workload(
        db: AsyncSession,
        request: LeaveRequest,
        segments: Optional[Sequence[LeaveSegment]] = None,
    ) -> WorkloadRisk:
        """Risk score for taking *segments* (default: the request's live ones) off."""
        segments = list(segments) if segments is not None else live_segments(request)
        ranges = [(s.start_date, s.end_date) for s in segments] or [
            (request.from_date, request.to_date)
        ]
        start = min(r[0] for r in ranges)
        end = max(r[1] for r in ranges)

        team_off = await ImpactAnalysis.count_conflicts(
            db, request.department_id, request.employee_id, ranges,
        )
        team_size = await ImpactAnalysis.team_size(db, request.department_id)

        tasks = (
            await db.execute(
                select(CriticalTask)
                .where(
                    CriticalTask.employee_id == request.employee_id,
                    CriticalTask.is_critical.is_(True),
                    CriticalTask.status.in_(OPEN_TASK_STATUSES),
                    CriticalTask.deadline >= start,
                    CriticalTask.deadline <= end,
                )
                .order_by(CriticalTask.deadline)
            )
        ).scalars().all()

        has_role = (
            await db.execute(
                select(func.count(RoleAssignment.id)).where(
                    RoleAssignment.employee_id == request.employee_id,
                    RoleAssignment.is_active.is_(True),
                    RoleAssignment.role.in_(REVIEWER_ROLES),
                )
            )
        ).scalar_one() > 0

        critical_adj = CRITICAL_TASK_ADJUSTMENT if tasks else 0
        manager_adj = MANAGER_ADJUSTMENT if has_role else 0
        score = min(
            100.0,
            team_off / max(1, team_size) * 100 + critical_adj + manager_adj,
        )
        score = round(score, 2)

        return WorkloadRisk(
            risk_score=score,
            risk_level=risk_level(score),
            team_off_count=team_off,
            team_size=team_size,
            critical_role_adjustment=critical_adj,
            manager_adjustment=manager_adj,
            critical_tasks=[CriticalTaskBrief.model_validate(t) for t in tasks],
            requires_manager_approval=score >= MANAGER_APPROVAL_THRESHOLD or bool(tasks),
        )

    # ── Report sections ─────────────────────────────────────────────

    @staticmethod
    def payroll_impact(segments: Sequence[LeaveSegment]) -> PayrollImpact:
        total = Decimal("0")
        paid = Decimal("0")
        unpaid = Decimal("0")
        lines = []
        for segment in segments:
            total += Decimal(segment.payroll_deduction)
            if segment.segment_type in DEDUCTIBLE_SEGMENT_TYPES:
                unpaid += Decimal(segment.duration_days)
            else:
                paid += Decimal(segment.duration_days)
            lines.append(
                PayrollImpactLine(
                    segment_id=segment.id,
                    segment_type=segment.segment_type,
                    duration_days=segment.duration_days,
                    duration_hours=segment.duration_hours,
                    payroll_deduction=segment.payroll_deduction,
                )
            )
        return PayrollImpact(
            total_deduction=total,
            currency=settings.PAYROLL_CURRENCY,
            paid_days=paid,
            unpaid_days=unpaid,
            segments=lines,
        )

    @staticmethod
    async def suggest_alternatives(
        db: AsyncSession,
        request: LeaveRequest,
        today: date,
    ) -> list[AlternativeWindow]:
        """Up to three same-length windows in the next 3 months with the fewest conflicts."""
        length = request.to_date - request.from_date
        horizon = today + timedelta(days=ALTERNATIVE_HORIZON_DAYS)
        windows: list[AlternativeWindow] = []
        for week in range(ALTERNATIVE_CANDIDATES):
            start = today + timedelta(weeks=week)
            end = start + length
            if end > horizon:
                break
            conflicts = await ImpactAnalysis.count_conflicts(
                db, request.department_id, request.employee_id, [(start, end)],
            )
            windows.append(
                AlternativeWindow(
                    start_date=start,
                    end_date=end,
                    conflicts=conflicts,
                    score=max(0, 100 - conflicts * CONFLICT_PENALTY),
                )
            )
        windows.sort(key=lambda w: (w.conflicts, w.start_date))
        return windows[:MAX_ALTERNATIVES]

    @staticmethod
    async def leave_history(
        db: AsyncSession,
        employee_id: uuid.UUID,
        today: date,
        exclude_request_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveHistoryLine]:
        """Last six months of requests grouped by leave type."""
        query = (
            select(LeaveRequest)
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.from_date >= today - timedelta(days=HISTORY_DAYS),
                LeaveRequest.status != LeaveRequestStatus.draft,
            )
            .options(selectinload(LeaveRequest.segments))
        )
        if exclude_request_id is not None:
            query = query.where(LeaveRequest.id != exclude_request_id)
        requests = (await db.execute(query)).scalars().all()

        grouped: dict = defaultdict(lambda: {"requests": 0, "approved": 0, "days": Decimal("0")})
        for req in requests:
            bucket = grouped[req.leave_type]
            bucket["requests"] += 1
            if req.status in (LeaveRequestStatus.approved, LeaveRequestStatus.partially_approved):
                bucket["approved"] += 1
            bucket["days"] += sum(
                (Decimal(s.duration_days) for s in req.segments
                 if s.status == SegmentStatus.approved),
                Decimal("0"),
            )

        return [
            LeaveHistoryLine(
                leave_type=leave_type,
                requests=data["requests"],
                approved=data["approved"],
                total_days=data["days"],
                approval_rate=round(data["approved"] / data["requests"] * 100, 1),
            )
            for leave_type, data in sorted(grouped.items(), key=lambda kv: kv[0].value)
        ]

    @staticmethod
    async def analyze(
        db: AsyncSession,
        request_id: uuid.UUID,
        today: Optional[date] = None,
    ) -> ImpactReport:
        """Full reviewer-facing impact report for one request."""
        today = today or date.today()
        request = await LeaveLifecycle.get_request(db, request_id)
        segments = live_segments(request) or list(request.segments)
        ranges = [(s.start_date, s.end_date) for s in segments]

        workload = await ImpactAnalysis.assess_workload(db, request, segments)
        calendar = await HolidayCalendar.load(db, request.from_date, request.to_date)
        overlapping_days = sum(calendar.count_working_days(a, b) for a, b in ranges)
        avg_hours = await AttendanceService.average_daily_hours(
            db, request.department_id, today,
        )

        report = ImpactReport(
            request_id=request.id,
            workload=workload,
            productivity=ProductivityImpact(
                avg_hours_per_employee=avg_hours,
                overlapping_day_count=overlapping_days,
                productivity_loss_hours=(
                    avg_hours * workload.team_off_count * overlapping_days
                ).quantize(Decimal("0.01")),
            ),
            payroll=ImpactAnalysis.payroll_impact(segments),
            conflicts=await ImpactAnalysis.team_conflicts(
                db, request.department_id, request.employee_id, ranges,
            ),
            alternatives=await ImpactAnalysis.suggest_alternatives(db, request, today),
            leave_history=await ImpactAnalysis.leave_history(
                db, request.employee_id, today, exclude_request_id=request.id,
            ),
            attendance=await AttendanceService.snapshot(db, request.employee_id, today),
        )
        logger.debug(
            "Impact for %s: risk=%s level=%s",
            request.reference_number, workload.risk_score, workload.risk_level.value,
        )
        return report
