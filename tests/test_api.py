"""HTTP-level tests: auth, role and ownership checks, problem-detail errors."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import UserRole
from leave_engine.leave.approval import ApprovalWorkflow
from leave_engine.merge_queue.models import MergeQueueEntry
from leave_engine.merge_queue.schemas import ReconciliationResult
from leave_engine.merge_queue.service import REASON_NO_RECORD
from tests.conftest import (
    FRI,
    MON,
    acting,
    auth_headers_for,
    create_access_token,
    seed_balance,
    seed_closed_period,
    seed_department,
    seed_employee,
    submit_leave,
)

LEAVE = "/api/v1/leave"
QUEUE = "/api/v1/merge-queue"
PAYROLL = "/api/v1/payroll"

WEEK = {"leave_type": "paid", "from_date": MON.isoformat(), "to_date": FRI.isoformat()}


@pytest.fixture
async def employee_headers(db, test_employee):
    return await auth_headers_for(db, test_employee.id)


@pytest.fixture
async def manager_headers(db, test_manager):
    return await auth_headers_for(db, test_manager.id, UserRole.manager)


@pytest.fixture
async def hr_user(db):
    """HR admin in a department of their own."""
    dept = await seed_department(db, name="People Ops")
    return await seed_employee(db, department_id=dept.id, first_name="HR")


@pytest.fixture
async def hr_headers(db, hr_user):
    return await auth_headers_for(db, hr_user.id, UserRole.hr_admin)


async def _submit(client: AsyncClient, headers: dict, body: dict = WEEK) -> dict:
    resp = await client.post(f"{LEAVE}/submit", json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["request"]


# ═════════════════════════════════════════════════════════════════════
# System / auth
# ═════════════════════════════════════════════════════════════════════


class TestHealth:

    async def test_health(self, client: AsyncClient):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["jobs"] == []

    async def test_openapi_resolves_router_annotations(self, client: AsyncClient):
        resp = await client.get("/openapi.json")
        assert resp.status_code == 200
        paths = resp.json()["paths"]
        submit = paths["/api/v1/leave/submit"]["post"]
        assert submit["requestBody"]["content"]["application/json"]["schema"]["$ref"].endswith(
            "LeaveSubmitRequest"
        )
        assert "/api/v1/merge-queue/{entry_id}/mark-as-leave" in paths
        assert "/api/v1/payroll/adjustments/{adjustment_id}/process" in paths


class TestAuthentication:

    async def test_missing_token(self, client: AsyncClient):
        resp = await client.post(f"{LEAVE}/calculate", json=WEEK)
        assert resp.status_code == 401

    async def test_expired_token(self, client: AsyncClient, test_employee):
        token = create_access_token(test_employee.id, expired=True)
        resp = await client.post(
            f"{LEAVE}/calculate", json=WEEK, headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 401

    async def test_token_without_session(self, client: AsyncClient, test_employee):
        token = create_access_token(test_employee.id)
        resp = await client.post(
            f"{LEAVE}/calculate", json=WEEK, headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 401

    async def test_employee_cannot_approve(self, client: AsyncClient, employee_headers):
        resp = await client.post(
            f"{LEAVE}/{uuid.uuid4()}/approve", json={}, headers=employee_headers,
        )
        assert resp.status_code == 403
        assert resp.headers["content-type"].startswith("application/problem+json")


# ═════════════════════════════════════════════════════════════════════
# Leave endpoints
# ═════════════════════════════════════════════════════════════════════


class TestCalculateAndSubmit:

    async def test_calculate_shows_split(self, client: AsyncClient, db: AsyncSession, test_department):
        employee = await seed_employee(db, department_id=test_department.id)
        await seed_balance(db, employee.id, paid=Decimal("3"))
        headers = await auth_headers_for(db, employee.id)

        resp = await client.post(f"{LEAVE}/calculate", json=WEEK, headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert Decimal(body["balance"]["available_paid_days"]) == Decimal("3")
        analysis = body["analysis"]
        assert analysis["needs_split"] is True
        assert [s["segment_type"] for s in analysis["segments"]] == ["paid", "unpaid"]
        assert "only 3 remain" in analysis["warning"]

    async def test_submit_reserves_balance(self, client: AsyncClient, employee_headers, test_employee):
        request = await _submit(client, employee_headers)
        assert request["status"] == "submitted"
        assert request["reference_number"] == "LR-2026-0001"

        resp = await client.get(
            f"{LEAVE}/balance/{test_employee.id}", params={"year": 2026}, headers=employee_headers,
        )
        assert resp.status_code == 200
        assert Decimal(resp.json()["pending_paid_days"]) == Decimal("5")

    async def test_overlap_rejected(self, client: AsyncClient, employee_headers):
        await _submit(client, employee_headers)
        resp = await client.post(f"{LEAVE}/submit", json=WEEK, headers=employee_headers)
        assert resp.status_code == 422
        assert "dates" in resp.json()["errors"]

    async def test_inverted_dates_fail_validation(self, client: AsyncClient, employee_headers):
        body = {**WEEK, "from_date": FRI.isoformat(), "to_date": MON.isoformat()}
        resp = await client.post(f"{LEAVE}/submit", json=body, headers=employee_headers)
        assert resp.status_code == 422


class TestReview:

    async def test_manager_approves(
        self, client: AsyncClient, employee_headers, manager_headers,
    ):
        request = await _submit(client, employee_headers)

        resp = await client.post(
            f"{LEAVE}/{request['id']}/approve", json={"comment": "OK"}, headers=manager_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"

        detail = await client.get(f"{LEAVE}/{request['id']}", headers=employee_headers)
        assert detail.status_code == 200
        actions = [e["action"] for e in detail.json()["audit_trail"]]
        assert actions[0] == "created"
        assert "approved" in actions

        again = await client.post(
            f"{LEAVE}/{request['id']}/approve", json={}, headers=manager_headers,
        )
        assert again.status_code == 409

    async def test_cannot_review_own_request(self, client: AsyncClient, manager_headers):
        request = await _submit(client, manager_headers)
        resp = await client.post(
            f"{LEAVE}/{request['id']}/approve", json={}, headers=manager_headers,
        )
        assert resp.status_code == 403

    async def test_manager_outside_team_forbidden(
        self, client: AsyncClient, db: AsyncSession, employee_headers,
    ):
        other_dept = await seed_department(db, name="Finance")
        outsider = await seed_employee(db, department_id=other_dept.id, first_name="Outsider")
        headers = await auth_headers_for(db, outsider.id, UserRole.manager)
        request = await _submit(client, employee_headers)

        resp = await client.post(f"{LEAVE}/{request['id']}/approve", json={}, headers=headers)
        assert resp.status_code == 403
        resp = await client.get(f"{LEAVE}/{request['id']}", headers=headers)
        assert resp.status_code == 403

    async def test_hr_reviews_any_department(self, client: AsyncClient, employee_headers, hr_headers):
        request = await _submit(client, employee_headers)
        resp = await client.post(
            f"{LEAVE}/{request['id']}/reject", json={"reason": "Audit week"}, headers=hr_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "rejected"

    async def test_reject_requires_reason(self, client: AsyncClient, employee_headers, manager_headers):
        request = await _submit(client, employee_headers)
        resp = await client.post(f"{LEAVE}/{request['id']}/reject", json={}, headers=manager_headers)
        assert resp.status_code == 422

    async def test_override_needs_sign_off(
        self, client: AsyncClient, db: AsyncSession, test_department, manager_headers,
    ):
        employee = await seed_employee(db, department_id=test_department.id)
        await seed_balance(db, employee.id, paid=Decimal("3"))
        headers = await auth_headers_for(db, employee.id)
        request = await _submit(client, headers, {**WEEK, "split_option": "override"})
        assert request["status"] == "needs_override"

        resp = await client.post(
            f"{LEAVE}/{request['id']}/approve", json={}, headers=manager_headers,
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["type"].endswith("/manager-approval-required")
        assert "workload" in body["errors"]

        resp = await client.post(
            f"{LEAVE}/{request['id']}/approve",
            json={"manager_approved": True},
            headers=manager_headers,
        )
        assert resp.status_code == 200

    async def test_impact_report(self, client: AsyncClient, employee_headers, manager_headers):
        request = await _submit(client, employee_headers)
        resp = await client.get(f"{LEAVE}/{request['id']}/impact", headers=manager_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["workload"]["risk_level"] == "low"
        assert body["productivity"]["overlapping_day_count"] == 5

    async def test_info_loop(self, client: AsyncClient, employee_headers, manager_headers, hr_headers):
        request = await _submit(client, employee_headers)

        resp = await client.post(
            f"{LEAVE}/{request['id']}/request-info",
            json={"question": "Who covers support?"},
            headers=manager_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "pending_info"

        resp = await client.post(
            f"{LEAVE}/{request['id']}/resubmit", json={"response": "Me"}, headers=hr_headers,
        )
        assert resp.status_code == 403

        resp = await client.post(
            f"{LEAVE}/{request['id']}/resubmit",
            json={"response": "Priya covers support"},
            headers=employee_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "submitted"


class TestOwnership:

    async def test_cancel_by_owner_only(
        self, client: AsyncClient, employee_headers, manager_headers,
    ):
        request = await _submit(client, employee_headers)

        resp = await client.post(f"{LEAVE}/{request['id']}/cancel", json={}, headers=manager_headers)
        assert resp.status_code == 403

        resp = await client.post(
            f"{LEAVE}/{request['id']}/cancel", json={"reason": "Trip off"}, headers=employee_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

    async def test_balance_of_someone_else(
        self, client: AsyncClient, employee_headers, hr_headers, test_manager,
    ):
        resp = await client.get(f"{LEAVE}/balance/{test_manager.id}", headers=employee_headers)
        assert resp.status_code == 403
        resp = await client.get(f"{LEAVE}/balance/{test_manager.id}", headers=hr_headers)
        assert resp.status_code == 200

    async def test_colleague_cannot_view_request(
        self, client: AsyncClient, db: AsyncSession, employee_headers, test_department,
    ):
        colleague = await seed_employee(db, department_id=test_department.id, first_name="Peer")
        headers = await auth_headers_for(db, colleague.id)
        request = await _submit(client, employee_headers)

        resp = await client.get(f"{LEAVE}/{request['id']}", headers=headers)
        assert resp.status_code == 403


class TestListRequests:

    async def test_scopes(
        self, client: AsyncClient, employee_headers, manager_headers, hr_headers,
    ):
        await _submit(client, employee_headers)

        mine = await client.get(f"{LEAVE}/requests", headers=manager_headers)
        assert mine.json()["meta"]["total"] == 0

        team = await client.get(f"{LEAVE}/requests", params={"scope": "team"}, headers=manager_headers)
        assert team.status_code == 200
        assert team.json()["meta"]["total"] == 1

        resp = await client.get(f"{LEAVE}/requests", params={"scope": "all"}, headers=employee_headers)
        assert resp.status_code == 403
        resp = await client.get(f"{LEAVE}/requests", params={"scope": "team"}, headers=employee_headers)
        assert resp.status_code == 403

        everything = await client.get(
            f"{LEAVE}/requests", params={"scope": "all", "status": "submitted"}, headers=hr_headers,
        )
        assert everything.json()["meta"]["total"] == 1
        assert everything.json()["data"][0]["status"] == "submitted"


# ═════════════════════════════════════════════════════════════════════
# Merge queue endpoints
# ═════════════════════════════════════════════════════════════════════


@pytest.fixture
async def queue_entry(db, test_employee):
    entry = MergeQueueEntry(employee_id=test_employee.id, entry_date=MON, reason=REASON_NO_RECORD)
    db.add(entry)
    await db.commit()
    return entry


class TestMergeQueueApi:

    async def test_my_entries(self, client: AsyncClient, employee_headers, manager_headers, queue_entry):
        resp = await client.get(f"{QUEUE}/my-entries", headers=employee_headers)
        assert resp.status_code == 200
        assert [e["id"] for e in resp.json()] == [str(queue_entry.id)]

        resp = await client.get(f"{QUEUE}/my-entries", headers=manager_headers)
        assert resp.json() == []

    async def test_confirm_owner_only(
        self, client: AsyncClient, employee_headers, manager_headers, queue_entry,
    ):
        url = f"{QUEUE}/{queue_entry.id}/confirm"
        resp = await client.post(url, json={"leave_type": "paid"}, headers=manager_headers)
        assert resp.status_code == 403

        resp = await client.post(url, json={"leave_type": "paid"}, headers=employee_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "confirmed"

    async def test_ignore_twice_conflicts(self, client: AsyncClient, employee_headers, queue_entry):
        url = f"{QUEUE}/{queue_entry.id}/ignore"
        assert (await client.post(url, headers=employee_headers)).status_code == 200
        assert (await client.post(url, headers=employee_headers)).status_code == 409

    async def test_mark_as_leave_requires_hr(
        self, client: AsyncClient, employee_headers, hr_headers, queue_entry,
    ):
        url = f"{QUEUE}/{queue_entry.id}/mark-as-leave"
        resp = await client.post(url, json={}, headers=employee_headers)
        assert resp.status_code == 403

        resp = await client.post(url, json={"leave_type": "paid"}, headers=hr_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "processed"

    async def test_all_entries_for_hr(self, client: AsyncClient, hr_headers, manager_headers, queue_entry):
        resp = await client.get(f"{QUEUE}/all", headers=hr_headers)
        assert resp.status_code == 200
        assert resp.json()["meta"]["total"] == 1

        resp = await client.get(f"{QUEUE}/all", headers=manager_headers)
        assert resp.status_code == 403

    async def test_manual_run(self, client: AsyncClient, hr_headers, employee_headers):
        result = ReconciliationResult(
            run_date=date(2026, 3, 3), target_date=MON, created=4, escalated=1,
        )
        job = AsyncMock(return_value=result)
        with patch("leave_engine.merge_queue.router.run_reconciliation_job", job):
            resp = await client.post(
                f"{QUEUE}/run", params={"run_date": "2026-03-03"}, headers=hr_headers,
            )
            forbidden = await client.post(f"{QUEUE}/run", headers=employee_headers)

        assert resp.status_code == 200
        assert resp.json()["created"] == 4
        job.assert_awaited_once_with(date(2026, 3, 3))
        assert forbidden.status_code == 403

    async def test_manual_run_is_rate_limited(self, client: AsyncClient, hr_headers):
        result = ReconciliationResult(run_date=date(2026, 3, 3), target_date=MON)
        with patch(
            "leave_engine.merge_queue.router.run_reconciliation_job",
            AsyncMock(return_value=result),
        ):
            codes = [
                (await client.post(f"{QUEUE}/run", headers=hr_headers)).status_code
                for _ in range(6)
            ]
        assert codes[:5] == [200] * 5
        assert codes[5] == 429


# ═════════════════════════════════════════════════════════════════════
# Payroll endpoints
# ═════════════════════════════════════════════════════════════════════


class TestPayrollApi:

    @pytest.fixture
    async def adjustment_id(self, db, test_department, test_manager):
        await seed_closed_period(db, date(2026, 3, 1), date(2026, 3, 31), "2026-03")
        employee = await seed_employee(db, department_id=test_department.id)
        await seed_balance(db, employee.id, paid=Decimal("3"))

        request = await submit_leave(db, employee)
        outcome = await ApprovalWorkflow.approve(
            db, request.id, acting(test_manager, UserRole.manager),
        )
        return outcome.payroll_adjustment_ids[0]

    async def test_list_and_process(self, client: AsyncClient, hr_headers, adjustment_id):
        resp = await client.get(
            f"{PAYROLL}/adjustments", params={"period_code": "2026-03"}, headers=hr_headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["meta"]["total"] == 1
        assert Decimal(body["data"][0]["amount"]) == Decimal("4000.00")

        url = f"{PAYROLL}/adjustments/{adjustment_id}/process"
        resp = await client.post(url, json={"notes": "Paid in April run"}, headers=hr_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "processed"
        assert resp.json()["notes"] == "Paid in April run"

        again = await client.post(url, json={}, headers=hr_headers)
        assert again.status_code == 409

        pending = await client.get(f"{PAYROLL}/adjustments", headers=hr_headers)
        assert pending.json()["meta"]["total"] == 0

    async def test_requires_hr(self, client: AsyncClient, manager_headers, adjustment_id):
        resp = await client.get(f"{PAYROLL}/adjustments", headers=manager_headers)
        assert resp.status_code == 403

    async def test_bad_period_code(self, client: AsyncClient, hr_headers):
        resp = await client.get(
            f"{PAYROLL}/adjustments", params={"period_code": "March"}, headers=hr_headers,
        )
        assert resp.status_code == 422
