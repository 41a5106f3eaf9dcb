"""001 – Leave ledger schema: enums, org/auth tables, ledger, payroll, queue, jobs.

Revision ID: 001_leave_ledger_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+05:30
"""

from alembic import op

# Revision identifiers
revision = "001_leave_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("user_role", ["employee", "manager", "hr_admin", "system_admin"]),
    ("task_status", ["pending", "in_progress", "completed", "cancelled"]),
    (
        "attendance_status",
        ["present", "absent", "half_day", "weekend", "holiday", "on_leave"],
    ),
    (
        "requested_leave_type",
        ["paid", "sick", "unpaid", "maternity", "paternity", "comp_off", "other"],
    ),
    (
        "leave_segment_type",
        [
            "paid",
            "unpaid",
            "sick_paid",
            "sick_unpaid",
            "maternity_paid",
            "paternity_paid",
            "compensatory_off",
            "other",
        ],
    ),
    ("leave_duration_type", ["full_day", "half_day", "custom_hours"]),
    (
        "leave_request_status",
        [
            "draft",
            "submitted",
            "pending_info",
            "submitted_auto_split",
            "needs_override",
            "approved",
            "partially_approved",
            "rejected",
            "cancelled",
        ],
    ),
    ("leave_segment_status", ["pending", "approved", "rejected", "cancelled"]),
    (
        "leave_audit_action",
        [
            "created",
            "submitted",
            "auto_split",
            "override_requested",
            "info_requested",
            "info_provided",
            "approved",
            "partially_approved",
            "rejected",
            "cancelled",
            "balance_adjusted",
            "payroll_processed",
            "attendance_updated",
        ],
    ),
    ("payroll_period_status", ["open", "processing", "closed", "archived"]),
    ("payroll_adjustment_status", ["pending", "processed", "cancelled"]),
    ("merge_queue_status", ["pending", "confirmed", "ignored", "processed"]),
]

TABLES_IN_DROP_ORDER = [
    "job_locks",
    "merge_queue_entries",
    "payroll_adjustments",
    "payroll_periods",
    "employee_contracts",
    "leave_audit_log",
    "attendance_records",
    "leave_segments",
    "leave_reference_sequences",
    "leave_requests",
    "leave_balances",
    "public_holidays",
    "critical_tasks",
    "role_assignments",
    "user_sessions",
    "employees",
    "departments",
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. departments / employees ────────────────────────────────────────
    op.execute("""
        CREATE TABLE departments (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name        VARCHAR(150) NOT NULL,
            code        VARCHAR(20) UNIQUE,
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            updated_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE TABLE employees (
            id                   UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_code        VARCHAR(20)  NOT NULL UNIQUE,
            first_name           VARCHAR(100) NOT NULL,
            last_name            VARCHAR(100) NOT NULL,
            display_name         VARCHAR(255),
            email                VARCHAR(255) NOT NULL UNIQUE,
            department_id        UUID REFERENCES departments(id),
            reporting_manager_id UUID REFERENCES employees(id),
            date_of_joining      DATE NOT NULL,
            is_active            BOOLEAN DEFAULT TRUE,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_employees_department ON employees(department_id)")

    # ── 2. auth ───────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE user_sessions (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            token_hash  VARCHAR(512) NOT NULL,
            expires_at  TIMESTAMPTZ NOT NULL,
            is_revoked  BOOLEAN DEFAULT FALSE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_user_sessions_token_hash ON user_sessions(token_hash)")

    op.execute("""
        CREATE TABLE role_assignments (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            role        user_role NOT NULL,
            assigned_at TIMESTAMPTZ DEFAULT NOW(),
            is_active   BOOLEAN DEFAULT TRUE
        )
    """)

    # ── 3. critical tasks / holidays ──────────────────────────────────────
    op.execute("""
        CREATE TABLE critical_tasks (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id UUID NOT NULL REFERENCES employees(id),
            title       VARCHAR(255) NOT NULL,
            deadline    DATE NOT NULL,
            priority    VARCHAR(20) DEFAULT 'medium',
            is_critical BOOLEAN DEFAULT FALSE,
            status      task_status DEFAULT 'pending',
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_critical_tasks_employee_deadline "
        "ON critical_tasks(employee_id, deadline)"
    )

    op.execute("""
        CREATE TABLE public_holidays (
            id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            holiday_date DATE NOT NULL UNIQUE,
            name         VARCHAR(150) NOT NULL,
            is_mandatory BOOLEAN DEFAULT TRUE,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 4. leave ledger ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id                        UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id               UUID NOT NULL REFERENCES employees(id),
            year                      INTEGER NOT NULL,
            total_allocated_paid_days NUMERIC(5,1) NOT NULL DEFAULT 24,
            total_allocated_sick_days NUMERIC(5,1) NOT NULL DEFAULT 7,
            carried_forward_days      NUMERIC(5,1) NOT NULL DEFAULT 0,
            used_paid_days            NUMERIC(5,1) NOT NULL DEFAULT 0,
            used_sick_days            NUMERIC(5,1) NOT NULL DEFAULT 0,
            used_unpaid_days          NUMERIC(5,1) NOT NULL DEFAULT 0,
            pending_paid_days         NUMERIC(5,1) NOT NULL DEFAULT 0,
            pending_sick_days         NUMERIC(5,1) NOT NULL DEFAULT 0,
            available_paid_days       NUMERIC(5,1) GENERATED ALWAYS AS (
                total_allocated_paid_days + carried_forward_days
                - used_paid_days - pending_paid_days
            ) STORED,
            available_sick_days       NUMERIC(5,1) GENERATED ALWAYS AS (
                total_allocated_sick_days - used_sick_days - pending_sick_days
            ) STORED,
            last_updated              TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance_emp_year UNIQUE (employee_id, year)
        )
    """)

    op.execute("""
        CREATE TABLE leave_requests (
            id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            reference_number VARCHAR(20) NOT NULL UNIQUE,
            employee_id      UUID NOT NULL REFERENCES employees(id),
            department_id    UUID REFERENCES departments(id),
            manager_id       UUID REFERENCES employees(id),
            leave_type       requested_leave_type NOT NULL,
            from_date        DATE NOT NULL,
            to_date          DATE NOT NULL,
            duration_type    leave_duration_type NOT NULL DEFAULT 'full_day',
            status           leave_request_status NOT NULL DEFAULT 'draft',
            reason           TEXT,
            contact_info     VARCHAR(255),
            attachments      JSONB NOT NULL DEFAULT '[]'::jsonb,
            is_auto_split    BOOLEAN NOT NULL DEFAULT FALSE,
            split_rationale  JSONB,
            info_request     TEXT,
            approved_by      UUID REFERENCES employees(id),
            approved_at      TIMESTAMPTZ,
            rejected_by      UUID REFERENCES employees(id),
            rejected_at      TIMESTAMPTZ,
            rejection_reason TEXT,
            cancelled_at     TIMESTAMPTZ,
            version          INTEGER NOT NULL DEFAULT 1,
            last_modified_by UUID REFERENCES employees(id),
            last_modified    TIMESTAMPTZ DEFAULT NOW(),
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_request_dates CHECK (from_date <= to_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_employee_status "
        "ON leave_requests(employee_id, status)"
    )
    op.execute("CREATE INDEX ix_leave_requests_department ON leave_requests(department_id)")

    op.execute("""
        CREATE TABLE leave_reference_sequences (
            year        INTEGER PRIMARY KEY,
            last_number INTEGER NOT NULL DEFAULT 0,
            updated_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE TABLE leave_segments (
            id                UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            leave_request_id  UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            sequence          INTEGER NOT NULL DEFAULT 1,
            segment_type      leave_segment_type NOT NULL,
            start_date        DATE NOT NULL,
            end_date          DATE NOT NULL,
            duration_type     leave_duration_type NOT NULL DEFAULT 'full_day',
            duration_days     NUMERIC(5,1) NOT NULL,
            duration_hours    NUMERIC(7,2) NOT NULL,
            hourly_rate       NUMERIC(10,2) NOT NULL DEFAULT 0,
            payroll_deduction NUMERIC(12,2) NOT NULL DEFAULT 0,
            status            leave_segment_status NOT NULL DEFAULT 'pending',
            approved_by       UUID REFERENCES employees(id),
            approved_at       TIMESTAMPTZ,
            rejected_by       UUID REFERENCES employees(id),
            rejected_at       TIMESTAMPTZ,
            rejection_reason  TEXT,
            balance_reserved  BOOLEAN NOT NULL DEFAULT FALSE,
            balance_debited   BOOLEAN NOT NULL DEFAULT FALSE,
            payroll_processed BOOLEAN NOT NULL DEFAULT FALSE,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_segment_dates CHECK (start_date <= end_date)
        )
    """)
    op.execute("CREATE INDEX ix_leave_segments_request ON leave_segments(leave_request_id)")
    op.execute("CREATE INDEX ix_leave_segments_dates ON leave_segments(start_date, end_date)")

    op.execute("""
        CREATE TABLE attendance_records (
            id                 UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id        UUID NOT NULL REFERENCES employees(id),
            attendance_date    DATE NOT NULL,
            status             attendance_status NOT NULL DEFAULT 'absent',
            total_work_minutes INTEGER,
            source             VARCHAR(50) DEFAULT 'system',
            leave_segment_id   UUID REFERENCES leave_segments(id),
            previous_status    attendance_status,
            remarks            TEXT,
            created_at         TIMESTAMPTZ DEFAULT NOW(),
            updated_at         TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_attendance_emp_date UNIQUE (employee_id, attendance_date)
        )
    """)

    # Append-only: no UPDATE/DELETE grants are issued for this table
    op.execute("""
        CREATE TABLE leave_audit_log (
            id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            leave_request_id UUID NOT NULL REFERENCES leave_requests(id),
            leave_segment_id UUID REFERENCES leave_segments(id),
            actor_id         UUID REFERENCES employees(id),
            action           leave_audit_action NOT NULL,
            comment          TEXT,
            details          JSONB NOT NULL,
            created_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_leave_audit_request ON leave_audit_log(leave_request_id)")
    op.execute("CREATE INDEX ix_leave_audit_action ON leave_audit_log(action)")

    # ── 5. payroll ────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employee_contracts (
            id                       UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id              UUID NOT NULL REFERENCES employees(id),
            monthly_salary           NUMERIC(12,2) NOT NULL,
            contracted_monthly_hours NUMERIC(6,2) NOT NULL DEFAULT 160,
            effective_from           DATE NOT NULL,
            effective_to             DATE,
            is_active                BOOLEAN DEFAULT TRUE,
            created_at               TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE UNIQUE INDEX uq_employee_contracts_one_active "
        "ON employee_contracts(employee_id) WHERE is_active"
    )

    op.execute("""
        CREATE TABLE payroll_periods (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            period_code VARCHAR(7) NOT NULL UNIQUE,
            start_date  DATE NOT NULL,
            end_date    DATE NOT NULL,
            status      payroll_period_status DEFAULT 'open',
            closed_at   TIMESTAMPTZ,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE TABLE payroll_adjustments (
            id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id      UUID NOT NULL REFERENCES employees(id),
            leave_request_id UUID NOT NULL REFERENCES leave_requests(id),
            leave_segment_id UUID NOT NULL REFERENCES leave_segments(id),
            period_code      VARCHAR(7) NOT NULL,
            amount           NUMERIC(12,2) NOT NULL,
            reason           TEXT,
            status           payroll_adjustment_status DEFAULT 'pending',
            processed_by     UUID REFERENCES employees(id),
            processed_at     TIMESTAMPTZ,
            notes            TEXT,
            created_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_payroll_adjustments_status ON payroll_adjustments(status)")
    op.execute("CREATE INDEX ix_payroll_adjustments_employee ON payroll_adjustments(employee_id)")

    # ── 6. merge queue / job leases ───────────────────────────────────────
    op.execute("""
        CREATE TABLE merge_queue_entries (
            id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id      UUID NOT NULL REFERENCES employees(id),
            entry_date       DATE NOT NULL,
            reason           TEXT NOT NULL,
            status           merge_queue_status NOT NULL DEFAULT 'pending',
            leave_request_id UUID REFERENCES leave_requests(id),
            processed_by     UUID REFERENCES employees(id),
            processed_at     TIMESTAMPTZ,
            escalated        BOOLEAN NOT NULL DEFAULT FALSE,
            escalated_at     TIMESTAMPTZ,
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_merge_queue_emp_date UNIQUE (employee_id, entry_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_merge_queue_status_created "
        "ON merge_queue_entries(status, created_at)"
    )

    op.execute("""
        CREATE TABLE job_locks (
            job_name     VARCHAR(100) PRIMARY KEY,
            holder       VARCHAR(255),
            locked_until TIMESTAMPTZ,
            last_run_at  TIMESTAMPTZ
        )
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    for table in TABLES_IN_DROP_ORDER:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
