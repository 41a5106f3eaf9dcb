"""Core HR module — Department, Employee and CriticalTask models read by the leave engine."""

from leave_engine.core_hr.models import CriticalTask, Department, Employee

__all__ = ["Employee", "Department", "CriticalTask"]
