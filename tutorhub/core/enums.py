"""Status and role enums, one per state machine."""

from enum import StrEnum


class Role(StrEnum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


class SubscriptionStatus(StrEnum):
    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_RECEIVED = "payment_received"
    TEACHER_ASSIGNED = "teacher_assigned"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class WeekStatus(StrEnum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class SessionStatus(StrEnum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    STUDENT_NO_SHOW = "student_no_show"
    TEACHER_NO_SHOW = "teacher_no_show"
    STUDENT_REQUESTED_POSTPONE = "student_requested_postpone"
    POSTPONE_APPROVED = "postpone_approved"


def sql_in(enum_cls: type[StrEnum]) -> str:
    """Render the values as a SQL IN list for check constraints."""
    return "(" + ",".join(f"'{member.value}'" for member in enum_cls) + ")"
