"""Engine error kinds.

Every rule violation in the scheduling engine is raised as one of these and
rendered by a single application-level handler. None of them is retryable:
the caller must correct its input or accept the current state.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse


class ErrorCode(Enum):
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    INVALID_STATE = "INVALID_STATE"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    SLOT_CONFLICT = "SLOT_CONFLICT"
    INCOMPLETE_WEEK = "INCOMPLETE_WEEK"
    INSUFFICIENT_CREDIT = "INSUFFICIENT_CREDIT"
    INVALID_SLOT = "INVALID_SLOT"
    DUPLICATE_RULE = "DUPLICATE_RULE"
    INVALID_WEBHOOK_SIGNATURE = "INVALID_WEBHOOK_SIGNATURE"


class EngineError(Exception):
    code: ErrorCode = ErrorCode.INVALID_STATE
    status_code: int = 409

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code.value, **self.extra}


class NotFound(EngineError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class Forbidden(EngineError):
    code = ErrorCode.FORBIDDEN
    status_code = 403


class InvalidState(EngineError):
    code = ErrorCode.INVALID_STATE
    status_code = 409


class AlreadyCompleted(InvalidState):
    code = ErrorCode.ALREADY_COMPLETED

    def __init__(self, session_id: int) -> None:
        super().__init__("Session is already completed", session_id=session_id)
        self.session_id = session_id


class CapacityExceeded(EngineError):
    code = ErrorCode.CAPACITY_EXCEEDED
    status_code = 409


class SlotConflict(EngineError):
    code = ErrorCode.SLOT_CONFLICT
    status_code = 409

    def __init__(self, message: str, *, week_index: int | None) -> None:
        super().__init__(message, week_index=week_index)
        self.week_index = week_index


class IncompleteWeek(EngineError):
    code = ErrorCode.INCOMPLETE_WEEK
    status_code = 409


class InsufficientCredit(EngineError):
    code = ErrorCode.INSUFFICIENT_CREDIT
    status_code = 409


class InvalidSlot(EngineError):
    code = ErrorCode.INVALID_SLOT
    status_code = 422


class DuplicateRule(EngineError):
    code = ErrorCode.DUPLICATE_RULE
    status_code = 409


class InvalidWebhookSignature(EngineError):
    code = ErrorCode.INVALID_WEBHOOK_SIGNATURE
    status_code = 401


async def _engine_error_handler(_request: Request, exc: EngineError) -> ORJSONResponse:
    return ORJSONResponse(status_code=exc.status_code, content=exc.to_payload())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngineError, _engine_error_handler)
