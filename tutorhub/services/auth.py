from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import HTTPException, status

from tutorhub.core.config import settings
from tutorhub.core.enums import Role
from tutorhub.core.errors import Forbidden


@dataclass(frozen=True, slots=True)
class Actor:
    """The identity an operation acts as. Always passed explicitly."""

    profile_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_teacher(self) -> bool:
        return self.role == Role.TEACHER

    @property
    def is_student(self) -> bool:
        return self.role == Role.STUDENT


def decode_token(token: str) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "algorithms": [settings.jwt_algorithm],
        "leeway": settings.jwt_exp_leeway_seconds,
    }

    if settings.jwt_audience:
        kwargs["audience"] = settings.jwt_audience
    else:
        kwargs["options"] = {"verify_aud": False}

    if settings.jwt_issuer:
        kwargs["issuer"] = settings.jwt_issuer

    try:
        payload = jwt.decode(token, settings.jwt_secret, **kwargs)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    return payload


def parse_role(raw: Any) -> Role:
    value = str(raw or "").strip().lower()
    if value in {"administrator", "admin"}:
        return Role.ADMIN
    if value in {"teacher", "instructor", "prof"}:
        return Role.TEACHER
    if value == "student":
        return Role.STUDENT
    raise HTTPException(status_code=401, detail="Unknown role claim")


def parse_claims(payload: dict[str, Any]) -> Actor:
    raw_id = payload.get("profile_id") or payload.get("sub")
    try:
        profile_id = int(raw_id)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=401, detail="Invalid profile_id claim") from exc

    role = payload.get("role")
    if role is None:
        roles = payload.get("roles") or []
        role = roles[0] if isinstance(roles, list) and roles else None
    return Actor(profile_id=profile_id, role=parse_role(role))


def require_role(actor: Actor, *allowed: Role) -> None:
    if actor.role not in allowed:
        raise Forbidden("Forbidden")


def ensure_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise Forbidden("Admin only")


def ensure_student_owner(actor: Actor, subscription: Any) -> None:
    if actor.is_admin:
        return
    if actor.is_student and subscription.student_id == actor.profile_id:
        return
    raise Forbidden("Only the subscribed student can do this")


def ensure_assigned_teacher(actor: Actor, subscription: Any) -> None:
    if actor.is_admin:
        return
    if actor.is_teacher and subscription.teacher_id is not None and subscription.teacher_id == actor.profile_id:
        return
    raise Forbidden("Only the assigned teacher or an admin can do this")


def ensure_participant(actor: Actor, subscription: Any) -> None:
    if actor.is_admin:
        return
    if actor.is_student and subscription.student_id == actor.profile_id:
        return
    if actor.is_teacher and subscription.teacher_id == actor.profile_id:
        return
    raise Forbidden("Forbidden")


def ensure_teacher_self_or_admin(actor: Actor, teacher_id: int) -> None:
    if actor.is_admin:
        return
    if actor.is_teacher and actor.profile_id == teacher_id:
        return
    raise Forbidden("Only the teacher owner or an admin can manage this resource")
