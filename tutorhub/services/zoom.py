from __future__ import annotations

import base64
import time
from datetime import datetime
from typing import Any

import httpx

from tutorhub.core.config import settings

_TOKEN_URL = "https://zoom.us/oauth/token"
_API_BASE = "https://api.zoom.us/v2"

_token_cache: dict[str, Any] = {"token": "", "expires_at": 0.0}


class ConferencingError(RuntimeError):
    pass


def _basic_auth(client_id: str, client_secret: str) -> str:
    raw = f"{client_id}:{client_secret}".encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def reset_token_cache() -> None:
    _token_cache["token"] = ""
    _token_cache["expires_at"] = 0.0


async def _access_token() -> str:
    if _token_cache["token"] and time.monotonic() < float(_token_cache["expires_at"]):
        return str(_token_cache["token"])
    if not settings.zoom_configured:
        raise ConferencingError("Zoom credentials are missing")

    headers = {"Authorization": f"Basic {_basic_auth(settings.zoom_client_id, settings.zoom_client_secret)}"}
    params = {"grant_type": "account_credentials", "account_id": settings.zoom_account_id}
    async with httpx.AsyncClient(timeout=settings.zoom_timeout_seconds) as client:
        res = await client.post(_TOKEN_URL, params=params, headers=headers)
    if not res.is_success:
        raise ConferencingError(f"Zoom oauth error ({res.status_code}): {res.text}")
    payload = res.json()
    token = str(payload.get("access_token") or "")
    if not token:
        raise ConferencingError("Zoom oauth did not return an access_token")
    # Refresh a minute early.
    expires_in = int(payload.get("expires_in") or 3600)
    _token_cache["token"] = token
    _token_cache["expires_at"] = time.monotonic() + max(expires_in - 60, 0)
    return token


async def create_meeting(*, topic: str, start_at: datetime, duration_minutes: int) -> dict[str, str]:
    """Create a scheduled meeting at the given wall-clock start."""
    token = await _access_token()
    body = {
        "topic": topic[:200],
        "type": 2,
        # Local time without offset; Zoom applies ``timezone``.
        "start_time": start_at.strftime("%Y-%m-%dT%H:%M:%S"),
        "duration": max(int(duration_minutes), 1),
        "timezone": settings.zoom_timezone,
        "settings": {"join_before_host": False, "waiting_room": True},
    }
    headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
    async with httpx.AsyncClient(timeout=settings.zoom_timeout_seconds) as client:
        res = await client.post(f"{_API_BASE}/users/{settings.zoom_user_id}/meetings", json=body, headers=headers)
    if res.status_code == 401:
        reset_token_cache()
    if not res.is_success:
        raise ConferencingError(f"Zoom create meeting error ({res.status_code}): {res.text}")
    payload = res.json()
    join_url = str(payload.get("join_url") or "")
    if not join_url:
        raise ConferencingError("Zoom create meeting did not return a join_url")
    return {
        "meeting_id": str(payload.get("id") or ""),
        "join_url": join_url,
        "start_url": str(payload.get("start_url") or ""),
    }
