from __future__ import annotations

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tutorhub.services.auth import Actor, decode_token, parse_claims, parse_role

bearer = HTTPBearer(auto_error=False)


async def get_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    x_profile_id: int | None = Header(default=None, alias="X-Profile-Id"),
    x_profile_role: str | None = Header(default=None, alias="X-Profile-Role"),
) -> Actor:
    if credentials is not None:
        return parse_claims(decode_token(credentials.credentials))

    # Set by the trusted gateway in front of the API.
    if x_profile_id is not None:
        return Actor(profile_id=int(x_profile_id), role=parse_role(x_profile_role))

    raise HTTPException(status_code=401, detail="Missing bearer token or profile identity headers")
