import hashlib
import hmac
from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from relay_api.core.auth import Principal, PrincipalType
from relay_api.core.config import Settings, get_settings
from relay_api.services.repository import RepositoryUnavailableError, get_repository

# Reviewers work the review queue; admins additionally operate jobs.
ROLE_SCOPES: dict[str, frozenset[str]] = {
    "user": frozenset({"resources:read"}),
    "reviewer": frozenset({"resources:read", "review:write"}),
    "admin": frozenset({"resources:read", "review:write", "admin:write"}),
}
ELEVATED_ROLES = ("admin", "reviewer")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _unavailable(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


async def get_machine_principal(
    repository=Depends(get_repository),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_module_id: str | None = Header(default=None, alias="X-Module-Id"),
) -> Principal:
    """Authenticate a fetcher or worker module by its id and API key."""
    if not x_api_key or not x_module_id:
        raise _unauthorized("module auth requires X-Module-Id and X-API-Key")

    try:
        credentials = await repository.get_machine_credentials(x_module_id)
    except RepositoryUnavailableError as exc:
        raise _unavailable(str(exc)) from exc

    presented = hashlib.sha256(x_api_key.encode("utf-8")).hexdigest()
    for credential in credentials or []:
        if hmac.compare_digest(credential.key_hash, presented):
            return Principal(
                principal_type=PrincipalType.MACHINE,
                subject=credential.module_id,
                scopes=set(credential.scopes),
                actor_id=credential.module_db_id,
            )
    raise _unauthorized("invalid module credentials")


async def get_human_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    """Authenticate a reviewer or admin by their Supabase access token."""
    scheme, _, token = (authorization or "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("reviewer auth requires a bearer token")

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise _unavailable("Supabase auth is not configured")

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise _unauthorized("invalid bearer token")

    role = _resolve_human_role(user)
    return Principal(
        principal_type=PrincipalType.HUMAN,
        subject=user_id,
        role=role,
        scopes=set(ROLE_SCOPES[role]),
        actor_id=user_id,
    )


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(
                f"{supabase_url.rstrip('/')}/auth/v1/user",
                headers={"Authorization": f"Bearer {token}", "apikey": supabase_anon_key},
            )
    except httpx.HTTPError as exc:
        raise _unavailable("Supabase auth verification unavailable") from exc

    if response.status_code in {401, 403}:
        raise _unauthorized("invalid bearer token")
    if response.status_code != 200:
        raise _unavailable("Supabase auth verification failed")
    return response.json()


def _resolve_human_role(user: dict[str, Any]) -> str:
    # Only app_metadata is server-controlled; user_metadata never grants an elevated role.
    app_metadata = user.get("app_metadata")
    if not isinstance(app_metadata, dict):
        return "user"

    role = app_metadata.get("role")
    if isinstance(role, str) and role in ROLE_SCOPES:
        return role

    roles = app_metadata.get("roles")
    if isinstance(roles, list):
        return next((candidate for candidate in ELEVATED_ROLES if candidate in roles), "user")
    return "user"
