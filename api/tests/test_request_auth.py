from __future__ import annotations

import asyncio
import hashlib
from typing import Any

import httpx
import pytest
from fastapi import HTTPException

import relay_api.core.security as security
from relay_api.core.auth import PrincipalType
from relay_api.core.config import Settings
from relay_api.services.repository import MachineCredentialRecord, RepositoryUnavailableError


class FakeCredentialRepository:
    def __init__(self, *, unavailable: bool = False) -> None:
        self.unavailable = unavailable

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        if self.unavailable:
            raise RepositoryUnavailableError("database unavailable")
        return [
            MachineCredentialRecord(
                module_db_id="module-db-1",
                module_id=module_id,
                scopes=["jobs:read", "jobs:write"],
                key_hash=hashlib.sha256(b"worker-key").hexdigest(),
            )
        ]


def _settings(**overrides: Any) -> Settings:
    options: dict[str, Any] = {"supabase_url": "https://example.supabase.co", "supabase_anon_key": "anon-key"}
    options.update(overrides)
    return Settings(**options)


def _machine(repository: FakeCredentialRepository, *, api_key: str | None, module_id: str | None = "worker-1"):
    return asyncio.run(
        security.get_machine_principal(repository=repository, x_api_key=api_key, x_module_id=module_id)
    )


def test_machine_principal_carries_module_scopes() -> None:
    principal = _machine(FakeCredentialRepository(), api_key="worker-key")

    assert principal.principal_type is PrincipalType.MACHINE
    assert principal.subject == "worker-1"
    assert principal.actor_id == "module-db-1"
    assert principal.scopes == {"jobs:read", "jobs:write"}


def test_machine_principal_rejects_wrong_key_and_missing_headers() -> None:
    with pytest.raises(HTTPException) as wrong_key:
        _machine(FakeCredentialRepository(), api_key="other-key")
    with pytest.raises(HTTPException) as missing_module:
        _machine(FakeCredentialRepository(), api_key="worker-key", module_id=None)

    assert wrong_key.value.status_code == 401
    assert missing_module.value.status_code == 401


def test_machine_principal_reports_unavailable_database() -> None:
    with pytest.raises(HTTPException) as exc_info:
        _machine(FakeCredentialRepository(unavailable=True), api_key="worker-key")

    assert exc_info.value.status_code == 503


@pytest.mark.parametrize("authorization", [None, "Basic abc", "Bearer   "])
def test_human_principal_requires_bearer_token(authorization: str | None) -> None:
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(security.get_human_principal(settings=_settings(), authorization=authorization))

    assert exc_info.value.status_code == 401


def test_human_principal_needs_supabase_configuration() -> None:
    settings = _settings(supabase_url=None)

    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(security.get_human_principal(settings=settings, authorization="Bearer token"))

    assert exc_info.value.status_code == 503


def test_human_principal_maps_app_metadata_role_to_scopes(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, Any] = {}

    async def _fake_fetch(**kwargs: Any) -> dict[str, Any]:
        seen.update(kwargs)
        return {"id": "reviewer-7", "app_metadata": {"role": "reviewer"}, "user_metadata": {"role": "admin"}}

    monkeypatch.setattr(security, "_fetch_supabase_user", _fake_fetch)

    principal = asyncio.run(security.get_human_principal(settings=_settings(), authorization="bearer abc"))

    assert seen["token"] == "abc"
    assert principal.role == "reviewer"
    assert principal.scopes == {"resources:read", "review:write"}
    assert principal.actor_type == "human"


def test_resolve_role_ignores_unhashable_role_values() -> None:
    assert security._resolve_human_role({"app_metadata": {"role": ["admin"]}}) == "user"
    assert security._resolve_human_role({"app_metadata": {"roles": ["reviewer", "admin"]}}) == "admin"


@pytest.mark.parametrize(("status_code", "expected"), [(401, 401), (403, 401), (500, 503)])
def test_supabase_user_lookup_maps_upstream_status(
    monkeypatch: pytest.MonkeyPatch,
    status_code: int,
    expected: int,
) -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(status_code, json={}))
    original_client = httpx.AsyncClient

    def _client(**kwargs: Any) -> httpx.AsyncClient:
        return original_client(transport=transport, **kwargs)

    monkeypatch.setattr(security.httpx, "AsyncClient", _client)

    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(
            security._fetch_supabase_user(
                supabase_url="https://example.supabase.co/",
                supabase_anon_key="anon-key",
                token="abc",
                timeout_seconds=1.0,
            )
        )

    assert exc_info.value.status_code == expected
