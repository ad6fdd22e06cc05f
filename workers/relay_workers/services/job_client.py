from __future__ import annotations

from typing import Any

import httpx


class JobClient:
    """Machine-authenticated client for the API's job coordination endpoints."""

    def __init__(self, base_url: str, module_id: str, api_key: str, *, timeout_seconds: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.headers = {
            "X-Module-Id": module_id,
            "X-API-Key": api_key,
        }

    async def get_jobs(self, limit: int = 10) -> list[dict[str, Any]]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.get(f"{self.base_url}/jobs", params={"limit": limit}, headers=self.headers)
            response.raise_for_status()
            return response.json()

    async def claim_job(self, job_id: str, lease_seconds: int = 120) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(
                f"{self.base_url}/jobs/{job_id}/claim",
                json={"lease_seconds": lease_seconds},
                headers=self.headers,
            )
            response.raise_for_status()
            return response.json()

    async def submit_result(
        self,
        job_id: str,
        *,
        status: str,
        result_json: dict[str, Any] | None = None,
        error_json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload = {
            "status": status,
            "result_json": result_json,
            "error_json": error_json,
        }
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(f"{self.base_url}/jobs/{job_id}/result", json=payload, headers=self.headers)
            response.raise_for_status()
            return response.json()

    async def reap_expired_jobs(self, limit: int = 100) -> int:
        payload = await self._post_maintenance("/jobs/reap-expired", limit=limit)
        return int(payload.get("requeued", 0))

    async def expire_resources(self, limit: int = 200) -> dict[str, int]:
        payload = await self._post_maintenance("/jobs/expire-resources", limit=limit)
        return {"expired": int(payload.get("expired", 0)), "archived": int(payload.get("archived", 0))}

    async def _post_maintenance(self, path: str, *, limit: int) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(f"{self.base_url}{path}", json={"limit": limit}, headers=self.headers)
            response.raise_for_status()
            return response.json()
