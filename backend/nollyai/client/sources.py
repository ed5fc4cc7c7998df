from __future__ import annotations

from typing import Any, Callable, Optional

import httpx
from sqlalchemy.orm import Session

from nollyai.services import job_store


class HttpJobStatusSource:
    """Reads job status from ``GET /api/jobs/status?ids=...``."""

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._token = token
        self._token_provider = token_provider
        kwargs: dict[str, Any] = {"timeout": httpx.Timeout(timeout_s)}
        if transport is not None:
            kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        token = self._token_provider() if self._token_provider else self._token
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def fetch(self, job_ids: list[str]) -> dict[str, dict[str, Any]]:
        if not job_ids:
            return {}
        resp = await self._client.get(
            f"{self._base_url}/api/jobs/status",
            params={"ids": ",".join(job_ids)},
            headers=self._headers(),
        )
        resp.raise_for_status()
        data = resp.json()
        jobs = data.get("jobs") if isinstance(data, dict) else None
        out: dict[str, dict[str, Any]] = {}
        for item in jobs or []:
            if isinstance(item, dict) and item.get("id"):
                out[str(item["id"])] = item
        return out


class StoreJobStatusSource:
    """Reads job status straight from the database (in-process consumers)."""

    def __init__(self, session_factory: Callable[[], Session], owner: Optional[str] = None) -> None:
        self._session_factory = session_factory
        self._owner = owner

    async def fetch(self, job_ids: list[str]) -> dict[str, dict[str, Any]]:
        db = self._session_factory()
        try:
            jobs = job_store.get_jobs(db, job_ids, owner=self._owner)
            return {job.id: job_store.job_to_dict(job) for job in jobs}
        finally:
            db.close()
