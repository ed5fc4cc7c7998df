from __future__ import annotations

from typing import Any

import httpx

from nollyai.core.errors import PluginError
from nollyai.core.settings import settings


class ReplicateError(PluginError):
    pass


class ReplicateClient:
    """Thin async wrapper over the Replicate predictions API."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.replicate.com/v1",
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._base_url = (base_url or "").rstrip("/")
        kwargs: dict[str, Any] = {"timeout": httpx.Timeout(timeout_s)}
        if transport is not None:
            kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ReplicateClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}

    async def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        if not self._api_key:
            raise ReplicateError("REPLICATE_API_KEY is not configured")
        try:
            resp = await self._client.request(method, f"{self._base_url}{path}", headers=self._headers(), json=json)
        except httpx.HTTPError as e:
            raise ReplicateError(f"Replicate request failed: {e}") from e

        if resp.status_code >= 400:
            raise ReplicateError(f"Replicate error {resp.status_code}: {resp.text[:500]}")

        try:
            data = resp.json()
        except ValueError as e:
            raise ReplicateError(f"Replicate returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ReplicateError("Replicate returned an unexpected payload")
        return data

    async def create_prediction(self, *, version: str, input: dict[str, Any]) -> dict[str, Any]:
        # "owner/name:hash" references carry the version hash after the colon
        ref = (version or "").strip()
        version_id = ref.split(":", 1)[1] if ":" in ref else ref
        return await self._request("POST", "/predictions", json={"version": version_id, "input": input})

    async def get_prediction(self, prediction_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/predictions/{prediction_id}")


def get_replicate_client() -> ReplicateClient:
    if not settings.replicate_api_key:
        raise ReplicateError("REPLICATE_API_KEY is not configured")
    return ReplicateClient(api_key=settings.replicate_api_key, base_url=settings.replicate_base_url)
