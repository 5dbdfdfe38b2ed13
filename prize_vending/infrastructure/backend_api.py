"""
HTTP client for the kiosk backend.

Only the narrow contracts the dispensing flow needs: log delivery, prize
catalog, player/score submission and leaderboard reads.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from prize_vending.core.exceptions import BackendRejectedError, BackendUnavailableError
from prize_vending.core.value_objects import DispensingLogEntry, OutOfStockLogEntry
from prize_vending.loggers import logger


# Client errors that may succeed when sent again later
RETRYABLE_CLIENT_STATUSES = frozenset({408, 425, 429})


def is_rejection(status_code: int) -> bool:
    """Whether a status means the backend refused the payload itself."""
    return 400 <= status_code < 500 and status_code not in RETRYABLE_CLIENT_STATUSES


class BackendApiClient:
    """
    Async client for the backend REST API.

    Attributes:
        base_url: API root, e.g. ``http://host/api``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, json: Any = None, params: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(method, url, json=json, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            error_class = BackendRejectedError if is_rejection(status_code) else BackendUnavailableError
            raise error_class(
                f"{method} {path} failed with status {status_code}",
                status_code=status_code,
            ) from e
        except httpx.HTTPError as e:
            raise BackendUnavailableError(f"{method} {path} failed: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning(f"{method} {path}: non-JSON response")
            return None

    # =========================================================================
    # Inventory logs
    # =========================================================================

    async def submit_dispensing_log(self, entry: DispensingLogEntry) -> None:
        await self._request("POST", "/inventory/log-dispensing", json=entry.to_dict())

    async def submit_out_of_stock(self, entry: OutOfStockLogEntry) -> None:
        await self._request("POST", "/inventory/log-out-of-stock", json=entry.to_dict())

    # =========================================================================
    # Game data
    # =========================================================================

    async def get_prize_catalog(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/prizes")
        if isinstance(data, dict):
            return data.get("prizes", [])
        return data or []

    async def create_player(
        self,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> dict[str, Any]:
        payload = {"name": name}
        if email:
            payload["email"] = email
        if phone:
            payload["phone"] = phone
        return await self._request("POST", "/players", json=payload)

    async def submit_score(self, player_id: int, time_ms: int) -> dict[str, Any]:
        return await self._request("POST", "/scores", json={"player_id": player_id, "time": time_ms})

    async def get_leaderboard(self, limit: int = 10) -> dict[str, Any]:
        return await self._request("GET", "/leaderboard", params={"limit": limit})

    async def ping(self) -> bool:
        """Whether the backend answers its health endpoint."""
        try:
            await self._request("GET", "/test")
        except BackendRejectedError as e:
            logger.warning(f"Health check answered with status {e.status_code}")
        except BackendUnavailableError:
            return False
        return True
