"""Usage-log sink client.

Posts one usage record per successful transcription to the internal
usage-log endpoint. Persistence is owned by the receiving service; this
client only ships the record.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from transcription_core.utils.errors import StorageError
from transcription_core.utils.retry import DATABASE_POLICY, retryable

logger = logging.getLogger(__name__)


class UsageLogClient:
    """Client for the internal usage-log endpoint.

    Args:
        base_url: Base URL of the usage-log service.
        secret: Shared secret sent as X-Internal-Secret.
        client: Optional pre-built AsyncClient (tests inject a mock transport).
    """

    def __init__(
        self,
        base_url: str,
        secret: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.secret = secret or ""

        if not self.base_url:
            raise StorageError("USAGE_LOG_URL is required", operation="init")

        self._client = client or httpx.AsyncClient(timeout=30.0)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers["X-Internal-Secret"] = self.secret
        return headers

    async def close(self) -> None:
        """Close the shared HTTP client and release connection pool."""
        await self._client.aclose()

    @retryable(DATABASE_POLICY, "Usage log write")
    async def log_usage(self, entry: dict[str, Any]) -> None:
        """Record one provider usage entry.

        Args:
            entry: Usage record (provider, model, endpoint, cost_usd,
                response_time_ms, success, metadata).

        Raises:
            StorageError: If the endpoint call fails.
        """
        url = f"{self.base_url}/internal/api-usage"
        try:
            response = await self._client.post(url, headers=self._headers(), json=entry)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StorageError(
                f"Usage log write failed: HTTP {exc.response.status_code}",
                operation="log_usage",
            ) from exc
        except httpx.RequestError as exc:
            raise StorageError(
                f"Usage log write failed: {exc}", operation="log_usage"
            ) from exc

        logger.debug(
            "Recorded usage entry", extra={"provider": entry.get("provider")}
        )
