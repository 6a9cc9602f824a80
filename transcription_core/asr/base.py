"""Plumbing shared by the HTTP provider adapters.

Handles credential checks, HTTP client lifetime, and the fire-and-forget
usage logging whose failures must never reach the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from transcription_core.asr.interface import TranscriptionEngine
from transcription_core.observability.metrics import (
    TranscriptionMetrics,
    log_transcription_metrics,
)
from transcription_core.storage.usage_client import UsageLogClient
from transcription_core.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)


class HttpTranscriptionEngine(TranscriptionEngine):
    """Base class for adapters that talk to a provider over httpx.

    Args:
        api_key: Provider credential; None makes every call fail fast.
        base_url: Provider API base URL.
        client: Optional shared AsyncClient. When omitted a client is opened
            per call and closed afterwards.
        usage_client: Optional usage-log sink.
    """

    provider = "unknown"
    api_key_env = ""

    def __init__(
        self,
        api_key: str | None,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        usage_client: UsageLogClient | None = None,
    ) -> None:
        self._api_key = api_key or None
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._usage_client = usage_client
        self._pending_usage: set[asyncio.Task[None]] = set()

    @property
    def is_available(self) -> bool:
        return self._api_key is not None

    def _require_api_key(self) -> str:
        if self._api_key is None:
            logger.error(
                "%s is not configured", self.api_key_env, extra={"provider": self.provider}
            )
            raise ConfigurationError(
                f"{self.provider} transcription is not available. "
                f"{self.api_key_env} is not configured.",
                provider=self.provider,
            )
        return self._api_key

    @asynccontextmanager
    async def _open_client(self, timeout: float | None = None) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=timeout) as client:
            yield client

    def _record_usage(self, entry: dict[str, Any]) -> None:
        """Ship a usage entry in the background without awaiting it."""
        if self._usage_client is None:
            return
        task = asyncio.create_task(self._log_usage_safely(entry))
        self._pending_usage.add(task)
        task.add_done_callback(self._pending_usage.discard)

    async def _log_usage_safely(self, entry: dict[str, Any]) -> None:
        try:
            await self._usage_client.log_usage(entry)  # type: ignore[union-attr]
        except Exception as exc:
            logger.warning(
                "Failed to log transcription usage: %s",
                exc,
                extra={"provider": self.provider},
            )

    async def drain_usage(self) -> None:
        """Wait for in-flight usage writes (used at shutdown and in tests)."""
        if self._pending_usage:
            await asyncio.gather(*self._pending_usage, return_exceptions=True)

    def _emit_metrics(self, metrics: TranscriptionMetrics) -> None:
        try:
            log_transcription_metrics(metrics)
        except Exception as exc:
            logger.warning("Failed to emit transcription metrics: %s", exc)
