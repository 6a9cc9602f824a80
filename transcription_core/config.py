"""Process-wide configuration read once from the environment.

Settings is built at start-up and passed into each engine's constructor, so
no module reads the environment on its own.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from transcription_core.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_ASSEMBLYAI_BASE_URL = "https://api.assemblyai.com/v2"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _float_env(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def _log_level_env(environ: Mapping[str, str], name: str) -> str:
    level = (environ.get(name) or "INFO").upper()
    if level not in LOG_LEVELS:
        raise ConfigurationError(
            f"{name} must be one of {', '.join(LOG_LEVELS)}, got {environ.get(name)!r}"
        )
    return level


@dataclass(frozen=True)
class Settings:
    """Credentials, endpoints and time bounds for both providers."""

    openai_api_key: str | None = None
    assemblyai_api_key: str | None = None
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    assemblyai_base_url: str = DEFAULT_ASSEMBLYAI_BASE_URL
    request_timeout_seconds: float = 300.0
    poll_interval_seconds: float = 3.0
    max_wait_seconds: float = 600.0
    usage_log_url: str | None = None
    usage_log_secret: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Read settings from environment variables.

        A missing provider credential is logged, not fatal; the provider
        then fails fast with ConfigurationError when used.

        Raises:
            ConfigurationError: If a numeric setting or the log level is
                malformed.
        """
        environ = os.environ if environ is None else environ

        settings = cls(
            openai_api_key=environ.get("OPENAI_API_KEY") or None,
            assemblyai_api_key=environ.get("ASSEMBLYAI_API_KEY") or None,
            openai_base_url=environ.get("OPENAI_BASE_URL") or DEFAULT_OPENAI_BASE_URL,
            assemblyai_base_url=(
                environ.get("ASSEMBLYAI_BASE_URL") or DEFAULT_ASSEMBLYAI_BASE_URL
            ),
            request_timeout_seconds=_float_env(
                environ, "TRANSCRIPTION_REQUEST_TIMEOUT", 300.0
            ),
            poll_interval_seconds=_float_env(environ, "TRANSCRIPTION_POLL_INTERVAL", 3.0),
            max_wait_seconds=_float_env(environ, "TRANSCRIPTION_MAX_WAIT", 600.0),
            usage_log_url=environ.get("USAGE_LOG_URL") or None,
            usage_log_secret=environ.get("USAGE_LOG_SECRET") or None,
            log_level=_log_level_env(environ, "TRANSCRIPTION_LOG_LEVEL"),
        )

        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY not set - audio transcription calls will fail")
        if not settings.assemblyai_api_key:
            logger.warning(
                "ASSEMBLYAI_API_KEY not set - speaker diarization will not be available"
            )

        return settings
