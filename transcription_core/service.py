"""Caller-facing transcription service.

Wires Settings into the registered engines and exposes the operations the
HTTP layer needs: plain transcription, diarized transcription, up-front cost
estimates, provider requirements and speaker relabeling.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import replace

from transcription_core.asr.assemblyai import ASSEMBLYAI_RATE
from transcription_core.asr.cost import DEFAULT_BITRATE_KBPS, BillingRate, CostEstimate, estimate_cost
from transcription_core.asr.interface import (
    NormalizedTranscript,
    ProviderRequirements,
    TranscriptionEngine,
    TranscriptionRequest,
)
from transcription_core.asr.postprocess import LabeledTranscript, apply_labels, collect_speakers
from transcription_core.asr.registry import TRANSCRIPTION_ENGINES, build_engine
from transcription_core.asr.whisper import WHISPER_RATE
from transcription_core.config import Settings
from transcription_core.storage.usage_client import UsageLogClient
from transcription_core.utils.errors import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "openai"
DIARIZATION_PROVIDER = "assemblyai"

BILLING_RATES: dict[str, BillingRate] = {
    "openai": WHISPER_RATE,
    "assemblyai": ASSEMBLYAI_RATE,
}


class TranscriptionService:
    """Entry point for transcription requests.

    Engines are built once and shared across concurrent calls; they hold no
    per-request state.

    Args:
        settings: Process settings.
        engines: Optional pre-built engines keyed by provider name.
    """

    def __init__(
        self,
        settings: Settings,
        engines: Mapping[str, TranscriptionEngine] | None = None,
    ) -> None:
        self.settings = settings
        self._usage_client: UsageLogClient | None = None
        if engines is None:
            if settings.usage_log_url:
                self._usage_client = UsageLogClient(
                    settings.usage_log_url, settings.usage_log_secret
                )
            engines = {
                name: build_engine(name, settings, self._usage_client)
                for name in TRANSCRIPTION_ENGINES
            }
        self._engines = dict(engines)

    def engine(self, provider: str) -> TranscriptionEngine:
        engine = self._engines.get(provider)
        if engine is None:
            available = ", ".join(sorted(self._engines))
            raise ConfigurationError(
                f"Unknown transcription provider: '{provider}'. Available: {available}",
                provider=provider,
            )
        return engine

    async def transcribe(
        self, request: TranscriptionRequest, provider: str = DEFAULT_PROVIDER
    ) -> NormalizedTranscript:
        """Transcribe with the given provider (Whisper by default)."""
        return await self.engine(provider).transcribe(request)

    async def transcribe_with_speakers(
        self, request: TranscriptionRequest
    ) -> NormalizedTranscript:
        """Transcribe with speaker diarization."""
        return await self.engine(DIARIZATION_PROVIDER).transcribe(request)

    def estimate_cost(
        self,
        file_size_bytes: int,
        provider: str = DEFAULT_PROVIDER,
        bitrate_kbps: float = DEFAULT_BITRATE_KBPS,
    ) -> CostEstimate:
        rate = BILLING_RATES.get(provider)
        if rate is None:
            raise ConfigurationError(
                f"No billing rate for provider '{provider}'", provider=provider
            )
        return estimate_cost(file_size_bytes, rate, bitrate_kbps)

    def requirements(self, provider: str = DEFAULT_PROVIDER) -> ProviderRequirements:
        return self.engine(provider).requirements()

    def is_available(self, provider: str) -> bool:
        engine = self._engines.get(provider)
        return engine is not None and engine.is_available

    def apply_speaker_labels(
        self,
        result: NormalizedTranscript,
        label_map: Mapping[str, str],
    ) -> tuple[NormalizedTranscript, LabeledTranscript]:
        """Relabel speakers on a previously returned diarized result.

        Returns a new NormalizedTranscript carrying the relabeled speakers and
        formatted transcript, plus the full LabeledTranscript view. The input
        result is left untouched.

        Raises:
            ValidationError: If the result has no speaker-tagged utterances.
        """
        if result.utterances is None:
            raise ValidationError(
                "utterances", "Transcript has no speaker labels to rename"
            )
        speakers = result.speakers if result.speakers is not None else collect_speakers(
            result.utterances
        )
        labeled = apply_labels(result.utterances, speakers, label_map)
        updated = replace(
            result,
            speakers=labeled.speakers,
            formatted_transcript=labeled.formatted_transcript,
        )
        return updated, labeled

    async def close(self) -> None:
        """Flush pending usage writes and release the usage client."""
        for engine in self._engines.values():
            drain = getattr(engine, "drain_usage", None)
            if drain is not None:
                await drain()
        if self._usage_client is not None:
            await self._usage_client.close()
