"""Transcription engine registry with configuration-driven provider selection.

Maps provider name strings to engine classes. Use get_transcription_engine()
to instantiate an engine by name with engine-specific configuration, or
build_engine() to construct one from Settings.
"""

from transcription_core.asr.assemblyai import AssemblyAIEngine
from transcription_core.asr.interface import TranscriptionEngine
from transcription_core.asr.whisper import WhisperEngine
from transcription_core.config import Settings
from transcription_core.storage.usage_client import UsageLogClient
from transcription_core.utils.errors import ConfigurationError

TRANSCRIPTION_ENGINES: dict[str, type[TranscriptionEngine]] = {
    "openai": WhisperEngine,
    "assemblyai": AssemblyAIEngine,
}


def get_transcription_engine(provider: str, **kwargs: object) -> TranscriptionEngine:
    """Create a transcription engine instance by provider name.

    Args:
        provider: Provider name (e.g., "openai", "assemblyai").
        **kwargs: Engine-specific configuration passed to the constructor.

    Returns:
        An initialized TranscriptionEngine instance.

    Raises:
        ConfigurationError: If the provider name is not registered.
    """
    engine_cls = TRANSCRIPTION_ENGINES.get(provider)
    if not engine_cls:
        available = ", ".join(sorted(TRANSCRIPTION_ENGINES.keys()))
        raise ConfigurationError(
            f"Unknown transcription provider: '{provider}'. Available: {available}",
            provider=provider,
        )
    return engine_cls(**kwargs)


def build_engine(
    provider: str,
    settings: Settings,
    usage_client: UsageLogClient | None = None,
) -> TranscriptionEngine:
    """Construct a registered engine from process settings."""
    if provider == "openai":
        return get_transcription_engine(
            provider,
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            request_timeout=settings.request_timeout_seconds,
            usage_client=usage_client,
        )
    if provider == "assemblyai":
        return get_transcription_engine(
            provider,
            api_key=settings.assemblyai_api_key,
            base_url=settings.assemblyai_base_url,
            timeout=settings.max_wait_seconds,
            poll_interval=settings.poll_interval_seconds,
            usage_client=usage_client,
        )
    return get_transcription_engine(provider)
