"""Tests for transcription engine registry and provider selection."""

import pytest

from transcription_core.asr.assemblyai import AssemblyAIEngine
from transcription_core.asr.interface import (
    NormalizedTranscript,
    ProviderRequirements,
    TranscriptionEngine,
    TranscriptionRequest,
)
from transcription_core.asr.registry import (
    TRANSCRIPTION_ENGINES,
    build_engine,
    get_transcription_engine,
)
from transcription_core.asr.whisper import WhisperEngine
from transcription_core.config import Settings
from transcription_core.utils.errors import ConfigurationError


class TestGetTranscriptionEngine:
    """Tests for get_transcription_engine factory function."""

    def test_openai_returns_whisper(self) -> None:
        """get_transcription_engine('openai') returns a WhisperEngine."""
        engine = get_transcription_engine("openai", api_key="sk-test")
        assert isinstance(engine, WhisperEngine)
        assert engine.is_available

    def test_assemblyai_returns_instance(self) -> None:
        """get_transcription_engine('assemblyai') returns an AssemblyAIEngine."""
        engine = get_transcription_engine("assemblyai")
        assert isinstance(engine, AssemblyAIEngine)
        assert not engine.is_available

    def test_unknown_provider_raises_configuration_error(self) -> None:
        """get_transcription_engine('unknown') raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="Unknown transcription provider: 'unknown'"):
            get_transcription_engine("unknown")

    def test_error_message_lists_available_providers(self) -> None:
        """Error message includes names of all registered providers."""
        with pytest.raises(ConfigurationError) as exc_info:
            get_transcription_engine("nonexistent")
        message = str(exc_info.value)
        assert "assemblyai, openai" in message
        assert "Available:" in message

    def test_mock_engine_retrievable_from_registry(self) -> None:
        """A dynamically added engine class is retrievable."""

        class MockEngine(TranscriptionEngine):
            provider = "mock"

            @property
            def is_available(self) -> bool:
                return True

            async def transcribe(self, request: TranscriptionRequest) -> NormalizedTranscript:
                raise NotImplementedError

            def requirements(self) -> ProviderRequirements:
                raise NotImplementedError

            async def check_connection(self) -> bool:
                return True

        original = TRANSCRIPTION_ENGINES.copy()
        try:
            TRANSCRIPTION_ENGINES["mock"] = MockEngine
            engine = get_transcription_engine("mock")
            assert isinstance(engine, MockEngine)
        finally:
            TRANSCRIPTION_ENGINES.clear()
            TRANSCRIPTION_ENGINES.update(original)


class TestBuildEngine:
    """Tests for building engines from Settings."""

    def test_whisper_from_settings(self) -> None:
        """Whisper picks up its key, base URL and request timeout."""
        settings = Settings(
            openai_api_key="sk-test",
            openai_base_url="https://proxy.example.com/v1/",
            request_timeout_seconds=42.0,
        )
        engine = build_engine("openai", settings)
        assert isinstance(engine, WhisperEngine)
        assert engine.is_available
        assert engine._base_url == "https://proxy.example.com/v1"
        assert engine._request_timeout == 42.0

    def test_assemblyai_from_settings(self) -> None:
        """AssemblyAI picks up its poll cadence and ceiling."""
        settings = Settings(
            assemblyai_api_key="aai-test",
            poll_interval_seconds=1.5,
            max_wait_seconds=120.0,
        )
        engine = build_engine("assemblyai", settings)
        assert isinstance(engine, AssemblyAIEngine)
        assert engine._poll_interval == 1.5
        assert engine._timeout == 120.0

    def test_missing_key_still_builds(self) -> None:
        """An engine without a key is built but unavailable."""
        engine = build_engine("openai", Settings())
        assert engine.is_available is False

    def test_unknown_provider(self) -> None:
        """Unknown providers are rejected."""
        with pytest.raises(ConfigurationError):
            build_engine("deepgram", Settings())
