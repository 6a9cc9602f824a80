"""Tests for the transcription_core command-line entry point."""

import json
import logging
from unittest.mock import AsyncMock, patch

import pytest

from transcription_core.main import (
    EXIT_API_ERROR,
    EXIT_INPUT_ERROR,
    EXIT_TIMEOUT,
    build_parser,
    exit_code_for,
    main,
)
from transcription_core.service import TranscriptionService
from transcription_core.utils.errors import (
    APIError,
    ConfigurationError,
    TranscriptionTimeoutError,
    ValidationError,
)

ENV_VARS = (
    "OPENAI_API_KEY",
    "ASSEMBLYAI_API_KEY",
    "USAGE_LOG_URL",
    "TRANSCRIPTION_MAX_WAIT",
    "TRANSCRIPTION_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Isolate each run from the host environment and root logger state."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("transcription_core.main.setup_logging", lambda *a, **kw: None)
    root = logging.getLogger()
    level = root.level
    yield
    root.setLevel(level)


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "memo.mp3"
    path.write_bytes(b"\x00" * 128_000)
    return path


class TestParser:
    """Tests for build_parser()."""

    def test_defaults(self) -> None:
        args = build_parser().parse_args(["clip.mp3"])
        assert args.provider == "openai"
        assert args.response_format == "text"
        assert args.estimate_only is False

    def test_rejects_unknown_provider(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["clip.mp3", "--provider", "deepgram"])


class TestExitCodes:
    """Tests for exit_code_for()."""

    def test_timeout(self) -> None:
        assert exit_code_for(TranscriptionTimeoutError("op", 1)) == EXIT_TIMEOUT

    def test_api_error(self) -> None:
        assert exit_code_for(APIError("openai", 500, "down")) == EXIT_API_ERROR

    def test_input_errors(self) -> None:
        assert exit_code_for(ValidationError("f", "r")) == EXIT_INPUT_ERROR
        assert exit_code_for(ConfigurationError("missing")) == EXIT_INPUT_ERROR


class TestMain:
    """Tests for main()."""

    def test_estimate_only(self, audio_file, capsys) -> None:
        """--estimate-only prints the size-based estimate without calling out."""
        assert main([str(audio_file), "--estimate-only"]) == 0

        payload = json.loads(capsys.readouterr().out)
        assert payload["estimated_duration_seconds"] == 8.0
        assert payload["formatted_cost"] == "$0.0008"

    def test_missing_key_exits_with_input_error(self, audio_file, capsys) -> None:
        """An unconfigured provider exits 1 with the serialized error."""
        assert main([str(audio_file)]) == EXIT_INPUT_ERROR

        error = json.loads(capsys.readouterr().err)
        assert error["name"] == "ConfigurationError"
        assert error["provider"] == "openai"

    def test_api_error_exit_code(self, audio_file, monkeypatch, capsys) -> None:
        """Provider failures exit 2."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        failing = AsyncMock(side_effect=APIError("openai", 503, "down"))
        with patch.object(TranscriptionService, "transcribe", failing):
            assert main([str(audio_file)]) == EXIT_API_ERROR

        assert json.loads(capsys.readouterr().err)["status_code"] == 503

    def test_timeout_exit_code(self, audio_file, monkeypatch) -> None:
        """Local timeouts exit 3."""
        monkeypatch.setenv("ASSEMBLYAI_API_KEY", "aai-test")
        failing = AsyncMock(side_effect=TranscriptionTimeoutError("AssemblyAI transcription", 600))
        with patch.object(TranscriptionService, "transcribe", failing):
            assert main([str(audio_file), "--provider", "assemblyai"]) == EXIT_TIMEOUT

    def test_missing_file(self, tmp_path) -> None:
        """An unreadable file exits 1."""
        assert main([str(tmp_path / "nope.mp3")]) == EXIT_INPUT_ERROR

    def test_bad_settings(self, audio_file, monkeypatch, capsys) -> None:
        """Malformed numeric settings exit 1 before anything runs."""
        monkeypatch.setenv("TRANSCRIPTION_MAX_WAIT", "forever")
        assert main([str(audio_file)]) == EXIT_INPUT_ERROR
        assert "TRANSCRIPTION_MAX_WAIT" in capsys.readouterr().err

    def test_bad_log_level(self, audio_file, monkeypatch, capsys) -> None:
        """An unknown log level exits 1 with a configuration error."""
        monkeypatch.setenv("TRANSCRIPTION_LOG_LEVEL", "chatty")
        assert main([str(audio_file), "--estimate-only"]) == EXIT_INPUT_ERROR
        error = json.loads(capsys.readouterr().err)
        assert error["name"] == "ConfigurationError"
        assert "TRANSCRIPTION_LOG_LEVEL" in error["message"]

    def test_invalid_speaker_count(self, audio_file, capsys) -> None:
        """Option validation errors exit 1."""
        assert main([str(audio_file), "--speakers", "12"]) == EXIT_INPUT_ERROR
        assert json.loads(capsys.readouterr().err)["field"] == "speakersExpected"
