"""Tests for pre-flight audio validation."""

import pytest

from transcription_core.asr.assemblyai import ASSEMBLYAI_LIMITS
from transcription_core.asr.validation import resolve_extension, validate_audio
from transcription_core.asr.whisper import WHISPER_LIMITS
from transcription_core.utils.errors import ValidationError

MB = 1024 * 1024


class TestSizeBounds:
    """Tests for byte-length checks."""

    def test_empty_payload_rejected(self):
        """Zero bytes fails with a 'required' reason."""
        with pytest.raises(ValidationError, match="Audio file data is required"):
            validate_audio(b"", "clip.mp3", "audio/mpeg", WHISPER_LIMITS)

    def test_missing_payload_rejected(self):
        """None is treated as an absent payload."""
        with pytest.raises(ValidationError, match="required"):
            validate_audio(None, "clip.mp3", "audio/mpeg", WHISPER_LIMITS)

    def test_below_minimum_rejected(self):
        """Payloads under 1000 bytes are treated as corrupt."""
        with pytest.raises(ValidationError, match="less than 1KB"):
            validate_audio(b"\x00" * 999, "clip.mp3", "audio/mpeg", WHISPER_LIMITS)

    def test_exactly_minimum_accepted(self):
        """The lower bound is inclusive."""
        result = validate_audio(b"\x00" * 1000, "clip.mp3", "audio/mpeg", WHISPER_LIMITS)
        assert result.size == 1000

    def test_over_whisper_limit_rejected(self):
        """Whisper rejects anything past 25 MB with the size in the reason."""
        data = b"\x00" * (25 * MB + 1)
        with pytest.raises(ValidationError) as exc_info:
            validate_audio(data, "big.mp3", "audio/mpeg", WHISPER_LIMITS)
        assert "exceeds maximum of 25 MB" in exc_info.value.reason
        assert "(25.00 MB)" in exc_info.value.reason

    def test_whisper_limit_is_inclusive(self):
        """Exactly 25 MB is accepted."""
        result = validate_audio(b"\x00" * (25 * MB), "big.mp3", None, WHISPER_LIMITS)
        assert result.extension == "mp3"

    def test_assemblyai_accepts_larger_files(self):
        """AssemblyAI's ceiling is 200 MB."""
        assert ASSEMBLYAI_LIMITS.max_size_bytes == 200 * MB
        result = validate_audio(b"\x00" * (30 * MB), "long.mp3", None, ASSEMBLYAI_LIMITS)
        assert result.size == 30 * MB


class TestFormatResolution:
    """Tests for extension and content-type resolution."""

    def test_supported_suffix_wins(self):
        """A supported filename suffix is used as-is."""
        assert resolve_extension("a.WAV", "audio/mpeg", WHISPER_LIMITS.supported_formats) == "wav"

    def test_unknown_suffix_falls_back_to_mime(self):
        """An unrecognized suffix defers to the declared content type."""
        result = validate_audio(b"\x00" * 30_000, "recording.xyz", "audio/mpeg", WHISPER_LIMITS)
        assert result.extension == "mp3"

    def test_mime_parameters_ignored(self):
        """Content-type parameters do not affect the lookup."""
        ext = resolve_extension(None, "audio/webm; codecs=opus", WHISPER_LIMITS.supported_formats)
        assert ext == "webm"

    def test_no_format_information_passes(self):
        """No suffix and no content type is a permissive pass."""
        result = validate_audio(b"\x00" * 30_000, "recording", None, WHISPER_LIMITS)
        assert result.extension is None

    def test_unsupported_suffix_without_mime_rejected(self):
        """A suffix that maps to nothing supported is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            validate_audio(b"\x00" * 30_000, "notes.txt", None, WHISPER_LIMITS)
        assert "Unsupported audio format: .txt" in exc_info.value.reason
        assert "mp3" in exc_info.value.reason

    def test_unsupported_mime_rejected(self):
        """A known MIME type outside the provider's formats is rejected."""
        with pytest.raises(ValidationError, match="Unsupported audio format: .aiff"):
            validate_audio(b"\x00" * 30_000, None, "audio/x-aiff", WHISPER_LIMITS)

    def test_assemblyai_accepts_wider_format_set(self):
        """Formats Whisper refuses can still be valid for AssemblyAI."""
        result = validate_audio(b"\x00" * 30_000, "memo.aac", None, ASSEMBLYAI_LIMITS)
        assert result.extension == "aac"
