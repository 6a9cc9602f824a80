"""Pre-flight audio validation.

Checks byte-length bounds and format before any network call. Each provider
publishes its own ProviderLimits; the tables are immutable and shared.
"""

import logging
from dataclasses import dataclass

from transcription_core.utils.errors import ValidationError

logger = logging.getLogger(__name__)

# Anything smaller is treated as an empty or corrupt upload
MIN_FILE_SIZE_BYTES = 1000

MIME_TO_EXTENSION: dict[str, str] = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "mp4",
    "audio/m4a": "m4a",
    "audio/x-m4a": "m4a",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/webm": "webm",
    "audio/flac": "flac",
    "audio/x-flac": "flac",
    "audio/ogg": "ogg",
    "audio/aac": "aac",
    "audio/opus": "opus",
    "audio/amr": "amr",
    "audio/aiff": "aiff",
    "audio/x-aiff": "aiff",
    "audio/x-ms-wma": "wma",
    "video/mp4": "mp4",
    "video/webm": "webm",
}


@dataclass(frozen=True)
class ProviderLimits:
    """Size ceiling and accepted formats for one provider."""

    provider: str
    max_size_bytes: int
    supported_formats: tuple[str, ...]
    min_size_bytes: int = MIN_FILE_SIZE_BYTES

    @property
    def max_size_mb(self) -> float:
        return self.max_size_bytes / (1024 * 1024)


@dataclass(frozen=True)
class ValidatedAudio:
    """Outcome of a successful validation."""

    extension: str | None
    size: int


def _extension_from_filename(filename: str | None) -> str | None:
    if not filename or "." not in filename:
        return None
    return filename.lower().rsplit(".", 1)[1] or None


def _extension_from_content_type(content_type: str | None) -> str | None:
    if not content_type:
        return None
    # Drop parameters such as "; codecs=opus"
    mime = content_type.split(";", 1)[0].strip().lower()
    return MIME_TO_EXTENSION.get(mime)


def resolve_extension(
    filename: str | None,
    content_type: str | None,
    supported_formats: tuple[str, ...],
) -> str | None:
    """Pick the format to validate against.

    The filename suffix wins when it names a supported format. Otherwise the
    declared content type is consulted, and the suffix is kept only when the
    content type does not map to anything.
    """
    from_name = _extension_from_filename(filename)
    if from_name in supported_formats:
        return from_name
    from_mime = _extension_from_content_type(content_type)
    return from_mime or from_name


def validate_audio(
    data: bytes | memoryview | None,
    filename: str | None,
    content_type: str | None,
    limits: ProviderLimits,
) -> ValidatedAudio:
    """Validate an audio payload against a provider's limits.

    When no format can be determined at all, validation passes and the
    provider is left to reject the data itself.

    Raises:
        ValidationError: If the payload is absent, too large, too small or of
            an unsupported format.
    """
    size = len(data) if data is not None else 0

    logger.debug(
        "Validating audio for %s: %d bytes, filename=%s, content_type=%s",
        limits.provider,
        size,
        filename,
        content_type,
    )

    if size <= 0:
        logger.warning("Audio validation failed: no data", extra={"filename": filename})
        raise ValidationError("audioData", "Audio file data is required")

    if size > limits.max_size_bytes:
        size_mb = size / (1024 * 1024)
        logger.warning(
            "Audio validation failed: %.2f MB exceeds %g MB",
            size_mb,
            limits.max_size_mb,
            extra={"filename": filename, "provider": limits.provider},
        )
        raise ValidationError(
            "audioData",
            f"Audio file size ({size_mb:.2f} MB) exceeds maximum of "
            f"{limits.max_size_mb:g} MB",
        )

    if size < limits.min_size_bytes:
        logger.warning(
            "Audio validation failed: %d bytes is below the minimum", size,
            extra={"filename": filename},
        )
        raise ValidationError(
            "audioData", "Audio file appears to be empty or corrupted (less than 1KB)"
        )

    extension = resolve_extension(filename, content_type, limits.supported_formats)

    if extension is None:
        logger.warning(
            "Could not determine audio format, passing through to provider",
            extra={"filename": filename, "provider": limits.provider},
        )
    elif extension not in limits.supported_formats:
        logger.warning(
            "Audio validation failed: unsupported format .%s",
            extension,
            extra={"filename": filename, "provider": limits.provider},
        )
        raise ValidationError(
            "audioData",
            f"Unsupported audio format: .{extension}. "
            f"Supported formats: {', '.join(limits.supported_formats)}",
            extension,
        )

    return ValidatedAudio(extension=extension, size=size)
