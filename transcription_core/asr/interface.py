"""Abstract transcription engine interface and the normalized data model.

Both provider adapters subclass TranscriptionEngine and return a
NormalizedTranscript, whichever interaction model the provider uses.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from transcription_core.utils.errors import ValidationError

MIN_SPEAKERS_EXPECTED = 1
MAX_SPEAKERS_EXPECTED = 10


class ResponseFormat(str, Enum):
    """Output formats accepted by the synchronous provider."""

    TEXT = "text"
    JSON = "json"
    SRT = "srt"
    VTT = "vtt"
    VERBOSE_JSON = "verbose_json"

    @property
    def is_structured(self) -> bool:
        return self in (ResponseFormat.JSON, ResponseFormat.VERBOSE_JSON)


def _parse_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _parse_speakers_expected(value: Any) -> int | None:
    if value is None or value == "":
        return None
    speakers: int | None
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        speakers = None
    else:
        try:
            speakers = int(value)
        except (TypeError, ValueError):
            speakers = None
    if speakers is None or not MIN_SPEAKERS_EXPECTED <= speakers <= MAX_SPEAKERS_EXPECTED:
        raise ValidationError(
            "speakersExpected",
            f"Expected speaker count must be an integer between "
            f"{MIN_SPEAKERS_EXPECTED} and {MAX_SPEAKERS_EXPECTED}",
            value,
        )
    return speakers


@dataclass(frozen=True)
class TranscriptionOptions:
    """Caller options; unset optional fields are never sent to a provider."""

    language: str | None = None
    prompt: str | None = None
    response_format: ResponseFormat = ResponseFormat.TEXT
    temperature: float = 0.0
    speakers_expected: int | None = None
    estimate_speakers: bool = False
    use_llm: bool = True

    @classmethod
    def from_dict(cls, options: dict[str, Any] | None) -> TranscriptionOptions:
        """Build options from the flat options bag of the HTTP layer.

        Accepts camelCase keys and their snake_case equivalents.

        Raises:
            ValidationError: On an unknown response format or an expected
                speaker count outside 1-10.
        """
        options = options or {}

        def pick(camel: str, snake: str) -> Any:
            return options.get(camel, options.get(snake))

        raw_format = pick("responseFormat", "response_format") or ResponseFormat.TEXT.value
        try:
            response_format = ResponseFormat(raw_format)
        except ValueError as exc:
            supported = ", ".join(f.value for f in ResponseFormat)
            raise ValidationError(
                "responseFormat",
                f"Unsupported response format: {raw_format}. Supported formats: {supported}",
                raw_format,
            ) from exc

        raw_temperature = options.get("temperature")
        try:
            temperature = float(raw_temperature) if raw_temperature is not None else 0.0
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                "temperature", "Temperature must be a number between 0 and 1", raw_temperature
            ) from exc
        if not 0.0 <= temperature <= 1.0:
            raise ValidationError(
                "temperature", "Temperature must be a number between 0 and 1", temperature
            )

        return cls(
            language=options.get("language") or None,
            prompt=options.get("prompt") or None,
            response_format=response_format,
            temperature=temperature,
            speakers_expected=_parse_speakers_expected(
                pick("speakersExpected", "speakers_expected")
            ),
            estimate_speakers=_parse_bool(pick("estimateSpeakers", "estimate_speakers"), False),
            use_llm=_parse_bool(pick("useLLM", "use_llm"), True),
        )


@dataclass(frozen=True)
class TranscriptionRequest:
    """Raw audio plus everything needed to transcribe it.

    ``data`` is held by reference and never mutated.
    """

    data: bytes | memoryview
    filename: str = "audio.mp3"
    content_type: str | None = None
    options: TranscriptionOptions = field(default_factory=TranscriptionOptions)

    @property
    def size(self) -> int:
        return len(self.data) if self.data is not None else 0


@dataclass(frozen=True)
class TranscriptSegment:
    """A timed span of transcript text (structured sync formats only)."""

    start: float
    end: float
    text: str
    id: int | None = None


@dataclass(frozen=True)
class Utterance:
    """One continuous stretch of speech from a single speaker.

    Times are in milliseconds, as reported by the diarizing provider.
    """

    speaker: str
    start: int
    end: int
    text: str
    confidence: float


@dataclass(frozen=True)
class Speaker:
    """A provider speaker symbol and its display label."""

    id: str
    label: str


@dataclass
class NormalizedTranscript:
    """Uniform transcription result regardless of provider."""

    text: str
    audio_duration_seconds: float
    cost: float
    processing_duration_seconds: float
    provider: str
    model: str
    filename: str
    options: TranscriptionOptions
    language: str | None = None
    segments: list[TranscriptSegment] | None = None
    utterances: list[Utterance] | None = None
    speakers: list[Speaker] | None = None
    formatted_transcript: str | None = None
    job_id: str | None = None

    @property
    def audio_duration_minutes(self) -> float:
        return round(self.audio_duration_seconds / 60, 2)

    @property
    def formatted_cost(self) -> str:
        return f"${self.cost:.4f}"

    @property
    def has_speaker_labels(self) -> bool:
        return self.utterances is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict for the HTTP layer."""
        data = asdict(self)
        data["options"]["response_format"] = self.options.response_format.value
        data["audio_duration_minutes"] = self.audio_duration_minutes
        data["formatted_cost"] = self.formatted_cost
        data["has_speaker_labels"] = self.has_speaker_labels
        return data


@dataclass(frozen=True)
class ProviderRequirements:
    """Published limits and capabilities of one provider."""

    provider: str
    available: bool
    supported_formats: tuple[str, ...]
    supported_mime_types: tuple[str, ...]
    max_file_size_bytes: int
    price_per_minute: float
    features: tuple[str, ...] = ()

    @property
    def max_file_size_mb(self) -> float:
        return self.max_file_size_bytes / (1024 * 1024)


class TranscriptionEngine(ABC):
    """Abstract base class for speech provider adapters.

    Subclasses must implement transcribe(), requirements() and
    check_connection().
    """

    provider: str

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """True when the provider credential is configured."""

    @abstractmethod
    async def transcribe(self, request: TranscriptionRequest) -> NormalizedTranscript:
        """Transcribe the request's audio and return a normalized result.

        Raises:
            ValidationError: The input was rejected before any network call.
            ConfigurationError: The provider credential is missing.
            APIError: The provider rejected or failed the request.
            TranscriptionTimeoutError: A local time bound was exceeded.
        """

    @abstractmethod
    def requirements(self) -> ProviderRequirements:
        """Return this provider's limits and capabilities."""

    @abstractmethod
    async def check_connection(self) -> bool:
        """Return True if the provider is reachable with the configured key."""
