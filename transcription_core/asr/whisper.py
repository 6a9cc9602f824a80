"""OpenAI Whisper synchronous transcription client.

One multipart request per transcription, retried with backoff and bounded by
a per-attempt timeout. Raw responses are mapped into NormalizedTranscript;
the shape depends on the requested response format.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from transcription_core.asr.base import HttpTranscriptionEngine
from transcription_core.asr.cost import (
    BillingRate,
    calculate_cost,
    count_words,
    estimate_duration_from_text,
)
from transcription_core.asr.interface import (
    NormalizedTranscript,
    ProviderRequirements,
    ResponseFormat,
    TranscriptionRequest,
    TranscriptSegment,
    Utterance,
)
from transcription_core.asr.postprocess import (
    collect_speakers,
    estimate_speakers_heuristic,
    format_transcript,
    segments_to_utterances,
)
from transcription_core.asr.validation import (
    MIME_TO_EXTENSION,
    ProviderLimits,
    validate_audio,
)
from transcription_core.config import DEFAULT_OPENAI_BASE_URL
from transcription_core.observability.metrics import StageTimer, TranscriptionMetrics
from transcription_core.storage.usage_client import UsageLogClient
from transcription_core.utils.errors import APIError, TranscriptionError
from transcription_core.utils.retry import API_CALL_POLICY, RetryPolicy, retry_with_timeout

logger = logging.getLogger(__name__)

PROVIDER = "openai"
WHISPER_MODEL = "whisper-1"
TRANSCRIPTIONS_PATH = "/audio/transcriptions"

WHISPER_RATE = BillingRate(amount=0.006, unit="minute")

WHISPER_LIMITS = ProviderLimits(
    provider=PROVIDER,
    max_size_bytes=25 * 1024 * 1024,
    supported_formats=("mp3", "mp4", "mpeg", "mpga", "m4a", "wav", "webm", "flac", "ogg"),
)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 300.0


def _error_details(response: httpx.Response) -> dict[str, Any]:
    """Pull OpenAI's {"error": {...}} body apart, tolerating non-JSON bodies."""
    try:
        body = response.json()
    except ValueError:
        return {"message": response.text or response.reason_phrase}
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return {"message": response.text or response.reason_phrase}
    return {
        "message": error.get("message") or response.reason_phrase,
        "code": error.get("code"),
        "type": error.get("type"),
    }


class WhisperEngine(HttpTranscriptionEngine):
    """Synchronous speech-to-text via the OpenAI audio transcription API.

    Args:
        api_key: OpenAI API key. None makes transcribe() raise
            ConfigurationError.
        base_url: OpenAI API base URL.
        request_timeout: Per-attempt timeout in seconds.
        retry_policy: Retry policy for the transcription call.
        client: Optional shared AsyncClient.
        usage_client: Optional usage-log sink.
    """

    provider = PROVIDER
    api_key_env = "OPENAI_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = DEFAULT_OPENAI_BASE_URL,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        retry_policy: RetryPolicy = API_CALL_POLICY,
        client: httpx.AsyncClient | None = None,
        usage_client: UsageLogClient | None = None,
    ) -> None:
        super().__init__(api_key, base_url, client=client, usage_client=usage_client)
        self._request_timeout = request_timeout
        self._retry_policy = retry_policy

    async def transcribe(self, request: TranscriptionRequest) -> NormalizedTranscript:
        """Transcribe audio with a single Whisper API call.

        Raises:
            ConfigurationError: If no API key is configured.
            ValidationError: If the audio fails pre-flight validation.
            APIError: If the API call fails after retries.
            TranscriptionTimeoutError: If every attempt timed out.
        """
        api_key = self._require_api_key()
        options = request.options
        started = time.monotonic()

        logger.info(
            "Starting audio transcription (format=%s, language=%s)",
            options.response_format.value,
            options.language or "auto-detect",
            extra={"provider": self.provider, "filename": request.filename},
        )

        validated = validate_audio(
            request.data, request.filename, request.content_type, WHISPER_LIMITS
        )
        content_type = request.content_type or f"audio/{validated.extension or 'mpeg'}"

        timer = StageTimer("request")
        try:
            with timer:
                async with self._open_client(self._request_timeout) as client:
                    raw = await retry_with_timeout(
                        lambda: self._request_transcription(
                            client, api_key, request, content_type
                        ),
                        self._retry_policy,
                        self._request_timeout,
                        "OpenAI Whisper API call",
                    )
        except TranscriptionError as exc:
            self._emit_metrics(
                TranscriptionMetrics(
                    provider=self.provider,
                    status="failed",
                    audio_size_bytes=validated.size,
                    processing_wall_time_seconds=time.monotonic() - started,
                    request_duration_seconds=timer.duration_seconds,
                    retry_count=getattr(exc, "_retry_count", 0),
                    error_kind=type(exc).__name__,
                    error_message=str(exc),
                )
            )
            raise

        result = self._convert_response(raw, request, time.monotonic() - started)

        logger.info(
            "Audio transcription completed: %.0fs of audio, %d words, %s",
            result.audio_duration_seconds,
            count_words(result.text),
            result.formatted_cost,
            extra={
                "provider": self.provider,
                "filename": request.filename,
                "duration_seconds": result.processing_duration_seconds,
            },
        )

        self._emit_metrics(
            TranscriptionMetrics(
                provider=self.provider,
                status="completed",
                audio_size_bytes=validated.size,
                processing_wall_time_seconds=result.processing_duration_seconds,
                audio_duration_seconds=result.audio_duration_seconds,
                cost=result.cost,
                request_duration_seconds=timer.duration_seconds,
            )
        )
        self._record_usage(
            {
                "provider": self.provider,
                "model": WHISPER_MODEL,
                "endpoint": f"/v1{TRANSCRIPTIONS_PATH}",
                "input_tokens": 0,
                "output_tokens": 0,
                "cost_usd": result.cost,
                "response_time_ms": round(result.processing_duration_seconds * 1000),
                "success": True,
                "metadata": {
                    "audio_duration_seconds": result.audio_duration_seconds,
                    "filename": request.filename,
                    "response_format": options.response_format.value,
                },
            }
        )
        return result

    def _build_form(self, request: TranscriptionRequest) -> dict[str, str]:
        """Form fields for the request; unset options are omitted entirely."""
        options = request.options
        form = {
            "model": WHISPER_MODEL,
            "response_format": options.response_format.value,
        }
        if options.language:
            form["language"] = options.language
        if options.prompt:
            form["prompt"] = options.prompt
        if options.temperature > 0:
            form["temperature"] = str(options.temperature)
        return form

    async def _request_transcription(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        request: TranscriptionRequest,
        content_type: str,
    ) -> dict[str, Any] | str:
        """Make one transcription call.

        Returns:
            Parsed JSON for structured formats, raw body text otherwise.

        Raises:
            APIError: On transport failure or a non-2xx response.
        """
        url = f"{self._base_url}{TRANSCRIPTIONS_PATH}"
        headers = {"Authorization": f"Bearer {api_key}"}
        files = {"file": (request.filename, bytes(request.data), content_type)}

        try:
            response = await client.post(
                url, headers=headers, files=files, data=self._build_form(request)
            )
        except httpx.HTTPError as exc:
            logger.error(
                "Whisper API request failed: %s",
                exc,
                extra={"provider": self.provider, "filename": request.filename},
            )
            raise APIError(
                self.provider,
                500,
                f"Request to Whisper API failed: {exc}",
                {"filename": request.filename},
            ) from exc

        if response.status_code >= 400:
            raise self._classify_failure(response, request.filename)

        if request.options.response_format.is_structured:
            try:
                return response.json()
            except ValueError as exc:
                raise APIError(
                    self.provider,
                    502,
                    "Whisper API returned malformed JSON",
                    {"filename": request.filename},
                ) from exc
        return response.text

    def _classify_failure(self, response: httpx.Response, filename: str) -> APIError:
        """Log a failed response by status and convert it to APIError."""
        status = response.status_code
        details = _error_details(response)
        extra = {"provider": self.provider, "filename": filename, "status_code": status}

        if status == 400:
            logger.error(
                "Whisper API 400 - invalid request (check file format, size, parameters): %s",
                details["message"],
                extra=extra,
            )
        elif status == 413:
            logger.error(
                "Whisper API 413 - file too large despite validation: %s",
                details["message"],
                extra=extra,
            )
        elif status == 429:
            logger.warning(
                "Whisper API 429 - rate limited, will retry with backoff", extra=extra
            )
        elif status >= 500:
            logger.error(
                "Whisper API %d - provider outage: %s", status, details["message"], extra=extra
            )
        else:
            logger.error("Whisper API call failed: %s", details["message"], extra=extra)

        return APIError(
            self.provider,
            status,
            details["message"],
            {"code": details.get("code"), "type": details.get("type"), "filename": filename},
        )

    def _convert_response(
        self,
        raw: dict[str, Any] | str,
        request: TranscriptionRequest,
        processing_seconds: float,
    ) -> NormalizedTranscript:
        """Map a Whisper response into the normalized result.

        Only verbose_json carries segments, language and duration. When no
        duration is reported it is estimated from the word count. With
        estimate_speakers set, segments are also grouped into utterances
        with estimated speakers.
        """
        response_format = request.options.response_format
        segments: list[TranscriptSegment] | None = None
        language: str | None = None
        duration: float | None = None

        if isinstance(raw, dict):
            text = raw.get("text") or ""
            if response_format == ResponseFormat.VERBOSE_JSON:
                raw_segments = raw.get("segments")
                if raw_segments is not None:
                    segments = [
                        TranscriptSegment(
                            id=s.get("id"),
                            start=float(s.get("start") or 0.0),
                            end=float(s.get("end") or 0.0),
                            text=s.get("text") or "",
                        )
                        for s in raw_segments
                    ]
                language = raw.get("language") or None
                duration = raw.get("duration") or None
        else:
            text = raw

        if not duration:
            duration = estimate_duration_from_text(text)

        breakdown = calculate_cost(duration, WHISPER_RATE)

        utterances: list[Utterance] | None = None
        if request.options.estimate_speakers:
            utterances = self._estimate_speakers(segments, request)

        return NormalizedTranscript(
            text=text,
            audio_duration_seconds=duration,
            cost=breakdown.cost,
            processing_duration_seconds=processing_seconds,
            provider=self.provider,
            model=WHISPER_MODEL,
            filename=request.filename,
            options=request.options,
            language=language or request.options.language,
            segments=segments,
            utterances=utterances,
            speakers=collect_speakers(utterances) if utterances is not None else None,
            formatted_transcript=(
                format_transcript(utterances) if utterances is not None else None
            ),
        )

    def _estimate_speakers(
        self,
        segments: list[TranscriptSegment] | None,
        request: TranscriptionRequest,
    ) -> list[Utterance] | None:
        """Speaker-tagged utterances built from segments, or None without any."""
        extra = {"provider": self.provider, "filename": request.filename}
        if not segments:
            logger.warning(
                "Speaker estimation skipped: no segments (response_format=%s)",
                request.options.response_format.value,
                extra=extra,
            )
            return None
        if request.options.use_llm:
            logger.info(
                "LLM speaker estimation is not available, using pause heuristic",
                extra=extra,
            )
        utterances = estimate_speakers_heuristic(segments_to_utterances(segments))
        logger.info(
            "Estimated %d speakers across %d utterances",
            len({u.speaker for u in utterances}),
            len(utterances),
            extra=extra,
        )
        return utterances or None

    def requirements(self) -> ProviderRequirements:
        return ProviderRequirements(
            provider=self.provider,
            available=self.is_available,
            supported_formats=WHISPER_LIMITS.supported_formats,
            supported_mime_types=tuple(MIME_TO_EXTENSION),
            max_file_size_bytes=WHISPER_LIMITS.max_size_bytes,
            price_per_minute=WHISPER_RATE.price_per_minute,
            features=(
                "Response formats: text, json, srt, vtt, verbose_json",
                "Language hint or automatic detection",
                "Segment timestamps (verbose_json)",
            ),
        )

    async def check_connection(self) -> bool:
        """Probe the API with an authenticated models listing."""
        if self._api_key is None:
            logger.warning("Cannot test Whisper connection: API key not configured")
            return False
        try:
            async with self._open_client(30.0) as client:
                response = await client.get(
                    f"{self._base_url}/models",
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
        except httpx.HTTPError as exc:
            logger.error("Whisper connection test failed: %s", exc)
            return False
        if response.status_code == 401:
            logger.error("Whisper connection test failed: invalid API key")
            return False
        logger.info("Whisper API connection test passed")
        return True
