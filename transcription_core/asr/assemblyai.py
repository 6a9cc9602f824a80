"""AssemblyAI asynchronous transcription client with speaker diarization.

Implements the three-phase job protocol: upload raw bytes, start a
diarized transcription job, then poll at a fixed cadence until the job
reaches a terminal state or the overall wall-clock ceiling expires.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

import httpx

from transcription_core.asr.base import HttpTranscriptionEngine
from transcription_core.asr.cost import (
    BillingRate,
    calculate_cost,
    estimate_duration_from_text,
)
from transcription_core.asr.interface import (
    NormalizedTranscript,
    ProviderRequirements,
    TranscriptionOptions,
    TranscriptionRequest,
    Utterance,
)
from transcription_core.asr.postprocess import collect_speakers, format_transcript
from transcription_core.asr.validation import (
    MIME_TO_EXTENSION,
    ProviderLimits,
    validate_audio,
)
from transcription_core.config import DEFAULT_ASSEMBLYAI_BASE_URL
from transcription_core.observability.metrics import StageTimer, TranscriptionMetrics
from transcription_core.storage.usage_client import UsageLogClient
from transcription_core.utils.errors import (
    APIError,
    TranscriptionError,
    TranscriptionTimeoutError,
)
from transcription_core.utils.retry import (
    API_CALL_POLICY,
    RetryPolicy,
    retry_with_backoff,
    with_timeout,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROVIDER = "assemblyai"
ASSEMBLYAI_MODEL = "universal"
POLL_INTERVAL_SECONDS = 3.0
MAX_TRANSCRIPTION_WAIT_SECONDS = 600.0
REQUEST_TIMEOUT_SECONDS = 120.0

# Billed per second, unlike Whisper's per-minute pricing
ASSEMBLYAI_RATE = BillingRate(amount=0.00025, unit="second")

ASSEMBLYAI_LIMITS = ProviderLimits(
    provider=PROVIDER,
    max_size_bytes=200 * 1024 * 1024,
    supported_formats=(
        "mp3", "mp4", "m4a", "wav", "webm", "flac", "ogg", "mpeg", "mpga",
        "aac", "wma", "aiff", "opus", "amr",
    ),
)


class JobState(str, Enum):
    """Local view of a provider job."""

    CREATED = "created"
    UPLOADING = "uploading"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT)


# Provider status strings that map onto local states
_PROVIDER_STATES = {
    "queued": JobState.QUEUED,
    "processing": JobState.PROCESSING,
    "completed": JobState.COMPLETED,
    "error": JobState.FAILED,
}


@dataclass
class ProviderJob:
    """Transient state of one orchestration call. Never persisted."""

    started_at: float
    state: JobState = JobState.CREATED
    job_id: str | None = None
    upload_url: str | None = None
    poll_count: int = 0
    history: list[JobState] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.history.append(self.state)

    def advance(self, state: JobState) -> None:
        if state != self.state:
            self.state = state
            self.history.append(state)


class AssemblyAIEngine(HttpTranscriptionEngine):
    """Diarized speech-to-text via the AssemblyAI upload/transcript API.

    Args:
        api_key: AssemblyAI API key. None makes transcribe() raise
            ConfigurationError.
        base_url: AssemblyAI API base URL.
        timeout: Overall ceiling in seconds, measured from the start of
            transcribe(), not from the last poll.
        poll_interval: Seconds between status polls.
        retry_policy: Retry policy for the upload and submit phases.
        clock: Monotonic clock, injectable for tests.
        client: Optional shared AsyncClient.
        usage_client: Optional usage-log sink.
    """

    provider = PROVIDER
    api_key_env = "ASSEMBLYAI_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = DEFAULT_ASSEMBLYAI_BASE_URL,
        timeout: float = MAX_TRANSCRIPTION_WAIT_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        retry_policy: RetryPolicy = API_CALL_POLICY,
        clock: Callable[[], float] = time.monotonic,
        client: httpx.AsyncClient | None = None,
        usage_client: UsageLogClient | None = None,
    ) -> None:
        super().__init__(api_key, base_url, client=client, usage_client=usage_client)
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._retry_policy = retry_policy
        self._clock = clock

    def _headers(self, api_key: str, content_type: str = "application/json") -> dict[str, str]:
        return {"Authorization": api_key, "Content-Type": content_type}

    async def transcribe(self, request: TranscriptionRequest) -> NormalizedTranscript:
        """Upload, start a diarized job, and poll it to completion.

        Raises:
            ConfigurationError: If no API key is configured.
            ValidationError: If the audio fails pre-flight validation.
            APIError: If upload or submit fail after retries, a poll call
                fails, or the provider reports the job as errored.
            TranscriptionTimeoutError: If the job is not done within the
                overall ceiling.
        """
        api_key = self._require_api_key()
        options = request.options

        logger.info(
            "Starting speaker transcription (language=%s, speakers=%s)",
            options.language or "auto-detect",
            options.speakers_expected or "auto-detect",
            extra={"provider": self.provider, "filename": request.filename},
        )

        validated = validate_audio(
            request.data, request.filename, request.content_type, ASSEMBLYAI_LIMITS
        )

        job = ProviderJob(started_at=self._clock())
        upload_timer = StageTimer("upload")
        submit_timer = StageTimer("submit")
        poll_timer = StageTimer("poll")

        try:
            async with self._open_client(REQUEST_TIMEOUT_SECONDS) as client:
                with upload_timer:
                    job.advance(JobState.UPLOADING)
                    upload_url = await self._within_deadline(
                        job, lambda: self._upload_audio(client, api_key, request)
                    )
                    job.upload_url = upload_url
                with submit_timer:
                    job.job_id = await self._within_deadline(
                        job,
                        lambda: self._start_transcription(
                            client, api_key, upload_url, options
                        ),
                    )
                    job.advance(JobState.QUEUED)
                with poll_timer:
                    body = await self._poll_until_complete(client, api_key, job)
        except TranscriptionError as exc:
            if not job.state.is_terminal:
                job.advance(JobState.FAILED)
            self._emit_metrics(
                TranscriptionMetrics(
                    provider=self.provider,
                    status=job.state.value,
                    audio_size_bytes=validated.size,
                    processing_wall_time_seconds=self._clock() - job.started_at,
                    job_id=job.job_id,
                    upload_duration_seconds=upload_timer.duration_seconds,
                    submit_duration_seconds=submit_timer.duration_seconds,
                    poll_duration_seconds=poll_timer.duration_seconds,
                    poll_count=job.poll_count,
                    retry_count=getattr(exc, "_retry_count", 0),
                    error_kind=type(exc).__name__,
                    error_message=str(exc),
                )
            )
            raise

        result = self._convert_response(
            body, request, job.job_id, self._clock() - job.started_at
        )

        logger.info(
            "Speaker transcription completed: %.0fs of audio, %d speakers, %d utterances, %s",
            result.audio_duration_seconds,
            len(result.speakers or []),
            len(result.utterances or []),
            result.formatted_cost,
            extra={
                "provider": self.provider,
                "job_id": job.job_id,
                "filename": request.filename,
                "duration_seconds": result.processing_duration_seconds,
            },
        )

        self._emit_metrics(
            TranscriptionMetrics(
                provider=self.provider,
                status=job.state.value,
                audio_size_bytes=validated.size,
                processing_wall_time_seconds=result.processing_duration_seconds,
                job_id=job.job_id,
                audio_duration_seconds=result.audio_duration_seconds,
                cost=result.cost,
                upload_duration_seconds=upload_timer.duration_seconds,
                submit_duration_seconds=submit_timer.duration_seconds,
                poll_duration_seconds=poll_timer.duration_seconds,
                poll_count=job.poll_count,
            )
        )
        self._record_usage(
            {
                "provider": self.provider,
                "model": ASSEMBLYAI_MODEL,
                "endpoint": "/v2/transcript",
                "input_tokens": 0,
                "output_tokens": 0,
                "cost_usd": result.cost,
                "response_time_ms": round(result.processing_duration_seconds * 1000),
                "success": True,
                "metadata": {
                    "audio_duration_seconds": result.audio_duration_seconds,
                    "filename": request.filename,
                    "speakers_detected": len(result.speakers or []),
                    "utterance_count": len(result.utterances or []),
                    "transcript_id": job.job_id,
                },
            }
        )
        return result

    async def _upload_audio(
        self, client: httpx.AsyncClient, api_key: str, request: TranscriptionRequest
    ) -> str:
        """Upload raw audio bytes.

        Returns:
            The opaque upload URL to reference when starting the job.

        Raises:
            APIError: If the upload fails after retries or the response
                carries no upload_url.
        """
        url = f"{self._base_url}/upload"
        headers = self._headers(api_key, "application/octet-stream")
        payload = bytes(request.data)

        async def upload() -> dict[str, Any]:
            try:
                response = await client.post(url, headers=headers, content=payload)
            except httpx.HTTPError as exc:
                raise APIError(
                    self.provider, 500, f"Upload failed: {exc}", {"filename": request.filename}
                ) from exc
            if response.status_code >= 400:
                logger.error(
                    "AssemblyAI upload failed: %s",
                    response.text,
                    extra={"provider": self.provider, "status_code": response.status_code},
                )
                raise APIError(
                    self.provider,
                    response.status_code,
                    f"Upload failed: {response.reason_phrase}",
                    {"error_body": response.text},
                )
            return self._json_body(response, "upload")

        body = await retry_with_backoff(upload, self._retry_policy, "AssemblyAI upload")

        upload_url = body.get("upload_url")
        if not upload_url:
            logger.error(
                "AssemblyAI upload response missing upload_url",
                extra={"provider": self.provider, "filename": request.filename},
            )
            raise APIError(self.provider, 500, "Upload response missing upload_url")

        logger.info("Audio uploaded to AssemblyAI", extra={"provider": self.provider})
        return upload_url

    def _build_job_config(self, audio_url: str, options: TranscriptionOptions) -> dict[str, Any]:
        """Job request body. language_code and language_detection are exclusive."""
        config: dict[str, Any] = {"audio_url": audio_url, "speaker_labels": True}
        if options.language:
            config["language_code"] = options.language
        else:
            config["language_detection"] = True
        if options.speakers_expected:
            config["speakers_expected"] = options.speakers_expected
        return config

    async def _start_transcription(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        audio_url: str,
        options: TranscriptionOptions,
    ) -> str:
        """Start a diarized transcription job.

        Returns:
            The provider job ID.

        Raises:
            APIError: If submission fails after retries or no ID is returned.
        """
        url = f"{self._base_url}/transcript"
        config = self._build_job_config(audio_url, options)

        async def submit() -> dict[str, Any]:
            try:
                response = await client.post(
                    url, headers=self._headers(api_key), json=config
                )
            except httpx.HTTPError as exc:
                raise APIError(
                    self.provider, 500, f"Transcription start failed: {exc}"
                ) from exc
            if response.status_code >= 400:
                logger.error(
                    "AssemblyAI transcription start failed: %s",
                    response.text,
                    extra={"provider": self.provider, "status_code": response.status_code},
                )
                raise APIError(
                    self.provider,
                    response.status_code,
                    f"Transcription start failed: {response.reason_phrase}",
                    {"error_body": response.text},
                )
            return self._json_body(response, "transcription start")

        body = await retry_with_backoff(
            submit, self._retry_policy, "AssemblyAI transcription start"
        )

        job_id = body.get("id")
        if not job_id:
            logger.error(
                "AssemblyAI transcription response missing ID",
                extra={"provider": self.provider},
            )
            raise APIError(self.provider, 500, "Transcription response missing ID")

        logger.info(
            "AssemblyAI transcription job started with status %s",
            body.get("status"),
            extra={"provider": self.provider, "job_id": job_id},
        )
        return job_id

    def _timed_out(self, job: ProviderJob) -> TranscriptionTimeoutError:
        job.advance(JobState.TIMED_OUT)
        logger.error(
            "AssemblyAI transcription timed out after %.0fs",
            self._clock() - job.started_at,
            extra={"provider": self.provider, "job_id": job.job_id},
        )
        return TranscriptionTimeoutError("AssemblyAI transcription", self._timeout)

    async def _within_deadline(
        self, job: ProviderJob, operation: Callable[[], Awaitable[T]]
    ) -> T:
        """Await operation for no longer than what is left of the ceiling.

        Covers in-flight requests and retry sleeps alike, so a slow upload
        or poll cannot run past the overall deadline.
        """
        remaining = self._timeout - (self._clock() - job.started_at)
        if remaining <= 0:
            raise self._timed_out(job)
        try:
            return await with_timeout(operation, remaining, "AssemblyAI transcription")
        except TranscriptionTimeoutError:
            raise self._timed_out(job) from None

    async def _poll_until_complete(
        self, client: httpx.AsyncClient, api_key: str, job: ProviderJob
    ) -> dict[str, Any]:
        """Poll job status at a fixed cadence until a terminal state.

        Individual polls are not retried; the next iteration is the retry.
        The deadline counts from job.started_at and bounds each poll call
        as well as the sleeps between them.

        Raises:
            APIError: If a poll call fails or the job reports an error.
            TranscriptionTimeoutError: If the ceiling passes first.
        """
        url = f"{self._base_url}/transcript/{job.job_id}"
        headers = self._headers(api_key)

        async def fetch() -> httpx.Response:
            try:
                return await client.get(url, headers=headers)
            except httpx.HTTPError as exc:
                raise APIError(
                    self.provider,
                    500,
                    f"Polling failed: {exc}",
                    {"transcript_id": job.job_id},
                ) from exc

        while True:
            response = await self._within_deadline(job, fetch)
            job.poll_count += 1

            if response.status_code != 200:
                logger.error(
                    "AssemblyAI polling request failed: %s",
                    response.text,
                    extra={
                        "provider": self.provider,
                        "job_id": job.job_id,
                        "status_code": response.status_code,
                    },
                )
                raise APIError(
                    self.provider,
                    response.status_code,
                    f"Polling failed: {response.reason_phrase}",
                    {"transcript_id": job.job_id, "error_body": response.text},
                )

            body = self._json_body(response, "polling")
            status = body.get("status", "")
            state = _PROVIDER_STATES.get(status)

            logger.debug(
                "AssemblyAI job status %s after %.0fs",
                status,
                self._clock() - job.started_at,
                extra={"provider": self.provider, "job_id": job.job_id},
            )

            if state == JobState.COMPLETED:
                job.advance(state)
                return body

            if state == JobState.FAILED:
                job.advance(state)
                logger.error(
                    "AssemblyAI transcription failed: %s",
                    body.get("error"),
                    extra={"provider": self.provider, "job_id": job.job_id},
                )
                raise APIError(
                    self.provider,
                    500,
                    f"Transcription failed: {body.get('error')}",
                    {"transcript_id": job.job_id},
                    terminal=True,
                )

            if state is not None:
                job.advance(state)

            remaining = self._timeout - (self._clock() - job.started_at)
            await asyncio.sleep(max(0.0, min(self._poll_interval, remaining)))

    def _json_body(self, response: httpx.Response, phase: str) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise APIError(
                self.provider, 502, f"Malformed {phase} response from AssemblyAI"
            ) from exc
        if not isinstance(body, dict):
            raise APIError(self.provider, 502, f"Malformed {phase} response from AssemblyAI")
        return body

    def _convert_response(
        self,
        body: dict[str, Any],
        request: TranscriptionRequest,
        job_id: str | None,
        processing_seconds: float,
    ) -> NormalizedTranscript:
        """Map a completed AssemblyAI transcript into the normalized result.

        Utterances keep provider order. Falls back to joined utterance text
        when the transcript text is absent, and to a word-count estimate
        when no duration is reported.
        """
        utterances = [
            Utterance(
                speaker=str(u.get("speaker") or ""),
                start=int(u.get("start") or 0),
                end=int(u.get("end") or 0),
                text=u.get("text") or "",
                confidence=float(u.get("confidence") or 0.0),
            )
            for u in body.get("utterances") or []
        ]

        text = body.get("text") or " ".join(u.text for u in utterances)
        duration = body.get("audio_duration") or estimate_duration_from_text(text)
        breakdown = calculate_cost(duration, ASSEMBLYAI_RATE)

        return NormalizedTranscript(
            text=text,
            audio_duration_seconds=duration,
            cost=breakdown.cost,
            processing_duration_seconds=processing_seconds,
            provider=self.provider,
            model=ASSEMBLYAI_MODEL,
            filename=request.filename,
            options=request.options,
            language=body.get("language_code") or request.options.language,
            utterances=utterances,
            speakers=collect_speakers(utterances),
            formatted_transcript=format_transcript(utterances),
            job_id=job_id,
        )

    def requirements(self) -> ProviderRequirements:
        return ProviderRequirements(
            provider=self.provider,
            available=self.is_available,
            supported_formats=ASSEMBLYAI_LIMITS.supported_formats,
            supported_mime_types=tuple(MIME_TO_EXTENSION),
            max_file_size_bytes=ASSEMBLYAI_LIMITS.max_size_bytes,
            price_per_minute=ASSEMBLYAI_RATE.price_per_minute,
            features=(
                "Speaker diarization (identifies unique speakers)",
                "Per-utterance timestamps",
                "Automatic language detection",
                "Speaker labeling support",
            ),
        )

    async def check_connection(self) -> bool:
        """Probe the transcript endpoint; 401 means the key is rejected."""
        if self._api_key is None:
            logger.warning("Cannot test AssemblyAI connection: API key not configured")
            return False
        try:
            async with self._open_client(30.0) as client:
                response = await client.get(
                    f"{self._base_url}/transcript", headers=self._headers(self._api_key)
                )
        except httpx.HTTPError as exc:
            logger.error("AssemblyAI connection test failed: %s", exc)
            return False
        if response.status_code == 401:
            logger.error("AssemblyAI connection test failed: invalid API key")
            return False
        logger.info("AssemblyAI API connection test passed")
        return True
