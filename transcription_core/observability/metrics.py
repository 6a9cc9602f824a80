"""Per-transcription metrics collection and reporting.

Provides the TranscriptionMetrics dataclass, the StageTimer context manager
for measuring protocol phases, and log_transcription_metrics() for emitting
metrics as one structured JSON line to stdout.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from datetime import UTC, datetime


@dataclass
class TranscriptionMetrics:
    """All metrics collected for a single transcription call."""

    provider: str
    status: str
    audio_size_bytes: int
    processing_wall_time_seconds: float
    job_id: str | None = None
    audio_duration_seconds: float = 0.0
    cost: float = 0.0
    request_duration_seconds: float = 0.0
    upload_duration_seconds: float = 0.0
    submit_duration_seconds: float = 0.0
    poll_duration_seconds: float = 0.0
    poll_count: int = 0
    retry_count: int = 0
    error_kind: str | None = None
    error_message: str | None = None


class StageTimer:
    """Context manager that records wall-clock duration of a stage.

    Captures stage_name, start_time, end_time (as UTC datetimes),
    and duration_seconds (as a monotonic float).

    Usage:
        timer = StageTimer("upload")
        with timer:
            await upload()
        print(timer.duration_seconds)
    """

    def __init__(self, stage_name: str) -> None:
        self.stage_name = stage_name
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.duration_seconds: float = 0.0
        self._mono_start: float = 0.0

    def __enter__(self) -> StageTimer:
        self.start_time = datetime.now(UTC)
        self._mono_start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        elapsed = time.monotonic() - self._mono_start
        self.end_time = datetime.now(UTC)
        self.duration_seconds = elapsed


def log_transcription_metrics(metrics: TranscriptionMetrics) -> None:
    """Emit transcription metrics as a single structured JSON line to stdout.

    The JSON envelope includes timestamp, severity, and metric_type fields.
    All TranscriptionMetrics fields are spread into the top level.

    Args:
        metrics: Populated TranscriptionMetrics dataclass.
    """
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO" if metrics.status == "completed" else "WARNING",
        "metric_type": "transcription_completion",
        **asdict(metrics),
    }
    print(json.dumps(entry))
