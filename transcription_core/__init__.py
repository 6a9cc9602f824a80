"""Resilient orchestration of synchronous and job-based speech transcription."""

__version__ = "0.1.0"
