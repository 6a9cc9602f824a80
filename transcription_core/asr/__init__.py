"""Speech provider adapters and transcript post-processing."""

from transcription_core.asr.registry import build_engine, get_transcription_engine

__all__ = ["build_engine", "get_transcription_engine"]
