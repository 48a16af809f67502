"""Transcription module for Voice Notes."""

from .engine import DashScopeTranscriber, TranscriptionResult

__all__ = ["DashScopeTranscriber", "TranscriptionResult"]
