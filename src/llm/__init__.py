"""LLM module for Voice Notes."""

from .note_taker import NoteTaker, OptimizedText, DailyReview

__all__ = ["NoteTaker", "OptimizedText", "DailyReview"]
