"""
API Request/Response Models

Pydantic models for input validation and response serialization.
All validation happens server-side for security.
"""

import datetime as dt
from typing import Optional
from pydantic import BaseModel, Field, field_validator


# ==================== Auth ====================

class LoginRequest(BaseModel):
    """Login with the shared admin password."""

    password: str = ""


class LoginResponse(BaseModel):
    success: bool
    token: Optional[str] = None
    error: Optional[str] = None


class VerifyResponse(BaseModel):
    valid: bool


# ==================== Transcription ====================

class TranscribeRequest(BaseModel):
    """Request to transcribe audio."""

    audio: str = Field(
        ...,
        description="Base64-encoded audio data",
        min_length=1,
    )
    format: str = Field(
        default="mp3",
        description="Audio format (webm, mp3, wav, ogg, m4a)",
    )

    @field_validator("format")
    @classmethod
    def normalize_format(cls, v: str) -> str:
        return v.strip().lower()


class TranscribeResponse(BaseModel):
    """Response from transcription."""

    success: bool
    text: str = ""
    error: Optional[str] = None


# ==================== Text optimization ====================

class OptimizeTextRequest(BaseModel):
    """Request to clean up a spoken transcript."""

    text: str = Field(
        ...,
        description="Transcript text to optimize",
        min_length=1,
        max_length=100000,
    )
    mode: str = Field(
        default="remove-filler",
        description="Optimization mode",
    )


class OptimizeTextResponse(BaseModel):
    success: bool
    text: str = ""
    original_text: Optional[str] = None
    error: Optional[str] = None


# ==================== Notes ====================

class NoteContent(BaseModel):
    """Body for creating, replacing or appending note content."""

    content: str = Field(..., min_length=1, max_length=200000)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Content must not be blank")
        return v


class NoteResponse(BaseModel):
    id: str
    content: str
    created_at: dt.datetime
    updated_at: dt.datetime


class NoteListResponse(BaseModel):
    notes: list[NoteResponse] = Field(default_factory=list)
    count: int = 0


# ==================== Daily review ====================

class DailyReviewRequest(BaseModel):
    """Request a summary of one day's notes. Defaults to today (UTC)."""

    date: Optional[dt.date] = None


class DailyReviewResponse(BaseModel):
    success: bool
    date: dt.date
    note_count: int = 0
    summary: str = ""
    key_points: list[str] = Field(default_factory=list)
    todos: list[str] = Field(default_factory=list)
    error: Optional[str] = None


# ==================== Misc ====================

class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    code: Optional[str] = None
