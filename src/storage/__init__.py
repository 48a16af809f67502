"""Note storage for Voice Notes."""

from .notes import Note, NoteNotFound, NoteStore

__all__ = ["Note", "NoteNotFound", "NoteStore"]
