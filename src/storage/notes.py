"""
Voice Notes - Note Store

CRUD operations over the notes table.
"""

import datetime as dt
import logging
import secrets
from typing import Callable, Optional

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base, Note

logger = logging.getLogger(__name__)


class NoteNotFound(Exception):
    """Note id does not exist."""
    def __init__(self, note_id: str):
        self.note_id = note_id
        super().__init__(f"Note not found: {note_id}")


def utc_now() -> dt.datetime:
    """Current UTC time as a naive datetime (SQLite drops tzinfo)."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def generate_note_id() -> str:
    return secrets.token_urlsafe(12)


class NoteStore:
    """
    Notes persisted through SQLAlchemy.

    Methods are blocking; async callers should run them in an executor.
    """

    def __init__(
        self,
        database_url: str = "sqlite:///./voice_notes.db",
        clock: Callable[[], dt.datetime] = utc_now,
    ):
        """
        Initialize the store and create the table if needed.

        Args:
            database_url: SQLAlchemy database URL. "sqlite://" keeps
                everything in memory for the life of the store.
            clock: Returns the current naive UTC time.
        """
        self.database_url = database_url
        self._clock = clock

        engine_kwargs = {"echo": False}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, or every thread sees an empty database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine, expire_on_commit=False
        )
        Base.metadata.create_all(bind=self.engine)

    def create(self, content: str) -> Note:
        now = self._clock()
        note = Note(id=generate_note_id(), content=content.strip(), created_at=now, updated_at=now)

        with self.SessionLocal() as session:
            session.add(note)
            session.commit()

        logger.info(f"Note created: {note.id}")
        return note

    def list_all(self) -> list[Note]:
        """All notes, most recently updated first."""
        with self.SessionLocal() as session:
            stmt = select(Note).order_by(Note.updated_at.desc(), Note.created_at.desc())
            return list(session.scalars(stmt))

    def get(self, note_id: str) -> Optional[Note]:
        with self.SessionLocal() as session:
            return session.get(Note, note_id)

    def update(self, note_id: str, content: str) -> Note:
        """
        Replace a note's content.

        Raises:
            NoteNotFound: No note with that id.
        """
        with self.SessionLocal() as session:
            note = session.get(Note, note_id)
            if note is None:
                raise NoteNotFound(note_id)

            note.content = content.strip()
            note.updated_at = self._clock()
            session.commit()

        logger.info(f"Note updated: {note_id}")
        return note

    def append(self, note_id: str, content: str) -> Note:
        """
        Append content to a note, separated by a blank line and an
        [HH:MM] stamp of the append time.

        Raises:
            NoteNotFound: No note with that id.
        """
        with self.SessionLocal() as session:
            note = session.get(Note, note_id)
            if note is None:
                raise NoteNotFound(note_id)

            now = self._clock()
            note.content = f"{note.content}\n\n[{now.strftime('%H:%M')}] {content.strip()}"
            note.updated_at = now
            session.commit()

        logger.info(f"Content appended to note: {note_id}")
        return note

    def delete(self, note_id: str) -> bool:
        """Delete a note. Returns False if it did not exist."""
        with self.SessionLocal() as session:
            note = session.get(Note, note_id)
            if note is None:
                return False
            session.delete(note)
            session.commit()

        logger.info(f"Note deleted: {note_id}")
        return True

    def count(self) -> int:
        with self.SessionLocal() as session:
            return session.scalar(select(func.count()).select_from(Note)) or 0

    def list_for_day(self, day: dt.date) -> list[Note]:
        """Notes created on the given UTC date, oldest first."""
        start = dt.datetime.combine(day, dt.time.min)
        end = start + dt.timedelta(days=1)

        with self.SessionLocal() as session:
            stmt = (
                select(Note)
                .where(Note.created_at >= start, Note.created_at < end)
                .order_by(Note.created_at.asc())
            )
            return list(session.scalars(stmt))

    def close(self) -> None:
        self.engine.dispose()
