"""
Voice Notes - Note Database Model

Single flat table holding every note.
"""

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Note(Base):
    """
    Notes table. Timestamps are naive UTC.
    """
    __tablename__ = "notes"

    id = Column(String, primary_key=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Note id={self.id} updated_at={self.updated_at}>"
