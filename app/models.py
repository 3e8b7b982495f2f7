"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from datetime import timezone

from sqlalchemy import Column, DateTime, Integer, Text, func

from app.config import settings
from app.storage import Base


TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class Message(Base):
    """
    SQLAlchemy model for a message posted to the board.

    Table: messages
    Primary Key: id (autoincrement, never reused)

    Only `likes` is ever updated after insert. `ip_address` is kept for
    the record but is not part of any response schema.
    """
    __tablename__ = "messages"
    # AUTOINCREMENT keeps ids of deleted rows from being reused
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    content = Column(Text, nullable=False)
    nickname = Column(Text, nullable=False, default=lambda: settings.DEFAULT_NICKNAME)
    likes = Column(Integer, nullable=False, default=0, server_default="0")
    # SQLite CURRENT_TIMESTAMP is UTC
    created_at = Column(DateTime, nullable=False, server_default=func.current_timestamp())
    ip_address = Column(Text, nullable=True)

    @property
    def time(self) -> str:
        """Creation time in the server's local time zone, ready to display."""
        if self.created_at is None:
            return ""
        return (
            self.created_at.replace(tzinfo=timezone.utc)
            .astimezone()
            .strftime(TIME_FORMAT)
        )

    def __repr__(self) -> str:
        return f"<Message id={self.id} likes={self.likes}>"
