"""Database models for the review engine."""
from sqlalchemy import JSON, Column, String

from smartalk.models.base import Base, TimestampMixin


class StateSnapshot(Base, TimestampMixin):
    """Full-collection snapshot of one record type, replaced on every save."""

    __tablename__ = "state_snapshots"

    key = Column(String, primary_key=True)
    payload = Column(JSON, nullable=False, default=list)


class Keyword(Base, TimestampMixin):
    """Keyword catalogue entry with the media shown in review sessions."""

    __tablename__ = "keywords"

    id = Column(String, primary_key=True)
    text = Column(String, nullable=False)
    translation = Column(String)
    topic = Column(String, nullable=False, index=True)
    image_url = Column(String)
    audio_url = Column(String)
