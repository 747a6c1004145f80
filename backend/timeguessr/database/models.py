from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text
from .session import Base


class SessionSnapshot(Base):
    """Latest serialized state of a game session."""
    __tablename__ = "session_snapshots"

    game_session_id = Column(String(100), primary_key=True, index=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
