from sqlalchemy import JSON, Column, DateTime, String, func

from .database import Base


class Entry(Base):
    """A single key-value record; keys are path-like strings such as ``sketch/<id>``."""

    __tablename__ = "entries"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
