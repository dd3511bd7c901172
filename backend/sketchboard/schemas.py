from typing import Optional

from pydantic import BaseModel, Field


class Submission(BaseModel):
    """A persisted sketch: embeddable markup plus who sent it and when."""

    id: str
    embed: str = Field(min_length=1)
    creator: Optional[str] = None
    timestamp: int = Field(description="Creation time in epoch milliseconds")

    model_config = {"frozen": True}


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    connections: int
    timestamp: str
