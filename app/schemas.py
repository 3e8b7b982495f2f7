"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses, including the common envelope
"""

from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator
from pydantic_core import PydanticCustomError

from app.config import settings


CONTENT_MAX_LENGTH = 200
NICKNAME_MAX_LENGTH = 20

T = TypeVar("T")


def utc_timestamp() -> str:
    """Current time as ISO-8601 UTC with millisecond precision and Z suffix."""
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'


# =============================================================================
# Pydantic Request Models
# =============================================================================

class MessageCreateRequest(BaseModel):
    """
    Pydantic model for validating a new message.

    Validates:
    - content: string, 1-200 characters after trimming
    - nickname: optional; kept when 1-20 characters after trimming.
      Anything else (missing, null, non-string, blank, too long) becomes
      the default nickname.
    """
    content: Any = Field(
        None,
        validate_default=True,
        description="Message text, 1-200 characters after trimming"
    )
    nickname: Any = Field(
        None,
        validate_default=True,
        description="Optional display name, at most 20 characters"
    )

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            raise PydanticCustomError(
                "content_empty", "Message content must not be empty"
            )
        v = v.strip()
        if len(v) > CONTENT_MAX_LENGTH:
            raise PydanticCustomError(
                "content_too_long",
                "Message content must not exceed {max_length} characters",
                {"max_length": CONTENT_MAX_LENGTH},
            )
        return v

    @field_validator("nickname")
    @classmethod
    def validate_nickname(cls, v: Any) -> str:
        if not isinstance(v, str):
            return settings.DEFAULT_NICKNAME
        v = v.strip()
        if not v or len(v) > NICKNAME_MAX_LENGTH:
            return settings.DEFAULT_NICKNAME
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"content": "hello", "nickname": "alice"}
            ]
        }
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class MessageResponse(BaseModel):
    """
    A message as returned to clients.
    ip_address and the raw created_at are not exposed.
    """
    id: int = Field(..., description="Message identifier")
    content: str = Field(..., description="Message text")
    nickname: str = Field(..., description="Author nickname")
    likes: int = Field(..., ge=0, description="Number of likes")
    time: str = Field(..., description="Creation time, server local time")

    model_config = {
        "from_attributes": True,  # Allow creating from ORM objects
    }


class DeletedMessage(BaseModel):
    """Payload of a successful delete."""
    id: int


class ApiResponse(BaseModel, Generic[T]):
    """Envelope shared by every message endpoint."""
    success: bool = Field(..., description="Whether the operation succeeded")
    data: Optional[T] = Field(None, description="Payload, null on failure")
    message: str = Field("", description="Human-readable outcome")
    timestamp: str = Field(default_factory=utc_timestamp, description="Server time (ISO-8601 UTC)")


class NotFoundResponse(BaseModel):
    """Response for unmatched routes."""
    success: bool = False
    message: str
    path: str


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
    timestamp: str = Field(default_factory=utc_timestamp)
