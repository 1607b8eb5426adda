"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
- Formatting of validation errors into the `{"errors": [...]}` shape
"""

import re
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field, field_validator


PHONE_NUMBER_PATTERN = re.compile(r"^\+?[1-9][0-9]{1,14}$")
MESSAGE_BODY_MAX_LENGTH = 250
PASSWORD_MIN_LENGTH = 6
# bcrypt ignores or rejects anything past 72 bytes
PASSWORD_MAX_BYTES = 72


# =============================================================================
# Pydantic Request Models
# =============================================================================

class MessageCreate(BaseModel):
    """
    Fields of a new outbound message.

    Validates:
    - phone_number: E.164-like, optional leading +, no leading zero, 2-15 digits
    - message_body: non-empty after trimming, at most 250 characters
    """
    phone_number: str = Field(..., description="Destination phone number")
    message_body: str = Field(..., description="Message text (1-250 characters)")

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("can't be blank")
        if not PHONE_NUMBER_PATTERN.match(v):
            raise ValueError("is not a valid phone number")
        return v

    @field_validator("message_body")
    @classmethod
    def validate_message_body(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("can't be blank")
        if len(v) > MESSAGE_BODY_MAX_LENGTH:
            raise ValueError(f"is too long (maximum is {MESSAGE_BODY_MAX_LENGTH} characters)")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"phone_number": "+18777804236", "message_body": "Hello"}
            ]
        }
    }


class MessageCreateRequest(BaseModel):
    """Body of POST /messages: the message fields wrapped under `message`."""
    message: MessageCreate


class LoginRequest(BaseModel):
    user_name: str = Field(..., description="Registered username")
    password: str = Field(..., description="Plaintext password")


class RegisterRequest(BaseModel):
    """
    New account credentials.

    user_name is trimmed and must not be blank; password must be 6
    characters or more and fit in bcrypt's 72-byte input.
    """
    user_name: str = Field(..., description="Unique username")
    password: str = Field(..., description="Plaintext password")

    @field_validator("user_name")
    @classmethod
    def validate_user_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("can't be blank")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if not v:
            raise ValueError("can't be blank")
        if len(v) < PASSWORD_MIN_LENGTH:
            raise ValueError(f"is too short (minimum is {PASSWORD_MIN_LENGTH} characters)")
        if len(v.encode("utf-8")) > PASSWORD_MAX_BYTES:
            raise ValueError(f"is too long (maximum is {PASSWORD_MAX_BYTES} bytes)")
        return v


# =============================================================================
# Pydantic Response Models
# =============================================================================

class MessageResponse(BaseModel):
    """A stored message as returned to the client."""
    id: int = Field(..., description="Store-assigned identifier")
    phone_number: str
    message_body: str
    direction: str = Field(..., description="outbound or inbound")
    status: str = Field(..., description="sending, sent, delivered or failed")
    provider_message_id: Optional[str] = Field(None, description="Twilio message SID")
    created_at: str
    updated_at: str

    model_config = {
        "from_attributes": True,  # Allow creating from ORM objects
    }


class StatusUpdatesResponse(BaseModel):
    """Response of GET /messages/check_status_updates."""
    messages: list[MessageResponse] = Field(default_factory=list)
    updates_count: int = Field(..., ge=0, description="Statuses changed by this poll")


class TokenResponse(BaseModel):
    token: str
    user_name: str


class RegisterResponse(TokenResponse):
    message: str = "Registration successful"


class WebhookResponse(BaseModel):
    """Response model for an accepted status callback."""
    status: str = Field(default="success", description="Operation status")


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Error description")


class ErrorListResponse(BaseModel):
    errors: list[str] = Field(..., description="Field-level or delivery errors")


class DeliveryFailureResponse(ErrorListResponse):
    """Returned when the message was stored but the provider did not accept it."""
    message: MessageResponse


class HealthResponse(BaseModel):
    """Response model for GET /health."""
    status: str = Field(..., description="healthy or unhealthy")
    checks: dict[str, str] = Field(default_factory=dict)
    timestamp: str


class LivenessResponse(BaseModel):
    status: str = "ok"


# =============================================================================
# Validation error formatting
# =============================================================================

_VALUE_ERROR_PREFIX = "Value error, "


def format_validation_errors(errors: Iterable[dict[str, Any]]) -> list[str]:
    """
    Turn pydantic error dicts into `"<field> <problem>"` strings.

    The field is the last element of the error location, so nested
    `message.message_body` errors are reported as `message_body ...`.
    """
    formatted = []
    for error in errors:
        loc = error.get("loc") or ()
        field = str(loc[-1]) if loc else "request"
        if error.get("type") == "missing":
            problem = "can't be blank"
        else:
            problem = str(error.get("msg", "is invalid"))
            if problem.startswith(_VALUE_ERROR_PREFIX):
                problem = problem[len(_VALUE_ERROR_PREFIX):]
        formatted.append(f"{field} {problem}")
    return formatted
