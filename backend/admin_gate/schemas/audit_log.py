from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuditLogEntry(BaseModel):
    """One security-relevant event. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1, max_length=255)
    api_key_id: str | None = Field(None, max_length=255)
    ip_address: str = Field(..., max_length=45)  # IPv4/IPv6
    action: str = Field(..., min_length=1, max_length=100)
    success: bool
    http_status: int = Field(..., ge=100, le=599)
    error_code: str | None = Field(None, max_length=100)
    error_message: str | None = None
    request_body: Any | None = None
    processing_time_ms: int | None = Field(None, ge=0)
