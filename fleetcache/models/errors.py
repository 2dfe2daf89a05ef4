from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from fleetcache.models.enums import ErrorSeverity, ErrorType, RecoveryStrategy


class ClassifiedError(BaseModel):
    """An exception enriched with type, severity and a recovery plan."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    type: ErrorType
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    message: str
    user_message: str
    technical_details: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    context: dict[str, Any] | None = None
    recovery_strategy: RecoveryStrategy
    retry_count: int = 0
    max_retries: int = 1
    status_code: int | None = None
