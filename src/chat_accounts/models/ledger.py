from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import Field

from .base import DBSerializableModel, utcnow


class LedgerEventType(str, Enum):
    TRANSACTION = "transaction"
    IDENTITY = "identity"
    ERROR = "error"


class LedgerEntry(DBSerializableModel):
    """
    Structured audit record mirrored to the line-delimited ledger file.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    event_type: LedgerEventType
    account_id: Optional[str] = None
    correlation_id: Optional[str] = Field(
        default=None,
        description="Correlation id for tracing a logical operation across components.",
    )
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
