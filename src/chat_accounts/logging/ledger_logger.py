from __future__ import annotations

import json
import logging
from collections import deque
from pathlib import Path
from typing import Any, Deque, Optional

from ..models.ledger import LedgerEntry, LedgerEventType


logger = logging.getLogger(__name__)


class LedgerLogger:
    """
    Structured audit ledger for balance and identity events.

    Entries are appended to a file as line-delimited JSON for easier
    ingestion by log aggregators, and echoed to the standard logger.
    The most recent entries are also kept in memory (`entries`).
    """

    def __init__(self, file_path: Optional[Path] = None, recent_limit: int = 1000) -> None:
        self._file_path = file_path
        if self._file_path is not None:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
        self.entries: Deque[LedgerEntry] = deque(maxlen=recent_limit)

    async def log_transaction(
        self,
        account_id: str,
        message: str,
        details: dict[str, Any],
        correlation_id: Optional[str] = None,
    ) -> None:
        await self._log(
            LedgerEventType.TRANSACTION,
            account_id=account_id,
            message=message,
            details=details,
            correlation_id=correlation_id,
        )

    async def log_identity(
        self,
        account_id: str,
        message: str,
        details: dict[str, Any],
        correlation_id: Optional[str] = None,
    ) -> None:
        await self._log(
            LedgerEventType.IDENTITY,
            account_id=account_id,
            message=message,
            details=details,
            correlation_id=correlation_id,
        )

    async def log_error(
        self,
        message: str,
        details: dict[str, Any],
        account_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        await self._log(
            LedgerEventType.ERROR,
            account_id=account_id,
            message=message,
            details=details,
            correlation_id=correlation_id,
        )

    async def _log(
        self,
        event_type: LedgerEventType,
        account_id: Optional[str],
        message: str,
        details: dict[str, Any],
        correlation_id: Optional[str],
    ) -> None:
        entry = LedgerEntry(
            event_type=event_type,
            account_id=account_id,
            message=message,
            details=details,
            correlation_id=correlation_id,
        )
        self.entries.append(entry)

        level = logging.WARNING if event_type is LedgerEventType.ERROR else logging.INFO
        logger.log(level, "%s: %s", message, details, extra={"account_id": account_id})

        if self._file_path is None:
            return
        # File logging never fails the main flow.
        try:
            line = json.dumps(entry.serialize_for_db(), default=str)
            with self._file_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError:
            logger.warning("Could not append to ledger file %s", self._file_path, exc_info=True)
