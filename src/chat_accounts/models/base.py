from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from pydantic import BaseModel


def utcnow() -> datetime:
    """Timezone-aware UTC now; the default clock for models and services."""
    return datetime.now(timezone.utc)


class DBSerializableModel(BaseModel):
    """
    Base Pydantic model that knows how to serialize itself for persistence.

    Every stored model goes through `serialize_for_db`, so the snapshot
    and ledger formats are controlled in one place. Optional fields are
    written out as `null` instead of being dropped, which keeps the
    on-disk field set identical for every record.
    """

    def serialize_for_db(self) -> Dict[str, Any]:
        """
        Convert to a JSON-compatible dict suitable for persistence.

        Decimals become strings and datetimes ISO-8601 strings, so the
        result can be handed straight to `json.dumps`.
        """
        return self.model_dump(mode="json", by_alias=True, exclude_none=False)
