from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from ..models.account import Account


logger = logging.getLogger(__name__)

_ACCOUNT_LIST = TypeAdapter(List[Account])


class SnapshotError(Exception):
    """Raised when the snapshot file cannot be read or written."""


class SnapshotFile:
    """
    Whole-collection JSON snapshot of every account.

    The file is always rewritten in full: the new content goes to a
    temporary file in the same directory which then replaces the old
    one, so readers never observe a half-written snapshot.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> List[Account]:
        """
        Return the stored accounts, or an empty list if there is no file.

        Raises `SnapshotError` if the file exists but cannot be parsed.
        """
        if not self._path.exists():
            return []
        try:
            raw = self._path.read_text(encoding="utf-8")
            if not raw.strip():
                return []
            return _ACCOUNT_LIST.validate_json(raw)
        except (OSError, ValueError, ValidationError) as exc:
            raise SnapshotError(f"could not load snapshot {self._path}: {exc}") from exc

    def save(self, records: List[dict]) -> None:
        """Atomically replace the snapshot with already-serialized records."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(records, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise SnapshotError(f"could not save snapshot {self._path}: {exc}") from exc

    def quarantine(self, now: datetime) -> Optional[Path]:
        """
        Move an unreadable snapshot aside so the next save does not
        overwrite it. Returns the new location, if the move worked.
        """
        target = self._path.with_name(
            f"{self._path.name}.corrupt-{now.strftime('%Y%m%dT%H%M%S')}"
        )
        try:
            os.replace(self._path, target)
        except OSError:
            logger.exception("Could not move corrupt snapshot %s aside", self._path)
            return None
        return target
