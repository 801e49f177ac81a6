"""
Run Ledger
==========
Remembers the last trigger instant that was actually fired, so the
scheduler can detect a missed trigger after downtime.

Stored as a small JSON document:
    {"last_fired_at": "2026-10-18T00:00:00+00:00", "trigger": "schedule"}

Only consulted when SCHEDULE_CATCH_UP is enabled.
"""
import json
import logging
import os
from datetime import datetime
from typing import Optional

from midnight.core.config import RUN_LEDGER_PATH

logger = logging.getLogger(__name__)


class RunLedger:

    def __init__(self, path: str = RUN_LEDGER_PATH) -> None:
        self.path = path

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, ValueError) as e:
            logger.warning("Unreadable run ledger %s: %s", self.path, e)
            return {}

    def last_fired_at(self) -> Optional[datetime]:
        value = self._read().get("last_fired_at")
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.warning("Invalid last_fired_at in ledger: %r", value)
            return None

    def record_fire(self, fired_at: datetime, trigger: str = "schedule") -> None:
        """Persist the fired trigger instant. Older instants never overwrite newer ones."""
        previous = self.last_fired_at()
        if previous is not None and previous >= fired_at:
            return
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump({"last_fired_at": fired_at.isoformat(), "trigger": trigger}, f)
        os.replace(tmp_path, self.path)
