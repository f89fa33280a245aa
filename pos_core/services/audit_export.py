"""
Audit Excel Exporter with Concurrency Control

Appends delivered audit events to a spreadsheet. Several Celery worker
processes may export at once, so every read-modify-write of the workbook
happens under a file lock.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd
from filelock import FileLock, Timeout

from pos_core.core.config import get_settings

logger = logging.getLogger(__name__)


class AuditExporter:
    """Process-safe audit workbook writer."""

    COLUMNS = [
        "occurred_at",
        "actor_id",
        "action",
        "entity_type",
        "entity_id",
        "before",
        "after",
        "exported_at",
    ]

    def __init__(self, data_dir: Path | None = None, filename: str | None = None,
                 lock_timeout: int | None = None):
        settings = get_settings()
        self.data_dir = Path(data_dir or settings.data_directory)
        self.file_path = self.data_dir / (filename or settings.audit_export_filename)
        self.lock_path = self.file_path.with_name(self.file_path.name + ".lock")
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.audit_lock_timeout

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _load_or_create_df(self) -> pd.DataFrame:
        """Load existing workbook or start an empty frame."""
        if self.file_path.exists():
            return pd.read_excel(self.file_path, engine="openpyxl")
        return pd.DataFrame(columns=self.COLUMNS)

    def export_event(self, event: dict[str, Any]) -> dict[str, Any]:
        """
        Append one audit event to the workbook.

        Returns:
            dict: success flag, message and export timestamp
        """
        self._ensure_data_dir()

        label = f"{event.get('action')} {event.get('entity_type')}#{event.get('entity_id')}"
        result = {
            "success": False,
            "message": "",
            "action": event.get("action"),
            "exported_at": None,
        }

        try:
            with FileLock(str(self.lock_path), timeout=self.lock_timeout):
                logger.debug(f"Lock acquired for {label}")

                df = self._load_or_create_df()
                export_time = datetime.now().isoformat()
                new_row = {
                    "occurred_at": event.get("occurred_at", export_time),
                    "actor_id": event.get("actor_id"),
                    "action": event.get("action"),
                    "entity_type": event.get("entity_type"),
                    "entity_id": event.get("entity_id"),
                    "before": json.dumps(event.get("before"), default=str),
                    "after": json.dumps(event.get("after"), default=str),
                    "exported_at": export_time,
                }

                df = pd.concat([df, pd.DataFrame([new_row])], ignore_index=True)
                df.to_excel(str(self.file_path), index=False, engine="openpyxl")

                logger.info(f"Audit event {label} exported")
                result["success"] = True
                result["message"] = f"{label} exported"
                result["exported_at"] = export_time

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout exporting {label}")

        return result

    def get_all_events(self) -> list[dict[str, Any]]:
        """Read every exported event back, oldest first."""
        if not self.file_path.exists():
            return []
        df = pd.read_excel(self.file_path, engine="openpyxl")
        return df.to_dict("records")

    def clear_all(self) -> bool:
        """Delete the workbook and its lock file."""
        for f in (self.file_path, self.lock_path):
            if f.exists():
                f.unlink()
        logger.info("Audit workbook cleared")
        return True
