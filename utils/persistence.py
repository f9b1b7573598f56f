"""
PersistenceStore: durable JSON documents for the control system.

Handles:
- One JSON file per document under the configured state directory
- Atomic writes (temp file + rename), last-write-wins per document
- Typed load/save of decision history, metrics history, learned patterns,
  system state, backup markers and rollback history
- A write log for the health-check report
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from config.settings import DOCUMENTS, PersistenceSettings
from framework.errors import PersistenceError, ValidationError
from framework.models import (
    AIDecision,
    BackupMarker,
    MetricsSnapshot,
    RollbackRecord,
    SchemaPattern,
    SystemState,
)

logger = logging.getLogger("dbautopilot.persistence")

# Recent writes kept for health reporting
WRITE_LOG_LIMIT = 200


class PersistenceStore:
    """
    File-backed document store.

    Writes are serialized by a thread lock so snapshots flushed from
    different cycles never interleave within one file.
    """

    def __init__(self, settings: Optional[PersistenceSettings] = None):
        self.settings = settings or PersistenceSettings()
        self.directory = Path(self.settings.directory)
        self._lock = threading.Lock()
        self._write_log: list[dict] = []
        self.write_count = 0

    def path_for(self, document: str) -> Path:
        if document not in DOCUMENTS:
            raise PersistenceError(f"unknown document: {document}")
        return self.directory / DOCUMENTS[document]

    def read_document(self, document: str, default: Any = None) -> Any:
        """Read a document; a missing file yields ``default``."""
        path = self.path_for(document)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return default
        except OSError as e:
            raise PersistenceError(f"cannot read {path}: {e}") from e
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise PersistenceError(f"{path} is not valid JSON: {e}") from e

    def write_document(self, document: str, payload: Any) -> dict:
        """Atomically replace a document with ``payload``."""
        path = self.path_for(document)
        with self._lock:
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{path.name}.", suffix=".tmp", dir=self.directory,
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        json.dump(payload, f, indent=2)
                    os.replace(tmp_name, path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as e:
                raise PersistenceError(f"cannot write {path}: {e}") from e

            entry = {
                "document": document,
                "records": len(payload) if isinstance(payload, list) else 1,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            self._write_log.append(entry)
            if len(self._write_log) > WRITE_LOG_LIMIT:
                del self._write_log[: len(self._write_log) - WRITE_LOG_LIMIT]
            self.write_count += 1
        logger.debug(f"Wrote {entry['records']} records -> {path}")
        return entry

    def _load_list(self, document: str, entity: type) -> list:
        raw = self.read_document(document, default=[])
        if not isinstance(raw, list):
            raise PersistenceError(f"{document}: expected a list")
        try:
            return [entity.from_dict(item) for item in raw]
        except ValidationError as e:
            raise PersistenceError(f"{document}: {e}") from e

    # -- typed documents ------------------------------------------------------

    def load_decisions(self) -> list[AIDecision]:
        return self._load_list("decision_history", AIDecision)

    def save_decisions(self, decisions: list[AIDecision]) -> dict:
        return self.write_document("decision_history", [d.to_dict() for d in decisions])

    def load_metrics(self) -> list[MetricsSnapshot]:
        return self._load_list("metrics_history", MetricsSnapshot)

    def save_metrics(self, history: list[MetricsSnapshot]) -> dict:
        return self.write_document("metrics_history", [s.to_dict() for s in history])

    def load_patterns(self) -> list[SchemaPattern]:
        return self._load_list("learned_patterns", SchemaPattern)

    def save_patterns(self, patterns: list[SchemaPattern]) -> dict:
        return self.write_document("learned_patterns", [p.to_dict() for p in patterns])

    def load_backup_markers(self) -> list[BackupMarker]:
        return self._load_list("backup_markers", BackupMarker)

    def save_backup_markers(self, markers: list[BackupMarker]) -> dict:
        return self.write_document("backup_markers", [m.to_dict() for m in markers])

    def load_rollbacks(self) -> list[RollbackRecord]:
        return self._load_list("rollback_history", RollbackRecord)

    def save_rollbacks(self, records: list[RollbackRecord]) -> dict:
        return self.write_document("rollback_history", [r.to_dict() for r in records])

    def load_state(self) -> Optional[SystemState]:
        """Persisted state merged with defaults, or None on first start."""
        raw = self.read_document("system_state")
        if raw is None:
            return None
        try:
            return SystemState.merge_with_defaults(raw)
        except ValidationError as e:
            raise PersistenceError(f"system_state: {e}") from e

    def save_state(self, state: SystemState) -> dict:
        return self.write_document("system_state", state.to_dict())

    def get_write_log(self) -> list[dict]:
        with self._lock:
            return list(self._write_log)
