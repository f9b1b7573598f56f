"""Backup markers: recorded before a fix, replayed on rollback."""

from __future__ import annotations

import logging

from framework.errors import RollbackError
from framework.models import BackupMarker, Issue, new_id, utc_now

from .fixes import FixAction

logger = logging.getLogger("dbautopilot.gate")


def create_backup_marker(client, fix: FixAction, issue: Issue, decision_id: str) -> BackupMarker:
    """Plan the undo of ``fix`` against the current database state."""
    restore, before = fix.plan(client, issue)
    return BackupMarker(
        id=new_id("backup"),
        decision_id=decision_id,
        issue_id=issue.id,
        fix_action=fix.name,
        created_at=utc_now(),
        restore_statements=tuple(restore),
        state={"before": before},
    )


def restore_from_marker(client, marker: BackupMarker) -> str:
    """
    Run the marker's restore statements in order.
    Stops at the first failing statement and raises RollbackError.
    """
    if not marker.restore_statements:
        return "nothing to restore"
    done = 0
    for statement in marker.restore_statements:
        try:
            client.execute_statement(statement)
        except Exception as e:
            raise RollbackError(
                f"restore step {done + 1}/{len(marker.restore_statements)} failed "
                f"for marker {marker.id}: {e}"
            ) from e
        done += 1
    logger.info(f"Restored {done} statements from marker {marker.id}")
    return f"restored {done} statements"
