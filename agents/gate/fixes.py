"""Fix actions bound to auto-fixable issues."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from framework.errors import FixExecutionError
from framework.models import Issue
from sql import queries
from utils.db_client import validate_identifier

logger = logging.getLogger("dbautopilot.gate")


def index_name_for(table: str, column: str) -> str:
    return f"idx_{table}_{column}"[:63]


class FixAction(ABC):
    """A corrective statement set plus the plan to undo it."""

    name: str = ""
    operation_kind: str = ""

    def plan(self, client, issue: Issue) -> tuple[list[str], dict]:
        """Restore statements and the ``before`` state of affected objects."""
        return [], {}

    @abstractmethod
    def apply(self, client, issue: Issue) -> str:
        """Execute the fix. Returns a short impact description."""


class CreateMissingIndexes(FixAction):
    name = "create_missing_indexes"
    operation_kind = "create_index"

    def _targets(self, issue: Issue) -> list[tuple[str, str, str]]:
        targets = []
        for candidate in issue.target.get("candidates", []):
            table = validate_identifier(candidate["table"])
            column = validate_identifier(candidate["column"])
            targets.append((table, column, validate_identifier(index_name_for(table, column))))
        if not targets:
            raise FixExecutionError(f"issue {issue.id} has no index candidates")
        return targets

    def plan(self, client, issue: Issue) -> tuple[list[str], dict]:
        existing = {row["index_name"] for row in client.execute_query(queries.INDEX_NAMES)}
        targets = self._targets(issue)
        new_indexes = [name for _, _, name in targets if name not in existing]
        restore = [queries.DROP_INDEX.format(index_name=name) for name in new_indexes]
        return restore, {"existing_indexes": sorted(name for _, _, name in targets if name in existing)}

    def apply(self, client, issue: Issue) -> str:
        created = []
        for table, column, index_name in self._targets(issue):
            client.execute_statement(
                queries.CREATE_INDEX.format(index_name=index_name, table=table, column=column)
            )
            created.append(index_name)
        return f"created indexes: {', '.join(created)}"


class AnalyzeTables(FixAction):
    """Refresh planner statistics. Non-destructive, nothing to restore."""

    name = "analyze_tables"
    operation_kind = "analyze"

    def apply(self, client, issue: Issue) -> str:
        tables = [validate_identifier(t) for t in issue.target.get("tables", [])]
        if not tables:
            client.execute_statement(queries.ANALYZE_DATABASE)
            return "analyzed database"
        for table in tables:
            client.execute_statement(queries.ANALYZE_TABLE.format(table=table))
        return f"analyzed {len(tables)} tables"


class VacuumAnalyze(FixAction):
    """Reclaim dead tuples. Non-destructive, nothing to restore."""

    name = "vacuum_analyze"
    operation_kind = "vacuum"

    def apply(self, client, issue: Issue) -> str:
        tables = [validate_identifier(t) for t in issue.target.get("tables", [])]
        if not tables:
            raise FixExecutionError(f"issue {issue.id} names no tables to vacuum")
        for table in tables:
            client.execute_statement(queries.VACUUM_ANALYZE_TABLE.format(table=table))
        return f"vacuumed {len(tables)} tables: {', '.join(tables)}"


FIX_ACTIONS: dict[str, FixAction] = {
    fix.name: fix for fix in (CreateMissingIndexes(), AnalyzeTables(), VacuumAnalyze())
}


def get_fix_action(name: str) -> FixAction:
    try:
        return FIX_ACTIONS[name]
    except KeyError:
        raise FixExecutionError(f"unknown fix action: {name}") from None
