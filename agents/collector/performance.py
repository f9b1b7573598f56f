"""Slow queries, missing-index heuristics and dead tuples."""

from __future__ import annotations

import logging

from config.settings import IssueType, Severity
from framework.models import Issue, new_id
from sql import queries

logger = logging.getLogger("dbautopilot.collector")


class PerformanceMixin:
    """Mixin for performance measurements and the issues derived from them."""

    def slow_queries(self) -> list[dict]:
        """Active statements running longer than the slow-query threshold."""
        rows = self._safe_query(
            "slow_active_queries", queries.SLOW_ACTIVE_QUERIES,
            (self.thresholds.slow_query_seconds,),
        )
        return rows or []

    def unindexed_foreign_keys(self) -> list[dict]:
        return self._safe_query("missing_fk_indexes", queries.MISSING_FK_INDEXES) or []

    def seq_scan_tables(self) -> list[dict]:
        return self._safe_query("seq_scan_dominated_tables", queries.SEQ_SCAN_DOMINATED_TABLES) or []

    def dead_tuple_tables(self) -> list[dict]:
        """Tables whose dead tuple ratio is above the configured threshold."""
        rows = self._safe_query(
            "table_dead_tuples", queries.TABLE_DEAD_TUPLES, (self.thresholds.min_dead_tuples,),
        ) or []
        return [
            row for row in rows
            if float(row.get("dead_ratio", 0) or 0) > self.thresholds.dead_tuple_ratio
        ]

    def performance_score(self, slow_count: int, missing_index_hits: int) -> float:
        t = self.thresholds
        return float(max(0, 100 - t.slow_query_penalty * slow_count
                         - t.missing_index_penalty * missing_index_hits))

    def performance_issues(self, slow: list[dict], fks: list[dict], seq: list[dict],
                           dead: list[dict], detected_at: str) -> list[Issue]:
        issues = []
        t = self.thresholds

        if slow:
            issues.append(Issue(
                id=new_id("issue"),
                type=IssueType.PERFORMANCE.value,
                severity=(Severity.HIGH if len(slow) > t.slow_query_high_severity_count
                          else Severity.MEDIUM).value,
                description=f"{len(slow)} active queries running longer than {t.slow_query_seconds}s",
                auto_fixable=True,
                suggested_action="Refresh planner statistics with ANALYZE",
                detected_at=detected_at,
                fix_action="analyze_tables",
                target={"pids": [row.get("pid") for row in slow]},
            ))

        if fks:
            candidates = [
                {"table": row["table_name"], "column": row["column_name"],
                 "constraint": row.get("constraint_name", "")}
                for row in fks
            ]
            names = ", ".join(f"{c['table']}.{c['column']}" for c in candidates)
            issues.append(Issue(
                id=new_id("issue"),
                type=IssueType.PERFORMANCE.value,
                severity=Severity.MEDIUM.value,
                description=f"{len(candidates)} foreign keys without a covering index: {names}",
                auto_fixable=True,
                suggested_action="Create indexes on the referencing columns",
                detected_at=detected_at,
                fix_action="create_missing_indexes",
                target={"candidates": candidates},
            ))

        if seq:
            tables = [row["relname"] for row in seq]
            # Column choice depends on query predicates, so this stays manual
            issues.append(Issue(
                id=new_id("issue"),
                type=IssueType.PERFORMANCE.value,
                severity=Severity.LOW.value,
                description=f"Sequential scans dominate on: {', '.join(tables)}",
                auto_fixable=False,
                suggested_action="Review filter predicates and add indexes on the filtered columns",
                detected_at=detected_at,
                target={"tables": tables},
            ))

        if dead:
            tables = [row["relname"] for row in dead]
            issues.append(Issue(
                id=new_id("issue"),
                type=IssueType.PERFORMANCE.value,
                severity=Severity.MEDIUM.value,
                description=(
                    f"Dead tuple ratio above {t.dead_tuple_ratio:.0%} on: {', '.join(tables)}"
                ),
                auto_fixable=True,
                suggested_action="Run VACUUM (ANALYZE) on the affected tables",
                detected_at=detected_at,
                fix_action="vacuum_analyze",
                target={"tables": tables},
            ))

        return issues
