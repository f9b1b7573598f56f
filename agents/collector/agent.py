"""
Metrics & Issue Collector

Read-only inspection of the monitored database, once per monitoring cycle:
- Schema facts (tables, rows, size, columns, indexes)
- Performance score from slow queries and missing-index heuristics
- Schema drift against the expected-schema document
- Integrity and security checks
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from config.settings import MonitoringThresholds
from framework.agent_framework import BaseAgent, EventType
from framework.models import MetricsSnapshot, utc_now

from .drift import DriftMixin
from .integrity import IntegrityMixin
from .performance import PerformanceMixin
from .schema import SchemaMixin

logger = logging.getLogger("dbautopilot.collector")


class MetricsCollector(SchemaMixin, PerformanceMixin, DriftMixin, IntegrityMixin, BaseAgent):
    """
    Metrics & Issue Collector: one MetricsSnapshot per call.

    Only the table list is allowed to fail the cycle; every other query
    failure is logged and its datum skipped.
    """

    def __init__(self, db_client, thresholds: Optional[MonitoringThresholds] = None,
                 expected_schema: Optional[dict] = None):
        super().__init__(
            name="MetricsCollector",
            description="Measures schema and performance facts and classifies detected problems",
        )
        self.client = db_client
        self.thresholds = thresholds or MonitoringThresholds()
        self.expected_schema = expected_schema
        self.last_schema_comparison: Optional[dict] = None

    def register_tools(self) -> None:
        self.register_tool("collect_snapshot", self.collect_snapshot,
                           "Measure the database and detect issues")

    def _safe_query(self, name: str, query: str, params: tuple = None) -> Optional[list[dict]]:
        """Run a metric query; None when it failed (already logged)."""
        try:
            return self.client.execute_query(query, params)
        except Exception as e:
            logger.warning(f"[monitoring] {utc_now()} query '{name}' failed, datum skipped: {e}")
            return None

    def collect(self) -> MetricsSnapshot:
        """Blocking collection pass. Never executes statements."""
        now = utc_now()
        tables = self.list_tables()
        total_rows = self.count_rows(tables)
        size, size_bytes = self.database_size()
        catalog = self.live_catalog(tables)
        index_count = self.index_count()

        slow = self.slow_queries()
        fks = self.unindexed_foreign_keys()
        seq = self.seq_scan_tables()
        dead = self.dead_tuple_tables()
        missing_index_hits = len(fks) + len(seq)

        issues = self.performance_issues(slow, fks, seq, dead, now)
        issues += self.drift_issues(catalog, now)
        issues += self.integrity_issues(now)

        snapshot = MetricsSnapshot.build(
            self.performance_score(len(slow), missing_index_hits),
            timestamp=now,
            table_count=len(tables),
            total_rows=total_rows,
            database_size=size,
            database_size_bytes=size_bytes,
            column_count=sum(len(cols) for cols in catalog.values()) if catalog is not None else None,
            index_count=index_count,
            slow_query_count=len(slow),
            missing_index_count=missing_index_hits,
            issues=issues,
        )
        logger.info(
            f"[monitoring] {len(tables)} tables, {total_rows} rows, {size}, "
            f"score {snapshot.performance_score:.0f} ({snapshot.health_status}), "
            f"{len(issues)} issues"
        )
        return snapshot

    async def collect_snapshot(self) -> MetricsSnapshot:
        """Run ``collect`` off the event loop and announce the results."""
        snapshot = await asyncio.to_thread(self.collect)
        self.emit_event(EventType.SNAPSHOT_COLLECTED, {
            "timestamp": snapshot.timestamp,
            "performance_score": snapshot.performance_score,
            "health_status": snapshot.health_status,
            "issues": len(snapshot.issues),
        })
        for issue in snapshot.issues:
            self.emit_event(EventType.ISSUE_DETECTED, {
                "issue_id": issue.id,
                "type": issue.type,
                "severity": issue.severity,
                "description": issue.description,
            })
        return snapshot
