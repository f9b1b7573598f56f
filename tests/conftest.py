"""Shared fixtures: scriptable database client, temp persistence, factories."""

from __future__ import annotations

import asyncio
import dataclasses
from itertools import count

import pytest

from config.settings import (
    AutopilotSettings,
    DatabaseSettings,
    PersistenceSettings,
    SafetyPolicy,
    ScheduleConfig,
)
from framework.models import Issue, MetricsSnapshot
from framework.state import SystemStateManager
from sql import queries
from utils.persistence import PersistenceStore


class FakeDatabaseClient:
    """
    Stand-in for DatabaseClient. ``responses`` maps a query constant to rows,
    an exception instance (raised), or a callable ``(params) -> rows``.
    """

    def __init__(self):
        self.responses: dict = {
            queries.USER_TABLES: [{"table_name": "projects"}, {"table_name": "workers"}],
            queries.DATABASE_SIZE: [{"size": "12 MB", "size_bytes": 12582912}],
            queries.SCHEMA_COLUMNS: [
                {"table_name": "projects", "column_name": "id", "data_type": "integer", "not_null": True},
                {"table_name": "projects", "column_name": "name", "data_type": "text", "not_null": True},
                {"table_name": "workers", "column_name": "id", "data_type": "integer", "not_null": True},
                {"table_name": "workers", "column_name": "daily_wage",
                 "data_type": "numeric(12,2)", "not_null": False},
            ],
            queries.INDEX_COUNT: [{"index_count": 2}],
            queries.PING: [{"ok": 1}],
        }
        self.set_row_counts({"projects": 10, "workers": 40})
        self.statement_failures: dict[str, Exception] = {}
        self.queries: list[str] = []
        self.statements: list[str] = []
        self.ping_results: list[bool] = []
        self.closed = 0

    def set_row_counts(self, counts: dict) -> None:
        for table, n in counts.items():
            self.responses[queries.TABLE_ROW_COUNT.format(table=table)] = [{"count": n}]

    def execute_query(self, query: str, params: tuple = None) -> list[dict]:
        self.queries.append(query)
        response = self.responses.get(query, [])
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(params)
        return [dict(row) for row in response]

    def execute_statement(self, statement: str, params: tuple = None) -> int:
        for fragment, exc in self.statement_failures.items():
            if fragment in statement:
                raise exc
        self.statements.append(statement)
        return 1

    def ping(self) -> bool:
        if self.ping_results:
            return self.ping_results.pop(0)
        return True

    def close_all(self) -> None:
        self.closed += 1


def fail_first(times: int, rows: list[dict], exc: Exception = None):
    """Response that raises for the first ``times`` calls, then returns ``rows``."""
    calls = count()

    def respond(params):
        if next(calls) < times:
            raise exc or ConnectionError("connection reset by peer")
        return rows
    return respond


@pytest.fixture
def fake_client():
    return FakeDatabaseClient()


@pytest.fixture
def make_settings(tmp_path):
    def factory(**safety) -> AutopilotSettings:
        return AutopilotSettings(
            safety=SafetyPolicy(**safety),
            schedule=ScheduleConfig(
                learning_interval_seconds=3600.0,
                maintenance_interval_seconds=3600.0,
            ),
            database=DatabaseSettings(mock_mode=True),
            persistence=PersistenceSettings(directory=str(tmp_path / "state")),
        )
    return factory


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def store(settings):
    return PersistenceStore(settings.persistence)


@pytest.fixture
def state_manager(settings, store):
    return SystemStateManager(settings, store)


_timestamps = count(1)


def make_snapshot(total_rows: int = 100, performance_score: float = 100.0,
                  table_count: int = 2, column_count: int = 4, index_count: int = 2,
                  issues=(), timestamp: str = None) -> MetricsSnapshot:
    return MetricsSnapshot.build(
        performance_score,
        timestamp=timestamp or f"2026-01-01T00:{next(_timestamps) % 60:02d}:00+00:00",
        table_count=table_count,
        total_rows=total_rows,
        database_size="1 MB",
        column_count=column_count,
        index_count=index_count,
        issues=issues,
    )


def make_issue(type: str = "performance", severity: str = "medium", auto_fixable: bool = True,
               fix_action: str = "analyze_tables", target: dict = None, issue_id: str = None) -> Issue:
    return Issue(
        id=issue_id or f"issue_{next(_timestamps)}",
        type=type,
        severity=severity,
        description=f"{type} problem",
        auto_fixable=auto_fixable,
        suggested_action="Fix it",
        detected_at="2026-01-01T00:00:00+00:00",
        fix_action=fix_action,
        target=target or {},
    )


async def wait_until(predicate, timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def replace_safety(settings: AutopilotSettings, **changes) -> AutopilotSettings:
    settings.safety = dataclasses.replace(settings.safety, **changes)
    return settings
