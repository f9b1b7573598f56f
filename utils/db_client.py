"""
DatabaseClient: PostgreSQL client for the monitored database.

Handles:
- Plain DSN connections through psycopg (autocommit, statement timeout)
- Optional OAuth credentials for Lakebase-hosted databases, refreshed
  before the 1h expiry through the Databricks SDK
- Mock mode with canned catalog data for demos and dry runs
- Connection reset used by controller self-healing
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from config.settings import DatabaseSettings
from sql import queries

logger = logging.getLogger("dbautopilot.client")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]{0,62}$")


def validate_identifier(name: str) -> str:
    """Reject anything that is not a plain PostgreSQL identifier."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValueError(f"unsafe SQL identifier: {name!r}")
    return name


@dataclass
class OAuthToken:
    """OAuth token with expiry tracking."""
    token: str
    issued_at: float = field(default_factory=time.time)
    ttl_seconds: int = 3600  # 1 hour
    refresh_at_seconds: int = 3000  # Refresh at 50 min

    @property
    def is_expired(self) -> bool:
        return (time.time() - self.issued_at) >= self.ttl_seconds

    @property
    def needs_refresh(self) -> bool:
        return (time.time() - self.issued_at) >= self.refresh_at_seconds


class DatabaseClient:
    """
    Mock-capable client for the monitored database.

    Query and statement calls are blocking; the controller runs them in
    worker threads. A lock serializes use of the single connection across
    those threads.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self.settings = settings or DatabaseSettings()
        self.mock_mode = self.settings.mock_mode
        self._token: Optional[OAuthToken] = None
        self._connection: Any = None
        self._workspace_client = None
        self._lock = threading.RLock()

        if not self.mock_mode and self.settings.endpoint_name:
            from databricks.sdk import WorkspaceClient
            self._workspace_client = WorkspaceClient(host=self.settings.workspace_host or None)

    def _get_password(self) -> Optional[str]:
        """OAuth password for Lakebase endpoints; None means the DSN carries credentials."""
        if self._workspace_client is None:
            return None
        if self._token is None or self._token.needs_refresh:
            cred = self._workspace_client.postgres.generate_database_credential(
                endpoint=self.settings.endpoint_name
            )
            self._token = OAuthToken(token=cred.token)
            logger.debug(f"Token refreshed for {self.settings.endpoint_name}")
        return self._token.token

    def get_connection(self) -> Any:
        """Return the open connection, reconnecting when the OAuth token is due for refresh."""
        with self._lock:
            if self._connection is not None:
                if self._token is None or not self._token.needs_refresh:
                    return self._connection
                self._close_connection()

            if self.mock_mode:
                self._connection = MockConnection()
                return self._connection

            import psycopg
            kwargs = {
                "autocommit": True,
                "options": f"-c statement_timeout={self.settings.statement_timeout_ms}",
            }
            password = self._get_password()
            if password is not None:
                kwargs["password"] = password
            self._connection = psycopg.connect(self.settings.dsn, **kwargs)
            logger.info("Database connection established")
            return self._connection

    def execute_query(self, query: str, params: tuple = None) -> list[dict]:
        """Execute a read-only query and return rows as dicts."""
        with self._lock:
            conn = self.get_connection()
            if self.mock_mode:
                return conn.execute_mock(query, params)

            with conn.cursor() as cur:
                cur.execute(query, params)
                columns = [desc[0] for desc in cur.description] if cur.description else []
                rows = cur.fetchall()
                return [dict(zip(columns, row)) for row in rows]

    def execute_statement(self, statement: str, params: tuple = None) -> int:
        """Execute a DDL/maintenance statement. Returns affected row count."""
        with self._lock:
            conn = self.get_connection()
            if self.mock_mode:
                return conn.execute_statement_mock(statement)

            with conn.cursor() as cur:
                cur.execute(statement, params)
                return cur.rowcount

    def ping(self) -> bool:
        """Cheap liveness probe used by init and self-healing."""
        try:
            rows = self.execute_query(queries.PING)
        except Exception as e:
            logger.warning(f"Database ping failed: {e}")
            return False
        return bool(rows) and rows[0].get("ok") == 1

    def _close_connection(self) -> None:
        conn, self._connection = self._connection, None
        if conn is None:
            return
        try:
            conn.close()
        except Exception as e:
            logger.warning(f"Error closing database connection: {e}")

    def close_all(self):
        """Close the connection and forget cached credentials."""
        with self._lock:
            self._close_connection()
            self._token = None


class MockConnection:
    """Mock database connection with a small construction-company catalog."""

    def __init__(self):
        self.statements: list[str] = []
        self._mock_data = self._generate_mock_data()

    def _generate_mock_data(self) -> dict:
        columns = {
            "projects": [("id", "integer", True), ("name", "text", True),
                         ("status", "text", True), ("created_at", "timestamp without time zone", False)],
            "workers": [("id", "integer", True), ("name", "text", True),
                        ("daily_wage", "numeric(12,2)", True)],
            "worker_attendance": [("id", "integer", True), ("worker_id", "integer", True),
                                  ("project_id", "integer", True), ("date", "date", True)],
            "supplier_payments": [("id", "integer", True), ("supplier_id", "integer", True),
                                  ("amount", "numeric(12,2)", True)],
        }
        return {
            "tables": [{"table_name": name} for name in columns],
            "columns": [
                {"table_name": table, "column_name": col, "data_type": dtype,
                 "ordinal_position": pos + 1, "not_null": not_null, "column_default": None}
                for table, cols in columns.items()
                for pos, (col, dtype, not_null) in enumerate(cols)
            ],
            "row_counts": {"projects": 120, "workers": 340,
                           "worker_attendance": 48000, "supplier_payments": 5200},
            "size": [{"size": "86 MB", "size_bytes": 90177536}],
            "indexes": [
                {"index_name": "projects_pkey", "table_name": "projects"},
                {"index_name": "workers_pkey", "table_name": "workers"},
                {"index_name": "worker_attendance_pkey", "table_name": "worker_attendance"},
            ],
            "slow_queries": [
                {"pid": 4121, "query": "SELECT * FROM worker_attendance WHERE date > $1",
                 "running_seconds": 41.7},
            ],
            "missing_fk_indexes": [
                {"table_name": "worker_attendance", "constraint_name": "worker_attendance_worker_id_fkey",
                 "column_name": "worker_id", "referenced_table": "workers"},
            ],
            "seq_scan_tables": [],
            "dead_tuples": [
                {"relname": "worker_attendance", "n_live_tup": 48000, "n_dead_tup": 14000,
                 "dead_ratio": 0.2258},
            ],
            "tables_without_pk": [{"table_name": "supplier_payments"}],
            "public_grants": [],
        }

    def execute_mock(self, query: str, params: tuple = None) -> list[dict]:
        """Return mock data keyed by the query constant."""
        data = self._mock_data
        routes = {
            queries.USER_TABLES: data["tables"],
            queries.SCHEMA_COLUMNS: data["columns"],
            queries.DATABASE_SIZE: data["size"],
            queries.INDEX_COUNT: [{"index_count": len(data["indexes"])}],
            queries.INDEX_NAMES: data["indexes"],
            queries.SLOW_ACTIVE_QUERIES: data["slow_queries"],
            queries.MISSING_FK_INDEXES: data["missing_fk_indexes"],
            queries.SEQ_SCAN_DOMINATED_TABLES: data["seq_scan_tables"],
            queries.TABLE_DEAD_TUPLES: data["dead_tuples"],
            queries.TABLES_WITHOUT_PRIMARY_KEY: data["tables_without_pk"],
            queries.PUBLIC_TABLE_GRANTS: data["public_grants"],
            queries.PING: [{"ok": 1}],
        }
        if query in routes:
            return [dict(row) for row in routes[query]]
        for table, count in data["row_counts"].items():
            if query == queries.TABLE_ROW_COUNT.format(table=table):
                return [{"count": count}]
        return []

    def execute_statement_mock(self, statement: str) -> int:
        logger.info(f"[MOCK] Executing: {statement[:100]}")
        self.statements.append(statement)
        return 1

    def close(self):
        pass
