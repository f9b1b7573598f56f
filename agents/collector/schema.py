"""Schema facts: tables, row counts, size, columns and indexes."""

from __future__ import annotations

import logging
from typing import Optional

from sql import queries
from utils.db_client import validate_identifier

logger = logging.getLogger("dbautopilot.collector")


class SchemaMixin:
    """Mixin for structural measurements of the monitored database."""

    def list_tables(self) -> list[str]:
        """
        User tables in the public schema.
        Not guarded: if this fails the database is unreachable and the
        whole cycle fails.
        """
        rows = self.client.execute_query(queries.USER_TABLES)
        return [row["table_name"] for row in rows]

    def count_rows(self, tables: list[str]) -> int:
        """Sum of exact row counts. A failing table is skipped."""
        total = 0
        for table in tables:
            try:
                query = queries.TABLE_ROW_COUNT.format(table=validate_identifier(table))
            except ValueError as e:
                logger.warning(f"[monitoring] skipping row count: {e}")
                continue
            rows = self._safe_query(f"row_count:{table}", query)
            if rows:
                total += int(rows[0].get("count", 0) or 0)
        return total

    def database_size(self) -> tuple[str, int]:
        rows = self._safe_query("database_size", queries.DATABASE_SIZE)
        if not rows:
            return "unknown", 0
        return rows[0].get("size", "unknown"), int(rows[0].get("size_bytes", 0) or 0)

    def live_catalog(self, tables: list[str]) -> Optional[dict]:
        """
        ``{table: {column: {"data_type", "is_nullable"}}}`` for every user table,
        or None when the column query failed.
        """
        rows = self._safe_query("schema_columns", queries.SCHEMA_COLUMNS)
        if rows is None:
            return None
        catalog: dict[str, dict] = {table: {} for table in tables}
        for row in rows:
            catalog.setdefault(row["table_name"], {})[row["column_name"]] = {
                "data_type": row.get("data_type", ""),
                "is_nullable": not row.get("not_null", False),
            }
        return catalog

    def index_count(self) -> Optional[int]:
        rows = self._safe_query("index_count", queries.INDEX_COUNT)
        if rows is None:
            return None
        if not rows:
            return 0
        return int(rows[0].get("index_count", 0) or 0)
