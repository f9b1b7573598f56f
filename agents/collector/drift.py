"""
Schema drift: diff the live catalog against the expected-schema document.

Expected document format::

    {"tables": {"workers": {"columns": {"id": {"type_hint": "integer",
                                               "is_nullable": false}}}}}
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Optional

from config.settings import IssueType, Severity
from framework.errors import ValidationError
from framework.models import Issue, new_id

logger = logging.getLogger("dbautopilot.collector")

TYPE_ALIASES = {
    "character varying": "varchar",
    "character": "char",
    "timestamp without time zone": "timestamp",
    "timestamp with time zone": "timestamptz",
    "double precision": "float8",
    "bigint": "int8",
    "smallint": "int2",
    "boolean": "bool",
}

COMPATIBLE_TYPE_GROUPS = (
    {"text", "varchar", "character varying"},
    {"integer", "int", "int4", "serial"},
    {"bigint", "int8", "bigserial"},
    {"timestamp", "timestamp without time zone"},
    {"timestamptz", "timestamp with time zone"},
    {"boolean", "bool"},
    {"decimal", "numeric"},
    {"json", "jsonb"},
)

# Drift issues keep at most this many column mismatches in their target
MAX_REPORTED_MISMATCHES = 50


def normalize_type(pg_type: str) -> str:
    """Lower-case, drop length/precision modifiers and apply aliases."""
    base = re.sub(r"\(.*?\)", "", pg_type or "").strip().lower()
    base = re.sub(r"\s+", " ", base)
    return TYPE_ALIASES.get(base, base)


def is_type_compatible(expected: Optional[str], actual: str) -> bool:
    if not expected:
        return True
    want = expected.strip().lower()
    have = normalize_type(actual)
    if want == have or normalize_type(want) == have:
        return True
    return any(want in group and have in group for group in COMPATIBLE_TYPE_GROUPS)


def load_expected_schema(path: str) -> Optional[dict]:
    """Read and validate the expected-schema document. A missing file yields None."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.warning(f"Expected schema {path} not found; drift detection disabled")
        return None
    except json.JSONDecodeError as e:
        raise ValidationError(f"expected schema {path} is not valid JSON: {e}") from e

    tables = data.get("tables") if isinstance(data, dict) else None
    if not isinstance(tables, dict):
        raise ValidationError(f"expected schema {path}: 'tables' must be an object")
    for table, spec in tables.items():
        columns = spec.get("columns") if isinstance(spec, dict) else None
        if not isinstance(columns, dict):
            raise ValidationError(f"expected schema {path}: {table}.columns must be an object")
        for column, col in columns.items():
            if not isinstance(col, dict):
                raise ValidationError(f"expected schema {path}: {table}.{column} must be an object")
            if "type_hint" in col and not isinstance(col["type_hint"], str):
                raise ValidationError(f"expected schema {path}: {table}.{column}.type_hint must be a string")
            if "is_nullable" in col and not isinstance(col["is_nullable"], bool):
                raise ValidationError(f"expected schema {path}: {table}.{column}.is_nullable must be a bool")
    return data


def compare_schemas(expected: dict, actual: dict) -> dict:
    """
    Diff ``expected`` (document format) against ``actual``
    (``{table: {column: {"data_type", "is_nullable"}}}``).
    """
    expected_tables = expected.get("tables", {})
    missing_tables = sorted(t for t in expected_tables if t not in actual)
    extra_tables = sorted(t for t in actual if t not in expected_tables)
    matching = sorted(t for t in expected_tables if t in actual)

    mismatches = []
    for table in matching:
        expected_cols = expected_tables[table].get("columns", {})
        actual_cols = actual[table]

        for column in expected_cols:
            if column not in actual_cols:
                mismatches.append({
                    "table": table, "column": column, "issue": "missing_column",
                    "expected": expected_cols[column].get("type_hint"), "actual": None,
                })
        for column in actual_cols:
            if column not in expected_cols:
                mismatches.append({
                    "table": table, "column": column, "issue": "extra_column",
                    "expected": None, "actual": actual_cols[column]["data_type"],
                })

        for column, spec in expected_cols.items():
            if column not in actual_cols:
                continue
            live = actual_cols[column]
            hint = spec.get("type_hint")
            if hint and not is_type_compatible(hint, live["data_type"]):
                mismatches.append({
                    "table": table, "column": column, "issue": "type_mismatch",
                    "expected": hint, "actual": live["data_type"],
                })
            if "is_nullable" in spec and spec["is_nullable"] != live["is_nullable"]:
                mismatches.append({
                    "table": table, "column": column, "issue": "nullability_mismatch",
                    "expected": "NULLABLE" if spec["is_nullable"] else "NOT NULL",
                    "actual": "NULLABLE" if live["is_nullable"] else "NOT NULL",
                })

    drifted = bool(missing_tables or extra_tables or mismatches)
    return {
        "status": "mismatch" if drifted else "match",
        "missing_tables": missing_tables,
        "extra_tables": extra_tables,
        "mismatches": mismatches,
        "summary": {
            "total_expected_tables": len(expected_tables),
            "total_actual_tables": len(actual),
            "matching_tables": len(matching),
            "total_mismatches": len(mismatches),
        },
    }


class DriftMixin:
    """Mixin producing the single schema-drift issue of a cycle."""

    def drift_issues(self, catalog: Optional[dict], detected_at: str) -> list[Issue]:
        if self.expected_schema is None:
            return []
        if catalog is None:
            logger.warning("[monitoring] live catalog unavailable; drift check skipped")
            return []

        comparison = compare_schemas(self.expected_schema, catalog)
        self.last_schema_comparison = comparison
        if comparison["status"] == "match":
            return []

        summary = comparison["summary"]
        parts = []
        if comparison["missing_tables"]:
            parts.append(f"{len(comparison['missing_tables'])} missing tables")
        if comparison["extra_tables"]:
            parts.append(f"{len(comparison['extra_tables'])} unexpected tables")
        if summary["total_mismatches"]:
            parts.append(f"{summary['total_mismatches']} column mismatches")

        return [Issue(
            id=new_id("issue"),
            type=IssueType.SCHEMA_DRIFT.value,
            severity=Severity.HIGH.value,
            description="Schema drift detected: " + ", ".join(parts),
            auto_fixable=False,
            suggested_action="Review the drift and apply a reviewed migration",
            detected_at=detected_at,
            target={
                "missing_tables": comparison["missing_tables"],
                "extra_tables": comparison["extra_tables"],
                "mismatches": comparison["mismatches"][:MAX_REPORTED_MISMATCHES],
                "summary": summary,
            },
        )]
