"""Integrity and security checks: missing primary keys, PUBLIC grants."""

from __future__ import annotations

import logging

from config.settings import IssueType, Severity
from framework.models import Issue, new_id
from sql import queries

logger = logging.getLogger("dbautopilot.collector")


class IntegrityMixin:

    def integrity_issues(self, detected_at: str) -> list[Issue]:
        issues = []

        rows = self._safe_query("tables_without_primary_key", queries.TABLES_WITHOUT_PRIMARY_KEY)
        if rows:
            tables = [row["table_name"] for row in rows]
            issues.append(Issue(
                id=new_id("issue"),
                type=IssueType.INTEGRITY.value,
                severity=Severity.MEDIUM.value,
                description=f"Tables without a primary key: {', '.join(tables)}",
                auto_fixable=False,
                suggested_action="Add a primary key constraint after checking for duplicate rows",
                detected_at=detected_at,
                target={"tables": tables},
            ))

        rows = self._safe_query("public_table_grants", queries.PUBLIC_TABLE_GRANTS)
        if rows:
            grants = {row["table_name"]: row.get("privileges", "") for row in rows}
            issues.append(Issue(
                id=new_id("issue"),
                type=IssueType.SECURITY.value,
                severity=Severity.HIGH.value,
                description=f"Privileges granted to PUBLIC on: {', '.join(grants)}",
                auto_fixable=False,
                suggested_action="Revoke PUBLIC privileges and grant to explicit roles",
                detected_at=detected_at,
                target={"grants": grants},
            ))

        return issues
