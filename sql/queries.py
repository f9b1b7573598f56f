"""
Centralized SQL queries for the dbautopilot agents.
Single source of truth — agents import named constants from here.
Catalog queries use native PostgreSQL catalogs and statistics views.
"""

# =============================================================================
# Schema facts (MetricsCollector.SchemaMixin)
# =============================================================================

USER_TABLES = """
    SELECT c.relname AS table_name
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = 'public' AND c.relkind IN ('r', 'p')
    ORDER BY c.relname
"""

# Identifiers pass utils.db_client.validate_identifier() before formatting
TABLE_ROW_COUNT = 'SELECT COUNT(*) AS count FROM "{table}"'

DATABASE_SIZE = """
    SELECT pg_size_pretty(pg_database_size(current_database())) AS size,
           pg_database_size(current_database()) AS size_bytes
"""

SCHEMA_COLUMNS = """
    SELECT c.relname AS table_name, a.attname AS column_name,
           pg_catalog.format_type(a.atttypid, a.atttypmod) AS data_type,
           a.attnum AS ordinal_position, a.attnotnull AS not_null,
           pg_get_expr(d.adbin, d.adrelid) AS column_default
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    JOIN pg_catalog.pg_attribute a ON a.attrelid = c.oid
    LEFT JOIN pg_catalog.pg_attrdef d ON d.adrelid = c.oid AND d.adnum = a.attnum
    WHERE n.nspname = 'public' AND c.relkind IN ('r', 'p')
      AND a.attnum > 0 AND NOT a.attisdropped
    ORDER BY c.relname, a.attnum
"""

INDEX_COUNT = """
    SELECT COUNT(*) AS index_count
    FROM pg_catalog.pg_indexes
    WHERE schemaname = 'public'
"""

INDEX_NAMES = """
    SELECT indexname AS index_name, tablename AS table_name
    FROM pg_catalog.pg_indexes
    WHERE schemaname = 'public'
"""

# =============================================================================
# Performance (MetricsCollector.PerformanceMixin)
# =============================================================================

SLOW_ACTIVE_QUERIES = """
    SELECT pid, query, EXTRACT(EPOCH FROM (now() - query_start)) AS running_seconds
    FROM pg_stat_activity
    WHERE state = 'active'
      AND backend_type = 'client backend'
      AND query_start < now() - make_interval(secs => %s)
"""

MISSING_FK_INDEXES = """
    SELECT conrelid::regclass::text AS table_name,
           conname AS constraint_name,
           a.attname AS column_name,
           confrelid::regclass::text AS referenced_table
    FROM pg_catalog.pg_constraint con
    JOIN pg_catalog.pg_attribute a
      ON a.attrelid = con.conrelid AND a.attnum = ANY(con.conkey)
    WHERE con.contype = 'f'
      AND NOT EXISTS (
          SELECT 1 FROM pg_catalog.pg_index i
          WHERE i.indrelid = con.conrelid
            AND con.conkey[1] = ANY(i.indkey::int[])
      )
"""

SEQ_SCAN_DOMINATED_TABLES = """
    SELECT schemaname, relname, seq_scan, seq_tup_read, idx_scan, n_live_tup
    FROM pg_stat_user_tables
    WHERE seq_scan > 100 AND n_live_tup > 10000
      AND (idx_scan = 0 OR seq_scan > idx_scan * 10)
    ORDER BY seq_tup_read DESC
"""

TABLE_DEAD_TUPLES = """
    SELECT relname, n_live_tup, n_dead_tup,
           CASE WHEN n_live_tup + n_dead_tup > 0
                THEN n_dead_tup::float / (n_live_tup + n_dead_tup)
                ELSE 0 END AS dead_ratio
    FROM pg_stat_user_tables
    WHERE n_dead_tup > %s
    ORDER BY n_dead_tup DESC
"""

# =============================================================================
# Integrity & security (MetricsCollector.IntegrityMixin)
# =============================================================================

TABLES_WITHOUT_PRIMARY_KEY = """
    SELECT c.relname AS table_name
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = 'public' AND c.relkind = 'r'
      AND NOT EXISTS (
          SELECT 1 FROM pg_catalog.pg_constraint con
          WHERE con.conrelid = c.oid AND con.contype = 'p'
      )
    ORDER BY c.relname
"""

PUBLIC_TABLE_GRANTS = """
    SELECT table_name, string_agg(privilege_type, ', ' ORDER BY privilege_type) AS privileges
    FROM information_schema.role_table_grants
    WHERE grantee = 'PUBLIC' AND table_schema = 'public'
    GROUP BY table_name
    ORDER BY table_name
"""

# =============================================================================
# Health probe (controller self-healing)
# =============================================================================

PING = "SELECT 1 AS ok"

# =============================================================================
# Fix actions (DecisionGate): identifiers validated by the caller
# =============================================================================

CREATE_INDEX = 'CREATE INDEX CONCURRENTLY IF NOT EXISTS "{index_name}" ON "{table}" ("{column}")'
DROP_INDEX = 'DROP INDEX CONCURRENTLY IF EXISTS "{index_name}"'
ANALYZE_TABLE = 'ANALYZE "{table}"'
ANALYZE_DATABASE = "ANALYZE"
VACUUM_ANALYZE_TABLE = 'VACUUM (ANALYZE) "{table}"'
