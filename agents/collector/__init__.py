from .agent import MetricsCollector
from .drift import compare_schemas, load_expected_schema

__all__ = ["MetricsCollector", "compare_schemas", "load_expected_schema"]
