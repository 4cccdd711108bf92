"""Query execution package."""

from finance_tracker.queries.cycle import get_cycle_range
from finance_tracker.queries.executor import QueryExecutionError, QueryExecutor

__all__ = ["QueryExecutionError", "QueryExecutor", "get_cycle_range"]
