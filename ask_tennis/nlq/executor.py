# ask_tennis/nlq/executor.py
"""
Query executor: the single path by which SQL reaches the relational store.

Takes a validated QuerySpec, runs it with positional parameters on a pooled
connection, times it, and returns an origin-tagged ResultSet. Any database
error or timeout becomes ExecutionFailure. An empty ResultSet is a normal
outcome, distinct from failure.
"""

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from ..api.errors import ExecutionFailure
from ..observability.metrics import MetricsManager
from ..store.duckdb_store import RelationalStore
from .builder import QuerySpec

logger = logging.getLogger(__name__)

# Values a row may hold. Coercion for display happens in the composer.
Scalar = Union[None, bool, int, float, Decimal, str, date, datetime]
Row = Mapping[str, Scalar]


# ============================================================================
# RESULT SET
# ============================================================================


def to_json_value(value: Scalar) -> Any:
    """Convert a row value into something json.dumps accepts."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


@dataclass(frozen=True)
class ResultSet:
    """
    Ordered rows from one (or a merged pair of) executed statements.

    `source` is "live", "historical" or "combined"; `data_source` is the
    provider tag ("sportsradar", "github" or "hybrid").
    """

    rows: Tuple[Row, ...]
    source: str
    data_source: str
    template: Optional[str] = None
    execution_time_ms: float = 0.0
    # per-source results of a merge whose sources used different templates
    parts: Tuple["ResultSet", ...] = ()

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    @property
    def columns(self) -> Tuple[str, ...]:
        seen: Dict[str, None] = {}
        for row in self.rows:
            for column in row:
                seen.setdefault(column, None)
        return tuple(seen)

    def to_records(self) -> List[Dict[str, Any]]:
        """JSON-safe list of row dicts."""
        return [{k: to_json_value(v) for k, v in row.items()} for row in self.rows]

    @classmethod
    def merge(cls, result_sets: Sequence["ResultSet"]) -> "ResultSet":
        """
        Concatenate result sets from different sources, dropping duplicate rows.

        A row is a duplicate when its (name, ranking) pair was already seen,
        or, for rows without both columns, when all of its values match.
        Sources that used different templates stay available in `parts` so
        each can be rendered on its own.
        """
        if len(result_sets) == 1:
            return result_sets[0]

        rows: List[Row] = []
        seen = set()
        for result in result_sets:
            for row in result.rows:
                if row.get("name") is not None and row.get("ranking") is not None:
                    key: Any = ("name_rank", str(row["name"]).lower(), row["ranking"])
                else:
                    key = tuple(sorted((k, str(v)) for k, v in row.items()))
                if key in seen:
                    continue
                seen.add(key)
                rows.append(row)

        templates = {r.template for r in result_sets}
        shared = next(iter(templates)) if len(templates) == 1 else None
        return cls(
            rows=tuple(rows),
            source="combined",
            data_source="hybrid",
            template=shared,
            execution_time_ms=sum(r.execution_time_ms for r in result_sets),
            parts=() if len(templates) == 1 else tuple(result_sets),
        )


# ============================================================================
# EXECUTOR
# ============================================================================


@dataclass
class ExecutorStats:
    queries: int = 0
    failures: int = 0
    slow_queries: int = 0
    total_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queries": self.queries,
            "failures": self.failures,
            "slow_queries": self.slow_queries,
            "avg_time_ms": self.total_time_ms / self.queries if self.queries else 0.0,
        }


class QueryExecutor:
    """Runs validated QuerySpecs against a RelationalStore."""

    def __init__(
        self,
        store: RelationalStore,
        timeout: Optional[float] = 30.0,
        slow_query_ms: float = 1000.0,
        metrics: Optional[MetricsManager] = None,
    ):
        self.store = store
        self.timeout = timeout
        self.slow_query_ms = slow_query_ms
        self.metrics = metrics
        self.stats = ExecutorStats()

    async def execute(self, spec: QuerySpec) -> ResultSet:
        """
        Execute one QuerySpec.

        Args:
            spec: Statement already accepted by SQLValidator

        Returns:
            ResultSet tagged with the spec's source

        Raises:
            ExecutionFailure: On any database error or timeout
        """
        start_time = time.time()
        self.stats.queries += 1
        try:
            rows = await self.store.query(spec.statement, list(spec.params), timeout=self.timeout)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self.stats.failures += 1
            logger.error(
                f"Query failed after {duration_ms:.1f}ms "
                f"(source={spec.source.value}, template={spec.template}): {e} | {spec.statement}"
            )
            raise ExecutionFailure(e, spec.statement, duration_ms) from e

        duration_ms = (time.time() - start_time) * 1000
        self.stats.total_time_ms += duration_ms
        slow = duration_ms > self.slow_query_ms
        if slow:
            self.stats.slow_queries += 1
            logger.warning(f"Slow query ({duration_ms:.1f}ms): {spec.statement}")
        else:
            logger.debug(f"Query returned {len(rows)} rows in {duration_ms:.1f}ms")

        if self.metrics:
            self.metrics.record_db_query(spec.source.value, duration_ms / 1000, slow=slow)

        return ResultSet(
            rows=tuple(rows),
            source=spec.source.value,
            data_source=spec.source.tag,
            template=spec.template,
            execution_time_ms=duration_ms,
        )

    def get_stats(self) -> Dict[str, Any]:
        return self.stats.to_dict()
