from collections import Counter
from typing import Any, Iterable, List, Optional

from loguru import logger

from compaction_monitor.exceptions import VerificationError
from compaction_monitor.executors import QueryExecutor
from compaction_monitor.models import BackendMismatch, VerificationRequest


def _sort_key(row: tuple) -> tuple:
    # rows may mix types and NULLs, order them by their text rendering
    return tuple(repr(value) for value in row)


def _hashable(value: Any) -> Any:
    """Turns ARRAY, MAP and ROW values (lists, dicts) into hashable equivalents"""
    if isinstance(value, (list, tuple)):
        return tuple(_hashable(item) for item in value)
    if isinstance(value, dict):
        items = ((key, _hashable(item)) for key, item in value.items())
        return tuple(sorted(items, key=lambda pair: repr(pair[0])))
    if isinstance(value, set):
        return frozenset(_hashable(item) for item in value)
    return value


def compare_rows(
    backend: str, actual: Iterable[Any], expected: Iterable[Any]
) -> Optional[BackendMismatch]:
    """Compares two row multisets, ignoring order but not duplicates"""
    actual_rows = [_hashable(tuple(row)) for row in actual]
    expected_rows = [_hashable(tuple(row)) for row in expected]
    actual_counts = Counter(actual_rows)
    expected_counts = Counter(expected_rows)
    if actual_counts == expected_counts:
        return None

    return BackendMismatch(
        backend=backend,
        actual_rows=sorted(actual_rows, key=_sort_key),
        expected_rows=sorted(expected_rows, key=_sort_key),
        missing_rows=sorted((expected_counts - actual_counts).elements(), key=_sort_key),
        unexpected_rows=sorted((actual_counts - expected_counts).elements(), key=_sort_key),
    )


class DualBackendVerifier:
    """Checks that two query engines reading the same data return the same rows"""

    def __init__(self, first: QueryExecutor, second: QueryExecutor):
        self.backends = (first, second)
        self.logger = logger

    def verify(self, request: VerificationRequest) -> None:
        query = request.full_query
        mismatches: List[BackendMismatch] = []
        for backend in self.backends:
            actual = backend.fetch_rows(query)
            mismatch = compare_rows(backend.name, actual, request.expected_rows)
            if mismatch is not None:
                self.logger.error(f"{backend.name} diverged for {query}")
                mismatches.append(mismatch)
            else:
                self.logger.debug(f"{backend.name} returned the expected {len(actual)} rows")

        if mismatches:
            raise VerificationError(query, mismatches)

    def verify_select(self, query: str, predicate: str, *rows: tuple) -> None:
        self.verify(
            VerificationRequest(query=query, predicate=predicate, expected_rows=list(rows))
        )
