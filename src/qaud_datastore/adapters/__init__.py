"""Data store adapters for each backend, plus the checks their query views share."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from qaud_datastore.descriptors import EntityDescriptor
from qaud_datastore.exceptions import QueryError

MAX_QUERY_LIMIT = 1000
MIN_QUERY_LIMIT = 1


def _validate_limit(limit: int) -> int:
    """Clamp a view's row limit to ``MAX_QUERY_LIMIT``.

    Raises ``ValueError`` below ``MIN_QUERY_LIMIT``.
    """
    if limit < MIN_QUERY_LIMIT:
        raise ValueError(f"limit must be >= {MIN_QUERY_LIMIT}, got {limit}")
    return min(limit, MAX_QUERY_LIMIT)


def _validate_offset(offset: int) -> int:
    if offset < 0:
        raise ValueError(f"offset must be >= 0, got {offset}")
    return offset


def _check_criteria(descriptor: EntityDescriptor[Any], criteria: Mapping[str, Any]) -> None:
    """Raise ``QueryError`` when *criteria* names something that is not a field of the entity."""
    unknown = [name for name in criteria if name not in descriptor.fields]
    if unknown:
        raise QueryError(
            entity_name=descriptor.entity_name,
            operation="query",
            detail=f"Unknown field(s) in criteria: {unknown}",
        )
