"""Domain exceptions for the data store layer.

Only the layer's own precondition checks raise these. Exceptions coming from
the wrapped backend (SQLAlchemy, PyMongo) propagate unchanged.
"""

from __future__ import annotations


class DataStoreError(Exception):
    """Base exception for all data store errors.

    Attributes:
        entity_name: The name of the entity type involved.
        operation: The operation that failed (e.g. ``"find"``, ``"update_partial"``).
        detail: A description of what went wrong.
    """

    def __init__(
        self,
        *,
        entity_name: str,
        operation: str,
        detail: str,
        cause: Exception | None = None,
    ) -> None:
        self.entity_name = entity_name
        self.operation = operation
        self.detail = detail
        msg = f"[{entity_name}] {operation} failed: {detail}"
        super().__init__(msg)
        if cause is not None:
            self.__cause__ = cause


class InvalidOperationError(DataStoreError):
    """Raised when an operation needs configuration the store does not have."""


class InvalidKeyError(DataStoreError, ValueError):
    """Raised when key values do not match the entity's declared key fields."""


class EntityNotFoundError(DataStoreError):
    """Raised when a mutation targets a record that does not exist."""


class QueryError(DataStoreError):
    """Raised for invalid query criteria."""
