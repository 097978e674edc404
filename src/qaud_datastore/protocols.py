"""DataStore protocol — backend-agnostic repository interface."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)


@runtime_checkable
class Query(Protocol[T_co]):
    """Lazy, re-iterable view over stored items.

    Each iteration runs against the backend again, so items added or removed
    after the view was obtained are reflected on the next pass.
    """

    def __iter__(self) -> Iterator[T_co]: ...

    def where(self, **criteria: Any) -> Query[T_co]:
        """Return a narrowed view matching all ``field == value`` criteria."""
        ...

    def limit(self, limit: int) -> Query[T_co]: ...

    def offset(self, offset: int) -> Query[T_co]: ...

    def first(self) -> T_co | None: ...

    def count(self) -> int: ...

    def all(self) -> list[T_co]: ...


@runtime_checkable
class DataStore(Protocol[T]):
    """Uniform repository contract implemented by every backend adapter.

    Callers hold a ``DataStore`` and never need to know whether items live in
    a relational database or a document database. Capability flags let callers
    branch on backend features where the difference matters.
    """

    @property
    def auto_save(self) -> bool:
        """Whether each mutating call commits immediately."""
        ...

    @auto_save.setter
    def auto_save(self, value: bool) -> None: ...

    @property
    def data_set_implementation(self) -> Any:
        """The wrapped backend collection."""
        ...

    @property
    def data_context_implementation(self) -> Any:
        """The wrapped persistence context, or ``None`` if none was supplied."""
        ...

    @property
    def query(self) -> Query[T]:
        """A lazy view over all stored items."""
        ...

    @property
    def supports_nested_relationships(self) -> bool:
        """Whether a property can hold a complete complex object graph."""
        ...

    @property
    def supports_complex_structures(self) -> bool: ...

    @property
    def supports_transaction_scope(self) -> bool:
        """Whether the store participates in ambient transaction scopes."""
        ...

    def create(self) -> T:
        """Return a new, unattached instance. It must be added separately."""
        ...

    def add(self, item: T) -> None: ...

    def add_and_fetch(self, item: T) -> T:
        """Insert and return the item with backend-assigned values (e.g. identity)."""
        ...

    def add_range(self, items: Iterable[T]) -> None: ...

    def find(self, *key_values: Any) -> T | None:
        """Look up an item by its key values, in declared key order."""
        ...

    def find_match(self, lookup: Any) -> T | None:
        """Look up the stored item whose key fields match those of *lookup*."""
        ...

    def update(self, item: T) -> None: ...

    def update_range(self, items: Iterable[T]) -> None:
        """Update each item, committing once at the end if auto-save is on."""
        ...

    def update_partial(self, changes: Any) -> None:
        """Overwrite only the fields specified on *changes*, located by its key."""
        ...

    def delete(self, item: T) -> None: ...

    def delete_by_key(self, *key_values: Any) -> None: ...

    def delete_range(self, items: Iterable[T]) -> None: ...

    def save_changes(self) -> None:
        """Commit all staged changes."""
        ...
