"""SQLAlchemy ORM adapter implementing the DataStore protocol."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import Any, Generic, TypeVar

import sqlalchemy as sa
from sqlalchemy.orm import Session

from qaud_datastore.adapters import _check_criteria, _validate_limit, _validate_offset
from qaud_datastore.descriptors import EntityDescriptor, describe
from qaud_datastore.exceptions import EntityNotFoundError, InvalidOperationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EntitySet(Generic[T]):
    """Typed collection of one mapped class inside a :class:`Session`.

    Staging only: nothing here commits.
    """

    def __init__(self, session: Session, entity_type: type[T]) -> None:
        self._session = session
        self._entity_type = entity_type

    @property
    def session(self) -> Session:
        return self._session

    @property
    def entity_type(self) -> type[T]:
        return self._entity_type

    def create(self) -> T:
        return self._entity_type()

    def add(self, item: T) -> None:
        self._session.add(item)

    def add_all(self, items: Iterable[T]) -> None:
        self._session.add_all(items)

    def remove(self, item: T) -> None:
        self._session.delete(item)

    def remove_all(self, items: Iterable[T]) -> None:
        for item in items:
            self._session.delete(item)

    def get(self, key: tuple[Any, ...]) -> T | None:
        return self._session.get(self._entity_type, key)

    def contains(self, item: Any) -> bool:
        """True when *item* is pending or persistent in this set's session."""
        state = sa.inspect(item, raiseerr=False)
        return state is not None and (state.pending or state.persistent) and item in self._session

    def select(self) -> sa.Select[Any]:
        return sa.select(self._entity_type)


class SQLQuery(Generic[T]):
    """Lazy query view over an :class:`EntitySet`.

    Builder methods return new views; the statement runs on every iteration.
    """

    def __init__(
        self,
        entity_set: EntitySet[T],
        descriptor: EntityDescriptor[T],
        *,
        criteria: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> None:
        self._set = entity_set
        self._descriptor = descriptor
        self._criteria = criteria or {}
        self._limit = limit
        self._offset = offset

    @property
    def statement(self) -> sa.Select[Any]:
        """The SELECT this view runs, for callers that need richer SQLAlchemy filtering."""
        stmt = self._set.select()
        entity_type = self._set.entity_type
        for name, value in self._criteria.items():
            stmt = stmt.where(getattr(entity_type, name) == value)
        if self._offset:
            stmt = stmt.offset(self._offset)
        if self._limit is not None:
            stmt = stmt.limit(self._limit)
        return stmt

    def _copy(self, **changes: Any) -> SQLQuery[T]:
        params: dict[str, Any] = {"criteria": self._criteria, "limit": self._limit, "offset": self._offset}
        params.update(changes)
        return SQLQuery(self._set, self._descriptor, **params)

    def __iter__(self) -> Iterator[T]:
        return iter(self._set.session.scalars(self.statement).all())

    def where(self, **criteria: Any) -> SQLQuery[T]:
        _check_criteria(self._descriptor, criteria)
        return self._copy(criteria={**self._criteria, **criteria})

    def limit(self, limit: int) -> SQLQuery[T]:
        return self._copy(limit=_validate_limit(limit))

    def offset(self, offset: int) -> SQLQuery[T]:
        return self._copy(offset=_validate_offset(offset))

    def first(self) -> T | None:
        return self._set.session.scalars(self.statement.limit(1)).first()

    def count(self) -> int:
        stmt = sa.select(sa.func.count()).select_from(self.statement.subquery())
        return self._set.session.scalar(stmt) or 0

    def all(self) -> list[T]:
        return list(self)


class SQLDataStore(Generic[T]):
    """Data store backed by the SQLAlchemy ORM.

    Wraps an :class:`EntitySet` (required) and, optionally, the
    :class:`Session` that acts as persistence context.

    With a context the store is *tracked*: it can commit, auto-save defaults
    to on, and :meth:`update` hands full-row replacement to the ORM via
    ``Session.merge``.  Without one the store is *untracked*: changes are only
    staged (the owner of the session commits), auto-save is off, and
    :meth:`update` locates the stored row by key and copies field values onto
    it.
    """

    def __init__(
        self,
        entity_set: EntitySet[T],
        context: Session | None = None,
        *,
        auto_save: bool = True,
        descriptor: EntityDescriptor[T] | None = None,
    ) -> None:
        self._set = entity_set
        self._context = context
        self._descriptor = descriptor or describe(entity_set.entity_type)
        self._auto_save = auto_save if context is not None else False
        self._apply_update: Callable[[T], None] = (
            self._update_tracked if context is not None else self._update_untracked
        )

    @classmethod
    def for_session(
        cls,
        session: Session,
        entity_type: type[T],
        *,
        auto_save: bool = True,
        descriptor: EntityDescriptor[T] | None = None,
    ) -> SQLDataStore[T]:
        """Create a tracked store using *session* as both collection and context."""
        return cls(EntitySet(session, entity_type), session, auto_save=auto_save, descriptor=descriptor)

    # -- Properties -----------------------------------------------------------

    @property
    def descriptor(self) -> EntityDescriptor[T]:
        return self._descriptor

    @property
    def tracked(self) -> bool:
        """True when a persistence context was supplied."""
        return self._context is not None

    @property
    def auto_save(self) -> bool:
        return self._auto_save

    @auto_save.setter
    def auto_save(self, value: bool) -> None:
        self._auto_save = value

    @property
    def data_set_implementation(self) -> EntitySet[T]:
        return self._set

    @property
    def data_context_implementation(self) -> Session | None:
        return self._context

    @property
    def query(self) -> SQLQuery[T]:
        return SQLQuery(self._set, self._descriptor)

    @property
    def supports_nested_relationships(self) -> bool:
        return True

    @property
    def supports_complex_structures(self) -> bool:
        return True

    @property
    def supports_transaction_scope(self) -> bool:
        return True

    # -- Create / add ---------------------------------------------------------

    def create(self) -> T:
        return self._descriptor.factory()

    def add(self, item: T) -> None:
        self._set.add(item)
        self._save_if_auto()

    def add_and_fetch(self, item: T) -> T:
        """Insert *item*, commit, and return it with database-generated values loaded."""
        if self._context is None or not self._auto_save:
            logger.error("add_and_fetch on %s rejected: no context or auto_save disabled", self._entity_name)
            raise InvalidOperationError(
                entity_name=self._entity_name,
                operation="add_and_fetch",
                detail="A persistence context must be provided and auto_save must be enabled to use add_and_fetch.",
            )
        self._set.add(item)
        self._context.commit()
        self._context.refresh(item)
        return item

    def add_range(self, items: Iterable[T]) -> None:
        self._set.add_all(items)
        self._save_if_auto()

    # -- Lookup ---------------------------------------------------------------

    def find(self, *key_values: Any) -> T | None:
        key = self._descriptor.check_key(key_values, "find")
        return self._set.get(key)

    def find_match(self, lookup: Any) -> T | None:
        return self.find(*self._descriptor.key_values(lookup, "find_match"))

    # -- Update ---------------------------------------------------------------

    def update(self, item: T) -> None:
        self._apply_update(item)
        self._save_if_auto()

    def update_range(self, items: Iterable[T]) -> None:
        previous = self._auto_save
        self._auto_save = False
        try:
            for item in items:
                self.update(item)
        finally:
            self._auto_save = previous
        self._save_if_auto()

    def update_partial(self, changes: Any) -> None:
        """Overwrite only the fields carried by *changes* on the stored row."""
        key = self._descriptor.key_values(changes, "update_partial")
        target = self._set.get(self._descriptor.check_key(key, "update_partial"))
        if target is None:
            raise self._not_found("update_partial", key)
        self._descriptor.apply_partial(target, changes)
        self._save_if_auto()

    def _update_tracked(self, item: T) -> None:
        session = self._set.session
        if self._set.contains(item):
            return
        merged = session.merge(item)
        if sa.inspect(merged).pending:
            session.expunge(merged)
            raise self._not_found("update", self._descriptor.key_values(item, "update"))
        # merge skips attributes never set on a detached instance; replace them too.
        self._descriptor.apply_changes(merged, item)

    def _update_untracked(self, item: T) -> None:
        key = self._descriptor.key_values(item, "update")
        stored = self.find(*key)
        if stored is None:
            raise self._not_found("update", key)
        if stored is not item:
            self._descriptor.apply_changes(stored, item)

    # -- Delete ---------------------------------------------------------------

    def delete(self, item: T) -> None:
        target = self._delete_target(item, "delete")
        if target is not None:
            self._set.remove(target)
        self._save_if_auto()

    def delete_by_key(self, *key_values: Any) -> None:
        target = self.find(*key_values)
        if target is None:
            raise self._not_found("delete_by_key", key_values)
        self._set.remove(target)
        self._save_if_auto()

    def delete_range(self, items: Iterable[T]) -> None:
        targets = [self._delete_target(item, "delete_range") for item in items]
        self._set.remove_all(target for target in targets if target is not None)
        self._save_if_auto()

    def _delete_target(self, item: T, operation: str) -> T | None:
        """Resolve the persistent instance to remove for *item*.

        A pending item is expunged instead and ``None`` is returned.
        """
        state = sa.inspect(item, raiseerr=False)
        if state is not None and state.pending and item in self._set.session:
            self._set.session.expunge(item)
            return None
        if self._set.contains(item):
            return item
        key = self._descriptor.key_values(item, operation)
        stored = self.find(*key)
        if stored is None:
            raise self._not_found(operation, key)
        return stored

    # -- Persistence ----------------------------------------------------------

    def save_changes(self) -> None:
        if self._context is None:
            logger.error("save_changes on %s rejected: no persistence context", self._entity_name)
            raise InvalidOperationError(
                entity_name=self._entity_name,
                operation="save_changes",
                detail="No persistence context with which to save changes.",
            )
        logger.debug("Committing staged changes for %s", self._entity_name)
        self._context.commit()

    @contextmanager
    def transaction_scope(self) -> Iterator[SQLDataStore[T]]:
        """Group several operations into one commit, rolling back on error.

        Auto-save is suspended inside the block. On normal exit the staged
        work is committed if auto-save was on when the block began.
        """
        if self._context is None:
            raise InvalidOperationError(
                entity_name=self._entity_name,
                operation="transaction_scope",
                detail="A persistence context is required for transaction scopes.",
            )
        previous = self._auto_save
        self._auto_save = False
        try:
            yield self
        except Exception:
            logger.debug("Rolling back transaction scope for %s", self._entity_name)
            self._context.rollback()
            raise
        finally:
            self._auto_save = previous
        self._save_if_auto()

    def _save_if_auto(self) -> None:
        if self._auto_save:
            self.save_changes()

    @property
    def _entity_name(self) -> str:
        return self._descriptor.entity_name

    def _not_found(self, operation: str, key: tuple[Any, ...]) -> EntityNotFoundError:
        logger.error("%s on %s failed: no stored item with key %s", operation, self._entity_name, key)
        return EntityNotFoundError(
            entity_name=self._entity_name,
            operation=operation,
            detail=f"No stored item matches key {key!r}.",
        )
