"""PyMongo document adapter implementing the DataStore protocol."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any, Generic, TypeVar

from bson import ObjectId
from pymongo import DeleteOne, InsertOne, ReplaceOne, UpdateOne
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.errors import BulkWriteError
from pymongo.mongo_client import MongoClient

from qaud_datastore.adapters import _check_criteria, _validate_limit, _validate_offset
from qaud_datastore.descriptors import EntityDescriptor, describe
from qaud_datastore.exceptions import EntityNotFoundError, InvalidOperationError, QueryError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Separator for composite keys in the string ``_id``.
KEY_SEPARATOR = "/"


def document_id(key_values: Iterable[Any]) -> str:
    """Build the string ``_id`` for a key: ``(1,)`` -> ``"1"``, ``("a", 2)`` -> ``"a/2"``."""
    return KEY_SEPARATOR.join(str(value) for value in key_values)


@contextmanager
def _session_scope(collection: Collection) -> Iterator[ClientSession]:
    """Open a client session for one logical unit of work and always close it."""
    with collection.database.client.start_session() as session:
        yield session


def _load(descriptor: EntityDescriptor[T], doc: Mapping[str, Any]) -> T:
    return descriptor.load({k: v for k, v in doc.items() if k != "_id"})


class MongoQuery(Generic[T]):
    """Lazy query view over a collection.

    Builder methods return new views; each iteration opens its own session
    and re-reads the collection.
    """

    def __init__(
        self,
        collection: Collection,
        descriptor: EntityDescriptor[T],
        *,
        criteria: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> None:
        self._collection = collection
        self._descriptor = descriptor
        self._criteria = criteria or {}
        self._limit = limit
        self._offset = offset

    @property
    def filter(self) -> dict[str, Any]:
        return dict(self._criteria)

    def _copy(self, **changes: Any) -> MongoQuery[T]:
        params: dict[str, Any] = {"criteria": self._criteria, "limit": self._limit, "offset": self._offset}
        params.update(changes)
        return MongoQuery(self._collection, self._descriptor, **params)

    def __iter__(self) -> Iterator[T]:
        return iter(self.all())

    def where(self, **criteria: Any) -> MongoQuery[T]:
        """Narrow the view with equality criteria.

        Raises:
            QueryError: For unknown fields or ``$``-prefixed operator keys.
        """
        _reject_mongo_operators(criteria, self._descriptor.entity_name)
        _check_criteria(self._descriptor, criteria)
        return self._copy(criteria={**self._criteria, **criteria})

    def limit(self, limit: int) -> MongoQuery[T]:
        return self._copy(limit=_validate_limit(limit))

    def offset(self, offset: int) -> MongoQuery[T]:
        return self._copy(offset=_validate_offset(offset))

    def all(self) -> list[T]:
        with _session_scope(self._collection) as session:
            cursor = self._collection.find(self._criteria, session=session)
            if self._offset:
                cursor = cursor.skip(self._offset)
            if self._limit is not None:
                cursor = cursor.limit(self._limit)
            return [_load(self._descriptor, doc) for doc in cursor]

    def first(self) -> T | None:
        items = self._copy(limit=1).all()
        return items[0] if items else None

    def count(self) -> int:
        kwargs: dict[str, Any] = {}
        if self._offset:
            kwargs["skip"] = self._offset
        if self._limit is not None:
            kwargs["limit"] = self._limit
        with _session_scope(self._collection) as session:
            return self._collection.count_documents(self._criteria, session=session, **kwargs)


class MongoDataStore(Generic[T]):
    """Data store backed by a PyMongo collection.

    Documents are keyed by a string ``_id`` derived from the entity's key
    values (numeric keys are stringified). Reads and writes each run inside
    their own client session; sessions never outlive a call.

    With ``auto_save`` on, every mutating call is written immediately as one
    ``bulk_write``. With it off, write requests are buffered in the store and
    flushed together by :meth:`save_changes`. Buffered writes are not visible
    to :meth:`find` or :attr:`query` until flushed.
    """

    def __init__(
        self,
        collection: Collection,
        *,
        entity_type: type[T] | None = None,
        descriptor: EntityDescriptor[T] | None = None,
        auto_save: bool = True,
    ) -> None:
        if descriptor is None:
            if entity_type is None:
                raise ValueError("MongoDataStore requires an entity_type or a descriptor.")
            descriptor = describe(entity_type)
        self._collection = collection
        self._descriptor = descriptor
        self._auto_save = auto_save
        self._pending: list[InsertOne | ReplaceOne | UpdateOne | DeleteOne] = []

    # -- Properties -----------------------------------------------------------

    @property
    def descriptor(self) -> EntityDescriptor[T]:
        return self._descriptor

    @property
    def auto_save(self) -> bool:
        return self._auto_save

    @auto_save.setter
    def auto_save(self, value: bool) -> None:
        self._auto_save = value

    @property
    def pending_changes(self) -> tuple[InsertOne | ReplaceOne | UpdateOne | DeleteOne, ...]:
        """Write requests staged while auto-save was off."""
        return tuple(self._pending)

    @property
    def data_set_implementation(self) -> Collection:
        return self._collection

    @property
    def data_context_implementation(self) -> MongoClient:
        return self._collection.database.client

    @property
    def query(self) -> MongoQuery[T]:
        return MongoQuery(self._collection, self._descriptor)

    @property
    def supports_nested_relationships(self) -> bool:
        return True

    @property
    def supports_complex_structures(self) -> bool:
        return True

    @property
    def supports_transaction_scope(self) -> bool:
        return False

    # -- Create / add ---------------------------------------------------------

    def create(self) -> T:
        return self._descriptor.factory()

    def add(self, item: T) -> None:
        self._pending.append(self._insert_request(item, "add"))
        self._save_if_auto()

    def add_and_fetch(self, item: T) -> T:
        """Insert *item* immediately and return it with its assigned identity."""
        if not self._auto_save:
            logger.error("add_and_fetch on %s rejected: auto_save disabled", self._entity_name)
            raise InvalidOperationError(
                entity_name=self._entity_name,
                operation="add_and_fetch",
                detail="auto_save must be enabled to use add_and_fetch.",
            )
        self.add(item)
        return item

    def add_range(self, items: Iterable[T]) -> None:
        self._pending.extend([self._insert_request(item, "add_range") for item in items])
        self._save_if_auto()

    def _insert_request(self, item: T, operation: str) -> InsertOne:
        # A single unset key field is filled with a new ObjectId string.
        keys = self._descriptor.key_fields
        if len(keys) == 1 and getattr(item, keys[0], None) is None:
            identity = str(ObjectId())
            if not self._descriptor.accepts_value(keys[0], identity):
                logger.error("%s on %s rejected: key %s cannot hold an ObjectId", operation, self._entity_name, keys[0])
                raise InvalidOperationError(
                    entity_name=self._entity_name,
                    operation=operation,
                    detail=f"Key field '{keys[0]}' is unset and does not accept a generated ObjectId string.",
                )
            setattr(item, keys[0], identity)
        return InsertOne(self._to_document(item, operation))

    # -- Lookup ---------------------------------------------------------------

    def find(self, *key_values: Any) -> T | None:
        key = self._descriptor.check_key(key_values, "find")
        with _session_scope(self._collection) as session:
            doc = self._collection.find_one({"_id": document_id(key)}, session=session)
        return _load(self._descriptor, doc) if doc is not None else None

    def find_match(self, lookup: Any) -> T | None:
        return self.find(*self._descriptor.key_values(lookup, "find_match"))

    # -- Update ---------------------------------------------------------------

    def update(self, item: T) -> None:
        key = self._descriptor.key_values(item, "update")
        stored = self.find(*key)
        if stored is None:
            raise self._not_found("update", key)
        self._descriptor.apply_changes(stored, item)
        self._pending.append(ReplaceOne({"_id": document_id(key)}, self._to_document(stored, "update")))
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
        """Set only the fields carried by *changes* on the stored document.

        The staged ``$set`` names just those fields, so earlier staged
        updates to other fields of the same document survive the flush.
        """
        key = self._descriptor.key_values(changes, "update_partial")
        stored = self.find(*key)
        if stored is None:
            raise self._not_found("update_partial", key)
        values = self._descriptor.specified_values(changes)
        if values:
            doc = self._descriptor.dump(self._descriptor.apply_partial(stored, changes))
            changed = {name: doc[name] for name in values}
            self._pending.append(UpdateOne({"_id": document_id(key)}, {"$set": changed}))
        self._save_if_auto()

    # -- Delete ---------------------------------------------------------------

    def delete(self, item: T) -> None:
        self._pending.append(self._delete_request(self._descriptor.key_values(item, "delete"), "delete"))
        self._save_if_auto()

    def delete_by_key(self, *key_values: Any) -> None:
        key = self._descriptor.check_key(key_values, "delete_by_key")
        self._pending.append(self._delete_request(key, "delete_by_key"))
        self._save_if_auto()

    def delete_range(self, items: Iterable[T]) -> None:
        # Every item must exist before any removal is staged.
        requests = [
            self._delete_request(self._descriptor.key_values(item, "delete_range"), "delete_range") for item in items
        ]
        self._pending.extend(requests)
        self._save_if_auto()

    def _delete_request(self, key: tuple[Any, ...], operation: str) -> DeleteOne:
        doc_id = document_id(key)
        with _session_scope(self._collection) as session:
            exists = self._collection.count_documents({"_id": doc_id}, limit=1, session=session)
        if not exists:
            raise self._not_found(operation, key)
        return DeleteOne({"_id": doc_id})

    # -- Persistence ----------------------------------------------------------

    def save_changes(self) -> None:
        """Flush all staged writes in one ordered ``bulk_write``.

        If the backend rejects a write, the writes before it are applied and
        removed from the buffer. The rejected write and everything after it
        stay staged, so they can be retried or discarded.
        """
        if not self._pending:
            return
        logger.debug("Flushing %d staged write(s) for %s", len(self._pending), self._entity_name)
        try:
            with _session_scope(self._collection) as session:
                self._collection.bulk_write(list(self._pending), ordered=True, session=session)
        except BulkWriteError as exc:
            write_errors = exc.details.get("writeErrors") or []
            if write_errors:
                del self._pending[: write_errors[0]["index"]]
            raise
        self._pending.clear()

    def discard_changes(self) -> None:
        """Drop all staged writes without sending them."""
        self._pending.clear()

    def _save_if_auto(self) -> None:
        if not self._auto_save:
            return
        try:
            self.save_changes()
        except Exception:
            # A failed auto-save call leaves nothing behind for the next one.
            self._pending.clear()
            raise

    # -- Helpers --------------------------------------------------------------

    @property
    def _entity_name(self) -> str:
        return self._descriptor.entity_name

    def _to_document(self, item: T, operation: str) -> dict[str, Any]:
        doc = self._descriptor.dump(item)
        doc["_id"] = document_id(self._descriptor.key_values(item, operation))
        return doc

    def _not_found(self, operation: str, key: tuple[Any, ...]) -> EntityNotFoundError:
        logger.error("%s on %s failed: no document with _id %s", operation, self._entity_name, document_id(key))
        return EntityNotFoundError(
            entity_name=self._entity_name,
            operation=operation,
            detail=f"No stored document matches key {key!r}.",
        )


def _reject_mongo_operators(filters: dict[str, Any], entity_name: str) -> None:
    """Raise ``QueryError`` if any filter key (recursively) starts with ``$``.

    Criteria are plain equality filters; operator keys such as ``$gt``,
    ``$ne`` or ``$where`` are refused.
    """

    def _check(obj: Any) -> None:
        if isinstance(obj, dict):
            for key in obj:
                if isinstance(key, str) and key.startswith("$"):
                    raise QueryError(
                        entity_name=entity_name,
                        operation="query",
                        detail=f"Filter key '{key}' is not allowed: MongoDB operators are rejected.",
                    )
                _check(obj[key])
        elif isinstance(obj, list):
            for item in obj:
                _check(item)

    _check(filters)
