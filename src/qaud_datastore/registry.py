"""Store routing — maps entity types to the correct data store adapter."""

from __future__ import annotations

import logging
from typing import Any, Literal, TypeVar

from sqlalchemy.orm import Session

from qaud_datastore.connections import ConnectionManager
from qaud_datastore.protocols import DataStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def collection_name(entity_type: type) -> str:
    """Storage name for an entity type: ``__tablename__``, ``__collection__`` or the lower-cased class name."""
    for attr in ("__tablename__", "__collection__"):
        name = getattr(entity_type, attr, None)
        if isinstance(name, str) and name:
            return name
    return entity_type.__name__.lower()


class DataStoreRegistry:
    """Routes entity types to a configured data store.

    Given an entity type and a backend kind, the registry returns a
    ``DataStore`` bound to the connection profile's SQL session or Mongo
    collection. Stores registered explicitly take precedence.

    Sessions opened for SQL stores belong to the registry and are closed by
    :meth:`close`.
    """

    def __init__(self, connection_manager: ConnectionManager) -> None:
        self._connection_manager = connection_manager
        self._overrides: dict[type, DataStore[Any]] = {}
        self._sessions: list[Session] = []

    def register(self, entity_type: type[T], store: DataStore[T]) -> None:
        """Register a custom store override for an entity type."""
        self._overrides[entity_type] = store

    def get_store(
        self,
        entity_type: type[T],
        engine: Literal["sql", "mongo"] | None = None,
        profile_name: str = "default",
        *,
        auto_save: bool = True,
    ) -> DataStore[T]:
        """Resolve the data store for an entity type.

        Checks overrides first, then builds a store for *engine*. When
        *engine* is omitted, the profile's engine is used.
        """
        if entity_type in self._overrides:
            return self._overrides[entity_type]

        engine = engine or self._connection_manager.get_profile(profile_name).engine

        if engine == "sql":
            from qaud_datastore.adapters.sql import SQLDataStore

            session = self._connection_manager.get_session_factory(profile_name)()
            self._sessions.append(session)
            logger.debug("Routing %s to SQLDataStore (profile=%s)", entity_type.__name__, profile_name)
            return SQLDataStore.for_session(session, entity_type, auto_save=auto_save)

        if engine == "mongo":
            from qaud_datastore.adapters.mongo import MongoDataStore

            database = self._connection_manager.get_mongo_database(profile_name)
            logger.debug("Routing %s to MongoDataStore (profile=%s)", entity_type.__name__, profile_name)
            return MongoDataStore(database[collection_name(entity_type)], entity_type=entity_type, auto_save=auto_save)

        raise ValueError(f"Unsupported storage engine: {engine}")

    def close(self) -> None:
        """Close every session opened for the stores this registry built."""
        for session in self._sessions:
            session.close()
        logger.debug("Closed %d registry session(s)", len(self._sessions))
        self._sessions.clear()
