"""Qaud DataStore — one repository contract over relational and document backends."""

from qaud_datastore.adapters.mongo import MongoDataStore, MongoQuery
from qaud_datastore.adapters.sql import EntitySet, SQLDataStore, SQLQuery
from qaud_datastore.connections import ConnectionManager, ConnectionProfile, InvalidConnectionURL
from qaud_datastore.descriptors import EntityDescriptor, describe
from qaud_datastore.exceptions import (
    DataStoreError,
    EntityNotFoundError,
    InvalidKeyError,
    InvalidOperationError,
    QueryError,
)
from qaud_datastore.protocols import DataStore, Query
from qaud_datastore.registry import DataStoreRegistry

__all__ = [
    "ConnectionManager",
    "ConnectionProfile",
    "DataStore",
    "DataStoreError",
    "DataStoreRegistry",
    "EntityDescriptor",
    "EntityNotFoundError",
    "EntitySet",
    "InvalidConnectionURL",
    "InvalidKeyError",
    "InvalidOperationError",
    "MongoDataStore",
    "MongoQuery",
    "Query",
    "QueryError",
    "SQLDataStore",
    "SQLQuery",
    "describe",
]
