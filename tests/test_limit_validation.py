"""Tests for the checks shared by the SQL and Mongo query views."""

import pytest
from models import FooDocument, FooModel
from qaud_datastore.adapters import MAX_QUERY_LIMIT, _validate_limit, _validate_offset
from qaud_datastore.adapters.mongo import MongoDataStore
from qaud_datastore.adapters.sql import SQLDataStore


class TestValidateLimit:
    def test_valid_limit(self):
        assert _validate_limit(1) == 1
        assert _validate_limit(50) == 50
        assert _validate_limit(1000) == 1000

    def test_caps_at_max(self):
        assert _validate_limit(1001) == MAX_QUERY_LIMIT
        assert _validate_limit(999_999) == MAX_QUERY_LIMIT

    def test_rejects_zero(self):
        with pytest.raises(ValueError, match="limit must be >= 1"):
            _validate_limit(0)

    def test_rejects_negative(self):
        with pytest.raises(ValueError, match="limit must be >= 1"):
            _validate_limit(-1)


class TestValidateOffset:
    def test_valid_offset(self):
        assert _validate_offset(0) == 0
        assert _validate_offset(25) == 25

    def test_rejects_negative(self):
        with pytest.raises(ValueError, match="offset must be >= 0"):
            _validate_offset(-1)


def test_sql_query_caps_large_limit(sql_session):
    store = SQLDataStore.for_session(sql_session, FooModel)
    store.add(FooModel(id=1, name="Alice"))

    assert len(store.query.limit(5000).all()) == 1


def test_mongo_query_rejects_zero_limit(mongo_collection):
    store = MongoDataStore(mongo_collection, entity_type=FooDocument)
    with pytest.raises(ValueError, match="limit must be >= 1"):
        store.query.limit(0)


def test_mongo_query_offset_skips_documents(mongo_collection):
    store = MongoDataStore(mongo_collection, entity_type=FooDocument)
    store.add_range([FooDocument(id=i, name=f"n{i}") for i in range(1, 4)])

    assert [doc.id for doc in store.query.offset(1).limit(1)] == [2]


def test_unknown_criteria_rejected_the_same_way_on_both_views(sql_session, mongo_collection):
    import qaud_datastore

    sql_store = SQLDataStore.for_session(sql_session, FooModel)
    mongo_store = MongoDataStore(mongo_collection, entity_type=FooDocument)

    for store in (sql_store, mongo_store):
        with pytest.raises(qaud_datastore.QueryError, match="Unknown field"):
            store.query.where(nope=1)
