"""Behavioural contract shared by every DataStore adapter.

Subclasses provide the store and the backend-side hooks used to seed and
inspect data without going through the store under test.
"""

from __future__ import annotations

from typing import Any

import pytest
from qaud_datastore import DataStore, EntityNotFoundError, InvalidKeyError, InvalidOperationError


class DataStoreContract:
    store: DataStore[Any]

    # -- Hooks ----------------------------------------------------------------

    def make_item(self, id: Any, name: str, comment: str | None = None) -> Any:
        raise NotImplementedError

    def add_item_to_store(self, item: Any) -> None:
        raise NotImplementedError

    def get_item_by_id(self, id: Any) -> Any | None:
        raise NotImplementedError

    def commit_count(self) -> int:
        raise NotImplementedError

    # -- Create / add ---------------------------------------------------------

    def test_store_satisfies_protocol(self):
        assert isinstance(self.store, DataStore)

    def test_create_instantiates_entity(self):
        item = self.store.create()
        assert isinstance(item, self.store.descriptor.entity_type)
        assert self.store.query.count() == 0

    def test_add_item_adds_item(self):
        self.store.add(self.make_item(1, "foo", "bar"))

        stored = self.get_item_by_id(1)
        assert stored is not None
        assert stored.name == "foo"
        assert stored.comment == "bar"

    def test_add_into_empty_store_query_returns_exactly_that_item(self):
        self.store.add(self.make_item(1, "only"))

        items = self.store.query.all()
        assert len(items) == 1
        assert items[0].id == 1
        assert items[0].name == "only"

    def test_add_range_adds_all_items(self):
        self.store.add_range([self.make_item(i, f"item-{i}") for i in range(1, 5)])

        assert self.store.query.count() == 4

    def test_add_range_commits_once(self):
        before = self.commit_count()
        self.store.add_range([self.make_item(i, f"item-{i}") for i in range(1, 4)])

        assert self.commit_count() - before == 1

    def test_add_and_fetch_returns_item_with_identity(self):
        result = self.store.add_and_fetch(self.make_item(None, "generated"))

        assert result.id is not None
        assert self.store.find(result.id).name == "generated"

    def test_add_and_fetch_requires_auto_save(self):
        self.store.auto_save = False
        with pytest.raises(InvalidOperationError, match="auto_save"):
            self.store.add_and_fetch(self.make_item(1, "foo"))

    def test_auto_save_off_defers_add_until_save_changes(self):
        self.store.auto_save = False
        self.store.add(self.make_item(1, "deferred"))

        assert self.get_item_by_id(1) is None

        self.store.save_changes()
        assert self.get_item_by_id(1).name == "deferred"

    # -- Lookup ---------------------------------------------------------------

    def test_find_returns_item_by_key(self):
        self.add_item_to_store(self.make_item(7, "seven"))

        found = self.store.find(7)
        assert found is not None
        assert found.name == "seven"

    def test_find_missing_returns_none(self):
        assert self.store.find(404) is None

    def test_find_with_wrong_key_arity_raises(self):
        with pytest.raises(InvalidKeyError):
            self.store.find(1, 2)
        with pytest.raises(InvalidKeyError):
            self.store.find()

    def test_find_match_uses_key_fields_only(self):
        self.add_item_to_store(self.make_item(3, "three", "stored"))

        found = self.store.find_match(self.make_item(3, "other name"))
        assert found is not None
        assert found.name == "three"

    def test_find_with_extracted_key_returns_same_item(self):
        self.add_item_to_store(self.make_item(5, "five"))
        stored = self.store.find(5)

        again = self.store.find(*self.store.descriptor.key_values(stored))
        assert again.id == stored.id
        assert again.name == stored.name

    # -- Update ---------------------------------------------------------------

    def test_update_modifies_item(self):
        self.add_item_to_store(self.make_item(1, "original", "before"))

        self.store.update(self.make_item(1, "updated", "after"))

        stored = self.get_item_by_id(1)
        assert stored.name == "updated"
        assert stored.comment == "after"

    def test_update_missing_item_raises(self):
        with pytest.raises(EntityNotFoundError):
            self.store.update(self.make_item(99, "ghost"))

    def test_update_range_commits_once(self):
        for i in range(1, 4):
            self.add_item_to_store(self.make_item(i, f"item-{i}"))
        before = self.commit_count()

        self.store.update_range([self.make_item(i, f"renamed-{i}") for i in range(1, 4)])

        assert self.commit_count() - before == 1
        assert sorted(item.name for item in self.store.query) == ["renamed-1", "renamed-2", "renamed-3"]
        assert self.store.auto_save is True

    def test_update_range_restores_auto_save_on_failure(self):
        self.add_item_to_store(self.make_item(1, "one"))

        with pytest.raises(EntityNotFoundError):
            self.store.update_range([self.make_item(1, "renamed"), self.make_item(2, "missing")])

        assert self.store.auto_save is True

    def test_partial_update_modifies_only_given_fields(self):
        self.add_item_to_store(self.make_item(1, "name", "comment"))

        self.store.update_partial({"id": 1, "comment": "changed"})

        stored = self.get_item_by_id(1)
        assert stored.comment == "changed"
        assert stored.name == "name"

    def test_staged_partial_updates_to_one_item_all_survive_save(self):
        self.add_item_to_store(self.make_item(1, "name", "comment"))
        self.store.auto_save = False

        self.store.update_partial({"id": 1, "name": "renamed"})
        self.store.update_partial({"id": 1, "comment": "rewritten"})
        self.store.save_changes()

        stored = self.get_item_by_id(1)
        assert stored.name == "renamed"
        assert stored.comment == "rewritten"

    def test_partial_update_missing_item_raises(self):
        with pytest.raises(EntityNotFoundError):
            self.store.update_partial({"id": 42, "comment": "nope"})

    # -- Delete ---------------------------------------------------------------

    def test_delete_item_removes_item(self):
        item = self.make_item(1, "doomed")
        self.add_item_to_store(item)

        self.store.delete(item)

        assert self.get_item_by_id(1) is None

    def test_delete_missing_item_raises(self):
        with pytest.raises(EntityNotFoundError):
            self.store.delete(self.make_item(1, "never stored"))

    def test_delete_by_key_removes_item(self):
        self.add_item_to_store(self.make_item(2, "doomed"))

        self.store.delete_by_key(2)

        assert self.store.find(2) is None
        assert self.get_item_by_id(2) is None

    def test_delete_by_key_missing_raises(self):
        with pytest.raises(EntityNotFoundError):
            self.store.delete_by_key(2)

    def test_delete_range_single_removes_item(self):
        item = self.make_item(1, "doomed")
        self.add_item_to_store(item)

        self.store.delete_range([item])

        assert self.get_item_by_id(1) is None

    def test_delete_range_removes_many_items(self):
        items = [self.make_item(i, f"item-{i}") for i in range(1, 4)]
        for item in items:
            self.add_item_to_store(item)
        self.add_item_to_store(self.make_item(4, "survivor"))
        before = self.commit_count()

        self.store.delete_range(items)

        assert self.commit_count() - before == 1
        assert [item.name for item in self.store.query] == ["survivor"]

    def test_delete_range_with_missing_item_removes_nothing(self):
        present = self.make_item(1, "present")
        self.add_item_to_store(present)

        with pytest.raises(EntityNotFoundError):
            self.store.delete_range([present, self.make_item(2, "never stored")])

        assert self.get_item_by_id(1) is not None
        assert self.store.find(1) is not None

    # -- Query ----------------------------------------------------------------

    def test_query_for_all_returns_all(self):
        for i in range(1, 4):
            self.add_item_to_store(self.make_item(i, f"item-{i}"))

        assert sorted(item.name for item in self.store.query) == ["item-1", "item-2", "item-3"]

    def test_query_for_item_returns_result(self):
        self.add_item_to_store(self.make_item(1, "alpha"))
        self.add_item_to_store(self.make_item(2, "beta"))

        result = self.store.query.where(name="beta").first()
        assert result is not None
        assert result.id == 2

    def test_query_is_lazy_and_requeryable(self):
        view = self.store.query
        assert view.all() == []

        self.store.add(self.make_item(1, "late"))

        assert [item.name for item in view] == ["late"]
        assert view.count() == 1

    def test_query_limit_and_offset(self):
        for i in range(1, 6):
            self.add_item_to_store(self.make_item(i, f"item-{i}"))

        assert self.store.query.limit(2).count() == 2
        assert len(self.store.query.offset(3).all()) == 2

    # -- Capabilities ---------------------------------------------------------

    def test_capability_flags_are_booleans(self):
        assert isinstance(self.store.supports_nested_relationships, bool)
        assert isinstance(self.store.supports_complex_structures, bool)
        assert isinstance(self.store.supports_transaction_scope, bool)
