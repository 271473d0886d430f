#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import pytest

from ldap_river.concepts.types import DocumentId
from ldap_river.index.base import ItemResult, ItemStatus
from ldap_river.index.memory import MemoryIndex

INDEX = "ldapserver0"


@pytest.fixture
def index() -> MemoryIndex:
    index = MemoryIndex()
    index.bulk_upsert(INDEX, "person", [
        (DocumentId("john"), {"name": "John Woo", "groups": ["uidObject", "person"]}),
        (DocumentId("clint"), {"name": "Clint Eastwood", "groups": ["uidObject", "person"]}),
        (DocumentId("Person"), {"name": "The Person", "groups": ["person"]}),
    ])
    index.bulk_upsert(INDEX, "group", [(DocumentId("admins"), {"name": "admins"})])
    return index


class TestUpsert:
    def test_created(self):
        assert MemoryIndex().bulk_upsert(INDEX, "person", [(DocumentId("a"), {})]) \
            == [ItemResult(DocumentId("a"), ItemStatus.CREATED)]

    def test_unchanged(self, index):
        [result] = index.bulk_upsert(INDEX, "person", [
            (DocumentId("clint"), {"name": "Clint Eastwood", "groups": ["uidObject", "person"]}),
        ])
        assert result.status is ItemStatus.UNCHANGED

    def test_updated(self, index):
        [result] = index.bulk_upsert(INDEX, "person", [(DocumentId("clint"), {"name": "Clint"})])
        assert result.status is ItemStatus.UPDATED
        assert index.get(INDEX, "person", DocumentId("clint")) == {"name": "Clint"}

    def test_stored_copy_is_detached(self, index):
        fields = {"groups": ["a"]}
        index.bulk_upsert(INDEX, "person", [(DocumentId("x"), fields)])
        fields["groups"].append("b")
        assert index.get(INDEX, "person", DocumentId("x")) == {"groups": ["a"]}


class TestDelete:
    def test_deleted(self, index):
        assert index.bulk_delete(INDEX, "person", [DocumentId("john")]) \
            == [ItemResult(DocumentId("john"), ItemStatus.DELETED)]
        assert index.get(INDEX, "person", DocumentId("john")) is None

    def test_not_found(self, index):
        [result] = index.bulk_delete(INDEX, "person", [DocumentId("admins")])
        assert result.status is ItemStatus.NOT_FOUND

    def test_unknown_index(self):
        [result] = MemoryIndex().bulk_delete("nope", "person", [DocumentId("a")])
        assert result.status is ItemStatus.NOT_FOUND


class TestLookup:
    def test_ids_per_kind(self, index):
        assert index.list_document_ids(INDEX, "person") == {"john", "clint", "Person"}
        assert index.list_document_ids(INDEX, "group") == {"admins"}

    def test_count(self, index):
        assert index.count(INDEX) == 4
        assert index.count(INDEX, "person") == 3
        assert index.count("other") == 0

    @pytest.mark.parametrize("field, value, expected", [
        ("groups", "uidObject", {"john", "clint"}),
        ("groups", "person", {"john", "clint", "Person"}),
        ("name", "Clint Eastwood", {"clint"}),
        ("name", "Clint", set()),
        ("_id", "clint", {"clint"}),
        ("_id", "christopher", set()),
    ])
    def test_search(self, index, field, value, expected):
        assert set(index.search(INDEX, "person", field, value)) == expected
