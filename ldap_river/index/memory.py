#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.index.memory
~~~~~~~~~~~~~~~~~~~~~~~
"""
import copy
import threading
import typing

from ..concepts.types import DocumentId, Fields
from .base import ItemResult, ItemStatus

#: pseudo field to search for a document id
ID_FIELD = "_id"


class MemoryIndex:
    """A :class:`~ldap_river.index.base.DocumentIndex` living in this process.

    Documents are kept per ``(index, doc_kind)``.  Apart from the
    collaborator interface it offers lookups used by ``--memory-index``
    runs and the tests.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._docs: dict[tuple[str, str], dict[DocumentId, Fields]] = {}

    def bulk_upsert(
        self,
        index: str,
        doc_kind: str,
        documents: typing.Sequence[tuple[DocumentId, Fields]],
    ) -> list[ItemResult]:
        results = []
        with self._lock:
            docs = self._docs.setdefault((index, doc_kind), {})
            for doc_id, fields in documents:
                match docs.get(doc_id):
                    case None:
                        status = ItemStatus.CREATED
                    case current if current == fields:
                        status = ItemStatus.UNCHANGED
                    case _:
                        status = ItemStatus.UPDATED
                docs[doc_id] = copy.deepcopy(fields)
                results.append(ItemResult(doc_id, status))
        return results

    def bulk_delete(
        self, index: str, doc_kind: str, doc_ids: typing.Sequence[DocumentId]
    ) -> list[ItemResult]:
        results = []
        with self._lock:
            docs = self._docs.get((index, doc_kind), {})
            for doc_id in doc_ids:
                if docs.pop(doc_id, None) is None:
                    results.append(ItemResult(doc_id, ItemStatus.NOT_FOUND))
                else:
                    results.append(ItemResult(doc_id, ItemStatus.DELETED))
        return results

    def list_document_ids(self, index: str, doc_kind: str) -> set[DocumentId]:
        with self._lock:
            return set(self._docs.get((index, doc_kind), {}))

    def get(self, index: str, doc_kind: str, doc_id: DocumentId) -> Fields | None:
        with self._lock:
            fields = self._docs.get((index, doc_kind), {}).get(doc_id)
            return copy.deepcopy(fields)

    def count(self, index: str, doc_kind: str | None = None) -> int:
        with self._lock:
            return sum(
                len(docs)
                for (i, kind), docs in self._docs.items()
                if i == index and doc_kind in (None, kind)
            )

    def search(
        self, index: str, doc_kind: str, field: str, value: str
    ) -> list[DocumentId]:
        """Ids of the documents where `field` holds `value` (or `value` is one of its values)."""
        with self._lock:
            docs = self._docs.get((index, doc_kind), {})
            if field == ID_FIELD:
                return [DocumentId(value)] if value in docs else []
            return [
                doc_id
                for doc_id, fields in docs.items()
                if _matches(fields.get(field), value)
            ]


def _matches(field_value: str | list[str] | None, value: str) -> bool:
    if isinstance(field_value, list):
        return value in field_value
    return field_value == value
