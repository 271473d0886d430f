#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.index.es
~~~~~~~~~~~~~~~~~~~
An Elasticsearch backed :class:`~ldap_river.index.base.DocumentIndex`.

Elasticsearch has no document types anymore, so the kind of a document is
stored in an extra keyword field (see :attr:`ElasticsearchIndex.kind_field`),
and the Elasticsearch ``_id`` is prefixed with it: ``person/clint``.  The
plain document id is kept in :attr:`ElasticsearchIndex.id_field`.

Documents are written by a script replacing the whole source, which turns
into a ``noop`` if nothing changed.
"""
import logging
import threading
import typing

from elasticsearch import ApiError, BadRequestError, Elasticsearch, NotFoundError, TransportError
from elasticsearch.helpers import scan, streaming_bulk

from ..concepts.types import DocumentId, Fields
from ..exc import IndexUnreachable
from .base import ItemResult, ItemStatus

_STATUS_BY_RESULT = {
    "created": ItemStatus.CREATED,
    "updated": ItemStatus.UPDATED,
    "noop": ItemStatus.UNCHANGED,
    "deleted": ItemStatus.DELETED,
    "not_found": ItemStatus.NOT_FOUND,
}

REPLACE_SOURCE_SCRIPT = """
if (ctx._source.equals(params.doc)) {
  ctx.op = 'noop';
} else {
  ctx._source.clear();
  ctx._source.putAll(params.doc);
}
"""


def es_id(doc_kind: str, doc_id: str) -> str:
    return f"{doc_kind}/{doc_id}"


def _doc_id(doc_kind: str, prefixed_id: str) -> DocumentId:
    return DocumentId(prefixed_id.removeprefix(f"{doc_kind}/"))


def _item_result(doc_kind: str, info: dict[str, typing.Any]) -> ItemResult:
    # `info` looks like {"update": {"_id": …, "result": …, "status": …, "error": …}}
    (item,) = info.values()
    doc_id = _doc_id(doc_kind, item["_id"])
    status = _STATUS_BY_RESULT.get(item.get("result"), ItemStatus.FAILED)
    error = item.get("error")
    if error is not None and status is not ItemStatus.NOT_FOUND:
        reason = error.get("reason", error) if isinstance(error, dict) else error
        return ItemResult(doc_id, ItemStatus.FAILED, str(reason))
    return ItemResult(doc_id, status)


class ElasticsearchIndex:
    """Usage:

        >>> index = ElasticsearchIndex.from_url("http://localhost:9200")
        >>> index.bulk_upsert("ldapserver0", "person", [("clint", {"name": "Clint"})])
        [ItemResult(doc_id='clint', status=<ItemStatus.CREATED: 'created'>, error=None)]
    """

    def __init__(
        self,
        client: Elasticsearch,
        kind_field: str = "river_kind",
        id_field: str = "river_id",
    ) -> None:
        self.client = client
        self.kind_field = kind_field
        self.id_field = id_field
        self.logger = logging.getLogger("ldap_river.index")
        self._prepared: set[str] = set()
        self._prepare_lock = threading.Lock()

    @classmethod
    def from_url(cls, url: str, **kwargs: typing.Any) -> "ElasticsearchIndex":
        return cls(Elasticsearch(url, **kwargs))

    def _ensure_index(self, index: str) -> None:
        """Create `index` with the kind and id fields mapped as keywords, unless it exists."""
        with self._prepare_lock:
            if index in self._prepared:
                return
            try:
                self.client.indices.create(
                    index=index,
                    mappings={"properties": {
                        self.kind_field: {"type": "keyword"},
                        self.id_field: {"type": "keyword"},
                    }},
                )
                self.logger.info("Created index %s", index)
            except BadRequestError as e:
                if e.error != "resource_already_exists_exception":
                    raise IndexUnreachable(f"Could not create index {index}: {e}") from e
            except (ApiError, TransportError) as e:
                raise IndexUnreachable(f"Could not create index {index}: {e}") from e
            self._prepared.add(index)

    def _bulk(self, doc_kind: str, actions: list[dict[str, typing.Any]]) -> list[ItemResult]:
        try:
            return [
                _item_result(doc_kind, info)
                for _ok, info in streaming_bulk(
                    self.client,
                    actions,
                    chunk_size=max(len(actions), 1),
                    raise_on_error=False,
                    max_retries=0,
                )
            ]
        except (ApiError, TransportError) as e:
            raise IndexUnreachable(f"Bulk request failed: {e}") from e

    def _source(self, doc_kind: str, doc_id: DocumentId, fields: Fields) -> dict[str, typing.Any]:
        return {**fields, self.kind_field: doc_kind, self.id_field: doc_id}

    def bulk_upsert(
        self,
        index: str,
        doc_kind: str,
        documents: typing.Sequence[tuple[DocumentId, Fields]],
    ) -> list[ItemResult]:
        self._ensure_index(index)
        actions = []
        for doc_id, fields in documents:
            source = self._source(doc_kind, doc_id, fields)
            actions.append({
                "_op_type": "update",
                "_index": index,
                "_id": es_id(doc_kind, doc_id),
                "script": {
                    "source": REPLACE_SOURCE_SCRIPT,
                    "lang": "painless",
                    "params": {"doc": source},
                },
                "upsert": source,
            })
        return self._bulk(doc_kind, actions)

    def bulk_delete(
        self, index: str, doc_kind: str, doc_ids: typing.Sequence[DocumentId]
    ) -> list[ItemResult]:
        return self._bulk(doc_kind, [
            {"_op_type": "delete", "_index": index, "_id": es_id(doc_kind, doc_id)}
            for doc_id in doc_ids
        ])

    def list_document_ids(self, index: str, doc_kind: str) -> set[DocumentId]:
        try:
            return {
                _doc_id(doc_kind, hit["_id"])
                for hit in scan(
                    self.client,
                    index=index,
                    query={"query": {"term": {self.kind_field: doc_kind}}, "_source": False},
                )
            }
        except NotFoundError:
            return set()
        except (ApiError, TransportError) as e:
            raise IndexUnreachable(f"Could not list ids of {index}/{doc_kind}: {e}") from e
