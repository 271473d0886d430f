#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import time
import typing

import ldap3
from ldap3.utils.ciDict import CaseInsensitiveDict

from ldap_river.concepts.types import DocumentId, Fields
from ldap_river.exc import IndexUnreachable
from ldap_river.index.base import ItemResult, ItemStatus
from ldap_river.index.memory import MemoryIndex
from ldap_river.sources.ldap import PAGED_RESULTS_OID


def ldap_item(dn: str, **attributes: typing.Any) -> dict[str, typing.Any]:
    """An item of an ``ldap3`` search response, attribute names ignoring case."""
    return {
        "dn": dn,
        "attributes": CaseInsensitiveDict(attributes),
        "raw_attributes": {},
        "type": "searchResEntry",
    }


def person(uid: str, *extra_classes: str, **attributes: typing.Any) -> dict[str, typing.Any]:
    return ldap_item(
        f"uid={uid},ou=users,ou=system",
        objectClass=["uidObject", "person", "top", *extra_classes],
        uid=[uid],
        sn=[uid],
        **attributes,
    )


def open_mock_connection(server: ldap3.Server) -> ldap3.Connection:
    connection = ldap3.Connection(server, client_strategy=ldap3.MOCK_SYNC)
    connection.open()
    return connection


class FakeDirectoryConnection:
    """Pages through `items` like a server honoring the paged results control."""

    def __init__(
        self,
        items: list[dict[str, typing.Any]],
        result_code: int = 0,
        raise_on_search: Exception | None = None,
        raise_on_page: int | None = None,
    ) -> None:
        self.items = items
        self.result_code = result_code
        self.raise_on_search = raise_on_search
        self.raise_on_page = raise_on_page
        self.searches: list[dict[str, typing.Any]] = []
        self.result: typing.Any = None
        self.response: typing.Any = None
        self.unbound = False

    def search(self, search_base, search_filter, search_scope, attributes,
               paged_size=None, paged_cookie=None):
        self.searches.append(dict(
            search_base=search_base, search_filter=search_filter,
            search_scope=search_scope, attributes=attributes,
            paged_size=paged_size, paged_cookie=paged_cookie,
        ))
        if self.raise_on_search is not None and (
            self.raise_on_page is None or self.raise_on_page == len(self.searches)
        ):
            raise self.raise_on_search
        start = int(paged_cookie) if paged_cookie else 0
        size = paged_size or len(self.items)
        end = start + size
        self.response = self.items[start:end]
        cookie = str(end).encode() if paged_size and end < len(self.items) else b""
        self.result = {
            "result": self.result_code,
            "description": "success" if not self.result_code else "failure",
            "controls": {PAGED_RESULTS_OID: {"value": {"size": 0, "cookie": cookie}}},
        }
        return bool(self.response)

    def unbind(self):
        self.unbound = True
        return True


class FlakyIndex(MemoryIndex):
    """A memory index rejecting some documents, or going away after some requests."""

    def __init__(
        self,
        reject: typing.Collection[str] = (),
        unreachable_after: int | None = None,
    ) -> None:
        super().__init__()
        self.reject = set(reject)
        self.unreachable_after = unreachable_after
        self.requests = 0

    def _request(self) -> None:
        self.requests += 1
        if self.unreachable_after is not None and self.requests > self.unreachable_after:
            raise IndexUnreachable("connection refused")

    def bulk_upsert(self, index, doc_kind, documents: typing.Sequence[tuple[DocumentId, Fields]]):
        self._request()
        accepted = [(i, f) for i, f in documents if i not in self.reject]
        results = {r.doc_id: r for r in super().bulk_upsert(index, doc_kind, accepted)}
        return [
            results.get(i, ItemResult(i, ItemStatus.FAILED, "mapper_parsing_exception"))
            for i, _ in documents
        ]

    def bulk_delete(self, index, doc_kind, doc_ids):
        self._request()
        return super().bulk_delete(index, doc_kind, doc_ids)


def wait_until(predicate: typing.Callable[[], bool], timeout: float = 5) -> bool:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.005)
    return True
