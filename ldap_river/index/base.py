#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.index.base
~~~~~~~~~~~~~~~~~~~~~
What the river needs from a document index.
"""
import enum
import typing

from ..concepts.types import DocumentId, Fields


class ItemStatus(enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    FAILED = "failed"

    @property
    def is_failure(self) -> bool:
        return self is ItemStatus.FAILED


class ItemResult(typing.NamedTuple):
    doc_id: DocumentId
    status: ItemStatus
    error: str | None = None


class DocumentIndex(typing.Protocol):
    """The index collaborator.

    Implementations must be safe for concurrent use, since several
    sources write through the same instance.  A failure of a whole
    request (e.g. the index being unreachable) raises
    :class:`~ldap_river.exc.IndexUnreachable`; failures of single items
    are reported as :attr:`ItemStatus.FAILED`.
    """

    def bulk_upsert(
        self,
        index: str,
        doc_kind: str,
        documents: typing.Sequence[tuple[DocumentId, Fields]],
    ) -> list[ItemResult]:
        ...

    def bulk_delete(
        self, index: str, doc_kind: str, doc_ids: typing.Sequence[DocumentId]
    ) -> list[ItemResult]:
        ...

    def list_document_ids(self, index: str, doc_kind: str) -> set[DocumentId]:
        ...
