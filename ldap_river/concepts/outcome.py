#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.concepts.outcome
~~~~~~~~~~~~~~~~~~~~~~~~~~~
What a scan has seen, and what it has done to the index.
"""
from __future__ import annotations

import dataclasses
import typing
from datetime import datetime, timedelta

from .entry import MappedDocument
from .types import DocumentId


class ItemFailure(typing.NamedTuple):
    """A single entry or document that could not be synced.

    :param id: the document id, or the DN if no id could be derived.
    :param cause: the error, e.g. a
        :class:`~ldap_river.exc.MissingIdentifier` or an
        :class:`~ldap_river.exc.ItemWriteFailed`.
    """
    id: str
    cause: Exception


@dataclasses.dataclass
class ScanResult:
    """The accumulated outcome of one pass over the directory."""

    #: the mapped documents in fetch order
    documents: dict[DocumentId, MappedDocument] = dataclasses.field(default_factory=dict)
    #: number of containers and referrals dropped by the scanner
    skipped: int = 0
    failures: list[ItemFailure] = dataclasses.field(default_factory=list)
    #: whether the scan stopped before the directory was exhausted
    cancelled: bool = False

    @property
    def seen_ids(self) -> typing.AbstractSet[DocumentId]:
        return self.documents.keys()

    def __len__(self) -> int:
        return len(self.documents)


@dataclasses.dataclass(frozen=True)
class SyncOutcome:
    """Summary of one scan, as recorded by the scheduler."""

    started_at: datetime
    duration: timedelta
    #: successfully written documents
    upserts: int = 0
    #: upserts which created a document or changed its content
    changed: int = 0
    deletions: int = 0
    skipped: int = 0
    failures: tuple[ItemFailure, ...] = ()
    cancelled: bool = False
    #: the error which aborted the scan, if any
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @classmethod
    def failed(
        cls, error: Exception, started_at: datetime, duration: timedelta
    ) -> SyncOutcome:
        return cls(started_at=started_at, duration=duration, error=error)

    def __str__(self) -> str:
        if self.error is not None:
            return f"failed after {self.duration}: {self.error!r}"
        return (
            f"{self.upserts} upserts ({self.changed} changed), "
            f"{self.deletions} deletions, {self.skipped} skipped, "
            f"{len(self.failures)} failures in {self.duration}"
            + (" (cancelled)" if self.cancelled else "")
        )
