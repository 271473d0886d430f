#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.writer
~~~~~~~~~~~~~~~~~
Executes :class:`Actions <ldap_river.concepts.action.Action>` against an index,
in bounded batches.
"""
from __future__ import annotations

import enum
import itertools
import logging
import typing
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from .concepts.action import Action, DeleteAction, IdleAction, UpsertAction
from .concepts.entry import MappedDocument
from .concepts.outcome import ItemFailure
from .concepts.types import DocumentId
from .config import SourceConfig
from .exc import IndexUnreachable, ItemWriteFailed
from .index.base import DocumentIndex, ItemResult, ItemStatus


class WriteSummary(typing.NamedTuple):
    upserts: int = 0
    changed: int = 0
    deletions: int = 0
    failures: tuple[ItemFailure, ...] = ()
    cancelled: bool = False


class _Op(enum.Enum):
    UPSERT = "upsert"
    DELETE = "delete"


class _Tally:
    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger
        self.upserts = 0
        self.changed = 0
        self.deletions = 0
        self.failures: list[ItemFailure] = []

    def add(self, op: _Op, results: list[ItemResult]) -> None:
        for result in results:
            if result.status.is_failure:
                self.logger.warning("Could not %s %s: %s", op.value, result.doc_id, result.error)
                cause = ItemWriteFailed(result.doc_id, result.error or "unknown error")
                self.failures.append(ItemFailure(id=result.doc_id, cause=cause))
                continue
            match op, result.status:
                case _Op.UPSERT, ItemStatus.CREATED | ItemStatus.UPDATED:
                    self.upserts += 1
                    self.changed += 1
                case _Op.UPSERT, _:
                    self.upserts += 1
                case _Op.DELETE, ItemStatus.DELETED:
                    self.deletions += 1
                case _Op.DELETE, ItemStatus.NOT_FOUND:
                    self.logger.debug("%s was already gone", result.doc_id)

    def summary(self, cancelled: bool) -> WriteSummary:
        return WriteSummary(
            upserts=self.upserts,
            changed=self.changed,
            deletions=self.deletions,
            failures=tuple(self.failures),
            cancelled=cancelled,
        )


class IndexWriter:
    """Writes upserts and deletions to an index.

    Usage:

        >>> writer = IndexWriter(MemoryIndex(), "ldapserver0", "person", batch_size=2)
        >>> writer.write([UpsertAction(document=doc)])
        WriteSummary(upserts=1, changed=1, deletions=0, failures=(), cancelled=False)

    Failures of single items are collected and do not stop the batch.  If a
    whole batch fails, the remaining batches are not sent and
    :class:`~ldap_river.exc.IndexUnreachable` is raised.

    :param concurrency: how many batches may be in flight at once
    :param cancelled: checked before sending another batch
    """

    def __init__(
        self,
        index: DocumentIndex,
        index_name: str,
        doc_kind: str,
        batch_size: int = 500,
        concurrency: int = 1,
        cancelled: typing.Callable[[], bool] = lambda: False,
        logger: logging.Logger | None = None,
    ) -> None:
        if batch_size < 1 or concurrency < 1:
            raise ValueError("batch_size and concurrency must be positive")
        self.index = index
        self.index_name = index_name
        self.doc_kind = doc_kind
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.cancelled = cancelled
        self.logger = logger or logging.getLogger("ldap_river.writer")

    @classmethod
    def from_config(
        cls,
        index: DocumentIndex,
        config: SourceConfig,
        cancelled: typing.Callable[[], bool] = lambda: False,
        logger: logging.Logger | None = None,
    ) -> IndexWriter:
        return cls(
            index,
            config.index_name,
            config.doc_kind,
            batch_size=config.batch_size,
            concurrency=config.write_concurrency,
            cancelled=cancelled,
            logger=logger,
        )

    def _upsert(self, documents: tuple[MappedDocument, ...]) -> list[ItemResult]:
        return self.index.bulk_upsert(
            self.index_name, self.doc_kind, [(d.doc_id, d.fields) for d in documents]
        )

    def _delete(self, doc_ids: tuple[DocumentId, ...]) -> list[ItemResult]:
        return self.index.bulk_delete(self.index_name, self.doc_kind, list(doc_ids))

    def _iter_batches(
        self, actions: typing.Iterable[Action]
    ) -> typing.Iterator[tuple[_Op, typing.Callable[[], list[ItemResult]]]]:
        documents: list[MappedDocument] = []
        doc_ids: list[DocumentId] = []
        for action in actions:
            match action:
                case UpsertAction():
                    documents.append(action.document)
                case DeleteAction():
                    doc_ids.append(action.doc_id)
                case IdleAction():
                    pass
                case _:
                    raise TypeError(f"Cannot write action of type {type(action).__name__}")
        self.logger.info("Writing %d upserts and %d deletions", len(documents), len(doc_ids))

        for doc_batch in itertools.batched(documents, self.batch_size):
            yield _Op.UPSERT, lambda b=doc_batch: self._upsert(b)
        for id_batch in itertools.batched(doc_ids, self.batch_size):
            yield _Op.DELETE, lambda b=id_batch: self._delete(b)

    def _send(self, batch: typing.Callable[[], list[ItemResult]]) -> list[ItemResult]:
        try:
            return batch()
        except ConnectionError as e:
            raise IndexUnreachable(f"Batch failed: {e}") from e

    def write(self, actions: typing.Iterable[Action]) -> WriteSummary:
        tally = _Tally(self.logger)
        cancelled = False
        pending: dict[Future[list[ItemResult]], _Op] = {}

        def collect(done: typing.Iterable[Future[list[ItemResult]]]) -> None:
            for future in done:
                tally.add(pending.pop(future), future.result())

        with ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="ldap-river-writer"
        ) as executor:
            try:
                for op, batch in self._iter_batches(actions):
                    if len(pending) >= self.concurrency:
                        done, _ = wait(pending, return_when=FIRST_COMPLETED)
                        collect(done)
                    if self.cancelled():
                        self.logger.info("Writing cancelled, not sending remaining batches")
                        cancelled = True
                        break
                    pending[executor.submit(self._send, batch)] = op
                collect(wait(pending).done)
            except BaseException:
                for future in pending:
                    future.cancel()
                raise
        return tally.summary(cancelled)
