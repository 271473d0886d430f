#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.reconcile
~~~~~~~~~~~~~~~~~~~~
"""
import typing

from . import logger
from .concepts import action, types
from .concepts.entry import MappedDocument, RawEntry
from .concepts.outcome import ItemFailure, ScanResult
from .config import SyncMode
from .exc import MissingIdentifier
from .mapping import AttributeMapping


def diff_document(
    doc_id: types.DocumentId,
    existing: bool,
    seen: MappedDocument | None,
    mode: SyncMode,
) -> action.Action:
    """Determines an action to take for a document id.

    :param doc_id: the id in question
    :param existing: whether the id is currently in the index
    :param seen: the document mapped from the current scan, if any
    :param mode: whether vanished documents get deleted
    """
    match (existing, seen, mode):
        case (False, None, _):
            raise ValueError("cannot diff a document which exists nowhere")
        case (_, MappedDocument(doc_id=other), _) if other != doc_id:
            raise TypeError("Cannot diff a document under a different id")
        case (_, MappedDocument() as doc, _):
            return action.UpsertAction(document=doc)
        case (True, None, SyncMode.STRICT):
            return action.DeleteAction(doc_id=doc_id)
        case (True, None, SyncMode.APPEND_ONLY):
            return action.IdleAction(doc_id=doc_id)
    # see https://github.com/python/mypy/issues/12534
    raise AssertionError  # pragma: no cover


def iter_zip_dicts[
    TKey, TVal1, TVal2
](
    d1: dict[TKey, TVal1],
    d2: dict[TKey, TVal2],
) -> typing.Iterator[tuple[TKey, tuple[TVal1 | None, TVal2 | None]]]:
    for k in d1.keys() | d2.keys():
        yield k, (d1.get(k), d2.get(k))


def bulk_diff_documents(
    existing_ids: typing.Iterable[types.DocumentId],
    seen: typing.Mapping[types.DocumentId, MappedDocument],
    mode: SyncMode,
) -> dict[types.DocumentId, action.Action]:
    """Compute exactly one action per document id.

    Every seen document is upserted.  Ids only present in the index are
    deleted in strict mode and left alone in append-only mode.
    """
    return {
        doc_id: diff_document(doc_id, bool(present), doc, mode)
        for doc_id, (present, doc) in iter_zip_dicts(
            {i: True for i in existing_ids}, dict(seen)
        )
    }


class Reconciler:
    """Turns the entries of a scan into actions against the index.

    Usage:

        >>> reconciler = Reconciler(mapping, SyncMode.STRICT)
        >>> scan = reconciler.collect(scanner)
        >>> actions = reconciler.reconcile(scan, index.list_document_ids(name, kind))

    :param mapping: how entries become documents
    :param mode: see :class:`~ldap_river.config.SyncMode`
    """

    def __init__(self, mapping: AttributeMapping, mode: SyncMode = SyncMode.STRICT) -> None:
        self.mapping = mapping
        self.mode = mode

    def collect(self, entries: typing.Iterable[RawEntry]) -> ScanResult:
        """Map every entry, pulling them one at a time.

        Entries without an id are recorded as failures.  If an id shows
        up twice, the later entry wins.
        """
        scan = ScanResult()
        for entry in entries:
            try:
                doc = self.mapping.map_entry(entry)
            except MissingIdentifier as e:
                logger.warning("Skipping entry: %s", e)
                scan.failures.append(ItemFailure(id=entry.dn, cause=e))
                continue
            if (previous := scan.documents.get(doc.doc_id)) is not None:
                logger.warning(
                    "Document id %s seen twice (%s, %s), keeping the latter",
                    doc.doc_id, previous.dn, doc.dn,
                )
            scan.documents[doc.doc_id] = doc
        logger.info("Gathered %d documents, %d failures", len(scan), len(scan.failures))
        return scan

    def reconcile(
        self, scan: ScanResult, existing_ids: typing.Iterable[types.DocumentId]
    ) -> dict[types.DocumentId, action.Action]:
        mode = self.mode
        if scan.cancelled and mode is SyncMode.STRICT:
            # unseen is not the same as vanished if the scan was cut short
            logger.info("Scan was cancelled, not deleting anything")
            mode = SyncMode.APPEND_ONLY
        return bulk_diff_documents(existing_ids, scan.documents, mode)
