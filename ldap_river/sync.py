#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.sync
~~~~~~~~~~~~~~~
One full scan of a source: fetch, map, reconcile, write.
"""
import logging
import time
import typing
from datetime import datetime, timedelta, timezone

import ldap3

from . import logger as river_logger
from .concepts.outcome import SyncOutcome
from .config import SourceConfig
from .index.base import DocumentIndex
from .reconcile import Reconciler
from .sources.ldap import DirectoryScanner, establish_and_return_ldap_connection
from .writer import IndexWriter

ConnectionFactory = typing.Callable[[SourceConfig], ldap3.Connection]


def sync_source(
    config: SourceConfig,
    index: DocumentIndex,
    connection_factory: ConnectionFactory = establish_and_return_ldap_connection,
    cancelled: typing.Callable[[], bool] = lambda: False,
    logger: logging.Logger = river_logger,
) -> SyncOutcome:
    """Bring the documents of `config` in `index` up to date.

    If `cancelled` turns true while the directory is scanned, nothing is
    written.  Per-entry and per-document errors end up in the outcome,
    :class:`~ldap_river.exc.ScanAborted` errors are raised.
    """
    started_at = datetime.now(timezone.utc)
    start = time.monotonic()
    mapping = config.attribute_mapping()
    reconciler = Reconciler(mapping, config.sync_mode)

    connection = connection_factory(config)
    try:
        scanner = DirectoryScanner(
            connection,
            config,
            attributes=mapping.requested_attributes or None,
            cancelled=cancelled,
        )
        scan = reconciler.collect(scanner)
        scan.skipped = scanner.skipped
        scan.cancelled = scanner.was_cancelled
    finally:
        connection.unbind()
    logger.info("Fetched %d documents from %d pages of %s (%d skipped)",
                len(scan), scanner.pages, config.base_dn, scan.skipped)

    if scan.cancelled:
        return SyncOutcome(
            started_at=started_at,
            duration=timedelta(seconds=time.monotonic() - start),
            skipped=scan.skipped,
            failures=tuple(scan.failures),
            cancelled=True,
        )

    existing_ids = index.list_document_ids(config.index_name, config.doc_kind)
    logger.info("Found %d documents in %s/%s",
                len(existing_ids), config.index_name, config.doc_kind)
    actions = reconciler.reconcile(scan, existing_ids)

    writer = IndexWriter.from_config(index, config, cancelled=cancelled, logger=logger)
    summary = writer.write(actions.values())

    return SyncOutcome(
        started_at=started_at,
        duration=timedelta(seconds=time.monotonic() - start),
        upserts=summary.upserts,
        changed=summary.changed,
        deletions=summary.deletions,
        skipped=scan.skipped,
        failures=(*scan.failures, *summary.failures),
        cancelled=summary.cancelled,
    )
