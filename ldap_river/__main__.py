#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.__main__
~~~~~~~~~~~~~~~~~~~
"""
import argparse
import logging
import os
import signal
import threading

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

from ldap_river import logger
from .concepts.outcome import SyncOutcome
from .config import SourceConfig, get_config_or_exit, load_sources
from .exc import ConfigError, ScanAborted
from .index.base import DocumentIndex
from .index.es import ElasticsearchIndex
from .index.memory import MemoryIndex
from .registry import SourceRegistry
from .sources.ldap import establish_and_return_ldap_connection
from .sync import ConnectionFactory, sync_source

DEFAULT_SOURCE_ID = "default"


def init_sentry() -> None:
    if dsn := os.getenv('LDAP_RIVER_SENTRY_DSN'):
        logging_integration = LoggingIntegration(
            level=logging.INFO,  # INFO / WARN create breadcrumbs
            event_level=logging.ERROR,  # errors and above create events
        )
        sentry_sdk.init(dsn=dsn, integrations=[logging_integration])


def get_sources(sources_file: str | None) -> dict[str, SourceConfig]:
    if sources_file is None:
        logger.info("No sources file given, reading a single source from the environment")
        config = get_config_or_exit(
            port='389', use_ssl='False', bind_dn=None, bind_pw=None,
            search_filter='(objectClass=*)', doc_kind=DEFAULT_SOURCE_ID,
        )
        return {DEFAULT_SOURCE_ID: config}
    try:
        return load_sources(sources_file)
    except (ConfigError, OSError) as e:
        logger.critical("Could not load sources from %s: %s", sources_file, e)
        exit(1)


def get_index(use_memory_index: bool) -> DocumentIndex:
    if use_memory_index:
        logger.warning("Using an in-memory index, nothing will be persisted")
        return MemoryIndex()
    try:
        url = os.environ['LDAP_RIVER_INDEX_URL']
    except KeyError:
        logger.critical('LDAP_RIVER_INDEX_URL not set')
        exit(1)
    return ElasticsearchIndex.from_url(url)


def sync_once(
    sources: dict[str, SourceConfig],
    index: DocumentIndex,
    connection_factory: ConnectionFactory = establish_and_return_ldap_connection,
) -> bool:
    """Scan every source once, one after another.

    :returns: whether every source was synced without failures.
    """
    success = True
    for source_id, config in sources.items():
        try:
            outcome: SyncOutcome = sync_source(config, index, connection_factory=connection_factory)
        except ScanAborted as e:
            logger.error("Scan of %s failed: %s", source_id, e)
            success = False
            continue
        logger.info("Scan of %s finished: %s", source_id, outcome)
        success &= not outcome.failures
    return success


def sync_forever(sources: dict[str, SourceConfig], index: DocumentIndex) -> None:
    registry = SourceRegistry(index)
    stopped = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stopped.set())
    try:
        registry.apply(sources)
        stopped.wait()
    finally:
        logger.info("Stopping all sources, waiting for running scans")
        registry.stop_all()


NAME_LEVEL_MAPPING: dict[str, int] = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
    'critical': logging.CRITICAL,
}


parser = argparse.ArgumentParser(description="LDAP river: sync LDAP entries into a search index")
parser.add_argument('-s', '--sources', dest='sources', metavar='FILE', default=None,
                    help="JSON file describing the sources. "
                         "Without it, a single source is read from LDAP_RIVER_* variables")
parser.add_argument('--memory-index', dest='memory_index', action='store_true', default=False,
                    help="Write to an in-memory index instead of LDAP_RIVER_INDEX_URL")
parser.add_argument('--once', dest='once', action='store_true', default=False,
                    help="Scan every source once and exit")
parser.add_argument("-l", "--log", dest='loglevel', type=str,
                    choices=list(NAME_LEVEL_MAPPING.keys()), default='info',
                    help="Set the loglevel")
parser.add_argument("-d", "--debug", dest='loglevel', action='store_const',
                    const='debug', help="Short for --log=debug")


def main() -> int:
    args = parser.parse_args()

    add_stdout_logging(logger, level=NAME_LEVEL_MAPPING[args.loglevel])
    init_sentry()

    sources = get_sources(args.sources)
    index = get_index(args.memory_index)
    try:
        if args.once:
            return 0 if sync_once(sources, index) else 1
        sync_forever(sources, index)
    except KeyboardInterrupt:
        logger.fatal("SIGINT received, stopping.")
        return 1
    return 0


def add_stdout_logging(logger: logging.Logger, level: int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    fmt = logging.Formatter("%(levelname)s %(asctime)s %(name)s %(message)s")
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    logger.setLevel(level)


if __name__ == '__main__':
    exit(main())
