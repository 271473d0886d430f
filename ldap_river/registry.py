#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.registry
~~~~~~~~~~~~~~~~~~~
"""
from __future__ import annotations

import functools
import logging
import threading
import typing

from . import logger
from .concepts.outcome import SyncOutcome
from .config import SourceConfig
from .exc import ConfigError, UnknownSource
from .index.base import DocumentIndex
from .scheduler import Scheduler, SourceStatus
from .sources.ldap import establish_and_return_ldap_connection
from .sync import ConnectionFactory, sync_source


class _Source(typing.NamedTuple):
    config: SourceConfig
    scheduler: Scheduler


class SourceRegistry:
    """All sources of this process, keyed by their id.

    Each source owns one :class:`~ldap_river.scheduler.Scheduler`.  Adding a
    source starts its scheduler, removing it stops the scheduler.  Nothing
    but the index is shared between sources.

    Usage:

        >>> registry = SourceRegistry(MemoryIndex())
        >>> registry.add_source("ldapserver0", config)
        >>> registry.trigger_scan_now("ldapserver0")
        >>> registry.get_source_status("ldapserver0").last_outcome
        >>> registry.stop_all()
    """

    def __init__(
        self,
        index: DocumentIndex,
        connection_factory: ConnectionFactory = establish_and_return_ldap_connection,
    ) -> None:
        self.index = index
        self.connection_factory = connection_factory
        self._lock = threading.Lock()
        self._sources: dict[str, _Source] = {}

    def __contains__(self, source_id: object) -> bool:
        with self._lock:
            return source_id in self._sources

    @property
    def source_ids(self) -> list[str]:
        with self._lock:
            return list(self._sources)

    def _get(self, source_id: str) -> _Source:
        with self._lock:
            try:
                return self._sources[source_id]
            except KeyError:
                raise UnknownSource(source_id) from None

    def create_scheduler(self, source_id: str, config: SourceConfig) -> Scheduler:
        source_logger = logging.getLogger(f"ldap_river.source.{source_id}")
        scan = functools.partial(
            self._scan, config, logger=source_logger,
        )
        return Scheduler(source_id, scan, config.poll_interval, logger=source_logger)

    def _scan(self, config: SourceConfig, cancelled: typing.Callable[[], bool],
              logger: logging.Logger) -> SyncOutcome:
        return sync_source(
            config,
            self.index,
            connection_factory=self.connection_factory,
            cancelled=cancelled,
            logger=logger,
        )

    def add_source(self, source_id: str, config: SourceConfig) -> Scheduler:
        config.validate()
        with self._lock:
            if source_id in self._sources:
                raise ConfigError(f"Source {source_id!r} is already registered")
            scheduler = self.create_scheduler(source_id, config)
            self._sources[source_id] = _Source(config, scheduler)
        logger.info("Added source %s (%s:%s, %s)",
                    source_id, config.host, config.port, config.base_dn)
        scheduler.start()
        return scheduler

    def remove_source(self, source_id: str, wait: bool = True) -> None:
        with self._lock:
            try:
                source = self._sources.pop(source_id)
            except KeyError:
                raise UnknownSource(source_id) from None
        source.scheduler.stop(wait=wait)
        logger.info("Removed source %s", source_id)

    def apply(self, configs: typing.Mapping[str, SourceConfig]) -> None:
        """Add, remove and replace sources so that exactly `configs` are registered."""
        with self._lock:
            current = {sid: s.config for sid, s in self._sources.items()}
        for source_id in current.keys() - configs.keys():
            self.remove_source(source_id)
        for source_id, config in configs.items():
            if source_id in current and current[source_id] == config:
                continue
            if source_id in current:
                logger.info("Configuration of %s changed, restarting it", source_id)
                self.remove_source(source_id)
            self.add_source(source_id, config)

    def trigger_scan_now(self, source_id: str) -> bool:
        """Scan `source_id` without waiting for the poll interval."""
        return self._get(source_id).scheduler.trigger_now()

    def get_source_status(self, source_id: str) -> SourceStatus:
        return self._get(source_id).scheduler.status()

    def get_scheduler(self, source_id: str) -> Scheduler:
        return self._get(source_id).scheduler

    def stop_all(self, wait: bool = True) -> None:
        with self._lock:
            sources, self._sources = self._sources, {}
        for source in sources.values():
            source.scheduler.stop(wait=False)
        if wait:
            for source in sources.values():
                source.scheduler.stop(wait=True)
