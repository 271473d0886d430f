#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.sources.ldap
~~~~~~~~~~~~~~~~~~~~~~~

This module is responsible for fetching the entries to index from the LDAP.
Most prominently:

* :func:`establish_and_return_ldap_connection`
* :class:`DirectoryScanner`

"""
import ssl
import typing
from collections.abc import Mapping

import ldap3
from ldap3.core import results
from ldap3.core.exceptions import (
    LDAPBindError,
    LDAPCommunicationError,
    LDAPException,
    LDAPOperationResult,
    LDAPResponseTimeoutError,
    LDAPStartTLSError,
)

from .. import logger
from ..concepts.entry import RawEntry
from ..concepts.types import LdapRecord
from ..config import SourceConfig
from ..exc import ProtocolError, SourceUnreachable

#: RFC 2696 simple paged results control
PAGED_RESULTS_OID = "1.2.840.113556.1.4.319"

# result codes after which retrying later can help
_UNREACHABLE_RESULTS = frozenset([
    results.RESULT_INVALID_CREDENTIALS,
    results.RESULT_BUSY,
    results.RESULT_UNAVAILABLE,
])

_COMMUNICATION_ERRORS = (
    LDAPCommunicationError,
    LDAPResponseTimeoutError,
    LDAPBindError,
    LDAPStartTLSError,
)


def establish_and_return_ldap_connection(config: SourceConfig) -> ldap3.Connection:
    tls = None
    if config.ca_certs_file or config.ca_certs_data:
        tls = ldap3.Tls(
            ca_certs_file=config.ca_certs_file,
            ca_certs_data=config.ca_certs_data,
            validate=ssl.CERT_REQUIRED,
        )
    server = ldap3.Server(
        host=config.host,
        port=config.port,
        use_ssl=config.use_ssl,
        tls=tls,
        connect_timeout=config.timeout,
    )
    try:
        # referrals are dropped by the scanner, never chased
        return ldap3.Connection(
            server,
            user=config.bind_dn,
            password=config.bind_pw,
            auto_bind=True,
            auto_referrals=False,
            receive_timeout=config.timeout,
        )
    except LDAPException as e:
        raise SourceUnreachable(
            f"Could not connect to {config.host}:{config.port}: {e}"
        ) from e


def _paged_cookie(result: Mapping[str, typing.Any]) -> bytes | None:
    try:
        cookie = result["controls"][PAGED_RESULTS_OID]["value"]["cookie"]
    except (KeyError, TypeError):
        return None
    return cookie or None


def _check_result(code: int, description: str) -> None:
    if code == results.RESULT_SUCCESS:
        return
    if code in _UNREACHABLE_RESULTS:
        raise SourceUnreachable(f"Search failed: {description} ({code})")
    # a truncated result would make the reconciler delete the missing rest
    raise ProtocolError(f"Search failed: {description} ({code})")


class DirectoryScanner:
    """Pages through a search on the directory.

    Usage:

        >>> scanner = DirectoryScanner(connection, config)
        >>> for entry in scanner:
        ...     print(entry.dn)
        >>> scanner.skipped
        2

    The scanner is lazy: pages are only requested while the entries of the
    previous one are consumed.  It can only be iterated once.

    :param connection: a bound connection
    :param config: where and what to search
    :param attributes: the attributes to fetch.  ``objectClass`` is always
        added, as it is needed to drop containers and referrals.
    :param cancelled: checked before requesting another page
    """

    def __init__(
        self,
        connection: ldap3.Connection,
        config: SourceConfig,
        attributes: typing.Collection[str] | None = None,
        cancelled: typing.Callable[[], bool] = lambda: False,
    ) -> None:
        self.connection = connection
        self.config = config
        if attributes is None:
            attributes = config.attributes or [ldap3.ALL_ATTRIBUTES]
        if not any(a.casefold() == "objectclass" for a in attributes):
            attributes = [*attributes, "objectClass"]
        self.attributes = list(attributes)
        self.cancelled = cancelled
        self.pages = 0
        self.skipped = 0
        self.was_cancelled = False
        self._started = False

    def __iter__(self) -> typing.Iterator[RawEntry]:
        return self.iter_entries()

    def iter_entries(self) -> typing.Iterator[RawEntry]:
        if self._started:
            raise RuntimeError("A DirectoryScanner can only be iterated once")
        self._started = True

        cookie: bytes | None = None
        while True:
            response, cookie = self._fetch_page(cookie)
            self.pages += 1
            logger.debug("Fetched page %d with %d items", self.pages, len(response))
            for item in response:
                entry = self._to_entry(item)
                if entry is not None:
                    yield entry
            if not cookie:
                return
            if self.cancelled():
                logger.info("Scan of %s cancelled after %d pages",
                            self.config.base_dn, self.pages)
                self.was_cancelled = True
                return

    def _fetch_page(
        self, cookie: bytes | None
    ) -> tuple[list[LdapRecord], bytes | None]:
        kwargs: dict[str, typing.Any] = {}
        if self.config.page_size:
            kwargs.update(paged_size=self.config.page_size, paged_cookie=cookie)
        try:
            self.connection.search(
                search_base=self.config.base_dn,
                search_filter=self.config.search_filter,
                search_scope=self.config.scope.value,
                attributes=self.attributes,
                **kwargs,
            )
        except _COMMUNICATION_ERRORS as e:
            raise SourceUnreachable(f"Lost connection during search: {e}") from e
        except LDAPOperationResult as e:
            _check_result(e.result, e.description)
            raise ProtocolError(f"Search failed: {e}") from e
        except LDAPException as e:
            raise ProtocolError(f"Search failed: {e}") from e

        result = self.connection.result
        if not isinstance(result, Mapping) or "result" not in result:
            raise ProtocolError(f"Malformed search result: {result!r}")
        if result["result"] == results.RESULT_REFERRAL:
            # the search base itself lives elsewhere
            raise ProtocolError(
                f"Search base {self.config.base_dn} is a referral to"
                f" {result.get('referrals')}, not following it"
            )
        _check_result(result["result"], result.get("description", ""))

        response = self.connection.response or []
        if not isinstance(response, list):
            raise ProtocolError(f"Malformed search response: {response!r}")
        return response, _paged_cookie(result) if self.config.page_size else None

    def _to_entry(self, item: typing.Any) -> RawEntry | None:
        if not isinstance(item, Mapping):
            raise ProtocolError(f"Malformed search response item: {item!r}")
        if item.get("type") == "searchResRef":
            logger.debug("Dropping continuation reference %s", item.get("uri"))
            self.skipped += 1
            return None
        if not isinstance(item.get("dn"), str) or not isinstance(item.get("attributes"), Mapping):
            raise ProtocolError(f"Malformed search response item: {item!r}")

        entry = RawEntry.from_ldap_record(item)
        if entry.object_classes & self.config.referral_classes:
            logger.debug("Dropping referral entry %s", entry.dn)
            self.skipped += 1
            return None
        if entry.object_classes & self.config.container_classes:
            logger.debug("Dropping container entry %s", entry.dn)
            self.skipped += 1
            return None
        return entry
