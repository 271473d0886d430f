#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.exc
~~~~~~~~~~~~~~
"""


class RiverError(Exception):
    pass


class ConfigError(RiverError, ValueError):
    pass


class UnknownSource(RiverError, KeyError):
    pass


class ScanAborted(RiverError, RuntimeError):
    """A scan could not be completed.

    The scheduler treats these as transient and retries on the next interval.
    """


class SourceUnreachable(ScanAborted):
    pass


class ProtocolError(ScanAborted):
    pass


class IndexUnreachable(ScanAborted):
    pass


class MissingIdentifier(RiverError, LookupError):
    def __init__(self, dn: str, attribute: str | None = None) -> None:
        self.dn = dn
        self.attribute = attribute
        what = f"attribute {attribute!r}" if attribute else "an RDN value"
        super().__init__(f"Entry {dn!r} has no {what} to derive an id from")


class ItemWriteFailed(RiverError):
    def __init__(self, doc_id: str, reason: str) -> None:
        self.doc_id = doc_id
        self.reason = reason
        super().__init__(f"Writing {doc_id!r} failed: {reason}")
