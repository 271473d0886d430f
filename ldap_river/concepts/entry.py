"""
ldap_river.concepts.entry
~~~~~~~~~~~~~~~~~~~~~~~~~
"""
#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details

from __future__ import annotations

import dataclasses
import typing

from .types import (
    Attributes,
    AttributeValues,
    DN,
    DocumentId,
    Fields,
    LdapRecord,
    NormalizedAttributes,
)


def _canonicalize_to_list(value: AttributeValues) -> list[typing.Any]:
    """Canonicalize a value to a list.

    If value is a list, return it.  If it is None or an empty string,
    return an empty list.  Else, return value.
    """
    if isinstance(value, (list, tuple)):
        return list(value)
    if value == "" or value == b"" or value is None:
        return []
    # str, byte, int – or unknown. But good fallback.
    return [value]


def _to_str(value: typing.Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="backslashreplace")
    return str(value)


def normalize_attrs(attrs: Attributes) -> NormalizedAttributes:
    return {
        key: [_to_str(x) for x in _canonicalize_to_list(val)]
        for key, val in attrs.items()
    }


@dataclasses.dataclass(frozen=True)
class RawEntry:
    """An entry of a directory search result.

    :param dn: The DN of the entry, unique within a scan
    :param attrs: The attributes of the entry.  Every value will be
        canonicalized to a list of strings; attribute names are matched
        case-insensitively when looked up.
    """

    dn: DN
    attrs: NormalizedAttributes

    def __init__(self, dn: DN, attrs: Attributes) -> None:
        object.__setattr__(self, "dn", dn)
        object.__setattr__(self, "attrs", normalize_attrs(attrs))

    @classmethod
    def from_ldap_record(cls, record: LdapRecord) -> RawEntry:
        return cls(dn=record["dn"], attrs=record["attributes"])

    def get(self, attribute: str) -> list[str]:
        """Return the values of `attribute`, or an empty list."""
        try:
            return self.attrs[attribute]
        except KeyError:
            pass
        folded = attribute.casefold()
        for key, values in self.attrs.items():
            if key.casefold() == folded:
                return values
        return []

    def __getitem__(self, item: str) -> list[str]:
        return self.get(item)

    @property
    def object_classes(self) -> frozenset[str]:
        return frozenset(oc.casefold() for oc in self.get("objectClass"))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} dn={self.dn}>"


@dataclasses.dataclass(frozen=True)
class MappedDocument:
    """A document ready to be written to the index."""

    doc_id: DocumentId
    fields: Fields
    #: the DN of the entry this document was mapped from
    dn: DN | None = dataclasses.field(default=None, compare=False)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.doc_id}>"
