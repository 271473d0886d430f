#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.mapping
~~~~~~~~~~~~~~~~~~
Converts :class:`RawEntry` instances to :class:`MappedDocument` instances.
"""
from __future__ import annotations

import dataclasses
import typing

from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import parse_dn

from .concepts.entry import MappedDocument, RawEntry
from .concepts.types import DN, DocumentId, Fields
from .exc import ConfigError, MissingIdentifier

#: mapping an attribute to this field makes it the identifier attribute
ID_FIELD = "_id"


def rdn_value(dn: DN) -> str | None:
    """Return the value of the leftmost RDN of `dn`."""
    try:
        components = parse_dn(dn)
    except LDAPInvalidDnError:
        return None
    if not components:
        return None
    _attr, value, _sep = components[0]
    return value or None


class MappingRule(typing.NamedTuple):
    attribute: str
    field: str


@dataclasses.dataclass(frozen=True)
class AttributeMapping:
    """Which attributes end up in which document field.

    Usage:

        >>> mapping = AttributeMapping.from_lists(
        ...     attributes=["sn", "cn", "objectClass"],
        ...     fields=["_id", "name", "groups"],
        ... )
        >>> mapping.id_attribute
        'sn'
        >>> mapping.map_entry(RawEntry(DN("uid=clint,ou=users"), {
        ...     "sn": "clint", "cn": "Clint Eastwood", "objectClass": ["top", "person"]
        ... }))
        <MappedDocument clint>
    """

    rules: tuple[MappingRule, ...]
    id_attribute: str | None = None
    #: no attributes configured: every fetched attribute is kept as is
    keep_all: bool = False

    @classmethod
    def from_lists(
        cls,
        attributes: typing.Sequence[str],
        fields: typing.Sequence[str] = (),
        id_attribute: str | None = None,
    ) -> AttributeMapping:
        """Build the mapping from two parallel lists.

        :param attributes: the attributes to fetch
        :param fields: the field every attribute is renamed to.  If empty,
            fields are named like their attribute.
        :param id_attribute: the attribute the document id is taken from.
            An attribute mapped to ``_id`` serves the same purpose.
        """
        if not fields:
            fields = attributes
        if len(fields) != len(attributes):
            raise ConfigError(
                f"Got {len(attributes)} attributes but {len(fields)} fields"
            )
        rules = []
        for attribute, field in zip(attributes, fields):
            if not attribute or not field:
                raise ConfigError("Attribute and field names must not be empty")
            if field != ID_FIELD:
                rules.append(MappingRule(attribute, field))
                continue
            if id_attribute is not None and id_attribute.casefold() != attribute.casefold():
                raise ConfigError(
                    f"Both {id_attribute!r} and {attribute!r} are given as id attribute"
                )
            id_attribute = attribute
        return cls(rules=tuple(rules), id_attribute=id_attribute, keep_all=not attributes)

    @property
    def requested_attributes(self) -> list[str]:
        """The attributes a search has to fetch for this mapping.

        Empty if every attribute is kept, meaning all attributes.
        """
        if self.keep_all:
            return []
        requested: dict[str, str] = {}
        for attribute in [*(r.attribute for r in self.rules), self.id_attribute]:
            if attribute is not None:
                requested.setdefault(attribute.casefold(), attribute)
        return list(requested.values())

    def document_id(self, entry: RawEntry) -> DocumentId:
        if self.id_attribute is None:
            value = rdn_value(entry.dn)
        else:
            value = next(iter(entry.get(self.id_attribute)), None)
        if not value:
            raise MissingIdentifier(entry.dn, self.id_attribute)
        return DocumentId(value)

    def map_entry(self, entry: RawEntry) -> MappedDocument:
        """Map an entry to a document.

        Missing attributes are left out.  Values of attributes sharing a
        field are joined in rule order, without duplicates.

        :raises MissingIdentifier: if no id can be derived
        """
        doc_id = self.document_id(entry)
        collected: dict[str, list[str]] = {}
        rules = [MappingRule(a, a) for a in entry.attrs] if self.keep_all else self.rules
        for attribute, field in rules:
            values = entry.get(attribute)
            if not values:
                continue
            target = collected.setdefault(field, [])
            for value in values:
                if value not in target:
                    target.append(value)

        fields: Fields = {
            field: values[0] if len(values) == 1 else values
            for field, values in collected.items()
        }
        return MappedDocument(doc_id=doc_id, fields=fields, dn=entry.dn)
