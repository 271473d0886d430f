#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import typing
from typing import Union

AttributeValues = Union[
    str, bytes, int,
    typing.Collection[str], typing.Collection[bytes], typing.Collection[int],
    None
]
Attributes = typing.Mapping[str, AttributeValues]
# Depending on the LDAP scheme, attributes may be single-valued or multi-valued
# (e.g. `mail`, `memberOf`, `objectClass` as opposed to `uid`).
# Entries read from the directory are canonicalized to a list of strings.
NormalizedAttributes = dict[str, list[str]]

#: An LDAP Distinguished Name
DN = typing.NewType('DN', str)

#: The id of a document in the index
DocumentId = typing.NewType('DocumentId', str)

FieldValue = str | list[str]
Fields = dict[str, FieldValue]


# an ldap record, as represented by the `ldap3` response dict.
# `attributes` is an `ldap3.utils.ciDict.CaseInsensitiveDict`, not a dict.
# see https://ldap3.readthedocs.io/en/latest/connection.html#responses
class LdapRecord(typing.TypedDict):
    dn: DN
    attributes: Attributes
    raw_attributes: typing.Mapping[str, list[bytes]]
    type: str
