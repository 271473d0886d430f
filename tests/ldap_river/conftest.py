#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import logging
import typing as t

import ldap3
import pytest

from ldap_river.concepts import types
from ldap_river.config import SourceConfig
from ldap_river.index.memory import MemoryIndex
from tests.ldap_river import open_mock_connection

#: the directory the river was originally tested against
SAMPLE_DIRECTORY: list[tuple[str, dict[str, list[str]]]] = [
    ("ou=system", {
        "objectClass": ["organizationalUnit", "top"],
        "ou": ["system"],
    }),
    ("uid=admin,ou=system", {
        "objectClass": ["inetOrgPerson", "organizationalPerson", "person", "top"],
        "uid": ["admin"],
        "cn": ["system administrator"],
        "sn": ["administrator"],
        "userPassword": ["secret"],
    }),
    ("ou=users,ou=system", {
        "objectClass": ["organizationalUnit", "top"],
        "ou": ["users"],
    }),
    ("cn=The Person,ou=system", {
        "objectClass": ["person", "top"],
        "cn": ["The Person"],
        "description": ["this is a person"],
        "sn": ["Person"],
    }),
    ("uid=john,ou=users,ou=system", {
        "objectClass": ["uidObject", "person", "top"],
        "uid": ["john"],
        "cn": ["John Woo"],
        "sn": ["john"],
    }),
    ("uid=christopher,ou=users,ou=system", {
        "objectClass": ["uidObject", "person", "top"],
        "uid": ["christopher"],
        "cn": ["Christopher Nolan"],
        "sn": ["christopher"],
    }),
    ("uid=clint,ou=users,ou=system", {
        "objectClass": ["uidObject", "person", "top"],
        "uid": ["clint"],
        "cn": ["Clint Eastwood"],
        "sn": ["clint"],
    }),
    # Ignored entries
    ("ou=Computers,uid=clint,ou=users,ou=system", {
        "objectClass": ["organizationalUnit", "top"],
        "ou": ["computers"],
        "description": ["Computers for Clint"],
        "seeAlso": ["ou=Machines,uid=clint,ou=users,ou=system"],
    }),
    ("uid=clintref,ou=users,ou=system", {
        "objectClass": ["uidObject", "referral", "top"],
        "uid": ["clintref"],
        "ref": [
            "ldap://localhost:10389/uid=clint,ou=users,ou=system",
            "ldap://foo:10389/uid=clint,ou=users,ou=system",
            "ldap://bar:10389/uid=clint,ou=users,ou=system",
        ],
    }),
]


@pytest.fixture(scope="class")
def muted_river_logger():
    logging.getLogger("ldap_river").addHandler(logging.NullHandler())


@pytest.fixture
def ldap_server() -> ldap3.Server:
    """A mocked server holding :data:`SAMPLE_DIRECTORY`.

    The mocked DIT lives in the server object, so every connection to it
    sees the same entries.
    """
    server = ldap3.Server("fake_server")
    connection = open_mock_connection(server)
    for dn, attributes in SAMPLE_DIRECTORY:
        connection.strategy.add_entry(dn, attributes)
    return server


@pytest.fixture
def connection_factory(ldap_server) -> t.Callable[[SourceConfig], ldap3.Connection]:
    def connection_factory(config: SourceConfig) -> ldap3.Connection:
        return open_mock_connection(ldap_server)

    return connection_factory


@pytest.fixture
def conn(ldap_server) -> ldap3.Connection:
    return open_mock_connection(ldap_server)


@pytest.fixture(scope="session")
def sample_config() -> SourceConfig:
    """The configuration of the river's original test: ``sn`` becomes the id."""
    return SourceConfig(
        host="localhost",
        port=9389,
        use_ssl=False,
        bind_dn=types.DN("uid=admin,ou=system"),
        bind_pw="secret",
        base_dn=types.DN("ou=system"),
        search_filter="(objectClass=person)",
        attributes=("sn", "cn", "objectClass"),
        fields=("_id", "name", "groups"),
        poll_interval=60,
        index_name="ldapserver0",
        doc_kind="person",
        page_size=2,
    )


@pytest.fixture
def index() -> MemoryIndex:
    return MemoryIndex()
