#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.config
~~~~~~~~~~~~~~~~~
"""
from __future__ import annotations

import enum
import json
import os
import typing
from typing import NamedTuple

import jsonschema
import ldap3

from . import logger
from .concepts import types
from .exc import ConfigError
from .mapping import AttributeMapping


class SearchScope(enum.Enum):
    BASE = ldap3.BASE
    ONE_LEVEL = ldap3.LEVEL
    SUBTREE = ldap3.SUBTREE

    @classmethod
    def parse(cls, value: str) -> SearchScope:
        try:
            return _SCOPE_ALIASES[value.strip().lower()]
        except KeyError:
            raise ConfigError(f"Unknown search scope {value!r}") from None


# the river defaulted to a subtree search for an empty scope
_SCOPE_ALIASES = {
    "": SearchScope.SUBTREE,
    "sub": SearchScope.SUBTREE,
    "subtree": SearchScope.SUBTREE,
    "one": SearchScope.ONE_LEVEL,
    "onelevel": SearchScope.ONE_LEVEL,
    "one-level": SearchScope.ONE_LEVEL,
    "level": SearchScope.ONE_LEVEL,
    "base": SearchScope.BASE,
    "object": SearchScope.BASE,
}


class SyncMode(enum.Enum):
    #: delete documents whose entry has disappeared
    STRICT = "strict"
    #: never delete, e.g. if the filter intentionally returns a subset
    APPEND_ONLY = "append-only"

    @classmethod
    def parse(cls, value: str) -> SyncMode:
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ConfigError(f"Unknown sync mode {value!r}") from None


DEFAULT_CONTAINER_CLASSES = frozenset([
    "organizationalunit", "organization", "container", "domain",
    "dcobject", "country", "locality", "builtindomain",
])
DEFAULT_REFERRAL_CLASSES = frozenset(["referral"])


class SourceConfig(NamedTuple):
    # LDAP-related
    host: str
    port: int
    use_ssl: bool
    bind_dn: types.DN | None
    bind_pw: str | None
    base_dn: types.DN
    search_filter: str
    # Index-related
    index_name: str
    doc_kind: str
    ca_certs_file: str | None = None
    ca_certs_data: str | None = None
    scope: SearchScope = SearchScope.SUBTREE
    #: attributes to fetch, mapped pairwise to `fields`
    attributes: tuple[str, ...] = ()
    fields: tuple[str, ...] = ()
    #: the attribute holding the document id; `None` means the RDN value
    id_attribute: str | None = None
    #: seconds between the end of a scan and the start of the next one
    poll_interval: float = 60.0
    sync_mode: SyncMode = SyncMode.STRICT
    page_size: int = 500
    batch_size: int = 500
    write_concurrency: int = 1
    timeout: float = 10.0
    container_classes: frozenset[str] = DEFAULT_CONTAINER_CLASSES
    referral_classes: frozenset[str] = DEFAULT_REFERRAL_CLASSES

    def validate(self) -> SourceConfig:
        if self.poll_interval < 0:
            raise ConfigError("poll_interval must not be negative")
        if self.page_size < 0:
            raise ConfigError("page_size must not be negative")
        if self.batch_size < 1:
            raise ConfigError("batch_size must be positive")
        if self.write_concurrency < 1:
            raise ConfigError("write_concurrency must be positive")
        self.attribute_mapping()
        return self

    def attribute_mapping(self) -> AttributeMapping:
        return AttributeMapping.from_lists(
            self.attributes, self.fields, id_attribute=self.id_attribute
        )


def parse_bool(value: str) -> bool:
    match value.strip().lower():
        case "y" | "yes" | "t" | "true" | "on" | "1":
            return True
        case "n" | "no" | "f" | "false" | "off" | "0":
            return False
    raise ConfigError(f"invalid truth value {value!r}")


def parse_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


# how to convert an environment string into the field's type
_CONVERTERS: dict[str, typing.Callable[[str], typing.Any]] = {
    "port": int,
    "use_ssl": parse_bool,
    "bind_dn": types.DN,
    "base_dn": types.DN,
    "scope": SearchScope.parse,
    "attributes": parse_list,
    "fields": parse_list,
    "poll_interval": float,
    "sync_mode": SyncMode.parse,
    "page_size": int,
    "batch_size": int,
    "write_concurrency": int,
    "timeout": float,
    "container_classes": lambda v: frozenset(c.lower() for c in parse_list(v)),
    "referral_classes": lambda v: frozenset(c.lower() for c in parse_list(v)),
}


def _from_environ_or_defaults(key: str, defaults: dict[str, str | None]) -> str | None:
    try:
        return os.environ[f'LDAP_RIVER_{key.upper()}']
    except KeyError as e:
        if key not in defaults:
            raise KeyError(f'LDAP_RIVER_{key.upper()}') from e
        return defaults[key]


def get_config(**defaults: str | None) -> SourceConfig:
    """Fetch the config from the environment, filling in defaults as specified.

    Values are converted in accordance to the types hints of :class:`SourceConfig`.
    Fields with a default in :class:`SourceConfig` need not be given at all.

    The environment variables need to be of the format ``LDAP_RIVER_$VAR``, e.g.
    ``LDAP_RIVER_PORT``.  Lists are comma separated.
    """
    kwargs: dict[str, typing.Any] = {}
    for key in SourceConfig._fields:
        if key not in SourceConfig._field_defaults or key in defaults:
            str_value = _from_environ_or_defaults(key, defaults)
        else:
            str_value = os.environ.get(f'LDAP_RIVER_{key.upper()}')
            if str_value is None:
                continue
        if str_value is None:
            kwargs[key] = None
            continue
        convert = _CONVERTERS.get(key, str)
        try:
            kwargs[key] = convert(str_value)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {key}: {str_value!r}") from e

    return SourceConfig(**kwargs).validate()


def get_config_or_exit(**defaults: str | None) -> SourceConfig:
    """See :func:`get_config`"""
    try:
        return get_config(**defaults)
    except KeyError as exc:
        logger.critical("%s not set, quitting", exc.args[0])
        exit(1)
    except ConfigError as exc:
        logger.critical("Invalid configuration: %s", exc)
        exit(1)


#: The sources file reuses the shape of the river's `_meta` document.
SOURCES_SCHEMA = {
    "type": "object",
    "properties": {
        "sources": {
            "type": "object",
            "additionalProperties": {"$ref": "#/definitions/source"},
        },
    },
    "required": ["sources"],
    "definitions": {
        "source": {
            "type": "object",
            "properties": {
                "type": {"const": "ldap"},
                "ldap": {
                    "type": "object",
                    "properties": {
                        "host": {"type": "string"},
                        "port": {"type": "integer", "minimum": 1, "maximum": 65535},
                        "ssl": {"type": "boolean"},
                        "caCertsFile": {"type": "string"},
                        "userDn": {"type": "string"},
                        "credentials": {"type": "string"},
                        "baseDn": {"type": "string"},
                        "filter": {"type": "string"},
                        "scope": {"type": "string"},
                        "attributes": {"type": "array", "items": {"type": "string"}},
                        "fields": {"type": "array", "items": {"type": "string"}},
                        "idAttribute": {"type": "string"},
                        "poll": {"type": "integer", "minimum": 0},
                        "mode": {"enum": [m.value for m in SyncMode]},
                        "pageSize": {"type": "integer", "minimum": 0},
                        "timeout": {"type": "number", "exclusiveMinimum": 0},
                    },
                    "required": ["host", "baseDn"],
                    "additionalProperties": False,
                },
                "index": {
                    "type": "object",
                    "properties": {
                        "index": {"type": "string"},
                        "type": {"type": "string"},
                        "bulkSize": {"type": "integer", "minimum": 1},
                        "concurrency": {"type": "integer", "minimum": 1},
                    },
                    "required": ["index"],
                    "additionalProperties": False,
                },
            },
            "required": ["ldap", "index"],
        },
    },
}


def source_config_from_meta(source_id: str, meta: dict[str, typing.Any]) -> SourceConfig:
    """Build a :class:`SourceConfig` from a single ``{"ldap": …, "index": …}`` dict.

    ``poll`` is given in milliseconds, as it was in the river's `_meta` document.
    Missing index type defaults to the source id.
    """
    ldap, index = meta["ldap"], meta["index"]
    use_ssl = ldap.get("ssl", False)
    config = SourceConfig(
        host=ldap["host"],
        port=ldap.get("port", 636 if use_ssl else 389),
        use_ssl=use_ssl,
        ca_certs_file=ldap.get("caCertsFile"),
        bind_dn=types.DN(ldap["userDn"]) if "userDn" in ldap else None,
        bind_pw=ldap.get("credentials"),
        base_dn=types.DN(ldap["baseDn"]),
        scope=SearchScope.parse(ldap.get("scope", "")),
        search_filter=ldap.get("filter", "(objectClass=*)"),
        attributes=tuple(ldap.get("attributes", ())),
        fields=tuple(ldap.get("fields", ())),
        id_attribute=ldap.get("idAttribute"),
        poll_interval=ldap.get("poll", 60000) / 1000,
        sync_mode=SyncMode.parse(ldap.get("mode", SyncMode.STRICT.value)),
        page_size=ldap.get("pageSize", 500),
        timeout=ldap.get("timeout", 10.0),
        index_name=index["index"],
        doc_kind=index.get("type", source_id),
        batch_size=index.get("bulkSize", 500),
        write_concurrency=index.get("concurrency", 1),
    )
    return config.validate()


def parse_sources(obj: typing.Any) -> dict[str, SourceConfig]:
    try:
        jsonschema.validate(obj, SOURCES_SCHEMA)
    except jsonschema.ValidationError as e:
        raise ConfigError(f"Invalid sources configuration: {e.message}") from e
    return {
        source_id: source_config_from_meta(source_id, meta)
        for source_id, meta in obj["sources"].items()
    }


def load_sources(path: str | os.PathLike[str]) -> dict[str, SourceConfig]:
    """Read the sources file at `path`, see :data:`SOURCES_SCHEMA`."""
    try:
        with open(path, encoding="utf-8") as f:
            obj = json.load(f)
    except ValueError as e:
        raise ConfigError(f"{path} is not valid JSON: {e}") from e
    return parse_sources(obj)
