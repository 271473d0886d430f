"""
ldap_river.index
~~~~~~~~~~~~~~~~
Implementations of the index collaborator.  The Elasticsearch one lives in
:mod:`ldap_river.index.es`.
"""
from .base import DocumentIndex, ItemResult, ItemStatus
from .memory import MemoryIndex

__all__ = ["DocumentIndex", "ItemResult", "ItemStatus", "MemoryIndex"]
