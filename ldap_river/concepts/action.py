#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.concepts.action
~~~~~~~~~~~~~~~~~~~~~~~~~~
Actions (Upsert/Delete/Nothing)
"""
import dataclasses
import logging
import typing as t

from . import types
from .entry import MappedDocument


@dataclasses.dataclass
class Action:
    """Base class for the different actions the writer can execute on an individual document.

    An action in the sense of the index export is something which

    * refers to a document (i.e. something with an id)
    * can be executed (provided an index).
    """

    doc_id: types.DocumentId
    _: dataclasses.KW_ONLY  # pushes `logger=` back in generated `__init__`
    logger: logging.Logger = dataclasses.field(
        default_factory=lambda: logging.getLogger("ldap_river.action"),
        repr=False,
        compare=False,
    )

    @t.override
    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.doc_id}>"


class UpsertAction(Action):
    """Create or replace a document"""

    document: MappedDocument

    @t.override
    def __init__(self, document: MappedDocument) -> None:
        super().__init__(doc_id=document.doc_id)
        self.document = document


class DeleteAction(Action):
    """Delete a document whose entry disappeared from the directory."""


class IdleAction(Action):
    """Do nothing."""
