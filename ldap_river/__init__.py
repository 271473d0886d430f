"""
This package provides a standalone LDAP river: it keeps a document index
in sync with an LDAP directory by polling.  For more information on how to
execute it, run ``python -m ldap_river --help``.

One scan is separated into the following steps:

1. Page through the directory and drop referrals and containers
   (:mod:`ldap_river.sources.ldap`)
2. Map every entry to a document (:mod:`ldap_river.mapping`)
3. Diff the documents against the ids already in the index
   (:mod:`ldap_river.reconcile`)
4. Write the delta in batches (:mod:`ldap_river.writer`)

Scans are repeated per source by a :class:`~ldap_river.scheduler.Scheduler`,
which are kept in a :class:`~ldap_river.registry.SourceRegistry`.
"""
import logging

logger = logging.getLogger('ldap_river')
