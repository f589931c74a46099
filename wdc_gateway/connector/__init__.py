"""
Connector Package

This package contains the client-side web data connector that the host
application drives through its lifecycle.

Modules:
- lifecycle: Phase-driven ConnectorLifecycle (setup, schema, get_data,
  post_process, teardown)
- credentials: Credential store, JWT expiry check and OAuth token acquisition
- tables: Table definitions, field mapping and dependency ordering
- runner: End-to-end session driver that honours table dependencies
"""

from .credentials import CredentialStore, OAuthTokenAcquirer
from .lifecycle import ConnectorLifecycle
from .runner import run_session
from .tables import Table, resolve_table_order

__all__ = [
    "ConnectorLifecycle",
    "CredentialStore",
    "OAuthTokenAcquirer",
    "Table",
    "resolve_table_order",
    "run_session",
]
