"""Database layer: declarative base, engine/session handling, ORM invariants."""

from payment_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from payment_kernel.db.engine import (
    begin_write,
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_config,
    init_engine_from_url,
    reset_engine,
    session_scope,
    translate_storage_errors,
)
from payment_kernel.db.invariants import (
    register_ledger_listeners,
    unregister_ledger_listeners,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "begin_write",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_config",
    "init_engine_from_url",
    "register_ledger_listeners",
    "reset_engine",
    "session_scope",
    "translate_storage_errors",
    "unregister_ledger_listeners",
]
