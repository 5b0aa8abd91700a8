# Overview: Row-locking helpers shared by the balance mutation protocol.

from __future__ import annotations

from sqlalchemy import event


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    populate_existing() makes the locked read overwrite whatever the identity
    map already holds, so the caller always sees the committed value it now
    owns rather than a copy loaded before the lock was taken.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; see install_sqlite_immediate_transactions.
    """
    return query.with_for_update().populate_existing()


def install_sqlite_immediate_transactions(engine) -> None:
    """
    Make every SQLite transaction start with BEGIN IMMEDIATE.

    SQLite has no row locks. BEGIN IMMEDIATE takes the database write lock
    when the transaction opens, so two writers are serialised before either
    reads a balance. pysqlite's own implicit BEGIN is disabled so that
    SQLAlchemy's begin event is the only place a transaction starts.
    """
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
