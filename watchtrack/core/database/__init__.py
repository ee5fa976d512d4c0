"""Cassandra connection and schema setup."""

from watchtrack.core.database.async_cassandra import (
    AsyncCassandraConnection,
    get_async_cassandra_session,
    init_async_cassandra,
    init_async_tables,
    shutdown_async_cassandra,
)


__all__ = [
    "AsyncCassandraConnection",
    "get_async_cassandra_session",
    "init_async_cassandra",
    "init_async_tables",
    "shutdown_async_cassandra",
]
