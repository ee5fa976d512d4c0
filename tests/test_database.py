"""Tests for Cassandra connection helpers."""

from unittest.mock import AsyncMock, Mock

import pytest
from cassandra import ConsistencyLevel
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy

from watchtrack.config import Settings
from watchtrack.core.database.async_cassandra import (
    SCHEMA_GROUPS,
    build_execution_profile,
    init_async_tables,
    keyspace_replication,
)


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestExecutionProfile:
    def test_defaults(self):
        profile = build_execution_profile(make_settings())

        assert profile.consistency_level == ConsistencyLevel.LOCAL_QUORUM
        assert profile.request_timeout == 10.0
        assert isinstance(profile.load_balancing_policy, TokenAwarePolicy)
        assert isinstance(profile.load_balancing_policy._child_policy, DCAwareRoundRobinPolicy)

    def test_consistency_from_settings(self):
        profile = build_execution_profile(
            make_settings(cassandra_consistency="ONE", cassandra_request_timeout=2.5)
        )

        assert profile.consistency_level == ConsistencyLevel.ONE
        assert profile.request_timeout == 2.5


class TestKeyspaceReplication:
    def test_simple_strategy_without_dc(self):
        assert keyspace_replication(make_settings()) == (
            "{'class': 'SimpleStrategy', 'replication_factor': 1}"
        )

    def test_network_topology_with_dc(self):
        settings = make_settings(cassandra_local_dc="dc1", cassandra_replication_factor=3)

        assert keyspace_replication(settings) == (
            "{'class': 'NetworkTopologyStrategy', 'dc1': 3}"
        )


@pytest.mark.asyncio
async def test_init_tables_formats_keyspace():
    session = Mock()
    session.aexecute = AsyncMock()

    await init_async_tables(session, "wt_test")

    statements = [call.args[0] for call in session.aexecute.await_args_list]
    assert len(statements) == sum(len(templates) for _, templates in SCHEMA_GROUPS)
    assert all("wt_test." in statement for statement in statements)
    assert not any("{keyspace}" in statement for statement in statements)
