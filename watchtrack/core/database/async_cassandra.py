"""Cassandra session for watchtrack, on cassandra-asyncio-driver.

Every query runs through the default execution profile, which pins the
consistency level used for progress writes and rollup reads, so a heartbeat
acknowledged to the player is readable by the next one even if it lands on
another coordinator.
"""

from typing import TYPE_CHECKING

import structlog
from cassandra import ConsistencyLevel
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import EXEC_PROFILE_DEFAULT, ExecutionProfile
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from cassandra_asyncio.cluster import Cluster

from watchtrack.analytics.models import ANALYTICS_TABLES_CQL
from watchtrack.config import get_settings
from watchtrack.lessons.models import LESSONS_TABLES_CQL
from watchtrack.progress.models import PROGRESS_TABLES_CQL


if TYPE_CHECKING:
    from watchtrack.config import Settings


logger = structlog.get_logger(__name__)

# (group name, CQL templates) in creation order
SCHEMA_GROUPS: list[tuple[str, list[str]]] = [
    ("lessons", LESSONS_TABLES_CQL),
    ("progress", PROGRESS_TABLES_CQL),
    ("analytics", ANALYTICS_TABLES_CQL),
]


def build_execution_profile(settings: "Settings") -> ExecutionProfile:
    """Default profile: token-aware routing in the local DC, fixed consistency."""
    return ExecutionProfile(
        load_balancing_policy=TokenAwarePolicy(
            DCAwareRoundRobinPolicy(local_dc=settings.cassandra_local_dc)
        ),
        consistency_level=ConsistencyLevel.name_to_value[settings.cassandra_consistency],
        request_timeout=settings.cassandra_request_timeout,
    )


def keyspace_replication(settings: "Settings") -> str:
    """Replication map for ``CREATE KEYSPACE``."""
    factor = settings.cassandra_replication_factor
    if settings.cassandra_local_dc:
        return (
            f"{{'class': 'NetworkTopologyStrategy', "
            f"'{settings.cassandra_local_dc}': {factor}}}"
        )
    return f"{{'class': 'SimpleStrategy', 'replication_factor': {factor}}}"


class AsyncCassandraConnection:
    """Process-wide cluster and session.

    Connecting is blocking and happens once at startup; queries on the
    session are awaited through ``aexecute()``.
    """

    _cluster: Cluster | None = None
    _session = None  # cassandra_asyncio session

    @classmethod
    def connect(cls):
        """Connect to the cluster, reusing the session once established.

        Raises:
            ConnectionError: If no host can be reached
        """
        if cls._session is not None:
            return cls._session

        settings = get_settings()

        auth_provider = None
        if settings.cassandra_username and settings.cassandra_password:
            auth_provider = PlainTextAuthProvider(
                username=settings.cassandra_username,
                password=settings.cassandra_password,
            )

        cls._cluster = Cluster(
            contact_points=settings.cassandra_hosts,
            port=settings.cassandra_port,
            auth_provider=auth_provider,
            protocol_version=settings.cassandra_protocol_version,
            execution_profiles={EXEC_PROFILE_DEFAULT: build_execution_profile(settings)},
            connect_timeout=settings.cassandra_connect_timeout,
        )

        try:
            cls._session = cls._cluster.connect()
        except Exception as e:
            logger.error(
                "cassandra_connection_failed",
                hosts=settings.cassandra_hosts,
                error=str(e),
            )
            cls._cluster.shutdown()
            cls._cluster = None
            raise ConnectionError(f"Failed to connect to Cassandra: {e}") from e

        logger.info(
            "cassandra_connected",
            hosts=settings.cassandra_hosts,
            port=settings.cassandra_port,
            local_dc=settings.cassandra_local_dc,
            consistency=settings.cassandra_consistency,
        )
        return cls._session

    @classmethod
    def get_session(cls):
        """Active session, connecting first if needed."""
        return cls._session if cls._session is not None else cls.connect()

    @classmethod
    def disconnect(cls) -> None:
        """Shut down the session and the cluster."""
        if cls._session is not None:
            cls._session.shutdown()
            cls._session = None

        if cls._cluster is not None:
            cls._cluster.shutdown()
            cls._cluster = None
            logger.info("cassandra_disconnected")

    @classmethod
    def is_connected(cls) -> bool:
        return cls._session is not None and not cls._session.is_shutdown


def get_async_cassandra_session():
    """Get async-capable Cassandra session."""
    return AsyncCassandraConnection.get_session()


async def init_async_keyspace(session, keyspace: str) -> None:
    """Create the keyspace if it does not exist."""
    replication = keyspace_replication(get_settings())
    await session.aexecute(
        f"CREATE KEYSPACE IF NOT EXISTS {keyspace} "
        f"WITH replication = {replication} AND durable_writes = true"
    )
    logger.info("cassandra_keyspace_ready", keyspace=keyspace, replication=replication)


async def init_async_tables(session, keyspace: str) -> None:
    """Create the lessons, progress and analytics tables."""
    for group, templates in SCHEMA_GROUPS:
        for cql_template in templates:
            await session.aexecute(cql_template.format(keyspace=keyspace))
        logger.info("cassandra_tables_ready", group=group, tables=len(templates))


async def init_async_cassandra():
    """Connect and make sure the keyspace and tables exist.

    Returns:
        Cassandra session with aexecute() support
    """
    settings = get_settings()
    keyspace = settings.cassandra_keyspace

    session = AsyncCassandraConnection.connect()
    await init_async_keyspace(session, keyspace)
    session.set_keyspace(keyspace)
    await init_async_tables(session, keyspace)
    return session


async def shutdown_async_cassandra() -> None:
    """Shutdown async Cassandra connection."""
    AsyncCassandraConnection.disconnect()
