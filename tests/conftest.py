"""
Test configuration and fixtures for redis_exporter.
"""

import asyncio
import os
import time
from typing import List, Optional, Set, Tuple

import fakeredis
import fakeredis.aioredis
import pytest
import redis

from redis_exporter.client import RedisClient, normalize_address

DATABASES = 16

SERVER_INFO = """# Server\r
redis_version:6.2.6\r
redis_mode:standalone\r
os:Linux 5.15.0 x86_64\r
uptime_in_seconds:86400\r
\r
# Clients\r
connected_clients:10\r
blocked_clients:0\r
\r
# Memory\r
used_memory:1048576\r
used_memory_human:1.00M\r
used_memory_rss:2097152\r
used_memory_peak:1572864\r
used_memory_lua:37888\r
maxmemory:0\r
maxmemory_policy:noeviction\r
mem_fragmentation_ratio:2.00\r
\r
# Persistence\r
loading:0\r
rdb_changes_since_last_save:100\r
rdb_bgsave_in_progress:0\r
rdb_last_save_time:1640995200\r
rdb_last_bgsave_status:ok\r
rdb_last_bgsave_time_sec:-1\r
aof_enabled:0\r
aof_last_bgrewrite_status:err\r
\r
# Stats\r
total_connections_received:42\r
total_commands_processed:1000000\r
instantaneous_ops_per_sec:100\r
rejected_connections:0\r
expired_keys:1000\r
evicted_keys:0\r
keyspace_hits:800000\r
keyspace_misses:200000\r
\r
# Replication\r
role:master\r
connected_slaves:1\r
slave0:ip=10.0.0.2,port=6380,state=online,offset=1234,lag=1\r
master_repl_offset:1234\r
repl_backlog_size:1048576\r
\r
# CPU\r
used_cpu_sys:10.5\r
used_cpu_user:15.2\r
used_cpu_sys_children:1.0\r
used_cpu_user_children:2.0\r
\r
# Cluster\r
cluster_enabled:0\r
"""

class InstanceFakeRedis(fakeredis.aioredis.FakeRedis):
    """
    FakeRedis bound to a FakeRedisInstance.

    fakeredis has no INFO command, so INFO is answered by the instance and
    handed to the client's own INFO response callback.
    """

    async def execute_command(self, *args, **options):
        self.instance.commands.append(args)
        if self.instance.delay:
            await asyncio.sleep(self.instance.delay)
        if str(args[0]).upper() == 'INFO':
            section = args[1] if len(args) > 1 else None
            return self.response_callbacks['INFO'](self.instance.info(section), **options)
        return await super().execute_command(*args, **options)


class FakeRedisInstance:
    """A fakeredis server plus the INFO text real Redis would report for it"""

    def __init__(self):
        self.server = fakeredis.FakeServer()
        self.unreachable: Set[str] = set()
        self.extra_keyspace_lines: List[str] = []
        self.commandstats = (
            "# Commandstats\r\n"
            "cmdstat_get:calls=21,usec=175,usec_per_call=8.33\r\n"
            "cmdstat_set:calls=9,usec=90,usec_per_call=10.00,rejected_calls=0,failed_calls=0\r\n"
        )
        self.delay = 0.0
        self.commands: List[Tuple] = []
        self.clients: List[RedisClient] = []

    def db(self, index: int) -> fakeredis.FakeRedis:
        """Synchronous client for seeding data"""
        return fakeredis.FakeRedis(server=self.server, db=index, decode_responses=True)

    def keyspace(self) -> str:
        lines = ['# Keyspace']
        for index in range(DATABASES):
            client = self.db(index)
            keys = client.dbsize()
            if not keys:
                continue
            ttls = [client.pttl(key) for key in client.scan_iter()]
            expiring = [ttl for ttl in ttls if ttl > 0]
            avg_ttl = sum(expiring) // len(expiring) if expiring else 0
            lines.append(f"db{index}:keys={keys},expires={len(expiring)},avg_ttl={avg_ttl}")
        lines.extend(self.extra_keyspace_lines)
        return '\r\n'.join(lines) + '\r\n'

    def info(self, section: Optional[str] = None) -> str:
        if section == 'keyspace':
            return self.keyspace()
        if section == 'commandstats':
            return self.commandstats
        return SERVER_INFO + '\r\n' + self.keyspace()

    def sent(self, command: str) -> List[Tuple]:
        return [args for args in self.commands if str(args[0]).upper() == command]

    def create_client(self, client: RedisClient) -> InstanceFakeRedis:
        self.clients.append(client)
        server = self.server
        if client.addr in self.unreachable:
            server = fakeredis.FakeServer()
            server.connected = False
        fake = InstanceFakeRedis(
            server=server,
            db=client.db or 0,
            decode_responses=True,
            single_connection_client=True,
        )
        fake.instance = self
        return fake


@pytest.fixture
def fake_server():
    return FakeRedisInstance()


@pytest.fixture
def fake_redis(fake_server, monkeypatch):
    """Back every RedisClient with fake_server instead of a socket"""

    def create_client(client):
        return fake_server.create_client(client)

    monkeypatch.setattr(RedisClient, '_create_client', create_client)
    return fake_server


# Integration tests against a real server

REDIS_ADDR = os.environ.get('REDIS_ADDR', 'localhost:6379')
TEST_DB = 11
TS = int(time.time())


@pytest.fixture(scope='session')
def redis_addr():
    client = redis.Redis.from_url(normalize_address(REDIS_ADDR), socket_connect_timeout=1)
    try:
        client.ping()
    except (redis.exceptions.RedisError, OSError):
        pytest.skip(f"No Redis server reachable at {REDIS_ADDR}")
    finally:
        client.close()
    return REDIS_ADDR


@pytest.fixture
def test_keys():
    persistent = [f"key:{name}-{TS}" for name in ('john', 'paul', 'ringo', 'george')]
    expiring = [f"key:exp-{name}-{TS}" for name in ('A.J.', 'Howie', 'Nick', 'Kevin', 'Brian')]
    return persistent, expiring


@pytest.fixture
def redis_db(redis_addr):
    client = redis.Redis.from_url(normalize_address(redis_addr), db=TEST_DB)
    yield client
    client.close()


@pytest.fixture
def db_keys(redis_db, test_keys):
    """Create 4 persistent and 5 expiring keys in TEST_DB, removed afterwards"""
    persistent, expiring = test_keys

    def setup():
        for key in persistent:
            redis_db.set(key, '1234.56')
        for key in expiring:
            redis_db.setex(key, 300, '1234.56')

    def teardown():
        redis_db.delete(*persistent, *expiring)

    yield setup, teardown
    teardown()
