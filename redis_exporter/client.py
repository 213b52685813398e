#!/usr/bin/env python3
"""
Protocol Client - one Redis connection per scrape

Thin async wrapper around redis-py. A RedisClient owns a single connection
to one address for the duration of one scrape and returns raw replies;
interpreting them is left to the parser module.
"""

import logging
from typing import AsyncIterator, NamedTuple, Optional, Sequence

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff

DEFAULT_PORT = 6379
SCHEME_ALIASES = {
    'tcp': 'redis',
    'redis': 'redis',
    'rediss': 'rediss',
    'unix': 'unix',
}


class Target(NamedTuple):
    """
    Redis endpoints scraped by one exporter.

    passwords and aliases are parallel to addrs; a single password applies
    to every address.
    """
    addrs: Sequence[str]
    passwords: Sequence[str] = ()
    aliases: Sequence[str] = ()
    db: Optional[int] = None

    def password_for(self, index: int) -> Optional[str]:
        if len(self.passwords) == 1:
            return self.passwords[0] or None
        if index < len(self.passwords):
            return self.passwords[index] or None
        return None

    def alias_for(self, index: int) -> str:
        if index < len(self.aliases):
            return self.aliases[index]
        return ''


def normalize_address(addr: str) -> str:
    """
    Turn a configured address into a URL redis-py understands.

    `host:port` and `host` default to TCP, `tcp://` is an alias of `redis://`.
    """
    addr = addr.strip()
    if '://' not in addr:
        if ':' not in addr:
            addr = f"{addr}:{DEFAULT_PORT}"
        return f"redis://{addr}"

    scheme, rest = addr.split('://', 1)
    normalized = SCHEME_ALIASES.get(scheme.lower())
    if normalized is None:
        raise ValueError(f"Unsupported address scheme '{scheme}' in {addr}")
    return f"{normalized}://{rest}"


class RedisClient:
    """Async Redis client for metrics collection"""

    def __init__(self, addr: str, password: Optional[str] = None,
                 db: Optional[int] = None, timeout: float = 5.0):
        self.addr = addr
        self.url = normalize_address(addr)
        self.password = password
        self.db = db
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)
        self._client: Optional[redis.Redis] = None

    def _create_client(self) -> redis.Redis:
        kwargs = {
            'decode_responses': True,
            'single_connection_client': True,
            'socket_timeout': self.timeout,
            'socket_connect_timeout': self.timeout,
            # a failed address is retried by the next poll, not here
            'retry': Retry(NoBackoff(), 0),
        }
        if self.password:
            kwargs['password'] = self.password
        if self.db is not None:
            kwargs['db'] = self.db

        return redis.from_url(self.url, **kwargs)

    async def connect(self):
        """Open the connection and make sure the server answers"""
        client = self._create_client()
        # INFO replies are parsed here, not by redis-py
        client.set_response_callback('INFO', lambda response, **options: response)
        self._client = client
        await client.ping()
        self.logger.debug(f"Connected to {self.addr}")

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def connection(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError(f"Not connected to {self.addr}")
        return self._client

    async def info(self, section: Optional[str] = None) -> str:
        """Raw INFO text"""
        if section:
            response = await self.connection.execute_command('INFO', section)
        else:
            response = await self.connection.execute_command('INFO')
        if isinstance(response, bytes):
            return response.decode('utf-8', errors='ignore')
        return response

    async def select(self, db: int):
        await self.connection.execute_command('SELECT', db)

    async def dbsize(self) -> int:
        return await self.connection.dbsize()

    async def key_type(self, key: str) -> str:
        return await self.connection.type(key)

    async def scan_keys(self, pattern: str) -> AsyncIterator[str]:
        async for key in self.connection.scan_iter(match=pattern):
            yield key

    async def key_size(self, key: str, key_type: str) -> Optional[int]:
        """Length/cardinality of a key according to its type"""
        conn = self.connection
        if key_type == 'string':
            return await conn.strlen(key)
        if key_type == 'list':
            return await conn.llen(key)
        if key_type == 'set':
            return await conn.scard(key)
        if key_type == 'zset':
            return await conn.zcard(key)
        if key_type == 'hash':
            return await conn.hlen(key)
        return None

    async def get(self, key: str) -> Optional[str]:
        return await self.connection.get(key)

    async def close(self):
        """Close connection"""
        if self._client is not None:
            client, self._client = self._client, None
            await client.aclose()
