#!/usr/bin/env python3
"""
Key Sampler - size and value of configured keys

Resolves `db=pattern` entries against a connected instance and reports
the size of every matching key, plus the numeric value of string keys.
Only reads are issued.
"""

import logging
from typing import Dict, List
from urllib.parse import unquote_plus

from redis.exceptions import ResponseError

from redis_exporter.client import RedisClient
from redis_exporter.parser import DB_LABEL_RE, Measurement

GLOB_CHARS = ('*', '?', '[')


def parse_key_patterns(arg: str) -> Dict[str, List[str]]:
    """
    Parse `db11=key%3Aone,db0=session%3A*` into {'db11': ['key:one'], ...}.

    Patterns are query-string escaped so they can contain `,` and `=`.
    """
    patterns: Dict[str, List[str]] = {}
    if not arg or not arg.strip():
        return patterns

    for entry in arg.split(','):
        entry = entry.strip()
        if not entry:
            continue
        parts = entry.split('=')
        if len(parts) != 2:
            raise ValueError(f"Invalid key pattern entry '{entry}', expected db<N>=<pattern>")
        db, pattern = parts
        if not DB_LABEL_RE.fullmatch(db):
            raise ValueError(f"Invalid database '{db}' in key pattern entry '{entry}'")
        pattern = unquote_plus(pattern)
        if not pattern:
            raise ValueError(f"Empty key pattern in entry '{entry}'")
        patterns.setdefault(db, []).append(pattern)
    return patterns


def is_glob(pattern: str) -> bool:
    return any(c in pattern for c in GLOB_CHARS)


class KeySampler:
    """Emits key_size / key_value measurements for configured patterns"""

    def __init__(self, patterns: Dict[str, List[str]]):
        self.patterns = patterns
        self.logger = logging.getLogger(__name__)

    def __bool__(self):
        return bool(self.patterns)

    async def _resolve(self, client: RedisClient, db: str, patterns: List[str]) -> List[str]:
        """Keys matched by any of patterns, each once, in first-seen order"""
        keys: Dict[str, None] = {}
        for pattern in patterns:
            if not is_glob(pattern):
                keys[pattern] = None
                continue
            try:
                async for key in client.scan_keys(pattern):
                    keys[key] = None
            except ResponseError as e:
                self.logger.warning(f"Failed to scan {pattern} in {db} on {client.addr}: {e}")
        return list(keys)

    async def _sample_key(self, client: RedisClient, db: str, key: str) -> List[Measurement]:
        key_type = await client.key_type(key)
        if key_type == 'none':
            # Expired or never created; absence is not an error
            return []

        size = await client.key_size(key, key_type)
        if size is None:
            self.logger.debug(f"Key {key} in {db} has unsupported type {key_type}")
            return []

        labels = {'key': key}
        measurements = [Measurement('key_size', float(size), db=db, labels=labels)]
        if key_type == 'string':
            raw = await client.get(key)
            try:
                value = float(raw)
            except (TypeError, ValueError):
                return measurements
            measurements.append(Measurement('key_value', value, db=db, labels=dict(labels)))
        return measurements

    async def sample(self, client: RedisClient) -> List[Measurement]:
        measurements: List[Measurement] = []
        for db, patterns in self.patterns.items():
            try:
                await client.select(int(db[2:]))
            except ResponseError as e:
                self.logger.warning(f"Failed to select {db} on {client.addr}: {e}")
                continue
            for key in await self._resolve(client, db, patterns):
                try:
                    measurements.extend(await self._sample_key(client, db, key))
                except ResponseError as e:
                    self.logger.warning(f"Failed to sample key {key} in {db} on {client.addr}: {e}")
        return measurements
