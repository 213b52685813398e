#!/usr/bin/env python3
"""
Redis Exporter - Redis metrics collector

Scrapes every configured Redis address on each poll and hands the result
to prometheus_client as a custom collector. Nothing is cached between
polls: collect() always runs a fresh scrape in its own event loop.
"""

import asyncio
import logging
import threading
import time
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional

from redis.exceptions import ResponseError

from redis_exporter.client import RedisClient, Target, normalize_address
from redis_exporter.key_sampler import KeySampler, parse_key_patterns
from redis_exporter.parser import (
    METRIC_RENAMES,
    Measurement,
    extract_command_stats,
    extract_info_metrics,
    extract_instance_info,
    extract_keyspace_metrics,
)
from redis_exporter.prometheus_wrapper import MetricFactory, MetricFamily
from redis_exporter.result_table import ResultTable

DEFAULT_NAMESPACE = 'redis'
DEFAULT_SCRAPE_TIMEOUT = 5.0

# Marks the end of a scrape's measurement stream
SCRAPE_DONE = object()

DESCRIPTIONS: Dict[str, str] = {
    published: f"Redis INFO field {raw}" for raw, published in METRIC_RENAMES.items()
}
DESCRIPTIONS.update({
    'db_keys': 'Number of keys in the database (DBSIZE)',
    'db_keys_total': 'Total number of keys by DB',
    'db_expiring_keys_total': 'Total number of expiring keys by DB',
    'db_avg_ttl_seconds': 'Avg TTL in seconds',
    'key_size': 'The length or size of a sampled key',
    'key_value': 'The numeric value of a sampled string key',
    'command_call_duration_seconds_count': 'Total number of calls per command',
    'command_call_duration_seconds_sum': 'Total amount of time in seconds spent per command',
    'connected_slave_offset': 'Offset of a connected replica',
    'connected_slave_lag_seconds': 'Lag of a connected replica',
    'instance_info': 'Information about the Redis instance',
    'up': 'Whether the last scrape of the Redis address succeeded',
    'exporter_last_scrape_error': 'The last scrape error status',
    'exporter_scrapes_total': 'Current total redis scrapes',
    'exporter_last_scrape_duration_seconds': 'The last scrape duration',
})
COUNTERS = {'exporter_scrapes_total'}


class TargetResult(NamedTuple):
    addr: str
    alias: str
    succeeded: bool
    error: Optional[str] = None


class ScrapeOutcome(NamedTuple):
    success: bool
    duration_seconds: float
    timestamp: float
    targets: List[TargetResult]


class RedisExporter:
    """
    Redis Prometheus Exporter

    Implements the prometheus_client collector protocol (describe/collect)
    for one set of Redis addresses. collect() may be called from several
    threads at once; each call owns its event loop, queue and result table.
    """

    def __init__(self,
                 target: Target,
                 namespace: str = DEFAULT_NAMESPACE,
                 check_keys: str = '',
                 scrape_timeout: float = DEFAULT_SCRAPE_TIMEOUT,
                 default_labels: Dict[str, str] = None):
        if not target.addrs:
            raise ValueError("At least one Redis address is required")
        for addr in target.addrs:
            normalize_address(addr)

        self.target = target
        self.namespace = namespace
        self.scrape_timeout = scrape_timeout
        self.key_sampler = KeySampler(parse_key_patterns(check_keys))
        self.metric_factory = MetricFactory(namespace=namespace, default_labels=default_labels)
        self.logger = logging.getLogger(__name__)

        self._scrapes_total = 0
        self._scrapes_lock = threading.Lock()

    async def _scrape_keyspace(self, client: RedisClient, emit: Callable[[Measurement], None]):
        keyspace = await client.info('keyspace')
        for db, stat in extract_keyspace_metrics(keyspace):
            emit(Measurement('db_keys_total', stat.keys_total, db=db))
            emit(Measurement('db_expiring_keys_total', stat.keys_expiring, db=db))
            emit(Measurement('db_avg_ttl_seconds', stat.avg_ttl / 1000, db=db))

            try:
                await client.select(int(db[2:]))
                size = await client.dbsize()
            except ResponseError as e:
                self.logger.warning(f"Failed to count keys in {db} on {client.addr}: {e}")
                continue
            emit(Measurement('db_keys', float(size), db=db))

    async def _scrape_command_stats(self, client: RedisClient, emit: Callable[[Measurement], None]):
        try:
            commandstats = await client.info('commandstats')
        except ResponseError as e:
            self.logger.warning(f"Failed to read command stats on {client.addr}: {e}")
            return
        for stat in extract_command_stats(commandstats):
            labels = {'cmd': stat.cmd}
            emit(Measurement('command_call_duration_seconds_count', stat.calls, labels=labels))
            emit(Measurement('command_call_duration_seconds_sum', stat.usec / 1e6, labels=dict(labels)))

    async def _scrape_target(self, index: int, queue: asyncio.Queue):
        """Scrape one address; the connection is always released"""
        addr = self.target.addrs[index]
        alias = self.target.alias_for(index)

        def emit(measurement: Measurement):
            queue.put_nowait(measurement._replace(addr=addr, alias=alias))

        client = RedisClient(
            addr,
            password=self.target.password_for(index),
            db=self.target.db,
            timeout=self.scrape_timeout
        )
        try:
            await client.connect()

            info = await client.info()
            for measurement in extract_info_metrics(info):
                emit(measurement)
            emit(Measurement('instance_info', 1.0, labels=extract_instance_info(info)))

            await self._scrape_keyspace(client, emit)
            await self._scrape_command_stats(client, emit)

            if self.key_sampler:
                for measurement in await self.key_sampler.sample(client):
                    emit(measurement)
        finally:
            await client.close()

    async def _scrape_target_safe(self, index: int, queue: asyncio.Queue) -> TargetResult:
        addr = self.target.addrs[index]
        alias = self.target.alias_for(index)
        try:
            await asyncio.wait_for(self._scrape_target(index, queue), timeout=self.scrape_timeout)
        except asyncio.TimeoutError:
            self.logger.error(f"Timed out scraping {addr} after {self.scrape_timeout}s")
            return TargetResult(addr, alias, False, 'timeout')
        except Exception as e:
            self.logger.error(f"Failed to collect from {addr}: {e}")
            return TargetResult(addr, alias, False, str(e))
        return TargetResult(addr, alias, True)

    async def scrape(self, queue: asyncio.Queue) -> ScrapeOutcome:
        """
        Scrape all addresses concurrently, pushing Measurements onto queue.

        SCRAPE_DONE is always the last item put on the queue; consumers
        read until they see it.
        """
        start_time = time.time()
        results: List[TargetResult] = []
        try:
            results = await asyncio.gather(*[
                self._scrape_target_safe(index, queue)
                for index in range(len(self.target.addrs))
            ])
        finally:
            queue.put_nowait(SCRAPE_DONE)

        elapsed = time.time() - start_time
        success = all(result.succeeded for result in results)
        self.logger.debug(
            f"Scraped {len(results)} Redis address(es) in {elapsed:.3f}s (success: {success})"
        )
        return ScrapeOutcome(success, elapsed, start_time, list(results))

    async def _collect_async(self) -> List[MetricFamily]:
        queue: asyncio.Queue = asyncio.Queue()
        producer = asyncio.ensure_future(self.scrape(queue))

        table = ResultTable(self.metric_factory, DESCRIPTIONS)
        while True:
            item = await queue.get()
            if item is SCRAPE_DONE:
                break
            table.add_measurement(item)
        outcome = await producer

        with self._scrapes_lock:
            self._scrapes_total += 1
            scrapes_total = self._scrapes_total

        for result in outcome.targets:
            table.add_gauge('up', 1.0 if result.succeeded else 0.0,
                            {'addr': result.addr, 'alias': result.alias})
        table.add_gauge('exporter_last_scrape_error', 0.0 if outcome.success else 1.0)
        table.add_gauge('exporter_last_scrape_duration_seconds', outcome.duration_seconds)
        table.add_counter('exporter_scrapes_total', float(scrapes_total))
        return table.families()

    def collect(self) -> List[MetricFamily]:
        """Run one scrape and return the resulting metric families"""
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(self._collect_async())
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    def describe(self) -> Iterator[MetricFamily]:
        """Known metric families, without samples and without scraping"""
        for name, documentation in DESCRIPTIONS.items():
            if name in COUNTERS:
                yield self.metric_factory.counter(name, documentation).family
            else:
                yield self.metric_factory.gauge(name, documentation).family
