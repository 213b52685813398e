#!/usr/bin/env python3
"""
Redis Exporter - Prometheus exporter for Redis INFO, keyspace and key metrics

Every Prometheus poll triggers a fresh scrape of the configured Redis
addresses; nothing is cached between polls.
"""

__version__ = '1.0.0'

from redis_exporter.client import Target
from redis_exporter.exporter import RedisExporter

__all__ = ['RedisExporter', 'Target']
