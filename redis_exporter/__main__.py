#!/usr/bin/env python3
"""
Redis Exporter CLI - Main entry point

Settings come from command line flags, environment variables and an
optional YAML configuration file. Flags given on the command line win
over the file, the file wins over environment variables and defaults.
"""

import argparse
import logging
import os
import sys
import time
from typing import Any, Dict, List, Optional, Tuple

import yaml
from prometheus_client import start_http_server
from prometheus_client.core import CollectorRegistry

from redis_exporter import __version__
from redis_exporter.client import Target
from redis_exporter.exporter import DEFAULT_NAMESPACE, DEFAULT_SCRAPE_TIMEOUT, RedisExporter

DEFAULT_REDIS_ADDR = 'redis://localhost:6379'
DEFAULT_LISTEN_ADDRESS = ':9121'

# config file key -> argparse dest
CONFIG_KEYS = {
    'redis_addrs': 'redis_addr',
    'redis_passwords': 'redis_password',
    'redis_aliases': 'redis_alias',
    'redis_db': 'redis_db',
    'namespace': 'namespace',
    'check_keys': 'check_keys',
    'scrape_timeout': 'scrape_timeout',
    'listen_address': 'listen_address',
    'labels': 'labels',
}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Redis Prometheus Exporter',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --redis.addr redis://localhost:6379
  %(prog)s --redis.addr host1:6379,host2:6379 --redis.alias primary,replica
  %(prog)s -c config.yaml --log-level DEBUG
        """
    )
    parser.add_argument('-c', '--config',
                        help='Path to YAML configuration file')
    parser.add_argument('--redis.addr', dest='redis_addr',
                        help=f'Comma separated Redis addresses (env REDIS_ADDR, default: {DEFAULT_REDIS_ADDR})')
    parser.add_argument('--redis.password', dest='redis_password',
                        help='Comma separated Redis passwords (env REDIS_PASSWORD)')
    parser.add_argument('--redis.alias', dest='redis_alias',
                        help='Comma separated aliases, used as the alias label (env REDIS_ALIAS)')
    parser.add_argument('--redis.db', dest='redis_db', type=int,
                        help='Database selected when connecting')
    parser.add_argument('--namespace',
                        help=f'Namespace prefixed to every metric (default: {DEFAULT_NAMESPACE})')
    parser.add_argument('--check-keys', dest='check_keys',
                        help='Comma separated db<N>=<url-escaped pattern> pairs of keys to sample')
    parser.add_argument('--scrape-timeout', dest='scrape_timeout', type=float,
                        help=f'Per address scrape timeout in seconds (default: {DEFAULT_SCRAPE_TIMEOUT})')
    parser.add_argument('--web.listen-address', dest='listen_address',
                        help=f'Address to expose metrics on (default: {DEFAULT_LISTEN_ADDRESS})')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Log level (default: INFO)')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser.parse_args(argv)


def load_config(config_file: str) -> Dict[str, Any]:
    """Read the YAML configuration file, ValueError if it is unusable"""
    try:
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ValueError(f"Configuration file not found: {config_file}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML configuration: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError("Configuration file must contain a mapping")

    unknown = set(config) - set(CONFIG_KEYS)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
    if 'labels' in config and not isinstance(config['labels'], dict):
        raise ValueError("'labels' must be a mapping")
    return config


def split_list(value: Any) -> List[str]:
    """Accept either a comma separated string or a YAML list"""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value]
    return [item.strip() for item in str(value).split(',')]


def build_settings(args: argparse.Namespace, config: Dict[str, Any] = None) -> Dict[str, Any]:
    """Merge flags, config file, environment and defaults"""
    config = config or {}
    settings = {
        'redis_addr': os.environ.get('REDIS_ADDR', DEFAULT_REDIS_ADDR),
        'redis_password': os.environ.get('REDIS_PASSWORD', ''),
        'redis_alias': os.environ.get('REDIS_ALIAS', ''),
        'redis_db': None,
        'namespace': DEFAULT_NAMESPACE,
        'check_keys': '',
        'scrape_timeout': DEFAULT_SCRAPE_TIMEOUT,
        'listen_address': DEFAULT_LISTEN_ADDRESS,
        'labels': {},
    }
    for key, dest in CONFIG_KEYS.items():
        if config.get(key) is not None:
            settings[dest] = config[key]
    for dest in CONFIG_KEYS.values():
        value = getattr(args, dest, None)
        if value is not None:
            settings[dest] = value

    settings['redis_addr'] = [addr for addr in split_list(settings['redis_addr']) if addr]
    settings['redis_password'] = split_list(settings['redis_password'])
    settings['redis_alias'] = split_list(settings['redis_alias'])
    if isinstance(settings['check_keys'], (list, tuple)):
        settings['check_keys'] = ','.join(settings['check_keys'])
    settings['labels'] = {str(k): str(v) for k, v in settings['labels'].items()}
    return settings


def parse_listen_address(address: str) -> Tuple[str, int]:
    """':9121' -> ('0.0.0.0', 9121), '[::]:9121' -> ('::', 9121)"""
    host, sep, port = address.rpartition(':')
    if not sep:
        raise ValueError(f"Invalid listen address '{address}', expected [host]:port")
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    try:
        return host or '0.0.0.0', int(port)
    except ValueError:
        raise ValueError(f"Invalid port in listen address '{address}'")


def build_exporter(settings: Dict[str, Any]) -> RedisExporter:
    target = Target(
        addrs=settings['redis_addr'],
        passwords=settings['redis_password'],
        aliases=settings['redis_alias'],
        db=settings['redis_db'],
    )
    return RedisExporter(
        target,
        namespace=settings['namespace'],
        check_keys=settings['check_keys'],
        scrape_timeout=float(settings['scrape_timeout']),
        default_labels=settings['labels'],
    )


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logging.getLogger('redis').setLevel(logging.WARNING)
    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config) if args.config else {}
        settings = build_settings(args, config)
        host, port = parse_listen_address(settings['listen_address'])
        exporter = build_exporter(settings)
    except ValueError as e:
        logger.error(f"Failed to start exporter: {e}")
        sys.exit(1)

    registry = CollectorRegistry()
    registry.register(exporter)

    start_http_server(port, addr=host, registry=registry)
    logger.info(
        f"Redis exporter {__version__} started on {host}:{port} "
        f"for {len(settings['redis_addr'])} address(es), namespace '{settings['namespace']}'"
    )

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
    finally:
        logger.info("Exporter stopped")


if __name__ == '__main__':
    main()
