#!/usr/bin/env python3
"""
Reply Parser - INFO text to measurements

Pure functions that turn the loosely structured text returned by the
Redis INFO command into typed measurements. Every reply shape has its own
parser: the general `key:value` line parser, the per-database keyspace
string and the per-command statistics string. Nothing here performs I/O.
"""

import logging
import re
from typing import Dict, List, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)


class Measurement(NamedTuple):
    """
    One (name, optional db, value) sample produced during a scrape.

    addr and alias are filled in by the exporter once the sample is
    attributed to a target.
    """
    name: str
    value: float
    db: Optional[str] = None
    labels: Optional[Dict[str, str]] = None
    addr: str = ''
    alias: str = ''


class KeyspaceStat(NamedTuple):
    keys_total: float
    keys_expiring: float
    avg_ttl: float
    ok: bool


class CommandStat(NamedTuple):
    cmd: str
    calls: float
    usec: float
    ok: bool


INVALID_KEYSPACE = KeyspaceStat(0.0, 0.0, 0.0, False)

DB_LABEL_RE = re.compile(r'db([0-9]+)')
UINT_RE = re.compile(r'[0-9]+')
DECIMAL_RE = re.compile(r'[0-9]+(\.[0-9]+)?')

KEYSPACE_FIELDS = ('keys', 'expires', 'avg_ttl')
# Redis 7.4 appends this field to every keyspace line
KEYSPACE_OPTIONAL_TRAILER = 'subexpiry'

COMMANDSTAT_PREFIX = 'cmdstat_'

# Raw INFO field name -> published metric name.
# Doubles as the allow-list: fields missing here are never published.
METRIC_RENAMES: Dict[str, str] = {
    # Server
    'uptime_in_seconds': 'uptime_in_seconds',

    # Clients
    'connected_clients': 'connected_clients',
    'blocked_clients': 'blocked_clients',

    # Memory
    'used_memory': 'memory_used_bytes',
    'used_memory_rss': 'memory_used_rss_bytes',
    'used_memory_peak': 'memory_used_peak_bytes',
    'used_memory_lua': 'memory_used_lua_bytes',
    'maxmemory': 'memory_max_bytes',
    'mem_fragmentation_ratio': 'memory_fragmentation_ratio',

    # Persistence
    'loading': 'loading_dump_file',
    'rdb_changes_since_last_save': 'rdb_changes_since_last_save',
    'rdb_bgsave_in_progress': 'rdb_bgsave_in_progress',
    'rdb_last_save_time': 'rdb_last_save_timestamp_seconds',
    'rdb_last_bgsave_status': 'rdb_last_bgsave_status',
    'rdb_last_bgsave_time_sec': 'rdb_last_bgsave_duration_sec',
    'rdb_current_bgsave_time_sec': 'rdb_current_bgsave_duration_sec',
    'aof_enabled': 'aof_enabled',
    'aof_rewrite_in_progress': 'aof_rewrite_in_progress',
    'aof_rewrite_scheduled': 'aof_rewrite_scheduled',
    'aof_last_rewrite_time_sec': 'aof_last_rewrite_duration_sec',
    'aof_current_rewrite_time_sec': 'aof_current_rewrite_duration_sec',
    'aof_last_bgrewrite_status': 'aof_last_bgrewrite_status',

    # Stats
    'total_connections_received': 'connections_received_total',
    'total_commands_processed': 'commands_processed_total',
    'instantaneous_ops_per_sec': 'instantaneous_ops',
    'total_net_input_bytes': 'net_input_bytes_total',
    'total_net_output_bytes': 'net_output_bytes_total',
    'rejected_connections': 'rejected_connections_total',
    'expired_keys': 'expired_keys_total',
    'evicted_keys': 'evicted_keys_total',
    'keyspace_hits': 'keyspace_hits_total',
    'keyspace_misses': 'keyspace_misses_total',
    'pubsub_channels': 'pubsub_channels',
    'pubsub_patterns': 'pubsub_patterns',
    'latest_fork_usec': 'latest_fork_usec',

    # Replication
    'connected_slaves': 'connected_slaves',
    'repl_backlog_size': 'replication_backlog_bytes',
    'master_repl_offset': 'master_repl_offset',
    'master_last_io_seconds_ago': 'master_last_io_seconds',
    'master_link_status': 'master_link_up',

    # CPU
    'used_cpu_sys': 'used_cpu_sys',
    'used_cpu_user': 'used_cpu_user',
    'used_cpu_sys_children': 'used_cpu_sys_children',
    'used_cpu_user_children': 'used_cpu_user_children',

    # Cluster
    'cluster_enabled': 'cluster_enabled',
}

STATUS_VALUES = {
    'ok': 1.0,
    'up': 1.0,
    'err': 0.0,
    'fail': 0.0,
    'down': 0.0,
}

SLAVE_LINE_RE = re.compile(r'slave[0-9]+')


def _parse_uint(raw: str) -> Optional[float]:
    if not UINT_RE.fullmatch(raw):
        return None
    return float(int(raw))


def _parse_decimal(raw: str) -> Optional[float]:
    if not DECIMAL_RE.fullmatch(raw):
        return None
    return float(raw)


def _parse_float(raw: str) -> Optional[float]:
    try:
        return float(raw)
    except ValueError:
        return None


def _split_pair(field: str) -> Optional[Tuple[str, str]]:
    """Split `name=value`; more or fewer than one `=` is invalid"""
    parts = field.split('=')
    if len(parts) != 2:
        return None
    return parts[0], parts[1]


def parse_db_keyspace_string(db: str, stats: str) -> KeyspaceStat:
    """
    Parse one keyspace line, e.g. `db0` / `keys=1,expires=0,avg_ttl=0`.

    The whole line is rejected on any deviation from the expected fields,
    their order or their numeric format. avg_ttl is returned as reported
    by Redis, in milliseconds.
    """
    if not DB_LABEL_RE.fullmatch(db):
        return INVALID_KEYSPACE

    fields = stats.split(',')
    if len(fields) == len(KEYSPACE_FIELDS) + 1:
        trailer = _split_pair(fields[-1])
        if trailer is None or trailer[0] != KEYSPACE_OPTIONAL_TRAILER or _parse_uint(trailer[1]) is None:
            return INVALID_KEYSPACE
        fields = fields[:-1]
    if len(fields) != len(KEYSPACE_FIELDS):
        return INVALID_KEYSPACE

    values = []
    for field, expected in zip(fields, KEYSPACE_FIELDS):
        pair = _split_pair(field)
        if pair is None or pair[0] != expected:
            return INVALID_KEYSPACE
        if expected == 'avg_ttl':
            value = _parse_decimal(pair[1])
        else:
            value = _parse_uint(pair[1])
        if value is None:
            return INVALID_KEYSPACE
        values.append(value)

    keys_total, keys_expiring, avg_ttl = values
    return KeyspaceStat(keys_total, keys_expiring, avg_ttl, True)


def parse_command_stats_string(field: str, stats: str) -> CommandStat:
    """
    Parse one commandstats line, e.g.
    `cmdstat_get` / `calls=21,usec=175,usec_per_call=8.33`.

    Unknown fields are ignored; calls and usec are required.
    """
    if not field.startswith(COMMANDSTAT_PREFIX) or len(field) == len(COMMANDSTAT_PREFIX):
        return CommandStat('', 0.0, 0.0, False)
    cmd = field[len(COMMANDSTAT_PREFIX):]

    values: Dict[str, str] = {}
    for part in stats.split(','):
        pair = _split_pair(part)
        if pair is not None:
            values[pair[0]] = pair[1]

    calls = _parse_uint(values.get('calls', ''))
    usec = _parse_uint(values.get('usec', ''))
    if calls is None or usec is None:
        return CommandStat(cmd, 0.0, 0.0, False)
    return CommandStat(cmd, calls, usec, True)


def split_info_sections(blob: str) -> Dict[str, List[Tuple[str, str]]]:
    """Split an INFO reply into {section: [(key, value), ...]}"""
    sections: Dict[str, List[Tuple[str, str]]] = {}
    current = ''
    for line in blob.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith('#'):
            current = line.lstrip('#').strip().lower()
            sections.setdefault(current, [])
            continue
        if ':' not in line:
            continue
        key, value = line.split(':', 1)
        sections.setdefault(current, []).append((key, value))
    return sections


def parse_info_value(raw: str) -> Optional[float]:
    """Coerce an INFO field value to a float, None if not numeric"""
    raw = raw.strip()
    if raw in STATUS_VALUES:
        return STATUS_VALUES[raw]
    return _parse_float(raw)


def _parse_slave_line(value: str) -> Dict[str, str]:
    # ip=10.0.0.2,port=6380,state=online,offset=1234,lag=0
    result = {}
    for part in value.split(','):
        pair = _split_pair(part)
        if pair is not None:
            result[pair[0]] = pair[1]
    return result


def extract_info_metrics(blob: str) -> List[Measurement]:
    """General INFO parser: allow-listed fields plus replica lines"""
    measurements = []
    for section, pairs in split_info_sections(blob).items():
        for key, value in pairs:
            if section == 'replication' and SLAVE_LINE_RE.fullmatch(key):
                measurements.extend(_slave_measurements(key, value))
                continue

            name = METRIC_RENAMES.get(key)
            if name is None:
                continue
            number = parse_info_value(value)
            if number is None:
                logger.debug(f"Skipping non-numeric INFO field {key}={value!r}")
                continue
            measurements.append(Measurement(name, number))
    return measurements


def _slave_measurements(key: str, value: str) -> List[Measurement]:
    fields = _parse_slave_line(value)
    labels = {
        'slave_ip': fields.get('ip', ''),
        'slave_port': fields.get('port', ''),
        'slave_state': fields.get('state', ''),
    }
    measurements = []
    offset = _parse_float(fields.get('offset', ''))
    if offset is not None:
        measurements.append(Measurement('connected_slave_offset', offset, labels=labels))
    lag = _parse_float(fields.get('lag', ''))
    if lag is not None:
        measurements.append(Measurement('connected_slave_lag_seconds', lag, labels=dict(labels)))
    if not measurements:
        logger.debug(f"Replica line {key} carried no offset or lag: {value!r}")
    return measurements


def extract_instance_info(blob: str) -> Dict[str, str]:
    """role and redis_version, used as labels of the instance_info metric"""
    info = {'role': '', 'redis_version': ''}
    for pairs in split_info_sections(blob).values():
        for key, value in pairs:
            if key in info:
                info[key] = value.strip()
    return info


def extract_keyspace_metrics(blob: str) -> List[Tuple[str, KeyspaceStat]]:
    """Valid (db, KeyspaceStat) pairs of an `INFO keyspace` reply"""
    result = []
    for key, value in split_info_sections(blob).get('keyspace', []):
        stat = parse_db_keyspace_string(key, value)
        if not stat.ok:
            logger.warning(f"Skipping malformed keyspace entry {key}:{value}")
            continue
        result.append((key, stat))
    return result


def extract_command_stats(blob: str) -> List[CommandStat]:
    """Valid CommandStat entries of an `INFO commandstats` reply"""
    result = []
    for key, value in split_info_sections(blob).get('commandstats', []):
        stat = parse_command_stats_string(key, value)
        if not stat.ok:
            logger.warning(f"Skipping malformed commandstats entry {key}:{value}")
            continue
        result.append(stat)
    return result
