#!/usr/bin/env python3
"""
Result Table - per-poll metric materialization

A ResultTable is created for one collect() call, fed every measurement of
that call's scrape and then turned into metric families. It is never
shared between calls, so it needs no locking.
"""

import logging
from typing import Dict, List, Sequence, Set, Tuple

from redis_exporter.parser import Measurement
from redis_exporter.prometheus_wrapper import BaseMetricWrapper, MetricFactory, MetricFamily


class ResultTable:
    """
    Groups measurements into one metric family per name.

    A measurement repeating an already seen name and label set is a
    configuration error; it is logged and dropped, never summed.
    """

    def __init__(self, factory: MetricFactory, descriptions: Dict[str, str]):
        self.factory = factory
        self.descriptions = descriptions
        self._families: Dict[str, BaseMetricWrapper] = {}
        self._seen: Set[Tuple[str, Tuple[str, ...]]] = set()
        self.logger = logging.getLogger(__name__)

    def _family(self, name: str, labelnames: Sequence[str], counter: bool = False) -> BaseMetricWrapper:
        wrapper = self._families.get(name)
        if wrapper is None:
            documentation = self.descriptions.get(name, f"Redis metric {name}")
            if counter:
                wrapper = self.factory.counter(name, documentation, labelnames)
            else:
                wrapper = self.factory.gauge(name, documentation, labelnames)
            self._families[name] = wrapper
        return wrapper

    def _add(self, name: str, value: float, labels: Dict[str, str], counter: bool = False) -> bool:
        labelnames = list(labels)
        wrapper = self._family(name, labelnames, counter)
        if wrapper.labelnames != labelnames:
            self.logger.error(
                f"Dropping {name} with labels {labelnames}, "
                f"family already uses {wrapper.labelnames}"
            )
            return False

        key = (name, tuple(labels.values()))
        if key in self._seen:
            self.logger.error(f"Duplicate measurement for {name} {labels}, keeping the first value")
            return False
        self._seen.add(key)
        wrapper.add(value, **labels)
        return True

    def add_measurement(self, measurement: Measurement) -> bool:
        """Add one scraped measurement with its target labels"""
        labels = {'addr': measurement.addr, 'alias': measurement.alias}
        if measurement.db is not None:
            labels['db'] = measurement.db
        for name in sorted(measurement.labels or {}):
            labels[name] = measurement.labels[name]
        return self._add(measurement.name, measurement.value, labels)

    def add_gauge(self, name: str, value: float, labels: Dict[str, str] = None) -> bool:
        return self._add(name, value, labels or {})

    def add_counter(self, name: str, value: float, labels: Dict[str, str] = None) -> bool:
        return self._add(name, value, labels or {}, counter=True)

    def families(self) -> List[MetricFamily]:
        return [wrapper.family for wrapper in self._families.values()]

    def __len__(self):
        return len(self._families)

    def __contains__(self, name: str):
        return name in self._families

    def __repr__(self):
        return f"ResultTable(families={len(self._families)}, samples={len(self._seen)})"
