#!/usr/bin/env python3
"""
Prometheus Metrics Wrapper

Metric family wrappers that apply the namespace prefix and default labels
(environment, region, ...) to every sample a collector yields.
"""

from typing import Dict, List, Sequence, Union

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

MetricFamily = Union[GaugeMetricFamily, CounterMetricFamily]


class BaseMetricWrapper:
    """Base class for metric family wrappers with default labels"""

    def __init__(self, family: MetricFamily, labelnames: Sequence[str],
                 default_labels: Dict[str, str] = None):
        """
        Initialize the wrapper

        Args:
            family: Prometheus metric family instance
            labelnames: Label names of the family, defaults excluded
            default_labels: Default labels to apply to all samples
        """
        self._family = family
        self._default_labels = default_labels or {}
        self.labelnames = list(labelnames)

    @property
    def family(self) -> MetricFamily:
        return self._family

    def _merge_labels(self, additional_labels: Dict[str, str] = None) -> List[str]:
        """Default label values followed by the family's own label values"""
        labels = list(self._default_labels.values())
        additional_labels = additional_labels or {}
        labels.extend(str(additional_labels.get(name, '')) for name in self.labelnames)
        return labels

    def add(self, value: float, **labels):
        """Add one sample with default labels merged"""
        self._family.add_metric(self._merge_labels(labels), value)


class GaugeWrapper(BaseMetricWrapper):
    """Wrapper for GaugeMetricFamily with default labels"""


class CounterWrapper(BaseMetricWrapper):
    """Wrapper for CounterMetricFamily with default labels"""


class MetricFactory:
    """Factory class to create metric families with namespace and default labels"""

    def __init__(self, namespace: str = '', default_labels: Dict[str, str] = None):
        """
        Initialize metric factory

        Args:
            namespace: Prefix prepended to every metric name
            default_labels: Default labels to apply to all metrics
        """
        self.namespace = namespace
        self.default_labels = default_labels or {}

    def full_name(self, name: str) -> str:
        if self.namespace:
            return f"{self.namespace}_{name}"
        return name

    def _all_labelnames(self, labelnames: Sequence[str] = None) -> List[str]:
        return list(self.default_labels.keys()) + list(labelnames or [])

    def gauge(self, name: str, documentation: str, labelnames: Sequence[str] = None) -> GaugeWrapper:
        """Create a gauge family with default labels"""
        family = GaugeMetricFamily(
            self.full_name(name),
            documentation,
            labels=self._all_labelnames(labelnames)
        )
        return GaugeWrapper(family, labelnames or [], self.default_labels)

    def counter(self, name: str, documentation: str, labelnames: Sequence[str] = None) -> CounterWrapper:
        """Create a counter family with default labels"""
        family = CounterMetricFamily(
            self.full_name(name),
            documentation,
            labels=self._all_labelnames(labelnames)
        )
        return CounterWrapper(family, labelnames or [], self.default_labels)
