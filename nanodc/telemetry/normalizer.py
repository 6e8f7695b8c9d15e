"""
Telemetry normalizer.

Turns a raw usage sample into a fixed set of percentage-scaled metrics.
A metric that the node does not report keeps ``percentage=None`` (or is
left out entirely for the optional metrics) so it is never drawn as a
0% bar; a reported ``"0"`` stays 0.0.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from .schemas import HardwareSpec, UsageSample

UNSET_LABEL = "N/A"


class MetricCategory(str, Enum):
    UTILIZATION = "utilization"
    THERMAL = "thermal"
    STORAGE = "storage"
    HEALTH = "health"


@dataclass(frozen=True)
class NormalizedMetric:
    """One graph-ready metric on the shared 0-100 scale."""

    name: str
    percentage: Optional[float]
    raw_value_label: str
    category: MetricCategory

    @property
    def is_set(self) -> bool:
        return self.percentage is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "percentage": self.percentage,
            "label": self.raw_value_label,
            "category": self.category.value,
        }


@dataclass(frozen=True)
class ExtendedMetrics:
    """
    Normalized metrics of one node.

    ``cpu``, ``memory``, ``gpu`` and ``storage`` are always present; the
    remaining fields are None unless the node reports them.
    """

    cpu: NormalizedMetric
    memory: NormalizedMetric
    gpu: NormalizedMetric
    storage: NormalizedMetric
    gpu_temperature: Optional[NormalizedMetric] = None
    cpu_temperature: Optional[NormalizedMetric] = None
    ssd_health: Optional[NormalizedMetric] = None
    gpu_vram: Optional[NormalizedMetric] = None

    def all(self) -> List[NormalizedMetric]:
        metrics = [
            self.cpu,
            self.memory,
            self.gpu,
            self.storage,
            self.gpu_temperature,
            self.cpu_temperature,
            self.ssd_health,
            self.gpu_vram,
        ]
        return [m for m in metrics if m is not None]

    def present(self) -> List[NormalizedMetric]:
        """Metrics that carry data, in display order."""
        return [m for m in self.all() if m.is_set]

    def to_dict(self) -> Dict[str, Any]:
        return {
            field: (getattr(self, field).to_dict() if getattr(self, field) is not None else None)
            for field in self.__dataclass_fields__
        }


def parse_number(raw: Optional[str]) -> Optional[float]:
    """Parse a decimal string from the service; anything unusable is None."""
    if raw is None:
        return None
    try:
        value = float(str(raw).strip())
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def clamp_percentage(value: float) -> float:
    return min(100.0, max(0.0, value))


def format_number(value: float) -> str:
    """57.30 -> "57.3", 65.0 -> "65"."""
    return f"{value:.1f}".rstrip("0").rstrip(".")


def thermal_band(celsius: Optional[float]) -> Optional[str]:
    """Coarse temperature band shown next to thermal gauges."""
    if celsius is None:
        return None
    if celsius < 30:
        return "Cool"
    if celsius < 60:
        return "Normal"
    if celsius < 80:
        return "Warm"
    return "Hot"


def _percent_metric(name: str, raw: Optional[str], category: MetricCategory) -> NormalizedMetric:
    value = parse_number(raw)
    if value is None:
        return NormalizedMetric(name, None, UNSET_LABEL, category)
    return NormalizedMetric(name, clamp_percentage(value), f"{format_number(value)}%", category)


def _optional_percent_metric(name: str, raw: Optional[str], category: MetricCategory) -> Optional[NormalizedMetric]:
    if parse_number(raw) is None:
        return None
    return _percent_metric(name, raw, category)


def _temperature_metric(name: str, raw: Optional[str]) -> Optional[NormalizedMetric]:
    # Gauges span 0-100 degrees, so the rescale onto 0-100% is a clamp
    celsius = parse_number(raw)
    if celsius is None:
        return None
    return NormalizedMetric(name, clamp_percentage(celsius), f"{format_number(celsius)}°C", MetricCategory.THERMAL)


def _storage_metric(usage: Optional[UsageSample], spec: Optional[HardwareSpec]) -> NormalizedMetric:
    used_gb = parse_number(usage.used_storage_gb) if usage else None
    percentage = parse_number(usage.harddisk_used_percent) if usage else None

    if percentage is None and used_gb is not None and spec is not None:
        total_gb = parse_number(spec.storage_total_gb) or parse_number(spec.total_harddisk_gb)
        if total_gb:
            percentage = used_gb / total_gb * 100.0

    if percentage is not None:
        percentage = clamp_percentage(percentage)

    if used_gb is not None:
        label = f"{used_gb:.0f}GB"
    elif percentage is not None:
        label = f"{format_number(percentage)}%"
    else:
        label = UNSET_LABEL
    return NormalizedMetric("storage", percentage, label, MetricCategory.STORAGE)


def normalize(usage: Optional[UsageSample], spec: Optional[HardwareSpec] = None) -> ExtendedMetrics:
    """
    Normalize one usage sample.

    Args:
        usage: Latest usage sample of the node, or None if it reported none
        spec: Hardware spec of the node, used to derive the storage percentage
            when the sample only carries an absolute figure

    Returns:
        ExtendedMetrics: The normalized metrics
    """
    get = (lambda field: getattr(usage, field)) if usage is not None else (lambda field: None)

    return ExtendedMetrics(
        cpu=_percent_metric("cpu", get("cpu_usage_percent"), MetricCategory.UTILIZATION),
        memory=_percent_metric("memory", get("mem_usage_percent"), MetricCategory.UTILIZATION),
        gpu=_percent_metric("gpu", get("gpu_usage_percent"), MetricCategory.UTILIZATION),
        storage=_storage_metric(usage, spec),
        gpu_temperature=_temperature_metric("gpu_temperature", get("gpu_temp")),
        cpu_temperature=_temperature_metric("cpu_temperature", get("cpu_temp")),
        ssd_health=_optional_percent_metric("ssd_health", get("ssd_health_percent"), MetricCategory.HEALTH),
        gpu_vram=_optional_percent_metric("gpu_vram", get("gpu_vram_percent"), MetricCategory.UTILIZATION),
    )
