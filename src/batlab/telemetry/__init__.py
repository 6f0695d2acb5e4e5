"""
Telemetry acquisition: battery sources, resolution, and system metrics.
"""

from .filters import HampelFilter
from .resolver import ProbeResult, ProbeStatus, SourceResolver, battery_capacity
from .sampler import Sampler
from .sources import (
    BatteryCharging,
    BatterySource,
    OSFamily,
    RateUnavailable,
    SourcePermissionDenied,
    SourceUnavailable,
    battery_sources,
    corroborating_sources,
    detect_os_family,
)
from .system import SystemMetricReader, read_system_info, system_metric_reader

__all__ = [
    "HampelFilter",
    "ProbeResult",
    "ProbeStatus",
    "SourceResolver",
    "battery_capacity",
    "Sampler",
    "BatteryCharging",
    "BatterySource",
    "OSFamily",
    "RateUnavailable",
    "SourcePermissionDenied",
    "SourceUnavailable",
    "battery_sources",
    "corroborating_sources",
    "detect_os_family",
    "SystemMetricReader",
    "read_system_info",
    "system_metric_reader",
]
