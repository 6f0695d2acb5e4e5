"""Combine battery and system readings into one sample per tick."""

from datetime import datetime, timezone
from typing import Callable

from ..models import TelemetrySample
from .resolver import SourceResolver
from .system import SystemMetricReader


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Sampler:
    """Produce immutable samples; the resolver and metric reader never abort a tick."""

    def __init__(
        self,
        resolver: SourceResolver,
        metrics_reader: SystemMetricReader,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.resolver = resolver
        self.metrics_reader = metrics_reader
        self.clock = clock

    def sample(self) -> TelemetrySample:
        timestamp = self.clock()
        battery = self.resolver.resolve()
        metrics = self.metrics_reader.read()
        return TelemetrySample(
            timestamp=timestamp,
            percentage=battery.percentage,
            watts=battery.watts,
            cpu_load=metrics.cpu_load,
            ram_pct=metrics.ram_pct,
            temp_c=metrics.temp_c,
            source=battery.source.value,
        )
