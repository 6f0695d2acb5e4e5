"""Resolve one battery reading per tick from a chain of sources."""

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional, Sequence, Set, Tuple

from ..models import BatteryCapacity, BatteryReading, SourceTag
from .filters import HampelFilter
from .sources import (
    BatteryCharging,
    BatterySource,
    RateUnavailable,
    SourcePermissionDenied,
    SourceUnavailable,
)

logger = logging.getLogger(__name__)


class ProbeStatus(str, Enum):
    AVAILABLE = "available"
    CHARGING = "charging"
    NONE = "none"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of the startup source check."""

    status: ProbeStatus
    source: Optional[SourceTag] = None
    detail: str = ""


def battery_capacity(sources: Sequence[BatterySource]) -> Optional[BatteryCapacity]:
    """First capacity any source can report."""
    for source in sources:
        try:
            capacity = source.read_capacity()
        except (SourceUnavailable, OSError) as e:
            logger.debug(f"{source.name}: capacity unavailable ({e})")
            continue
        if capacity is not None and capacity.energy_wh is not None:
            return capacity
    return None


class SourceResolver:
    """
    Walk sources in priority order and produce exactly one reading.

    Falls back to estimating draw from the percentage slope when no source
    reports a usable rate. Never raises.
    """

    def __init__(
        self,
        sources: Sequence[BatterySource],
        corroborators: Sequence[BatterySource] = (),
        capacity: Optional[BatteryCapacity] = None,
        outlier_filter: Optional[HampelFilter] = None,
        sampling_hz: float = 1 / 60,
        corroboration_tolerance: float = 0.15,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sources: List[BatterySource] = list(sources)
        self.corroborators: List[BatterySource] = list(corroborators)
        self.capacity = capacity
        self.outlier_filter = outlier_filter or HampelFilter()
        self.sampling_hz = sampling_hz
        self.corroboration_tolerance = corroboration_tolerance
        self.clock = clock

        self._disabled: Set[str] = set()
        self._last_pct: Optional[Tuple[float, float]] = None  # (percentage, clock)

    @property
    def active_sources(self) -> List[BatterySource]:
        return [s for s in self.sources if s.name not in self._disabled]

    def _disable(self, source: BatterySource, error: SourcePermissionDenied) -> None:
        if source.name in self._disabled:
            return
        self._disabled.add(source.name)
        logger.warning(
            f"{source.name} needs elevated privilege, disabling it for this run. "
            f"Remediation: {error.remediation}"
        )

    def _try_read(self, source: BatterySource) -> Optional[BatteryReading]:
        """Read a corroborating source, ignoring anything but a full reading."""
        if source.name in self._disabled:
            return None
        try:
            return source.read()
        except SourcePermissionDenied as e:
            self._disable(source, e)
        except SourceUnavailable as e:
            logger.debug(f"{source.name}: {e.reason}")
        except (OSError, ValueError) as e:
            logger.warning(f"{source.name}: unexpected read failure: {e}")
        return None

    def _corroborations(self, primary: BatteryReading, others: Sequence[BatterySource]) -> int:
        """Count sources (primary included) agreeing on the primary's watts."""
        count = 1
        for source in others:
            reading = self._try_read(source)
            if reading is None or primary.watts <= 0:
                continue
            if abs(reading.watts - primary.watts) / primary.watts <= self.corroboration_tolerance:
                count += 1
        return count

    def _remember(self, percentage: float) -> Optional[Tuple[float, float]]:
        previous = self._last_pct
        self._last_pct = (percentage, self.clock())
        return previous

    def reset_history(self) -> None:
        self._last_pct = None

    def resolve(self) -> BatteryReading:
        fallback_pct: Optional[float] = None
        chain = self.active_sources

        for index, source in enumerate(chain):
            try:
                reading = source.read()
            except BatteryCharging as e:
                logger.debug(f"{source.name}: {e.reason}")
                self.reset_history()
                return BatteryReading(percentage=None, watts=0.0, source=SourceTag.CHARGING)
            except SourcePermissionDenied as e:
                self._disable(source, e)
                continue
            except RateUnavailable as e:
                logger.debug(f"{source.name}: {e.reason}")
                if fallback_pct is None:
                    fallback_pct = e.percentage
                continue
            except SourceUnavailable as e:
                logger.debug(f"{source.name}: {e.reason}")
                continue
            except (OSError, ValueError) as e:
                logger.warning(f"{source.name}: unexpected read failure: {e}")
                continue

            corroborations = 1
            if reading.watts > self.outlier_filter.ceiling_watts:
                others = chain[index + 1:] + self.corroborators
                corroborations = self._corroborations(reading, others)

            if self.outlier_filter.accepts(reading.watts, corroborations):
                self.outlier_filter.observe(reading.watts)
                self._remember(reading.percentage)
                return replace(reading, corroborations=corroborations)

            logger.warning(
                f"{source.name}: rejected implausible reading of {reading.watts:.2f} W "
                f"({corroborations} source(s) agreeing)"
            )
            fallback_pct = reading.percentage
            break

        return self._estimate_from_slope(fallback_pct)

    def _estimate_from_slope(self, percentage: Optional[float]) -> BatteryReading:
        if percentage is None:
            return BatteryReading(percentage=None, watts=0.0, source=SourceTag.SLOPE)

        previous = self._remember(percentage)
        capacity_wh = self.capacity.energy_wh if self.capacity else None
        if previous is None or capacity_wh is None:
            return BatteryReading(percentage=percentage, watts=0.0, source=SourceTag.SLOPE)

        prev_pct, prev_t = previous
        elapsed = self._last_pct[1] - prev_t
        if elapsed <= 0:
            elapsed = 1.0 / self.sampling_hz

        estimate = (prev_pct - percentage) / 100.0 * capacity_wh * 3600.0 / elapsed
        if not self.outlier_filter.accepts(estimate):
            return BatteryReading(percentage=percentage, watts=0.0, source=SourceTag.SLOPE)

        return BatteryReading(
            percentage=percentage,
            watts=self.outlier_filter.filter(estimate),
            source=SourceTag.SLOPE,
        )

    def probe(self) -> ProbeResult:
        """Check at startup whether any source can report, and whether it is charging."""
        for source in self.active_sources:
            try:
                reading = source.read()
            except BatteryCharging as e:
                return ProbeResult(ProbeStatus.CHARGING, source.tag, e.reason)
            except SourcePermissionDenied as e:
                self._disable(source, e)
                continue
            except RateUnavailable as e:
                return ProbeResult(
                    ProbeStatus.AVAILABLE,
                    source.tag,
                    f"{e.percentage:.0f}%, draw will be estimated from the percentage slope",
                )
            except SourceUnavailable as e:
                logger.debug(f"{source.name}: {e.reason}")
                continue
            except (OSError, ValueError) as e:
                logger.warning(f"{source.name}: unexpected read failure: {e}")
                continue

            return ProbeResult(
                ProbeStatus.AVAILABLE,
                source.tag,
                f"{reading.percentage:.0f}% at {reading.watts:.2f} W",
            )
        return ProbeResult(ProbeStatus.NONE, detail="no battery source responded")
