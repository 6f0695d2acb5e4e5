"""Per-run statistics over telemetry samples."""

import math
from dataclasses import asdict, dataclass
from typing import List, Optional, Sequence, Union

import numpy as np

from ..models import RunIdentity, TelemetrySample

NOMINAL_HZ = 1 / 60
LOW_CONFIDENCE_RATIO = 0.5


@dataclass(frozen=True)
class RunSummary:
    run_id: str
    os: str
    config: str
    workload: Optional[str]
    samples_total: int
    samples_valid: int
    avg_watts: float
    median_watts: float
    p95_watts: float
    avg_cpu_load: float
    avg_ram_pct: float
    avg_temp_c: float
    start_pct: float
    end_pct: float
    pct_drop: float
    duration_s: float
    duration_source: str  # "timestamps" or "cadence"
    low_confidence: bool
    charging_contaminated: bool

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Rejected:
    """A run left out of the summaries, with the reason."""

    run_id: str
    reason: str
    samples_valid: int = 0
    samples_total: int = 0


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """
    Percentile by linear interpolation at index p*(n-1).

    Args:
        sorted_values: Values in ascending order
        p: Fraction in [0, 1]

    Raises:
        ValueError: If there are no values or p is out of range
    """
    n = len(sorted_values)
    if n == 0:
        raise ValueError("percentile of an empty sequence")
    if not 0.0 <= p <= 1.0:
        raise ValueError(f"p must be in [0, 1], got {p}")

    index = p * (n - 1)
    lower = math.floor(index)
    upper = math.ceil(index)
    if lower == upper:
        return float(sorted_values[lower])
    fraction = index - lower
    return float(sorted_values[lower]) + (
        float(sorted_values[upper]) - float(sorted_values[lower])
    ) * fraction


def is_valid(sample: TelemetrySample, max_watts: float = 100.0) -> bool:
    """Percentage in [0, 100], watts in [0, max_watts), everything finite."""
    if sample.percentage is None or not sample.has_finite_values():
        return False
    if not 0.0 <= sample.percentage <= 100.0:
        return False
    return 0.0 <= sample.watts < max_watts


def _duration(valid: List[TelemetrySample], sampling_hz: Optional[float], nominal_hz: float) -> tuple:
    timestamps = [s.timestamp for s in valid]
    if all(ts is not None for ts in timestamps):
        ordered = all(a <= b for a, b in zip(timestamps, timestamps[1:]))
        span = (timestamps[-1] - timestamps[0]).total_seconds()
        if ordered and span > 0:
            return span, "timestamps"

    hz = sampling_hz if sampling_hz and sampling_hz > 0 else nominal_hz
    return (len(valid) - 1) / hz, "cadence"


def summarize(
    samples: Sequence[TelemetrySample],
    min_valid_samples: int,
    *,
    identity: Optional[RunIdentity] = None,
    unparsed: int = 0,
    sampling_hz: Optional[float] = None,
    max_watts: float = 100.0,
    nominal_hz: float = NOMINAL_HZ,
) -> Union[RunSummary, Rejected]:
    """
    Reduce a run to summary statistics, or reject it.

    Args:
        samples: Parsed samples in log order
        min_valid_samples: Fewer valid samples than this rejects the run
        identity: Labels copied into the summary
        unparsed: Log lines that failed to parse; they count toward the total
        sampling_hz: Recorded sampling rate, for cadence-based duration
        max_watts: Sanity ceiling for valid samples
        nominal_hz: Rate assumed when neither timestamps nor sampling_hz help
    """
    identity = identity or RunIdentity(run_id="unknown", config="unknown", workload=None, os="unknown")
    total = len(samples) + unparsed
    valid = [s for s in samples if is_valid(s, max_watts)]

    if not valid or len(valid) < min_valid_samples:
        return Rejected(
            run_id=identity.run_id,
            reason=f"insufficient samples ({len(valid)} valid, need {min_valid_samples})",
            samples_valid=len(valid),
            samples_total=total,
        )

    watts = np.sort(np.array([s.watts for s in valid], dtype=float))
    start_pct = valid[0].percentage
    end_pct = valid[-1].percentage
    raw_drop = start_pct - end_pct
    duration_s, duration_source = _duration(valid, sampling_hz, nominal_hz)

    return RunSummary(
        run_id=identity.run_id,
        os=identity.os,
        config=identity.config,
        workload=identity.workload,
        samples_total=total,
        samples_valid=len(valid),
        avg_watts=float(np.mean(watts)),
        median_watts=percentile(watts, 0.5),
        p95_watts=percentile(watts, 0.95),
        avg_cpu_load=float(np.mean([s.cpu_load for s in valid])),
        avg_ram_pct=float(np.mean([s.ram_pct for s in valid])),
        avg_temp_c=float(np.mean([s.temp_c for s in valid])),
        start_pct=start_pct,
        end_pct=end_pct,
        pct_drop=max(0.0, raw_drop),
        duration_s=duration_s,
        duration_source=duration_source,
        low_confidence=len(valid) / total < LOW_CONFIDENCE_RATIO,
        charging_contaminated=raw_drop < 0,
    )
