"""Data models for battery telemetry collection."""

import json
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class RecordParseError(ValueError):
    """A persisted record could not be turned into a sample."""

    pass


class SourceTag(str, Enum):
    """How the battery part of a sample was obtained."""

    UPOWER = "upower"
    SYSFS = "sysfs"
    ACPICONF = "acpiconf"
    SYSCTL = "sysctl"
    SLOPE = "slope"  # Estimated from percentage change, or no data at all
    CHARGING = "charging"  # Battery not discharging, percentage withheld


def format_timestamp(ts: datetime) -> str:
    """Format an aware datetime as ISO-8601 UTC with a trailing Z."""
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, returning None when unusable."""
    if not isinstance(value, str) or not value:
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    # Older logs carry nanosecond fractions which fromisoformat rejects
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        rest = tail
        while rest and rest[0].isdigit():
            digits += rest[0]
            rest = rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"

    try:
        ts = datetime.fromisoformat(text)
    except ValueError:
        return None

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _number(record: dict, key: str, default: Optional[float] = 0.0) -> Optional[float]:
    value = record.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RecordParseError(f"Field '{key}' is not numeric: {value!r}")
    return float(value)


@dataclass(frozen=True)
class TelemetrySample:
    """
    One telemetry reading taken at a single tick.

    Serialized as one JSON object per line:
    {"t": ..., "pct": ..., "watts": ..., "cpu_load": ..., "ram_pct": ...,
     "temp_c": ..., "src": ...}
    """

    timestamp: Optional[datetime]  # UTC
    percentage: Optional[float]  # 0-100, None when unknown
    watts: float  # Instantaneous draw, 0 when unavailable
    cpu_load: float  # 1-minute load average
    ram_pct: float  # RAM used (0-100)
    temp_c: float  # 0 when no sensor produced a value
    source: str  # SourceTag value

    def to_record(self) -> dict:
        """Convert to the per-line record layout."""
        return {
            "t": format_timestamp(self.timestamp) if self.timestamp else None,
            "pct": self.percentage,
            "watts": self.watts,
            "cpu_load": self.cpu_load,
            "ram_pct": self.ram_pct,
            "temp_c": self.temp_c,
            "src": str(self.source.value if isinstance(self.source, SourceTag) else self.source),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_record(), separators=(",", ":"), allow_nan=False)

    @classmethod
    def from_record(cls, record: Any) -> "TelemetrySample":
        """
        Build a sample from a decoded record.

        Raises:
            RecordParseError: If the record is not an object or has no usable watts
        """
        if not isinstance(record, dict):
            raise RecordParseError(f"Record is not an object: {type(record).__name__}")
        if "watts" not in record:
            raise RecordParseError("Record has no 'watts' field")

        watts = _number(record, "watts", None)
        if watts is None:
            raise RecordParseError("Field 'watts' is null")

        source = record.get("src") or "unknown"

        return cls(
            timestamp=parse_timestamp(record.get("t")),
            percentage=_number(record, "pct", None),
            watts=watts,
            cpu_load=_number(record, "cpu_load") or 0.0,
            ram_pct=_number(record, "ram_pct") or 0.0,
            temp_c=_number(record, "temp_c") or 0.0,
            source=str(source),
        )

    def has_finite_values(self) -> bool:
        values = [self.watts, self.cpu_load, self.ram_pct, self.temp_c]
        if self.percentage is not None:
            values.append(self.percentage)
        return all(math.isfinite(v) for v in values)


@dataclass(frozen=True)
class BatteryReading:
    """Battery part of a sample as returned by a source or the resolver."""

    percentage: Optional[float]
    watts: float
    source: SourceTag
    corroborations: int = 1  # Sources agreeing on watts in the same tick


@dataclass(frozen=True)
class BatteryCapacity:
    """Battery energy capacity in watt-hours."""

    design_wh: Optional[float] = None
    full_wh: Optional[float] = None

    @property
    def energy_wh(self) -> Optional[float]:
        """Best capacity for slope estimation (last full, then design)."""
        for value in (self.full_wh, self.design_wh):
            if value is not None and value > 0:
                return value
        return None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SystemMetrics:
    """Supplementary per-tick system metrics."""

    cpu_load: float = 0.0
    ram_pct: float = 0.0
    temp_c: float = 0.0


@dataclass(frozen=True)
class SystemInfo:
    """Host description recorded in run metadata."""

    hostname: str
    os: str
    kernel: str
    cpu: str
    machine: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RunIdentity:
    """Who/what a run was: identifier plus its comparison labels."""

    run_id: str
    config: str
    workload: Optional[str]
    os: str


@dataclass
class RunMetadata:
    """Sidecar written next to each run log (<run_id>.meta.json)."""

    run_id: str
    host: str
    os: str
    config: str
    start_time: datetime
    sampling_hz: float
    workload: Optional[str] = None
    kernel: str = ""
    cpu: str = ""
    machine: str = ""
    battery_capacity: Optional[BatteryCapacity] = None
    extra: dict = field(default_factory=dict)

    def identity(self) -> RunIdentity:
        return RunIdentity(
            run_id=self.run_id,
            config=self.config,
            workload=self.workload,
            os=self.os,
        )

    def to_dict(self) -> dict:
        d = {
            "run_id": self.run_id,
            "host": self.host,
            "os": self.os,
            "kernel": self.kernel,
            "cpu": self.cpu,
            "machine": self.machine,
            "config": self.config,
            "workload": self.workload,
            "start_time": format_timestamp(self.start_time),
            "sampling_hz": self.sampling_hz,
            "battery_capacity": (
                self.battery_capacity.to_dict() if self.battery_capacity else None
            ),
        }
        d.update(self.extra)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "RunMetadata":
        """
        Build metadata from a decoded sidecar.

        Raises:
            KeyError: If run_id or config is missing
            ValueError: If sampling_hz is not a number
        """
        known = {
            "run_id", "host", "os", "kernel", "cpu", "machine", "config",
            "workload", "start_time", "sampling_hz", "battery_capacity",
        }
        capacity = data.get("battery_capacity")
        start_time = parse_timestamp(data.get("start_time"))

        return cls(
            run_id=str(data["run_id"]),
            host=str(data.get("host") or "unknown"),
            os=str(data.get("os") or "unknown"),
            config=str(data["config"]),
            start_time=start_time or datetime.fromtimestamp(0, timezone.utc),
            sampling_hz=float(data.get("sampling_hz") or 0.0),
            workload=data.get("workload") or None,
            kernel=str(data.get("kernel") or ""),
            cpu=str(data.get("cpu") or ""),
            machine=str(data.get("machine") or ""),
            battery_capacity=(
                BatteryCapacity(
                    design_wh=capacity.get("design_wh"),
                    full_wh=capacity.get("full_wh"),
                )
                if isinstance(capacity, dict)
                else None
            ),
            extra={k: v for k, v in data.items() if k not in known},
        )
