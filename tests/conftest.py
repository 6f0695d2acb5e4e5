import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from batlab.models import BatteryReading, SourceTag, SystemMetrics, TelemetrySample
from batlab.telemetry.sources import BatterySource
from batlab.telemetry.system import SystemMetricReader

T0 = datetime(2025, 1, 15, 14, 30, tzinfo=timezone.utc)
DATA_DIR = Path(__file__).parent / "data"


class ScriptedSource(BatterySource):
    """Battery source replaying a list of readings or exceptions (last one repeats)."""

    def __init__(self, tag, outcomes, capacity=None):
        self.tag = tag
        self.outcomes = list(outcomes)
        self.capacity = capacity
        self.calls = 0

    def read(self):
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def read_capacity(self):
        return self.capacity


class FixedMetrics(SystemMetricReader):
    def __init__(self, metrics=SystemMetrics(cpu_load=0.5, ram_pct=40.0, temp_c=45.0)):
        self.metrics = metrics

    def read(self):
        return self.metrics


@pytest.fixture
def upower_info():
    return (DATA_DIR / "upower_info.txt").read_text()


@pytest.fixture
def upower_devices():
    return (DATA_DIR / "upower_devices.txt").read_text()


@pytest.fixture
def acpiconf_info():
    return (DATA_DIR / "acpiconf_info.txt").read_text()


@pytest.fixture
def make_source():
    def _make(tag, outcomes, capacity=None):
        return ScriptedSource(tag, outcomes, capacity)

    return _make


@pytest.fixture
def fixed_metrics():
    return FixedMetrics()


@pytest.fixture
def reading():
    def _reading(pct, watts, tag=SourceTag.UPOWER):
        return BatteryReading(percentage=pct, watts=watts, source=tag)

    return _reading


@pytest.fixture
def make_sample():
    def _make(pct, watts, offset_s=None, cpu=0.5, ram=40.0, temp=45.0, src="upower"):
        return TelemetrySample(
            timestamp=T0 + timedelta(seconds=offset_s) if offset_s is not None else None,
            percentage=pct,
            watts=watts,
            cpu_load=cpu,
            ram_pct=ram,
            temp_c=temp,
            source=src,
        )

    return _make


@pytest.fixture
def write_run(tmp_path):
    """Write samples as a run log (plus optional sidecar) and return the log path."""

    def _write(run_id, samples, metadata=None, directory=None):
        directory = directory or tmp_path
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{run_id}.jsonl"
        path.write_text("".join(s.to_json() + "\n" for s in samples))
        if metadata is not None:
            (directory / f"{run_id}.meta.json").write_text(json.dumps(metadata, indent=2))
        return path

    return _write
