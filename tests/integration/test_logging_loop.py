import json
import math
import os
import signal
import sys
from datetime import datetime, timedelta, timezone

import pytest

from batlab.analysis.report import analyze_run
from batlab.analysis.stats import RunSummary
from batlab.collect.logger import (
    CancellationToken,
    LoggingAborted,
    LoggingContext,
    TelemetryLogger,
    install_signal_handlers,
    restore_signal_handlers,
)
from batlab.collect.sink import SampleSink
from batlab.models import BatteryCapacity, RunMetadata, SourceTag
from batlab.telemetry.resolver import SourceResolver
from batlab.telemetry.sampler import Sampler
from batlab.telemetry.sources import BatteryCharging, RateUnavailable

T0 = datetime(2025, 1, 15, 14, 30, tzinfo=timezone.utc)

RUN_ID = "2025-01-15T14:30:00Z_laptop_linux_powersave_idle"


def minute_clock():
    ticks = iter(range(10_000))
    return lambda: T0 + timedelta(minutes=next(ticks))


def metadata(hz=1 / 60):
    return RunMetadata(
        run_id=RUN_ID,
        host="laptop",
        os="linux",
        config="powersave",
        workload="idle",
        start_time=T0,
        sampling_hz=hz,
    )


def make_logger(sampler, path, max_samples=None, token=None):
    context = LoggingContext(
        metadata=metadata(),
        sampler=sampler,
        sink=SampleSink(path, flush_every=1),
        interval=0.0,
        token=token or CancellationToken(),
        max_samples=max_samples,
    )
    return TelemetryLogger(context)


class ScriptedSampler:
    """Replays samples or exceptions, then repeats the last one."""

    def __init__(self, outcomes, on_call=None):
        self.outcomes = list(outcomes)
        self.calls = 0
        self.on_call = on_call

    def sample(self):
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if self.on_call:
            self.on_call(self.calls)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_logged_run_can_be_analyzed(tmp_path, make_source, reading, fixed_metrics):
    pcts = [90.0 - i * 0.5 for i in range(12)]
    upower = make_source(SourceTag.UPOWER, [reading(p, 8.0 + (i % 2)) for i, p in enumerate(pcts)])
    sampler = Sampler(SourceResolver([upower]), fixed_metrics, clock=minute_clock())
    path = tmp_path / f"{RUN_ID}.jsonl"
    path.with_suffix(".meta.json").write_text(json.dumps(metadata().to_dict()))

    stats = make_logger(sampler, path, max_samples=12).run()

    assert stats.samples == 12
    assert stats.errors == 0
    assert stats.sources == {"upower": 12}

    summary = analyze_run(path, min_valid_samples=10)
    assert isinstance(summary, RunSummary)
    assert summary.config == "powersave"
    assert summary.workload == "idle"
    assert summary.samples_valid == 12
    assert summary.avg_watts == pytest.approx(8.5)
    assert summary.pct_drop == pytest.approx(5.5)
    assert summary.duration_s == pytest.approx(660.0)
    assert summary.duration_source == "timestamps"


def test_charging_and_slope_samples_are_tagged(tmp_path, make_source, fixed_metrics):
    upower = make_source(
        SourceTag.UPOWER,
        [
            RateUnavailable("upower", 80.0),
            RateUnavailable("upower", 79.0),
            BatteryCharging("upower", "charging"),
        ],
    )
    resolver = SourceResolver([upower], capacity=BatteryCapacity(full_wh=50.0))
    sampler = Sampler(resolver, fixed_metrics, clock=minute_clock())
    path = tmp_path / "run.jsonl"

    make_logger(sampler, path, max_samples=3).run()

    records = [json.loads(line) for line in path.read_text().splitlines()]
    assert [r["src"] for r in records] == ["slope", "slope", "charging"]
    assert records[2]["pct"] is None
    assert records[2]["watts"] == 0.0


def test_cancellation_stops_the_loop(tmp_path, make_sample):
    token = CancellationToken()
    sampler = ScriptedSampler(
        [make_sample(85.0, 8.0, offset_s=0)],
        on_call=lambda calls: token.cancel() if calls == 3 else None,
    )
    path = tmp_path / "run.jsonl"

    stats = make_logger(sampler, path, token=token).run()

    assert stats.samples == 3
    assert len(path.read_text().splitlines()) == 3


def test_cancelled_before_start_writes_nothing(tmp_path, make_sample):
    token = CancellationToken()
    token.cancel()
    path = tmp_path / "run.jsonl"

    stats = make_logger(ScriptedSampler([make_sample(85.0, 8.0)]), path, token=token).run()

    assert stats.samples == 0
    assert path.read_text() == ""


def test_unwritable_sample_counts_as_error(tmp_path, make_sample):
    sampler = ScriptedSampler([
        make_sample(85.0, 8.0),
        make_sample(85.0, math.nan),
        make_sample(84.0, 8.0),
    ])
    path = tmp_path / "run.jsonl"

    stats = make_logger(sampler, path, max_samples=2).run()

    assert stats.samples == 2
    assert stats.errors == 1
    assert len(path.read_text().splitlines()) == 2


def test_persistent_failure_aborts_at_startup(tmp_path):
    sampler = ScriptedSampler([OSError("device vanished")])

    with pytest.raises(LoggingAborted):
        make_logger(sampler, tmp_path / "run.jsonl").run()

    assert sampler.calls == 11


def test_failures_after_first_sample_do_not_abort(tmp_path, make_sample):
    outcomes = [make_sample(85.0, 8.0)] + [OSError("flaky")] * 15 + [make_sample(84.0, 8.0)]
    sampler = ScriptedSampler(outcomes)

    stats = make_logger(sampler, tmp_path / "run.jsonl", max_samples=2).run()

    assert stats.samples == 2
    assert stats.errors == 15


class FakeTime:
    """Clock and sleep sharing one virtual timeline."""

    def __init__(self, on_sleep=None):
        self.now = 0.0
        self.sleeps = []
        self.on_sleep = on_sleep

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep:
            self.on_sleep(len(self.sleeps))


def test_wait_sleeps_in_short_slices():
    fake = FakeTime()
    token = CancellationToken(sleep=fake.sleep)

    assert token.wait(0.25, clock=fake.clock) is False
    assert fake.sleeps == pytest.approx([0.1, 0.1, 0.05])


def test_wait_returns_early_on_cancel():
    token = None
    fake = FakeTime(on_sleep=lambda n: token.cancel() if n == 2 else None)
    token = CancellationToken(sleep=fake.sleep)

    assert token.wait(60.0, clock=fake.clock) is True
    assert len(fake.sleeps) == 2


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
def test_sigint_cancels_token():
    token = CancellationToken()
    previous = install_signal_handlers(token)
    try:
        os.kill(os.getpid(), signal.SIGINT)
        assert token.wait(1.0) is True
    finally:
        restore_signal_handlers(previous)

    assert signal.getsignal(signal.SIGINT) is previous[signal.SIGINT]
