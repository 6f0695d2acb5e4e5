import logging

import pytest

from batlab.models import BatteryCapacity, SourceTag
from batlab.telemetry.resolver import ProbeStatus, SourceResolver, battery_capacity
from batlab.telemetry.sources import (
    BatteryCharging,
    RateUnavailable,
    SourcePermissionDenied,
    SourceUnavailable,
)


def ticking_clock(*times):
    values = iter(times)
    return lambda: next(values)


def test_first_successful_source_wins(make_source, reading):
    upower = make_source(SourceTag.UPOWER, [reading(85.0, 8.0)])
    sysfs = make_source(SourceTag.SYSFS, [reading(85.0, 9.0, SourceTag.SYSFS)])

    result = SourceResolver([upower, sysfs]).resolve()

    assert result.source == SourceTag.UPOWER
    assert result.watts == 8.0
    assert sysfs.calls == 0


def test_falls_through_unavailable_sources(make_source, reading):
    upower = make_source(SourceTag.UPOWER, [SourceUnavailable("upower", "command not found")])
    sysfs = make_source(SourceTag.SYSFS, [reading(84.0, 9.0, SourceTag.SYSFS)])

    result = SourceResolver([upower, sysfs]).resolve()

    assert result.source == SourceTag.SYSFS
    assert result.percentage == 84.0


def test_charging_stops_the_chain(make_source, reading):
    upower = make_source(SourceTag.UPOWER, [BatteryCharging("upower", "charging")])
    sysfs = make_source(SourceTag.SYSFS, [reading(85.0, 9.0, SourceTag.SYSFS)])

    result = SourceResolver([upower, sysfs]).resolve()

    assert result.source == SourceTag.CHARGING
    assert result.percentage is None
    assert result.watts == 0.0
    assert sysfs.calls == 0


def test_permission_denied_warns_once_and_disables(make_source, reading, caplog):
    upower = make_source(SourceTag.UPOWER, [SourcePermissionDenied("upower", "run batlab as root")])
    sysfs = make_source(SourceTag.SYSFS, [reading(85.0, 9.0, SourceTag.SYSFS)])
    resolver = SourceResolver([upower, sysfs])

    with caplog.at_level(logging.WARNING):
        for _ in range(3):
            assert resolver.resolve().source == SourceTag.SYSFS

    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "run batlab as root" in warnings[0].getMessage()
    assert upower.calls == 1


def test_implausible_reading_falls_back_to_slope(make_source, reading):
    upower = make_source(SourceTag.UPOWER, [reading(80.0, 200.0)])

    result = SourceResolver([upower]).resolve()

    assert result.source == SourceTag.SLOPE
    assert result.percentage == 80.0
    assert result.watts == 0.0


def test_high_reading_accepted_when_corroborated(make_source, reading):
    primary = make_source(SourceTag.ACPICONF, [reading(70.0, 75.0, SourceTag.ACPICONF)])
    sysctl = make_source(SourceTag.SYSCTL, [reading(70.0, 72.0, SourceTag.SYSCTL)])

    result = SourceResolver([primary], corroborators=[sysctl]).resolve()

    assert result.source == SourceTag.ACPICONF
    assert result.watts == 75.0
    assert result.corroborations == 2


def test_high_reading_rejected_when_corroborator_disagrees(make_source, reading):
    primary = make_source(SourceTag.ACPICONF, [reading(70.0, 75.0, SourceTag.ACPICONF)])
    sysctl = make_source(SourceTag.SYSCTL, [reading(70.0, 20.0, SourceTag.SYSCTL)])

    result = SourceResolver([primary], corroborators=[sysctl]).resolve()

    assert result.source == SourceTag.SLOPE


def test_corroborators_not_consulted_for_normal_readings(make_source, reading):
    primary = make_source(SourceTag.ACPICONF, [reading(70.0, 12.0, SourceTag.ACPICONF)])
    sysctl = make_source(SourceTag.SYSCTL, [reading(70.0, 12.0, SourceTag.SYSCTL)])

    SourceResolver([primary], corroborators=[sysctl]).resolve()

    assert sysctl.calls == 0


def test_slope_estimate_from_percentage_drop(make_source):
    upower = make_source(
        SourceTag.UPOWER,
        [RateUnavailable("upower", 80.0), RateUnavailable("upower", 79.0)],
    )
    resolver = SourceResolver(
        [upower],
        capacity=BatteryCapacity(full_wh=50.0),
        clock=ticking_clock(0.0, 60.0),
    )

    first = resolver.resolve()
    second = resolver.resolve()

    assert first.source == SourceTag.SLOPE
    assert first.watts == 0.0
    assert second.source == SourceTag.SLOPE
    assert second.percentage == 79.0
    # 1% of 50 Wh over one minute
    assert second.watts == pytest.approx(30.0)


def test_slope_without_capacity_is_zero(make_source):
    upower = make_source(
        SourceTag.UPOWER,
        [RateUnavailable("upower", 80.0), RateUnavailable("upower", 79.0)],
    )
    resolver = SourceResolver([upower], clock=ticking_clock(0.0, 60.0))

    resolver.resolve()

    assert resolver.resolve().watts == 0.0


def test_rising_percentage_gives_zero_slope(make_source):
    upower = make_source(
        SourceTag.UPOWER,
        [RateUnavailable("upower", 79.0), RateUnavailable("upower", 80.0)],
    )
    resolver = SourceResolver(
        [upower], capacity=BatteryCapacity(full_wh=50.0), clock=ticking_clock(0.0, 60.0)
    )

    resolver.resolve()

    assert resolver.resolve().watts == 0.0


def test_slope_spike_replaced_by_window_median(make_source):
    # Drops of 0.1, 0.12, 0.08, 0.1 then 1.0 percent per minute
    pcts = [80.0, 79.9, 79.78, 79.7, 79.6, 78.6]
    upower = make_source(SourceTag.UPOWER, [RateUnavailable("upower", p) for p in pcts])
    resolver = SourceResolver(
        [upower],
        capacity=BatteryCapacity(full_wh=50.0),
        clock=ticking_clock(*(i * 60.0 for i in range(len(pcts)))),
    )

    watts = [resolver.resolve().watts for _ in pcts]

    assert watts[:5] == pytest.approx([0.0, 3.0, 3.6, 2.4, 3.0])
    # 30 W raw estimate, well inside the hard bounds
    assert watts[5] == pytest.approx(3.0)


def test_charging_resets_slope_history(make_source):
    upower = make_source(
        SourceTag.UPOWER,
        [
            RateUnavailable("upower", 80.0),
            BatteryCharging("upower", "charging"),
            RateUnavailable("upower", 79.0),
        ],
    )
    resolver = SourceResolver(
        [upower], capacity=BatteryCapacity(full_wh=50.0), clock=ticking_clock(0.0, 120.0)
    )

    resolver.resolve()
    assert resolver.resolve().source == SourceTag.CHARGING

    after = resolver.resolve()
    assert after.source == SourceTag.SLOPE
    assert after.watts == 0.0


def test_no_data_at_all_never_raises(make_source):
    upower = make_source(SourceTag.UPOWER, [SourceUnavailable("upower", "command not found")])
    sysfs = make_source(SourceTag.SYSFS, [OSError("I/O error")])

    result = SourceResolver([upower, sysfs]).resolve()

    assert result.source == SourceTag.SLOPE
    assert result.percentage is None
    assert result.watts == 0.0


@pytest.mark.parametrize("case", [
    {
        "id": "available",
        "outcome": "reading",
        "expect": ProbeStatus.AVAILABLE,
    },
    {
        "id": "charging",
        "outcome": BatteryCharging("upower", "fully-charged"),
        "expect": ProbeStatus.CHARGING,
    },
    {
        "id": "percentage_only",
        "outcome": RateUnavailable("upower", 85.0),
        "expect": ProbeStatus.AVAILABLE,
    },
    {
        "id": "nothing",
        "outcome": SourceUnavailable("upower", "command not found"),
        "expect": ProbeStatus.NONE,
    },
], ids=lambda case: case["id"])
def test_probe(case, make_source, reading):
    outcome = reading(85.0, 8.0) if case["outcome"] == "reading" else case["outcome"]
    upower = make_source(SourceTag.UPOWER, [outcome])

    result = SourceResolver([upower]).probe()

    assert result.status == case["expect"]


def test_battery_capacity_first_reported(make_source):
    none = make_source(SourceTag.UPOWER, [], capacity=None)
    sysfs = make_source(SourceTag.SYSFS, [], capacity=BatteryCapacity(design_wh=57.0))

    assert battery_capacity([none, sysfs]).energy_wh == 57.0
    assert battery_capacity([none]) is None
