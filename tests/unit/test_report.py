import json
import math

import pytest

from batlab.analysis.report import (
    EXPORT_COLUMNS,
    BatchResult,
    analyze_runs,
    grouped_stats,
    render_csv,
    render_json,
    render_table,
    summaries_frame,
)
from batlab.analysis.stats import Rejected, summarize
from batlab.models import RunIdentity


@pytest.fixture
def make_summary(make_sample):
    def _make(run_id, config, watts, workload=None, os_name="linux", pcts=(90.0, 85.0)):
        samples = [make_sample(pct, watts) for pct in pcts]
        identity = RunIdentity(run_id=run_id, config=config, workload=workload, os=os_name)
        return summarize(samples, min_valid_samples=1, identity=identity)

    return _make


@pytest.fixture
def batch(make_summary):
    return BatchResult(
        summaries=[
            make_summary("r1", "a", 10.0, workload="idle"),
            make_summary("r2", "a", 12.0, workload="idle"),
            make_summary("r3", "b", 8.0, os_name="bsd"),
        ],
        rejected=[Rejected(run_id="r4", reason="insufficient samples (3 valid, need 10)")],
    )


def test_summaries_frame_columns(batch):
    frame = summaries_frame(batch.summaries)

    assert list(frame.columns) == EXPORT_COLUMNS
    assert len(frame) == 3
    assert frame.loc[0, "samples_ok"] == 2


def test_empty_frame_keeps_columns():
    assert list(summaries_frame([]).columns) == EXPORT_COLUMNS


def test_grouped_stats_against_baseline(batch):
    groups = grouped_stats(summaries_frame(batch.summaries), "config", baseline="a")

    a, b = groups.to_dict("records")
    assert a["group"] == "a"
    assert a["runs"] == 2
    assert a["avg_watts_mean"] == pytest.approx(11.0)
    assert a["avg_watts_stddev"] == pytest.approx(1.0)
    assert a["vs_baseline_pct"] == pytest.approx(0.0)
    assert b["avg_watts_mean"] == pytest.approx(8.0)
    assert b["avg_watts_stddev"] == pytest.approx(0.0)
    assert b["vs_baseline_pct"] == pytest.approx(27.27, abs=0.01)


def test_grouped_stats_without_baseline(batch):
    groups = grouped_stats(summaries_frame(batch.summaries), "os")

    assert list(groups["group"]) == ["bsd", "linux"]
    assert groups["vs_baseline_pct"].isna().all()


def test_grouped_stats_missing_workload_grouped_as_none(batch):
    groups = grouped_stats(summaries_frame(batch.summaries), "workload")

    assert list(groups["group"]) == ["idle", "none"]


def test_unknown_baseline_is_ignored(batch):
    groups = grouped_stats(summaries_frame(batch.summaries), "config", baseline="zzz")

    assert groups["vs_baseline_pct"].isna().all()


def test_invalid_group_by(batch):
    with pytest.raises(ValueError):
        grouped_stats(summaries_frame(batch.summaries), "host")


def test_render_table_sections(batch, make_summary):
    batch.summaries.append(make_summary("r5", "c", 5.0, pcts=(70.0, 75.0)))
    frame = summaries_frame(batch.summaries)

    table = render_table(batch, grouped_stats(frame, "config", baseline="a"))

    assert "INDIVIDUAL RUNS" in table
    assert "GROUPED STATISTICS" in table
    assert "EXCLUDED RUNS (1)" in table
    assert "r4: insufficient samples" in table
    assert "+27.3" in table
    assert "charging contamination" in table


def test_render_csv(batch):
    text = render_csv(summaries_frame(batch.summaries))

    header, *rows = text.strip().splitlines()
    assert header.split(",") == EXPORT_COLUMNS
    assert len(rows) == 3


def test_render_json(batch):
    groups = grouped_stats(summaries_frame(batch.summaries), "config", baseline="a")

    report = json.loads(render_json(batch, groups))

    assert [s["run_id"] for s in report["summaries"]] == ["r1", "r2", "r3"]
    assert report["rejected"][0]["run_id"] == "r4"
    assert report["grouped_stats"][1]["vs_baseline_pct"] == pytest.approx(27.27, abs=0.01)
    assert "grouped_stats" not in json.loads(render_json(batch))


def test_render_json_null_baseline(batch):
    groups = grouped_stats(summaries_frame(batch.summaries), "config")

    report = json.loads(render_json(batch, groups))

    assert report["grouped_stats"][0]["vs_baseline_pct"] is None
    assert not any(
        isinstance(v, float) and math.isnan(v) for g in report["grouped_stats"] for v in g.values()
    )


def test_analyze_runs_splits_summaries_and_exclusions(make_sample, write_run, tmp_path):
    good = [make_sample(90.0 - i, 6.0, offset_s=i * 60) for i in range(12)]
    write_run("2025-01-15T10:00:00Z_laptop_linux_baseline", good)
    write_run("2025-01-15T11:00:00Z_laptop_linux_powersave", good[:3])

    batch = analyze_runs(tmp_path, min_valid_samples=10)

    assert [s.config for s in batch.summaries] == ["baseline"]
    assert batch.summaries[0].duration_s == pytest.approx(660.0)
    assert [r.run_id for r in batch.rejected] == ["2025-01-15T11:00:00Z_laptop_linux_powersave"]


def test_analyze_runs_uses_recorded_rate(make_sample, write_run, tmp_path):
    run_id = "2025-01-15T10:00:00Z_laptop_linux_baseline"
    metadata = {"run_id": run_id, "config": "baseline", "os": "linux", "sampling_hz": 1.0}
    write_run(run_id, [make_sample(90.0, 6.0) for _ in range(11)], metadata=metadata)

    batch = analyze_runs(tmp_path, min_valid_samples=10)

    assert batch.summaries[0].duration_s == pytest.approx(10.0)
    assert batch.summaries[0].duration_source == "cadence"
