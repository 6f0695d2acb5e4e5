"""Batch analysis across runs, grouped comparison, and report rendering."""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
import pandas as pd

from .loader import discover_runs, load_metadata, read_samples, resolve_identity, run_id_of
from .stats import NOMINAL_HZ, Rejected, RunSummary, summarize

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "run_id",
    "os",
    "config",
    "workload",
    "duration_s",
    "avg_watts",
    "median_watts",
    "p95_watts",
    "avg_cpu_load",
    "avg_ram_pct",
    "avg_temp_c",
    "pct_drop",
    "samples_ok",
    "samples_total",
]

GROUP_FIELDS = ("config", "os", "workload")
GROUP_COLUMNS = ["group", "runs", "avg_watts_mean", "avg_watts_stddev", "vs_baseline_pct"]


@dataclass
class BatchResult:
    summaries: List[RunSummary] = field(default_factory=list)
    rejected: List[Rejected] = field(default_factory=list)

    @property
    def low_confidence(self) -> List[RunSummary]:
        return [s for s in self.summaries if s.low_confidence]


def analyze_run(
    path: Path,
    min_valid_samples: int,
    max_watts: float = 100.0,
    nominal_hz: float = NOMINAL_HZ,
) -> Union[RunSummary, Rejected]:
    """
    Summarize one log file.

    Raises:
        OSError: If the log cannot be read
    """
    samples, unparsed = read_samples(path)
    metadata = load_metadata(path)
    return summarize(
        samples,
        min_valid_samples,
        identity=resolve_identity(path, metadata),
        unparsed=unparsed,
        sampling_hz=metadata.sampling_hz if metadata else None,
        max_watts=max_watts,
        nominal_hz=nominal_hz,
    )


def analyze_runs(
    data_dir: Path,
    min_valid_samples: int,
    max_watts: float = 100.0,
    nominal_hz: float = NOMINAL_HZ,
) -> BatchResult:
    """Summarize every run in a directory; failing runs become exclusions."""
    result = BatchResult()
    for path in discover_runs(data_dir):
        try:
            outcome = analyze_run(path, min_valid_samples, max_watts, nominal_hz)
        except OSError as e:
            logger.warning(f"Cannot read {path.name}: {e}")
            outcome = Rejected(run_id=run_id_of(path), reason=f"unreadable: {e}")

        if isinstance(outcome, Rejected):
            result.rejected.append(outcome)
        else:
            result.summaries.append(outcome)
    return result


def summaries_frame(summaries: List[RunSummary]) -> pd.DataFrame:
    """One row per run with the export columns."""
    rows = []
    for s in summaries:
        row = s.to_dict()
        row["samples_ok"] = s.samples_valid
        rows.append(row)
    if not rows:
        return pd.DataFrame(columns=EXPORT_COLUMNS)
    return pd.DataFrame(rows)[EXPORT_COLUMNS]


def grouped_stats(
    frame: pd.DataFrame, group_by: str = "config", baseline: Optional[str] = None
) -> pd.DataFrame:
    """
    Compare groups of runs by their average draw.

    Efficiency versus the baseline group is (baseline - mean) / baseline * 100,
    so positive means the group draws less power than the baseline.

    Raises:
        ValueError: If group_by is not one of config, os, workload
    """
    if group_by not in GROUP_FIELDS:
        raise ValueError(f"Cannot group by '{group_by}' (choose from {', '.join(GROUP_FIELDS)})")
    if frame.empty:
        return pd.DataFrame(columns=GROUP_COLUMNS)

    keys = frame[group_by].fillna("none").astype(str)
    watts = frame["avg_watts"].astype(float).groupby(keys)

    groups = pd.DataFrame(
        {
            "runs": watts.count(),
            "avg_watts_mean": watts.mean(),
            "avg_watts_stddev": watts.std(ddof=0),
        }
    )
    groups.index.name = "group"
    groups = groups.reset_index().sort_values("group").reset_index(drop=True)

    groups["vs_baseline_pct"] = np.nan
    if baseline is not None:
        match = groups.loc[groups["group"] == baseline, "avg_watts_mean"]
        if match.empty:
            logger.warning(f"Baseline group '{baseline}' not found; skipping comparison")
        elif match.iloc[0] > 0:
            baseline_watts = float(match.iloc[0])
            groups["vs_baseline_pct"] = (
                (baseline_watts - groups["avg_watts_mean"]) / baseline_watts * 100.0
            )

    return groups[GROUP_COLUMNS]


def _clip(text: Optional[str], width: int) -> str:
    text = text or "-"
    return text if len(text) <= width else text[: width - 3] + "..."


def render_table(batch: BatchResult, groups: pd.DataFrame) -> str:
    lines = ["INDIVIDUAL RUNS"]
    lines.append(
        f"{'RUN_ID':<40} {'CONFIG':<15} {'OS':<8} {'WORKLOAD':<10} {'SAMPLES':>9} "
        f"{'AVG_W':>7} {'MED_W':>7} {'P95_W':>7} {'LOAD':>6} {'TEMP°C':>7} {'DROP%':>6}"
    )
    lines.append("-" * 128)

    for s in batch.summaries:
        flags = ("*" if s.low_confidence else "") + ("!" if s.charging_contaminated else "")
        lines.append(
            f"{_clip(s.run_id, 40):<40} {_clip(s.config, 15):<15} {_clip(s.os, 8):<8} "
            f"{_clip(s.workload, 10):<10} {f'{s.samples_valid}/{s.samples_total}':>9} "
            f"{s.avg_watts:>7.2f} {s.median_watts:>7.2f} {s.p95_watts:>7.2f} "
            f"{s.avg_cpu_load:>6.2f} {s.avg_temp_c:>7.1f} {s.pct_drop:>6.1f} {flags}"
        )

    if batch.low_confidence or any(s.charging_contaminated for s in batch.summaries):
        lines.append("")
        lines.append("  * low confidence (fewer than half the samples valid)")
        lines.append("  ! percentage rose during the run (charging contamination)")

    lines.append("")
    lines.append("GROUPED STATISTICS")
    lines.append(f"{'GROUP':<20} {'RUNS':>5} {'AVG_WATTS':>10} {'STDDEV':>8} {'VS_BASELINE%':>13}")
    lines.append("-" * 60)
    for row in groups.itertuples(index=False):
        vs = "-" if pd.isna(row.vs_baseline_pct) else f"{row.vs_baseline_pct:+.1f}"
        lines.append(
            f"{_clip(str(row.group), 20):<20} {int(row.runs):>5} "
            f"{row.avg_watts_mean:>10.2f} {row.avg_watts_stddev:>8.2f} {vs:>13}"
        )

    if batch.rejected:
        lines.append("")
        lines.append(f"EXCLUDED RUNS ({len(batch.rejected)})")
        lines.append("-" * 60)
        for r in batch.rejected:
            lines.append(f"{r.run_id}: {r.reason}")

    return "\n".join(lines) + "\n"


def render_csv(frame: pd.DataFrame) -> str:
    return frame.to_csv(index=False)


def _group_records(groups: pd.DataFrame) -> List[dict]:
    records = []
    for row in groups.itertuples(index=False):
        records.append(
            {
                "group": str(row.group),
                "runs": int(row.runs),
                "avg_watts_mean": float(row.avg_watts_mean),
                "avg_watts_stddev": float(row.avg_watts_stddev),
                "vs_baseline_pct": (
                    None if pd.isna(row.vs_baseline_pct) else float(row.vs_baseline_pct)
                ),
            }
        )
    return records


def render_json(batch: BatchResult, groups: Optional[pd.DataFrame] = None) -> str:
    report = {
        "summaries": [s.to_dict() for s in batch.summaries],
        "rejected": [asdict(r) for r in batch.rejected],
    }
    if groups is not None:
        report["grouped_stats"] = _group_records(groups)
    return json.dumps(report, indent=2)
