"""CLI handlers for analysis: report and export."""

import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .report import (
    BatchResult,
    analyze_runs,
    grouped_stats,
    render_csv,
    render_json,
    render_table,
    summaries_frame,
)


def _analyze(cfg: Dict[str, Any], min_samples: int) -> BatchResult:
    data_dir = Path(cfg["paths"]["data_dir"])
    analysis_cfg = cfg["analysis"]
    batch = analyze_runs(
        data_dir,
        min_samples,
        max_watts=analysis_cfg["max_valid_watts"],
        nominal_hz=analysis_cfg["nominal_hz"],
    )

    if not batch.summaries:
        print(f"✗ No valid runs found in {data_dir}", file=sys.stderr)
        if batch.rejected:
            print(f"  {len(batch.rejected)} run(s) excluded:", file=sys.stderr)
            for r in batch.rejected:
                print(f"    {r.run_id}: {r.reason}", file=sys.stderr)
        else:
            print("  Collect telemetry first: batlab log <config>", file=sys.stderr)
        sys.exit(1)
    return batch


def _emit(text: str, output: Optional[str]) -> None:
    if output:
        Path(output).write_text(text)
        print(f"✓ Report written to {output}", file=sys.stderr)
    else:
        sys.stdout.write(text if text.endswith("\n") else text + "\n")


def _notes(batch: BatchResult) -> None:
    """Exclusions and low-confidence runs, on stderr."""
    if batch.rejected:
        print(f"⚠ {len(batch.rejected)} run(s) excluded", file=sys.stderr)
    for s in batch.low_confidence:
        print(
            f"⚠ Low confidence: {s.run_id} ({s.samples_valid}/{s.samples_total} samples valid)",
            file=sys.stderr,
        )


def report_mode(
    cfg: Dict[str, Any],
    group_by: str = "config",
    fmt: str = "table",
    baseline: Optional[str] = None,
    min_samples: Optional[int] = None,
    output: Optional[str] = None,
) -> None:
    """Analyze all runs and print a comparison report."""
    if min_samples is None:
        min_samples = cfg["analysis"]["min_valid_samples"]
    batch = _analyze(cfg, min_samples)

    frame = summaries_frame(batch.summaries)
    groups = grouped_stats(frame, group_by, baseline)

    if fmt == "json":
        text = render_json(batch, groups)
    elif fmt == "csv":
        text = render_csv(frame)
    else:
        text = render_table(batch, groups)

    _emit(text, output)
    if fmt != "table":
        _notes(batch)


def export_mode(cfg: Dict[str, Any], fmt: str = "csv", output: Optional[str] = None) -> None:
    """Per-run summaries for external tools; every run with a valid sample counts."""
    batch = _analyze(cfg, 1)
    if fmt == "json":
        text = render_json(batch)
    else:
        text = render_csv(summaries_frame(batch.summaries))
    _emit(text, output)
    _notes(batch)
