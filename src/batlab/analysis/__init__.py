"""
Analysis module: load run logs and reduce them to comparable statistics.
"""

from .cli import export_mode, report_mode
from .loader import load_run, read_samples
from .report import BatchResult, analyze_run, analyze_runs, grouped_stats, summaries_frame
from .stats import Rejected, RunSummary, percentile, summarize

__all__ = [
    "export_mode",
    "report_mode",
    "load_run",
    "read_samples",
    "BatchResult",
    "analyze_run",
    "analyze_runs",
    "grouped_stats",
    "summaries_frame",
    "Rejected",
    "RunSummary",
    "percentile",
    "summarize",
]
