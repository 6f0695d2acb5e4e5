"""
Collection module for continuous battery telemetry logging.
"""

from .cli import log_mode, metadata_mode, sample_mode
from .logger import CancellationToken, LoggingContext, TelemetryLogger
from .sink import SampleSink

__all__ = [
    "log_mode",
    "metadata_mode",
    "sample_mode",
    "CancellationToken",
    "LoggingContext",
    "TelemetryLogger",
    "SampleSink",
]
