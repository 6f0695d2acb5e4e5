"""Battery telemetry collection and analysis for power-management comparisons."""

__version__ = "0.1.0"
