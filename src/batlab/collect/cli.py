"""CLI handlers for telemetry acquisition: sample, log, metadata."""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ..models import RunMetadata
from ..telemetry.filters import HampelFilter
from ..telemetry.resolver import ProbeStatus, SourceResolver, battery_capacity
from ..telemetry.sampler import Sampler
from ..telemetry.sources import (
    OSFamily,
    battery_sources,
    corroborating_sources,
    detect_os_family,
)
from ..telemetry.system import read_system_info, system_metric_reader
from ..utils import generate_run_id, hand_back, is_valid_label
from .logger import (
    CancellationToken,
    LoggingAborted,
    LoggingContext,
    TelemetryLogger,
    install_signal_handlers,
    restore_signal_handlers,
)
from .sink import SampleSink

logger = logging.getLogger(__name__)

MIN_HZ = 0.01
MAX_HZ = 10.0


def build_acquisition(
    cfg: Dict[str, Any], os_family: OSFamily, hz: float
) -> Tuple[Sampler, SourceResolver]:
    """Wire sources, resolver, and system reader for this platform."""
    acq_cfg = cfg["acquisition"]
    sources = battery_sources(os_family, acq_cfg)
    corroborators = corroborating_sources(os_family, acq_cfg)

    outlier_filter = HampelFilter(
        window=acq_cfg["hampel_window"],
        n_sigmas=acq_cfg["hampel_sigmas"],
        ceiling_watts=acq_cfg["outlier_ceiling_watts"],
    )
    resolver = SourceResolver(
        sources,
        corroborators,
        capacity=battery_capacity(sources),
        outlier_filter=outlier_filter,
        sampling_hz=hz,
        corroboration_tolerance=acq_cfg["corroboration_tolerance"],
    )
    sampler = Sampler(resolver, system_metric_reader(os_family, acq_cfg["command_timeout"]))
    return sampler, resolver


def wait_for_battery_ready(resolver: SourceResolver) -> None:
    """
    Block until the battery is discharging.

    Exits with status 1 when no source responds, or when the battery is
    charging and there is no terminal to prompt on.
    """
    while True:
        probe = resolver.probe()
        if probe.status == ProbeStatus.AVAILABLE:
            print(f"✓ Battery source: {probe.source.value} ({probe.detail})")
            return
        if probe.status == ProbeStatus.NONE:
            print(f"✗ No battery telemetry available: {probe.detail}")
            sys.exit(1)

        print(f"✗ Battery is charging ({probe.detail})")
        if not sys.stdin.isatty():
            print("  Unplug the charger and start logging again.")
            sys.exit(1)
        try:
            input("  Unplug the charger, then press Enter to continue (Ctrl+C to abort)... ")
        except (EOFError, KeyboardInterrupt):
            print("\nAborted.")
            sys.exit(1)


def sample_mode(cfg: Dict[str, Any]) -> None:
    """Take one sample and print it."""
    os_family = detect_os_family()
    sampler, resolver = build_acquisition(cfg, os_family, cfg["sampling"]["hz"])

    if not resolver.sources:
        print(f"✗ No battery sources for platform '{sys.platform}'")
        sys.exit(1)

    probe = resolver.probe()
    if probe.status == ProbeStatus.NONE:
        print(f"✗ No battery telemetry available: {probe.detail}")
        sys.exit(1)

    sample = sampler.sample()
    print(json.dumps(sample.to_record(), indent=2))


def metadata_mode(cfg: Dict[str, Any]) -> None:
    """Print host information as JSON."""
    os_family = detect_os_family()
    info = read_system_info(os_family)

    acq_cfg = cfg["acquisition"]
    capacity = battery_capacity(battery_sources(os_family, acq_cfg))

    data = info.to_dict()
    data["os_family"] = os_family.value
    data["battery_capacity"] = capacity.to_dict() if capacity else None
    print(json.dumps(data, indent=2))


def _fail(message: str) -> None:
    print(f"✗ {message}")
    sys.exit(1)


def log_mode(
    cfg: Dict[str, Any],
    config_label: str,
    workload: Optional[str] = None,
    hz: Optional[float] = None,
    output: Optional[str] = None,
    max_samples: Optional[int] = None,
) -> None:
    """Continuous acquisition until interrupted."""
    if not is_valid_label(config_label):
        _fail(f"Invalid configuration label '{config_label}' (use letters, digits, '.', '-')")
    if workload is not None and not is_valid_label(workload):
        _fail(f"Invalid workload label '{workload}' (use letters, digits, '.', '-')")

    hz = hz if hz is not None else cfg["sampling"]["hz"]
    if not MIN_HZ <= hz <= MAX_HZ:
        _fail(f"Sampling frequency must be between {MIN_HZ} and {MAX_HZ} Hz")
    if max_samples is not None and max_samples < 1:
        _fail("--max-samples must be at least 1")

    os_family = detect_os_family()
    sampler, resolver = build_acquisition(cfg, os_family, hz)
    if not resolver.sources:
        _fail(f"No battery sources for platform '{sys.platform}'")

    wait_for_battery_ready(resolver)

    run_id = generate_run_id(config_label, os_family.value, workload)
    data_dir = Path(cfg["paths"]["data_dir"])
    output_path = Path(output) if output else data_dir / f"{run_id}.jsonl"
    meta_path = output_path.with_suffix(".meta.json")
    output_path.parent.mkdir(parents=True, exist_ok=True)

    info = read_system_info(os_family)
    metadata = RunMetadata(
        run_id=run_id,
        host=info.hostname,
        os=os_family.value,
        config=config_label,
        workload=workload,
        start_time=datetime.now(timezone.utc),
        sampling_hz=hz,
        kernel=info.kernel,
        cpu=info.cpu,
        machine=info.machine,
        battery_capacity=resolver.capacity,
        extra={"os_name": info.os},
    )
    meta_path.write_text(json.dumps(metadata.to_dict(), indent=2) + "\n")
    hand_back(meta_path)

    print("\n" + "=" * 80)
    print("BATTERY TELEMETRY LOGGING")
    print("=" * 80)
    print(f"Configuration: {config_label}")
    if workload:
        print(f"Workload:      {workload}")
    print(f"Run ID:        {run_id}")
    print(f"Output:        {output_path}")
    print(f"Sampling:      {hz:.4f} Hz (every {1 / hz:.1f}s)")
    print("Press Ctrl+C to stop logging")
    print("=" * 80 + "\n")

    token = CancellationToken()
    previous_handlers = install_signal_handlers(token)
    context = LoggingContext(
        metadata=metadata,
        sampler=sampler,
        sink=SampleSink(output_path, flush_every=cfg["sampling"]["flush_every"]),
        interval=1.0 / hz,
        token=token,
        max_samples=max_samples,
    )

    try:
        stats = TelemetryLogger(context).run()
    except LoggingAborted as e:
        _fail(f"Too many failures during startup: {e}")
    finally:
        restore_signal_handlers(previous_handlers)
        if output_path.exists():
            hand_back(output_path)

    print(f"\n✓ Logged {stats.samples} samples in {stats.elapsed_s:.0f}s")
    if stats.errors:
        print(f"  {stats.errors} ticks failed (see log output)")
    for source, count in stats.sources.most_common():
        print(f"  {source}: {count}")
    print(f"  Data:     {output_path}")
    print(f"  Metadata: {meta_path}")
