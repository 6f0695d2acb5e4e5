"""Command-line interface for battery telemetry collection and analysis."""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .analysis.cli import export_mode, report_mode
from .collect.cli import log_mode, metadata_mode, sample_mode
from .config import ConfigError, load_config
from .workload import WorkloadError, WorkloadRunner


def list_mode(cfg) -> None:
    """List available workloads."""
    runner = WorkloadRunner(Path(cfg["paths"]["workload_dir"]))
    workloads = runner.list_workloads()
    if not workloads:
        print(f"No workloads found in {runner.workload_dir}")
        return

    print("Available workloads:")
    for workload in workloads:
        print(f"  {workload.name:<20} {workload.description}")


def run_mode(cfg, name: str, args) -> None:
    """Run a workload in the foreground while `batlab log` runs elsewhere."""
    runner = WorkloadRunner(Path(cfg["paths"]["workload_dir"]))
    print(f"Running workload: {name}")
    try:
        returncode = runner.run(name, args)
    except WorkloadError as e:
        print(f"✗ {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user, workload stopped")
        sys.exit(130)

    if returncode != 0:
        print(f"✗ Workload failed with exit code {returncode}")
        sys.exit(returncode)
    print("✓ Workload completed")


def main() -> None:
    """Main entry point."""
    load_dotenv()
    parser = argparse.ArgumentParser(
        description="Battery efficiency measurement for power-management research",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Workflow:
  1. Configure the system's power management by hand
  2. Terminal 1: batlab log my-config --workload idle
  3. Terminal 2: batlab run idle
  4. Stop both with Ctrl+C, then: batlab report --group-by config
        """,
    )
    parser.add_argument(
        "--config",
        help="Path to configuration YAML file (default: $BATLAB_CONFIG or ./batlab.yaml)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(
        dest="command", help="Command to run", required=True
    )

    subparsers.add_parser("sample", help="Take a single telemetry sample")

    log_parser = subparsers.add_parser("log", help="Log telemetry until interrupted")
    log_parser.add_argument("config_label", metavar="CONFIG", help="Configuration label")
    log_parser.add_argument("--workload", help="Workload label recorded with the run")
    log_parser.add_argument("--hz", type=float, help="Sampling frequency, 0.01-10 Hz")
    log_parser.add_argument("--output", help="Log file (default: <data_dir>/<run_id>.jsonl)")
    log_parser.add_argument("--max-samples", type=int, help="Stop after N samples")

    run_parser = subparsers.add_parser("run", help="Run a workload")
    run_parser.add_argument("workload", help="Workload name")
    run_parser.add_argument("args", nargs=argparse.REMAINDER, help="Workload arguments")

    subparsers.add_parser("list", help="List available workloads")

    report_parser = subparsers.add_parser("report", help="Analyze collected runs")
    report_parser.add_argument(
        "--group-by", choices=["config", "os", "workload"], default="config"
    )
    report_parser.add_argument(
        "--format", choices=["table", "csv", "json"], default="table"
    )
    report_parser.add_argument("--baseline", help="Group to compare efficiency against")
    report_parser.add_argument(
        "--min-samples", type=int, help="Minimum valid samples per run (default from config)"
    )
    report_parser.add_argument("--output", help="Write the report to a file")

    export_parser = subparsers.add_parser("export", help="Export per-run summaries")
    export_parser.add_argument("--format", choices=["csv", "json"], default="csv")
    export_parser.add_argument("--output", help="Write the export to a file")

    subparsers.add_parser("metadata", help="Show system metadata")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"✗ {e}")
        sys.exit(1)

    if args.command == "sample":
        sample_mode(cfg)
    elif args.command == "log":
        log_mode(
            cfg,
            args.config_label,
            workload=args.workload,
            hz=args.hz,
            output=args.output,
            max_samples=args.max_samples,
        )
    elif args.command == "run":
        run_mode(cfg, args.workload, args.args)
    elif args.command == "list":
        list_mode(cfg)
    elif args.command == "report":
        report_mode(
            cfg,
            group_by=args.group_by,
            fmt=args.format,
            baseline=args.baseline,
            min_samples=args.min_samples,
            output=args.output,
        )
    elif args.command == "export":
        export_mode(cfg, fmt=args.format, output=args.output)
    elif args.command == "metadata":
        metadata_mode(cfg)


if __name__ == "__main__":
    main()
