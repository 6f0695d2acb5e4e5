"""Load run logs and their metadata sidecars from the data directory."""

import json
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from ..models import RecordParseError, RunIdentity, RunMetadata, TelemetrySample

logger = logging.getLogger(__name__)

RUN_SUFFIX = ".jsonl"
META_SUFFIX = ".meta.json"
UNKNOWN = "unknown"


def discover_runs(data_dir: Path) -> List[Path]:
    """All run logs in a directory, sorted by name (and so by start time)."""
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        return []
    return sorted(p for p in data_dir.glob(f"*{RUN_SUFFIX}") if p.is_file())


def parse_record(line: str) -> TelemetrySample:
    """
    Parse one log line.

    Raises:
        RecordParseError: If the line is not JSON or not a usable record
    """
    try:
        record = json.loads(line)
    except json.JSONDecodeError as e:
        raise RecordParseError(f"Invalid JSON: {e}") from e
    return TelemetrySample.from_record(record)


def read_samples(path: Path) -> Tuple[List[TelemetrySample], int]:
    """
    Parse every complete line of a log.

    A final line without a newline may still be being written and is left
    out. Blank lines are ignored.

    Returns:
        (samples in file order, number of unparseable lines)

    Raises:
        OSError: If the file cannot be read
    """
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        content = f.read()

    lines = content.split("\n")
    complete = lines[:-1]  # "" when the file ends with a newline

    samples: List[TelemetrySample] = []
    skipped = 0
    for number, line in enumerate(complete, 1):
        if not line.strip():
            continue
        try:
            samples.append(parse_record(line))
        except RecordParseError as e:
            skipped += 1
            logger.debug(f"{Path(path).name}:{number}: {e}")

    if skipped:
        logger.info(f"{Path(path).name}: skipped {skipped} unparseable line(s)")
    return samples, skipped


def metadata_path(log_path: Path) -> Path:
    return Path(log_path).with_suffix(META_SUFFIX)


def load_metadata(log_path: Path) -> Optional[RunMetadata]:
    """Read the sidecar next to a log, or None when absent or unreadable."""
    path = metadata_path(log_path)
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("sidecar is not a JSON object")
        return RunMetadata.from_dict(data)
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning(f"Ignoring unreadable metadata {path.name}: {e}")
        return None


def identity_from_name(run_id: str) -> RunIdentity:
    """
    Reconstruct identity from `<timestamp>_<host>_<os>_<config>[_<workload>]`.

    Names of any other shape get 'unknown' labels.
    """
    parts = run_id.split("_")
    if len(parts) == 4:
        _, _, os_name, config = parts
        return RunIdentity(run_id=run_id, config=config, workload=None, os=os_name)
    if len(parts) == 5:
        _, _, os_name, config, workload = parts
        return RunIdentity(run_id=run_id, config=config, workload=workload, os=os_name)
    return RunIdentity(run_id=run_id, config=UNKNOWN, workload=None, os=UNKNOWN)


def run_id_of(log_path: Path) -> str:
    name = Path(log_path).name
    return name[: -len(RUN_SUFFIX)] if name.endswith(RUN_SUFFIX) else Path(log_path).stem


def resolve_identity(log_path: Path, metadata: Optional[RunMetadata] = None) -> RunIdentity:
    if metadata is not None:
        return metadata.identity()
    return identity_from_name(run_id_of(log_path))


def load_run(log_path: Path) -> Tuple[RunIdentity, List[TelemetrySample]]:
    """
    Identity and samples of one run.

    Raises:
        OSError: If the log cannot be read
    """
    samples, _ = read_samples(log_path)
    return resolve_identity(log_path, load_metadata(log_path)), samples
