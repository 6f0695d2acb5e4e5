"""Launch workload scripts to run alongside a logging session."""

import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence


class WorkloadError(Exception):
    """Workload missing or not runnable."""

    pass


@dataclass(frozen=True)
class Workload:
    name: str
    path: Path
    description: str


def _describe(path: Path) -> str:
    """`# description: ...` if present, else the first plain comment line."""
    try:
        lines = path.read_text(errors="replace").splitlines()[:20]
    except OSError:
        return "No description"

    fallback: Optional[str] = None
    for line in lines:
        stripped = line.strip()
        if not stripped.startswith("#") or stripped.startswith("#!"):
            continue
        text = stripped.lstrip("#").strip()
        if text.lower().startswith("description:"):
            return text.split(":", 1)[1].strip()
        if text and fallback is None:
            fallback = text
    return fallback or "No description"


class WorkloadRunner:
    """Find and run workloads from a directory."""

    def __init__(self, workload_dir: Path, terminate_timeout: float = 5.0):
        self.workload_dir = Path(workload_dir)
        self.terminate_timeout = terminate_timeout
        self.process: Optional[subprocess.Popen] = None

    def list_workloads(self) -> List[Workload]:
        if not self.workload_dir.is_dir():
            return []

        workloads = []
        for path in sorted(self.workload_dir.iterdir()):
            if not path.is_file():
                continue
            if path.suffix == ".sh" or os.access(path, os.X_OK):
                workloads.append(Workload(path.stem, path, _describe(path)))
        return workloads

    def find(self, name: str) -> Workload:
        for workload in self.list_workloads():
            if workload.name == name or workload.path.name == name:
                return workload
        raise WorkloadError(f"Workload not found: {name} (in {self.workload_dir})")

    def _command(self, workload: Workload, args: Sequence[str]) -> List[str]:
        if os.access(workload.path, os.X_OK):
            return [str(workload.path), *args]
        return ["sh", str(workload.path), *args]

    def stop(self) -> None:
        """Stop the workload and its children."""
        if self.process:
            try:
                # Send SIGTERM to the entire process group
                pgid = os.getpgid(self.process.pid)
                os.killpg(pgid, signal.SIGTERM)

                try:
                    self.process.wait(timeout=self.terminate_timeout)
                except subprocess.TimeoutExpired:
                    os.killpg(pgid, signal.SIGKILL)
                    self.process.wait()
            except ProcessLookupError:
                # Process already gone
                pass
            finally:
                self.process = None

    def run(self, name: str, args: Sequence[str] = ()) -> int:
        """
        Run a workload to completion and return its exit status.

        The workload gets its own session so that an interrupt can take down
        everything it spawned.

        Raises:
            WorkloadError: If the workload does not exist or cannot be started
            KeyboardInterrupt: Re-raised after the workload has been stopped
        """
        workload = self.find(name)
        try:
            self.process = subprocess.Popen(
                self._command(workload, args),
                start_new_session=True,
            )
        except OSError as e:
            raise WorkloadError(f"Cannot start {workload.path}: {e}")

        try:
            returncode = self.process.wait()
        except KeyboardInterrupt:
            self.stop()
            raise

        self.process = None
        return returncode
