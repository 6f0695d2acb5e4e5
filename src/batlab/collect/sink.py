"""Append-only JSON Lines writer for telemetry samples."""

import logging
from pathlib import Path
from typing import IO, Optional

from ..models import TelemetrySample

logger = logging.getLogger(__name__)


class SampleSink:
    """
    Write one JSON object per line, never rewriting earlier lines.

    The file is opened in append mode so that a restarted logger extends an
    existing run. Buffered records are flushed every `flush_every` appends and
    on close.
    """

    def __init__(self, path: Path, flush_every: int = 10):
        self.path = Path(path)
        self.flush_every = max(1, int(flush_every))
        self.written = 0
        self._file: Optional[IO[str]] = None

    def open(self) -> "SampleSink":
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "a", encoding="utf-8")
        return self

    def append(self, sample: TelemetrySample) -> None:
        """
        Serialize and write a sample.

        Raises:
            ValueError: If the sample holds values JSON cannot represent
            OSError: If the write fails
        """
        if self._file is None:
            self.open()

        # Serialize first so a bad sample never leaves a partial line
        line = sample.to_json() + "\n"
        self._file.write(line)
        self.written += 1

        if self.written % self.flush_every == 0:
            self._file.flush()

    def flush(self) -> None:
        if self._file is not None:
            self._file.flush()

    def close(self) -> None:
        if self._file is None:
            return
        try:
            self._file.flush()
        finally:
            self._file.close()
            self._file = None
            logger.debug(f"Closed {self.path} after {self.written} records")

    @property
    def closed(self) -> bool:
        return self._file is None

    def __enter__(self) -> "SampleSink":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
