"""Continuous acquisition loop with cooperative cancellation."""

import logging
import signal
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from tqdm import tqdm

from ..models import RunMetadata, SourceTag
from ..telemetry.sampler import Sampler
from .sink import SampleSink

logger = logging.getLogger(__name__)


class LoggingAborted(Exception):
    """Acquisition could not produce a single sample at startup."""

    pass


class CancellationToken:
    """Shared stop flag, set from a signal handler and polled once per tick."""

    # Longest single sleep while waiting out a tick
    POLL_INTERVAL = 0.1

    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        # Plain attribute: signal handlers must not take locks
        self._cancelled = False
        self._sleep = sleep

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def wait(self, timeout: float, clock: Callable[[], float] = time.monotonic) -> bool:
        """Sleep up to `timeout` seconds, returning early on cancellation."""
        deadline = clock() + timeout
        while not self._cancelled:
            remaining = deadline - clock()
            if remaining <= 0:
                break
            self._sleep(min(remaining, self.POLL_INTERVAL))
        return self._cancelled


def install_signal_handlers(token: CancellationToken) -> Dict[int, object]:
    """Route SIGINT and SIGTERM to the token; returns the previous handlers."""

    def _handler(signum, frame):
        token.cancel()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handler)
    return previous


def restore_signal_handlers(previous: Dict[int, object]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


@dataclass
class LoggingContext:
    """Everything one acquisition run needs."""

    metadata: RunMetadata
    sampler: Sampler
    sink: SampleSink
    interval: float  # Seconds between tick starts
    token: CancellationToken
    max_samples: Optional[int] = None
    max_startup_errors: int = 10


@dataclass
class LogStats:
    samples: int = 0
    errors: int = 0
    elapsed_s: float = 0.0
    sources: Counter = field(default_factory=Counter)


class TelemetryLogger:
    """Sample, append, wait; repeat until cancelled."""

    def __init__(self, context: LoggingContext, clock: Callable[[], float] = time.monotonic):
        self.context = context
        self.clock = clock

    def _done(self, stats: LogStats) -> bool:
        ctx = self.context
        if ctx.token.cancelled:
            return True
        return ctx.max_samples is not None and stats.samples >= ctx.max_samples

    def run(self) -> LogStats:
        """
        Run the loop until the token is cancelled or `max_samples` is reached.

        Raises:
            LoggingAborted: If more than `max_startup_errors` ticks fail before
                the first sample is written
        """
        ctx = self.context
        stats = LogStats()
        started = self.clock()
        last_source: Optional[str] = None

        with ctx.sink, tqdm(
            total=ctx.max_samples,
            desc=f"Logging {ctx.metadata.config}",
            unit="sample",
            bar_format="{desc}: {n_fmt} samples [{elapsed}{postfix}]",
        ) as pbar:
            while not self._done(stats):
                tick_start = self.clock()

                try:
                    sample = ctx.sampler.sample()
                    ctx.sink.append(sample)
                except (ValueError, OSError) as e:
                    stats.errors += 1
                    logger.warning(f"Tick failed: {e}")
                    if stats.samples == 0 and stats.errors > ctx.max_startup_errors:
                        raise LoggingAborted(
                            f"{stats.errors} failed ticks before the first sample"
                        )
                else:
                    stats.samples += 1
                    stats.sources[sample.source] += 1

                    if sample.source != last_source and sample.source == SourceTag.CHARGING.value:
                        tqdm.write("⚠ Battery is charging; samples are tagged 'charging'")
                    last_source = sample.source

                    pct = f"{sample.percentage:.0f}%" if sample.percentage is not None else "--"
                    pbar.set_postfix_str(f"{pct} {sample.watts:.2f} W [{sample.source}]")
                    pbar.update(1)

                if self._done(stats):
                    break

                remaining = ctx.interval - (self.clock() - tick_start)
                if remaining > 0:
                    ctx.token.wait(remaining)

        stats.elapsed_s = self.clock() - started
        logger.info(
            f"Logged {stats.samples} samples ({stats.errors} errors) to {ctx.sink.path}"
        )
        return stats
