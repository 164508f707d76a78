"""Per-run counters and timers for the pipeline."""

import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


class RunStats:
    """Collects counters and timings for one pipeline run.

    Lifecycle is ``start_run() -> incr()/timer() -> flush()``. An instance is
    passed to the orchestrator so nothing leaks between runs or tests.
    """

    def __init__(self, name: str = "sourcing_pipeline"):
        self.name = name
        self.counters: Dict[str, int] = defaultdict(int)
        self.timings: Dict[str, List[float]] = defaultdict(list)
        self._started_at: Optional[float] = None

    def start_run(self) -> None:
        self.counters.clear()
        self.timings.clear()
        self._started_at = time.monotonic()

    def incr(self, key: str, amount: int = 1) -> None:
        self.counters[key] += amount

    def record_timing(self, key: str, seconds: float) -> None:
        self.timings[key].append(seconds)

    @contextmanager
    def timer(self, key: str) -> Iterator[None]:
        start = time.monotonic()
        try:
            yield
        finally:
            self.record_timing(key, time.monotonic() - start)

    def snapshot(self) -> Dict[str, Any]:
        timings = {
            key: {"count": len(values), "total": round(sum(values), 3), "max": round(max(values), 3)}
            for key, values in self.timings.items()
            if values
        }
        duration = None
        if self._started_at is not None:
            duration = round(time.monotonic() - self._started_at, 3)
        return {"counters": dict(self.counters), "timings": timings, "duration_seconds": duration}

    def flush(self) -> Dict[str, Any]:
        """Log the run summary and return it."""
        summary = self.snapshot()
        logger.info("%s run summary: %s", self.name, summary)
        return summary
