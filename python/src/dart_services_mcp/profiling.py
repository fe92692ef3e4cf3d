"""
Logging setup and latency tracking.

Operational lines use fixed prefixes so they can be grepped:
- "PERF: ..."  timings and processed line counts
- "CACHE: ..." compile cache decisions
"""

import logging
import sys
import time


class LatencyTracker:
    """
    Context manager measuring how long a block took.

    Usage:
        with LatencyTracker() as timer:
            ...
        logger.info(f"PERF: Analyzed in {timer.elapsed_ms:.0f}ms.")
    """
    def __init__(self):
        self.start_time: float = 0.0
        self.end_time: float | None = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return (end - self.start_time) * 1000


def configure_logging(level: str | int = logging.INFO) -> None:
    """Log to stderr; stdout carries the MCP stdio transport."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )
