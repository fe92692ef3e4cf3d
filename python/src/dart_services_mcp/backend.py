"""
Backend handle: the analysis engine and compiler engine as one unit.

A handle is created for a single generation and never reused. The
supervisor swaps whole handles on restart; requests pin the handle they
started with through an in-flight lease so a retired handle can drain
before it is shut down.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Protocol

from .models import (
    AnalysisResults,
    CompilationResults,
    CompleteResponse,
    FixesResponse,
    FormatResponse,
)
from .normalize import MAIN_FILE, Location

logger = logging.getLogger(__name__)


# Compiled and analyzed once per handle before it serves requests
WARMUP_SOURCE = """void main() {
  int count = 3;
  count++;
  print('Hello, world $count');
}
"""


class HandleState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class AnalysisEngine(Protocol):
    """Long-lived analysis engine. May crash at any time."""

    version: str

    async def start(self) -> None: ...

    async def shutdown(self) -> None: ...

    @property
    def exit_code(self) -> int | None:
        """Exit code if the engine process has already exited, else None."""
        ...

    async def wait_for_exit(self) -> int:
        """Resolve with the exit code once the engine process is gone."""
        ...

    async def analyze(self, sources: dict[str, str]) -> AnalysisResults: ...

    async def complete(self, sources: dict[str, str], location: Location) -> CompleteResponse: ...

    async def fixes(self, sources: dict[str, str], location: Location) -> FixesResponse: ...

    async def format(self, source: str, offset: int) -> FormatResponse: ...

    async def document(
        self, sources: dict[str, str], location: Location
    ) -> dict[str, str] | None: ...


class CompilerEngine(Protocol):
    async def start(self) -> None: ...

    async def shutdown(self) -> None: ...

    async def compile(
        self, source: str, checked_mode: bool, return_source_map: bool
    ) -> CompilationResults: ...


class BackendHandle:
    """One generation of the backend."""

    def __init__(self, generation: int, analysis: AnalysisEngine, compiler: CompilerEngine):
        self.generation = generation
        self.analysis = analysis
        self.compiler = compiler
        self.state = HandleState.UNINITIALIZED
        self.retired = False
        # Set once shutdown begins; exits after that point are expected
        self.stopping = False

        self._in_flight = 0
        self._drained = asyncio.Event()
        self._drained.set()

    def __repr__(self) -> str:
        return f"BackendHandle(generation={self.generation}, state={self.state.value})"

    @property
    def engine_version(self) -> str:
        return getattr(self.analysis, "version", "") or "unknown"

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def exit_code(self) -> int | None:
        return self.analysis.exit_code

    async def start(self) -> None:
        self.state = HandleState.INITIALIZING
        await self.analysis.start()
        await self.compiler.start()
        self.state = HandleState.READY

    async def warmup(self) -> None:
        """Exercise both engines once so the first real request is not cold."""
        await self.compiler.compile(WARMUP_SOURCE, checked_mode=True, return_source_map=False)
        await self.analysis.analyze({MAIN_FILE: WARMUP_SOURCE})

    async def shutdown(self) -> None:
        """Stop both engines. Secondary errors are logged, not raised."""
        if self.state in (HandleState.SHUTTING_DOWN, HandleState.TERMINATED):
            return

        self.stopping = True
        self.state = HandleState.SHUTTING_DOWN
        results = await asyncio.gather(
            self.analysis.shutdown(),
            self.compiler.shutdown(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.warning(
                    f"Error shutting down backend generation {self.generation}: {result}"
                )
        self.state = HandleState.TERMINATED

    async def wait_for_exit(self) -> int:
        return await self.analysis.wait_for_exit()

    def acquire(self) -> None:
        self._in_flight += 1
        self._drained.clear()

    def release(self) -> None:
        self._in_flight -= 1
        if self._in_flight <= 0:
            self._in_flight = 0
            self._drained.set()

    def retire(self) -> None:
        """Mark the handle as replaced. It still serves the calls it has leased."""
        self.retired = True

    async def wait_drained(self) -> None:
        await self._drained.wait()


BackendFactory = Callable[[int], BackendHandle]
