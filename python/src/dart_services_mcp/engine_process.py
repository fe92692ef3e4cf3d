"""
Engine sidecar processes.

Each engine runs as a child process speaking newline-delimited JSON:

    engine -> {"status": "ready"}                           (once, at startup)
    server -> {"id": 7, "method": "analyze", "params": {...}}
    engine -> {"id": 7, "result": {...}}
           or {"id": 7, "error": {"type": "...", "message": "..."}}

Requests are multiplexed by id. A reply that cannot be matched to a request
by id breaks the channel and the process is terminated. When the process
exits or the pipe breaks, every pending request fails with EngineCrashed
and wait_for_exit() resolves with the exit code.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

from .backend import BackendFactory, BackendHandle
from .config import GatewayConfig
from .errors import EngineCrashed, EngineError
from .models import (
    AnalysisResults,
    CompilationResults,
    CompleteResponse,
    FixesResponse,
    FormatResponse,
)
from .normalize import Location

logger = logging.getLogger(__name__)


# Compiled output and source maps arrive on a single line
STREAM_LIMIT_BYTES = 64 * 1024 * 1024


def read_sdk_version(sdk_path: str) -> str:
    """Read <sdk>/version, or "unknown" when there is none."""
    if not sdk_path:
        return "unknown"
    version_file = Path(sdk_path) / "version"
    if not version_file.is_file():
        return "unknown"
    return version_file.read_text(encoding="utf-8").strip() or "unknown"


class EngineProcess:
    """A JSON-lines child process with concurrent request support."""

    def __init__(
        self,
        argv: list[str],
        name: str = "engine",
        env: dict[str, str] | None = None,
        ready_timeout: float = 60.0,
        shutdown_timeout: float = 5.0,
    ):
        if not argv:
            raise ValueError(f"No command configured for the {name} engine")
        self.argv = argv
        self.name = name
        self.env = env
        self.ready_timeout = ready_timeout
        self.shutdown_timeout = shutdown_timeout

        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None
        self._exit: asyncio.Future | None = None
        self._pending: dict[int, asyncio.Future] = {}
        self._next_id = 0

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def running(self) -> bool:
        return self._exit is not None and not self._exit.done()

    @property
    def exit_code(self) -> int | None:
        if self._exit is None or not self._exit.done():
            return None
        return self._exit.result()

    async def start(self) -> None:
        """Launch the process and wait for its ready line."""
        self._process = await asyncio.create_subprocess_exec(
            *self.argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            env={**os.environ, **self.env} if self.env else None,
            limit=STREAM_LIMIT_BYTES,
        )
        self._exit = asyncio.get_running_loop().create_future()

        try:
            line = await asyncio.wait_for(
                self._process.stdout.readline(), timeout=self.ready_timeout
            )
        except asyncio.TimeoutError:
            await self._kill()
            raise EngineCrashed(f"{self.name} engine did not report ready in {self.ready_timeout}s")

        if not line:
            code = await self._process.wait()
            self._exit.set_result(code)
            raise EngineCrashed(f"{self.name} engine exited during startup", exit_code=code)

        try:
            status = json.loads(line)
        except json.JSONDecodeError:
            status = None
        if not isinstance(status, dict) or status.get("status") != "ready":
            await self._kill()
            raise EngineCrashed(f"{self.name} engine sent an unexpected greeting: {line[:200]!r}")

        self._reader_task = asyncio.create_task(self._read_responses())
        logger.info(f"{self.name} engine started (pid {self._process.pid})")

    async def request(self, method: str, params: dict[str, Any]) -> Any:
        """
        Send one request and wait for its reply.

        Raises:
            EngineError: The engine replied with an error object
            EngineCrashed: The process is gone or the channel broke
        """
        if not self.running:
            raise EngineCrashed(f"{self.name} engine is not running")

        self._next_id += 1
        request_id = self._next_id
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        line = json.dumps({"id": request_id, "method": method, "params": params}) + "\n"
        try:
            self._process.stdin.write(line.encode("utf-8"))
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            self._pending.pop(request_id, None)
            raise EngineCrashed(f"{self.name} engine channel broken: {e}") from e

        try:
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def wait_for_exit(self) -> int:
        if self._exit is None:
            raise RuntimeError(f"{self.name} engine was never started")
        return await asyncio.shield(self._exit)

    async def shutdown(self) -> None:
        """Close stdin and wait for the process, escalating to terminate/kill."""
        if self._process is None:
            return

        if self._process.returncode is None:
            self._process.stdin.close()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=self.shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"{self.name} engine ignored stdin close, terminating")
                await self._kill()

        if self._reader_task is not None:
            await self._reader_task

    async def _kill(self) -> None:
        try:
            self._process.terminate()
            await asyncio.wait_for(self._process.wait(), timeout=self.shutdown_timeout)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            self._process.kill()
            await self._process.wait()

    async def _read_responses(self) -> None:
        stdout = self._process.stdout
        try:
            while True:
                line = await stdout.readline()
                if not line:
                    break
                self._dispatch(line)
        except Exception as e:
            # Anything the reader cannot handle leaves the channel unusable
            logger.error(f"{self.name} engine channel failed: {e}", exc_info=True)
            await self._kill()

        code = await self._process.wait()
        crash = EngineCrashed(f"{self.name} engine exited with code {code}", exit_code=code)
        for future in self._pending.values():
            if not future.done():
                future.set_exception(crash)
        self._pending.clear()

        if not self._exit.done():
            self._exit.set_result(code)

    def _dispatch(self, line: bytes) -> None:
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.warning(f"{self.name} engine wrote a non-JSON line: {line[:200]!r}")
            return

        if not isinstance(message, dict):
            raise ValueError(f"{self.name} engine reply is not an object: {line[:200]!r}")
        request_id = message.get("id")
        if not isinstance(request_id, int) or isinstance(request_id, bool):
            raise ValueError(f"{self.name} engine reply has an invalid id: {line[:200]!r}")

        future = self._pending.get(request_id)
        if future is None or future.done():
            logger.warning(f"{self.name} engine reply has no pending request: {line[:200]!r}")
            return

        error = message.get("error")
        if error is None:
            future.set_result(message.get("result"))
        elif isinstance(error, dict):
            future.set_exception(
                EngineError(
                    str(error.get("type", "EngineError")), str(error.get("message", ""))
                )
            )
        else:
            future.set_exception(
                EngineError("MalformedReply", f"error field is not an object: {error!r}")
            )


class SidecarAnalysisEngine:
    """AnalysisEngine backed by an EngineProcess."""

    def __init__(self, argv: list[str], sdk_path: str = ""):
        env = {"DART_SDK": sdk_path} if sdk_path else None
        self.process = EngineProcess(argv, name="analysis", env=env)
        self.version = read_sdk_version(sdk_path)

    async def start(self) -> None:
        await self.process.start()

    async def shutdown(self) -> None:
        await self.process.shutdown()

    async def wait_for_exit(self) -> int:
        return await self.process.wait_for_exit()

    @property
    def exit_code(self) -> int | None:
        return self.process.exit_code

    async def analyze(self, sources: dict[str, str]) -> AnalysisResults:
        result = await self.process.request("analyze", {"sources": sources})
        return AnalysisResults.from_dict(result or {})

    async def complete(self, sources: dict[str, str], location: Location) -> CompleteResponse:
        result = await self.process.request(
            "complete", {"sources": sources, "location": location.to_dict()}
        )
        return CompleteResponse.from_dict(result or {})

    async def fixes(self, sources: dict[str, str], location: Location) -> FixesResponse:
        result = await self.process.request(
            "fixes", {"sources": sources, "location": location.to_dict()}
        )
        return FixesResponse.from_dict(result or {})

    async def format(self, source: str, offset: int) -> FormatResponse:
        result = await self.process.request("format", {"source": source, "offset": offset})
        return FormatResponse.from_dict(result or {})

    async def document(self, sources: dict[str, str], location: Location) -> dict[str, str] | None:
        return await self.process.request(
            "document", {"sources": sources, "location": location.to_dict()}
        )


class SidecarCompilerEngine:
    """CompilerEngine backed by an EngineProcess."""

    def __init__(self, argv: list[str], sdk_path: str = ""):
        env = {"DART_SDK": sdk_path} if sdk_path else None
        self.process = EngineProcess(argv, name="compiler", env=env)

    async def start(self) -> None:
        await self.process.start()

    async def shutdown(self) -> None:
        await self.process.shutdown()

    async def compile(
        self, source: str, checked_mode: bool, return_source_map: bool
    ) -> CompilationResults:
        result = await self.process.request(
            "compile",
            {
                "source": source,
                "checkedMode": checked_mode,
                "returnSourceMap": return_source_map,
            },
        )
        return CompilationResults.from_dict(result or {})


def sidecar_backend_factory(config: GatewayConfig) -> BackendFactory:
    """Factory building a fresh pair of sidecar engines per generation."""

    def create(generation: int) -> BackendHandle:
        return BackendHandle(
            generation,
            SidecarAnalysisEngine(config.analysis_argv, config.sdk_path),
            SidecarCompilerEngine(config.compiler_argv, config.sdk_path),
        )

    return create
