"""
Request orchestrator for the Dart Services MCP Server.

Every service operation goes through the same steps:

1. Validate and normalize the request (no I/O before this succeeds)
2. For compile only: consult the content-addressed cache
3. Delegate to the backend under a lease on the current handle
4. Record usage counters after a successful backend call
5. On an engine-level exception: ask the supervisor to restart the
   faulted generation, then re-raise to the caller as BackendFault

Failures are never written to the cache.
"""

import json
import logging
import platform
from typing import Any, Awaitable, Callable, TypeVar

from . import __version__
from .backend import BackendHandle
from .cache_keys import compile_cache_key, has_suppress_cache_marker, hash_source
from .config import GatewayConfig
from .errors import BackendFault, CompileFailed, GatewayError, InvalidRequest
from .models import (
    AnalysisResults,
    CompileResponse,
    CompleteResponse,
    CounterResponse,
    DocumentResponse,
    FixesResponse,
    FormatResponse,
    SummaryText,
    VersionResponse,
)
from .normalize import (
    MAIN_FILE,
    Location,
    NormalizedRequest,
    normalize_source,
    normalize_sources,
    require_offset,
    require_source,
)
from .ports import CachePort, CounterPort
from .profiling import LatencyTracker
from .summarize import Summarizer
from .supervisor import RestartSupervisor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DartServices:
    """
    The service operations exposed to callers.

    Holds no backend reference of its own: each call leases the current
    handle from the supervisor, so a restart never changes the handle a
    call is already running against.
    """

    def __init__(
        self,
        config: GatewayConfig,
        supervisor: RestartSupervisor,
        cache: CachePort,
        counter: CounterPort,
    ):
        self.config = config
        self.supervisor = supervisor
        self.cache = cache
        self.counter = counter

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze(self, source: Any) -> AnalysisResults:
        return await self._analyze(normalize_source(source, offset_required=False))

    async def analyze_multi(self, sources: Any) -> AnalysisResults:
        return await self._analyze(normalize_sources(sources, location_required=False))

    async def _analyze(self, request: NormalizedRequest) -> AnalysisResults:
        with LatencyTracker() as timer:
            results = await self._delegate(
                "analyze", lambda handle: handle.analysis.analyze(request.sources)
            )

        line_count = request.line_count
        logger.info(f"PERF: Analyzed {line_count} lines of Dart in {timer.elapsed_ms:.0f}ms.")
        await self._increment("Analyses")
        await self._increment("Analyzed-Lines", line_count)
        return results

    async def summarize(self, sources: Any) -> SummaryText:
        """Analyze the dart entry of a dart/html/css bundle and describe it."""
        if sources is None:
            raise InvalidRequest("Missing parameter: 'sources'")
        if not isinstance(sources, dict):
            raise InvalidRequest("Parameter 'sources' must be an object")

        dart, html, css = sources.get("dart"), sources.get("html"), sources.get("css")
        if dart is None or html is None or css is None:
            raise InvalidRequest("Missing core source parameter.")
        if not all(isinstance(text, str) for text in (dart, html, css)):
            raise InvalidRequest("Sources 'dart', 'html' and 'css' must be strings")

        bundle = json.dumps({"dart": dart, "html": html, "css": css})
        logger.info(f"About to summarize: {hash_source(bundle)}")

        results = await self._analyze(normalize_sources({MAIN_FILE: dart}, location_required=False))
        summarizer = Summarizer(dart=dart, html=html, css=css, analysis=results)
        return SummaryText(summarizer.return_as_simple_summary())

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    async def compile(
        self,
        source: Any,
        return_source_map: bool = False,
        bypass_cache: bool = False,
    ) -> CompileResponse:
        """
        Compile source to JavaScript, memoized by content.

        Args:
            source: Dart source text
            return_source_map: Include the source map in the response
            bypass_cache: Skip both the cache read and the cache write

        Raises:
            InvalidRequest: If source is missing
            CompileFailed: If the compiler reported problems instead of output
            BackendFault: If the compiler failed at the engine level
        """
        source = require_source(source)
        checked_mode = self.config.checked_mode

        suppress_cache = bypass_cache or (
            self.config.honor_legacy_cache_marker and has_suppress_cache_marker(source)
        )
        cache_key = compile_cache_key(source, checked_mode, return_source_map)

        if not suppress_cache:
            cached = await self._read_compile_cache(cache_key)
            if cached is not None:
                logger.info("CACHE: Cache hit for compile")
                return CompileResponse(
                    cached["output"],
                    cached.get("sourceMap") if return_source_map else None,
                )

        logger.info(f"CACHE: MISS, forced: {suppress_cache}")

        with LatencyTracker() as timer:
            results = await self._delegate(
                "compile",
                lambda handle: handle.compiler.compile(
                    source,
                    checked_mode=checked_mode,
                    return_source_map=return_source_map,
                ),
            )

        if not results.has_output:
            problems = [problem.message for problem in results.problems]
            raise CompileFailed(problems or ["Compilation produced no output"])

        line_count = len(source.split("\n"))
        output_kb = (len(results.output) + 512) // 1024
        logger.info(
            f"PERF: Compiled {line_count} lines of Dart into {output_kb}kb of "
            f"JavaScript in {timer.elapsed_ms:.0f}ms."
        )
        await self._increment("Compilations")
        await self._increment("Compiled-Lines", line_count)

        source_map = results.source_map if return_source_map else None
        if not suppress_cache:
            payload = json.dumps({"output": results.output, "sourceMap": source_map})
            await self._write_compile_cache(cache_key, payload)

        return CompileResponse(results.output, source_map)

    # ------------------------------------------------------------------
    # Editing support
    # ------------------------------------------------------------------

    async def complete(self, source: Any, offset: Any) -> CompleteResponse:
        return await self._complete(normalize_source(source, offset))

    async def complete_multi(self, sources: Any, location: Location | None) -> CompleteResponse:
        return await self._complete(normalize_sources(sources, location))

    async def _complete(self, request: NormalizedRequest) -> CompleteResponse:
        with LatencyTracker() as timer:
            response = await self._delegate(
                "complete",
                lambda handle: handle.analysis.complete(request.sources, request.location),
            )
        logger.info(f"PERF: Computed completions in {timer.elapsed_ms:.0f}ms.")
        await self._increment("Completions")
        return response

    async def fixes(self, source: Any, offset: Any) -> FixesResponse:
        return await self._fixes(normalize_source(source, offset))

    async def fixes_multi(self, sources: Any, location: Location | None) -> FixesResponse:
        return await self._fixes(normalize_sources(sources, location))

    async def _fixes(self, request: NormalizedRequest) -> FixesResponse:
        with LatencyTracker() as timer:
            response = await self._delegate(
                "fixes",
                lambda handle: handle.analysis.fixes(request.sources, request.location),
            )
        logger.info(f"PERF: Computed fixes in {timer.elapsed_ms:.0f}ms.")
        await self._increment("Fixes")
        return response

    async def format(self, source: Any, offset: Any = None) -> FormatResponse:
        """Format source; the offset, when given, is mapped into the result."""
        text = require_source(source)
        cursor = 0 if offset is None else require_offset(offset, text)

        with LatencyTracker() as timer:
            response = await self._delegate(
                "format", lambda handle: handle.analysis.format(text, cursor)
            )
        logger.info(f"PERF: Computed format in {timer.elapsed_ms:.0f}ms.")
        await self._increment("Formats")
        return response

    async def document(self, source: Any, offset: Any) -> DocumentResponse:
        request = normalize_source(source, offset)

        with LatencyTracker() as timer:
            info = await self._delegate(
                "document",
                lambda handle: handle.analysis.document(request.sources, request.location),
            )
        logger.info(f"PERF: Computed dartdoc in {timer.elapsed_ms:.0f}ms.")
        await self._increment("DartDocs")
        return DocumentResponse(info or {})

    # ------------------------------------------------------------------
    # Service information
    # ------------------------------------------------------------------

    def version(self) -> VersionResponse:
        handle = self.supervisor.handle
        return VersionResponse(
            engine_version=handle.engine_version if handle else "unknown",
            runtime_version=platform.python_version(),
            service_version=__version__,
            host_version=self.config.host_version,
        )

    async def counter_total(self, name: Any) -> CounterResponse:
        if not name:
            raise InvalidRequest("Missing parameter: 'name'")
        if not isinstance(name, str):
            raise InvalidRequest("Parameter 'name' must be a string")
        return CounterResponse(await self.counter.get_total(name))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _delegate(
        self,
        operation: str,
        call: Callable[[BackendHandle], Awaitable[T]],
    ) -> T:
        """Run one backend call; engine-level exceptions trigger a restart."""
        generation: int | None = None
        try:
            async with self.supervisor.lease() as handle:
                generation = handle.generation
                return await call(handle)
        except GatewayError:
            raise
        except Exception as e:
            logger.error(f"Error during {operation}", exc_info=True)
            if generation is not None:
                await self.supervisor.restart(generation)
            raise BackendFault(f"Error during {operation}: {e}", generation=generation) from e

    async def _read_compile_cache(self, key: str) -> dict[str, Any] | None:
        try:
            payload = await self.cache.get(key)
        except Exception as e:
            logger.warning(f"CACHE: read failed, treating as a miss: {e}")
            return None

        if payload is None:
            return None

        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning(f"CACHE: discarding undecodable entry {key}")
            return None

        if not isinstance(data, dict) or not isinstance(data.get("output"), str):
            logger.warning(f"CACHE: discarding malformed entry {key}")
            return None
        return data

    async def _write_compile_cache(self, key: str, payload: str) -> None:
        try:
            await self.cache.set(key, payload, ttl=self.config.cache_ttl_seconds)
        except Exception as e:
            logger.warning(f"CACHE: write failed for {key}: {e}")

    async def _increment(self, name: str, by: int = 1) -> None:
        try:
            await self.counter.increment(name, by)
        except Exception as e:
            logger.warning(f"Failed to increment counter '{name}': {e}")
