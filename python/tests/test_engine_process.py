"""
Tests for the JSON-lines engine sidecar processes.

These start tests/fake_engine.py with the current interpreter.
"""

import asyncio
import sys
from pathlib import Path

import pytest

from dart_services_mcp.engine_process import (
    EngineProcess,
    SidecarAnalysisEngine,
    SidecarCompilerEngine,
    read_sdk_version,
)
from dart_services_mcp.errors import EngineCrashed, EngineError
from dart_services_mcp.models import IssueKind
from dart_services_mcp.normalize import MAIN_FILE, Location


ENGINE_ARGV = [sys.executable, str(Path(__file__).parent / "fake_engine.py")]


class TestEngineProcess:
    @pytest.mark.asyncio
    async def test_request_and_reply(self):
        engine = EngineProcess(ENGINE_ARGV, name="test")
        await engine.start()
        try:
            result = await engine.request("fixes", {"sources": {}, "location": {}})
            assert result == {"fixes": [{"message": "Insert ';'"}]}
        finally:
            await engine.shutdown()

    @pytest.mark.asyncio
    async def test_concurrent_requests_are_matched_by_id(self):
        engine = EngineProcess(ENGINE_ARGV, name="test")
        await engine.start()
        try:
            results = await asyncio.gather(*(
                engine.request("format", {"source": f"  line {i}  ", "offset": i})
                for i in range(10)
            ))
            assert [r["offset"] for r in results] == list(range(10))
            assert results[3]["newString"] == "line 3\n"
        finally:
            await engine.shutdown()

    @pytest.mark.asyncio
    async def test_error_reply(self):
        engine = EngineProcess(ENGINE_ARGV, name="test")
        await engine.start()
        try:
            with pytest.raises(EngineError) as exc_info:
                await engine.request("explode", {})
            assert exc_info.value.error_type == "ValueError"
            assert "Unknown method" in exc_info.value.message

            # the engine keeps serving after an error reply
            assert await engine.request("document", {"sources": {}})
        finally:
            await engine.shutdown()

    @pytest.mark.asyncio
    async def test_crash_fails_pending_request(self):
        engine = EngineProcess(ENGINE_ARGV, name="test")
        await engine.start()

        with pytest.raises(EngineCrashed) as exc_info:
            await engine.request("analyze", {"sources": {MAIN_FILE: "CRASH 7"}})

        assert exc_info.value.exit_code == 7
        assert await engine.wait_for_exit() == 7
        assert not engine.running

        with pytest.raises(EngineCrashed, match="not running"):
            await engine.request("analyze", {"sources": {}})

        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_malformed_error_reply(self):
        engine = EngineProcess(ENGINE_ARGV, name="test")
        await engine.start()
        try:
            with pytest.raises(EngineError) as exc_info:
                await asyncio.wait_for(engine.request("malformed_error", {}), timeout=5)
            assert exc_info.value.error_type == "MalformedReply"
            assert "'boom'" in exc_info.value.message

            # the reader survives and later requests are still answered
            assert engine.running
            result = await asyncio.wait_for(engine.request("fixes", {"sources": {}}), timeout=5)
            assert result == {"fixes": [{"message": "Insert ';'"}]}
        finally:
            await engine.shutdown()

    @pytest.mark.asyncio
    async def test_reply_with_unusable_id_breaks_channel(self):
        engine = EngineProcess(ENGINE_ARGV, name="test", shutdown_timeout=1.0)
        await engine.start()

        with pytest.raises(EngineCrashed):
            await asyncio.wait_for(engine.request("bad_id", {}), timeout=5)

        code = await asyncio.wait_for(engine.wait_for_exit(), timeout=5)
        assert code != 0
        assert engine.exit_code == code
        assert not engine.running

        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_exits_cleanly(self):
        engine = EngineProcess(ENGINE_ARGV, name="test")
        await engine.start()
        assert engine.pid is not None

        await engine.shutdown()

        assert await engine.wait_for_exit() == 0

    @pytest.mark.asyncio
    async def test_missing_ready_line(self):
        engine = EngineProcess([sys.executable, "-c", "import sys; sys.exit(4)"], name="test")

        with pytest.raises(EngineCrashed) as exc_info:
            await engine.start()

        assert exc_info.value.exit_code == 4

    @pytest.mark.asyncio
    async def test_unexpected_greeting(self):
        engine = EngineProcess(
            [sys.executable, "-c", "import sys, time; print('hello'); sys.stdout.flush(); time.sleep(30)"],
            name="test",
            shutdown_timeout=1.0,
        )

        with pytest.raises(EngineCrashed, match="unexpected greeting"):
            await engine.start()

    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            EngineProcess([], name="analysis")

    @pytest.mark.asyncio
    async def test_wait_before_start(self):
        with pytest.raises(RuntimeError):
            await EngineProcess(ENGINE_ARGV).wait_for_exit()


class TestSidecarEngines:
    @pytest.mark.asyncio
    async def test_analysis_engine(self):
        engine = SidecarAnalysisEngine(ENGINE_ARGV)
        await engine.start()
        try:
            results = await engine.analyze({MAIN_FILE: "void main() {\n  undefined;\n}"})
            assert results.count(IssueKind.ERROR) == 1
            assert results.issues[0].line == 2

            location = Location(MAIN_FILE, 3)
            completions = await engine.complete({MAIN_FILE: "pri"}, location)
            assert completions.replacement_offset == 3
            assert completions.completions == [{"completion": "print"}]

            formatted = await engine.format("  x  ", 2)
            assert formatted.new_string == "x\n"
            assert formatted.offset == 2
        finally:
            await engine.shutdown()

    @pytest.mark.asyncio
    async def test_compiler_engine(self):
        engine = SidecarCompilerEngine(ENGINE_ARGV)
        await engine.start()
        try:
            results = await engine.compile("void main() {}", checked_mode=True, return_source_map=True)
            assert results.has_output
            assert results.source_map == '{"version": 3}'

            failed = await engine.compile("syntax error", checked_mode=True, return_source_map=False)
            assert not failed.has_output
            assert [p.message for p in failed.problems] == ["Expected ';' after this."]
        finally:
            await engine.shutdown()

    def test_version_without_sdk(self):
        assert SidecarAnalysisEngine(ENGINE_ARGV).version == "unknown"


class TestReadSdkVersion:
    def test_reads_version_file(self, temp_dir):
        (temp_dir / "version").write_text("3.4.0\n", encoding="utf-8")

        assert read_sdk_version(str(temp_dir)) == "3.4.0"

    def test_missing_version_file(self, temp_dir):
        assert read_sdk_version(str(temp_dir)) == "unknown"
        assert read_sdk_version("") == "unknown"
