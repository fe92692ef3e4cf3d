"""
Error taxonomy for the Dart Services MCP Server.

Gateway errors are what callers see:
- InvalidRequest: missing or malformed input, rejected before any backend call
- CompileFailed: the compiler produced diagnostics instead of output
- BackendFault: the engine failed at the engine level; a restart was attempted
- FatalBackendExit: the backend exited with a non-zero status, or the service
  is terminated and accepts no more requests

Engine errors are raised by engine implementations and are always treated
as faults by the orchestrator.
"""

from typing import Any


class GatewayError(Exception):
    """Base class for errors surfaced to callers."""

    kind = "GatewayError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class InvalidRequest(GatewayError):
    kind = "InvalidRequest"


class CompileFailed(GatewayError):
    """The compiler reported problems and produced no usable output."""

    kind = "CompileFailed"

    def __init__(self, problems: list[str]):
        super().__init__("\n".join(problems))
        self.problems = problems


class BackendFault(GatewayError):
    """An engine-level failure, re-signaled after the restart attempt."""

    kind = "BackendFault"

    def __init__(self, message: str, generation: int | None = None):
        super().__init__(message)
        self.generation = generation


class FatalBackendExit(GatewayError):
    kind = "FatalBackendExit"

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.exit_code = exit_code


class EngineError(Exception):
    """The engine answered a request with an error object."""

    def __init__(self, error_type: str, message: str):
        super().__init__(f"{error_type}: {message}")
        self.error_type = error_type
        self.message = message


class EngineCrashed(Exception):
    """The engine process went away or its channel broke mid-request."""

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.exit_code = exit_code
