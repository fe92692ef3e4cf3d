"""
Request and response types for the Dart Services MCP Server.

Wire dictionaries use camelCase keys; the dataclasses use snake_case.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class IssueKind(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class AnalysisIssue:
    """A single diagnostic reported by the analysis engine."""
    kind: IssueKind
    line: int
    message: str
    source_name: str
    has_fixes: bool = False
    char_start: int = 0
    char_length: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "line": self.line,
            "message": self.message,
            "sourceName": self.source_name,
            "hasFixes": self.has_fixes,
            "charStart": self.char_start,
            "charLength": self.char_length,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisIssue":
        return cls(
            kind=IssueKind(data.get("kind", "info")),
            line=data.get("line", 0),
            message=data.get("message", ""),
            source_name=data.get("sourceName", ""),
            has_fixes=data.get("hasFixes", False),
            char_start=data.get("charStart", 0),
            char_length=data.get("charLength", 0),
        )


@dataclass
class AnalysisResults:
    issues: list[AnalysisIssue] = field(default_factory=list)
    package_imports: list[str] = field(default_factory=list)

    def count(self, kind: IssueKind) -> int:
        return sum(1 for issue in self.issues if issue.kind is kind)

    def to_dict(self) -> dict[str, Any]:
        return {
            "issues": [issue.to_dict() for issue in self.issues],
            "packageImports": list(self.package_imports),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisResults":
        return cls(
            issues=[AnalysisIssue.from_dict(i) for i in data.get("issues", [])],
            package_imports=list(data.get("packageImports", [])),
        )


@dataclass
class CompilationProblem:
    message: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompilationProblem":
        return cls(message=data.get("message", ""))


@dataclass
class CompilationResults:
    """Raw compiler output: either JavaScript or a list of problems."""
    output: str | None = None
    source_map: str | None = None
    problems: list[CompilationProblem] = field(default_factory=list)

    @property
    def has_output(self) -> bool:
        return bool(self.output)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompilationResults":
        return cls(
            output=data.get("output"),
            source_map=data.get("sourceMap"),
            problems=[CompilationProblem.from_dict(p) for p in data.get("problems", [])],
        )


@dataclass
class CompileResponse:
    result: str
    source_map: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"result": self.result}
        if self.source_map is not None:
            data["sourceMap"] = self.source_map
        return data


@dataclass
class CompleteResponse:
    replacement_offset: int
    replacement_length: int
    completions: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "replacementOffset": self.replacement_offset,
            "replacementLength": self.replacement_length,
            "completions": self.completions,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompleteResponse":
        return cls(
            replacement_offset=data.get("replacementOffset", 0),
            replacement_length=data.get("replacementLength", 0),
            completions=list(data.get("completions", [])),
        )


@dataclass
class FixesResponse:
    fixes: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"fixes": self.fixes}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FixesResponse":
        return cls(fixes=list(data.get("fixes", [])))


@dataclass
class FormatResponse:
    new_string: str
    offset: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"newString": self.new_string, "offset": self.offset}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FormatResponse":
        return cls(new_string=data.get("newString", ""), offset=data.get("offset"))


@dataclass
class DocumentResponse:
    info: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"info": dict(self.info)}


@dataclass
class VersionResponse:
    engine_version: str
    runtime_version: str
    service_version: str
    host_version: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "engineVersion": self.engine_version,
            "runtimeVersion": self.runtime_version,
            "serviceVersion": self.service_version,
            "hostVersion": self.host_version,
        }


@dataclass
class CounterResponse:
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count}


@dataclass
class SummaryText:
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text}
