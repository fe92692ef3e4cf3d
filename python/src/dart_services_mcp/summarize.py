"""
Plain-text summaries of a dart/html/css bundle.
"""

import re

from .models import AnalysisResults, IssueKind


# Language features worth mentioning, in the order they are reported
DART_FEATURES = [
    ("classes", re.compile(r"^\s*(?:abstract\s+)?class\s+\w+", re.MULTILINE)),
    ("async code", re.compile(r"\basync\b|\bawait\b|\bFuture<")),
    ("streams", re.compile(r"\bStream<|\.listen\(")),
    ("imports", re.compile(r"^\s*import\s+['\"]", re.MULTILINE)),
    ("DOM access", re.compile(r"querySelector|document\.")),
]

HTML_ELEMENT = re.compile(r"<([a-zA-Z][a-zA-Z0-9-]*)")
CSS_RULE = re.compile(r"[^{}]+\{[^{}]*\}")


def _line_count(text: str) -> int:
    return len(text.split("\n")) if text.strip() else 0


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


class Summarizer:
    """Builds a short description from sources and their analysis."""

    def __init__(self, dart: str, html: str, css: str, analysis: AnalysisResults):
        self.dart = dart
        self.html = html
        self.css = css
        self.analysis = analysis

    def features(self) -> list[str]:
        return [name for name, pattern in DART_FEATURES if pattern.search(self.dart)]

    def html_elements(self) -> list[str]:
        seen: list[str] = []
        for tag in HTML_ELEMENT.findall(self.html):
            tag = tag.lower()
            if tag not in seen:
                seen.append(tag)
        return seen

    def return_as_simple_summary(self) -> str:
        errors = self.analysis.count(IssueKind.ERROR)
        warnings = self.analysis.count(IssueKind.WARNING)

        lines = [
            f"Dart: {_plural(_line_count(self.dart), 'line')}"
            f", {_plural(errors, 'error')}, {_plural(warnings, 'warning')}."
        ]

        features = self.features()
        if features:
            lines.append(f"Uses {', '.join(features)}.")

        if self.html.strip():
            elements = self.html_elements()
            detail = f" ({', '.join(elements[:8])})" if elements else ""
            lines.append(f"HTML: {_plural(_line_count(self.html), 'line')}{detail}.")
        else:
            lines.append("No HTML.")

        if self.css.strip():
            rules = len(CSS_RULE.findall(self.css))
            lines.append(f"CSS: {_plural(_line_count(self.css), 'line')}, {_plural(rules, 'rule')}.")
        else:
            lines.append("No CSS.")

        if errors:
            first = next(i for i in self.analysis.issues if i.kind is IssueKind.ERROR)
            lines.append(f"First error (line {first.line}): {first.message}")

        return "\n".join(lines)
