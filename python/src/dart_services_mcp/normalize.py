"""
Request normalization.

Single-source calls are rewritten into the canonical multi-source shape:
a source map holding one entry under MAIN_FILE plus a Location pointing
into it. Multi-source calls pass through after their location is checked
against the map.
"""

from dataclasses import dataclass
from typing import Any, Mapping

from .errors import InvalidRequest


# Reserved name of the entry file for single-source calls
MAIN_FILE = "main.dart"


@dataclass(frozen=True)
class Location:
    source_name: str
    offset: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "Location | None":
        """Build a Location from its wire form, or None when absent."""
        if data is None:
            return None
        if not isinstance(data, Mapping):
            raise InvalidRequest("Parameter 'location' must be an object")
        return cls(source_name=data.get("sourceName"), offset=data.get("offset"))

    def to_dict(self) -> dict[str, Any]:
        return {"sourceName": self.source_name, "offset": self.offset}


@dataclass(frozen=True)
class NormalizedRequest:
    sources: dict[str, str]
    location: Location | None = None

    @property
    def line_count(self) -> int:
        return sum(len(text.split("\n")) for text in self.sources.values())


def require_source(source: Any) -> str:
    if source is None:
        raise InvalidRequest("Missing parameter: 'source'")
    if not isinstance(source, str):
        raise InvalidRequest("Parameter 'source' must be a string")
    return source


def require_offset(offset: Any, text: str) -> int:
    if offset is None:
        raise InvalidRequest("Missing parameter: 'offset'")
    # bool is an int subclass but never a valid offset
    if isinstance(offset, bool) or not isinstance(offset, int):
        raise InvalidRequest("Parameter 'offset' must be an integer")
    if offset < 0 or offset > len(text):
        raise InvalidRequest(
            f"Offset {offset} is outside the source (length {len(text)})"
        )
    return offset


def require_sources(sources: Any) -> dict[str, str]:
    if sources is None:
        raise InvalidRequest("Missing parameter: 'sources'")
    if not isinstance(sources, Mapping):
        raise InvalidRequest("Parameter 'sources' must be an object")
    if not sources:
        raise InvalidRequest("Parameter 'sources' must not be empty")
    for name, text in sources.items():
        if not isinstance(name, str) or not name:
            raise InvalidRequest("Source names must be non-empty strings")
        if not isinstance(text, str):
            raise InvalidRequest(f"Source '{name}' must be a string")
    return dict(sources)


def normalize_source(
    source: Any,
    offset: Any = None,
    offset_required: bool = True
) -> NormalizedRequest:
    """
    Normalize a single-source call.

    Args:
        source: Source text of the main file
        offset: Cursor offset into the source
        offset_required: Whether a missing offset is an error

    Returns:
        NormalizedRequest with one MAIN_FILE entry, and a Location when an
        offset is given
    """
    text = require_source(source)
    if offset is None and not offset_required:
        return NormalizedRequest(sources={MAIN_FILE: text})

    return NormalizedRequest(
        sources={MAIN_FILE: text},
        location=Location(MAIN_FILE, require_offset(offset, text)),
    )


def normalize_sources(
    sources: Any,
    location: Location | None = None,
    location_required: bool = True
) -> NormalizedRequest:
    """
    Validate a multi-source call.

    The location, when required, must name a key of the source map and
    carry an offset within that source's text.
    """
    source_map = require_sources(sources)
    if location is None:
        if location_required:
            raise InvalidRequest("Missing parameter: 'location'")
        return NormalizedRequest(sources=source_map)

    if location.source_name is None:
        raise InvalidRequest("Missing parameter: 'sourceName'")
    if not isinstance(location.source_name, str):
        raise InvalidRequest("Parameter 'sourceName' must be a string")
    if location.source_name not in source_map:
        raise InvalidRequest(
            f"Location source '{location.source_name}' is not in the request sources"
        )

    offset = require_offset(location.offset, source_map[location.source_name])
    return NormalizedRequest(
        sources=source_map,
        location=Location(location.source_name, offset),
    )
