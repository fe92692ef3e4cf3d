"""
Unit tests for request normalization.
"""

import pytest

from dart_services_mcp.errors import InvalidRequest
from dart_services_mcp.normalize import (
    MAIN_FILE,
    Location,
    normalize_source,
    normalize_sources,
)


class TestNormalizeSource:
    """Single-source calls become a one-entry source map."""

    def test_wraps_source_under_main_file(self):
        request = normalize_source("void main() {}", 5)

        assert request.sources == {MAIN_FILE: "void main() {}"}
        assert request.location == Location(MAIN_FILE, 5)

    def test_offset_optional_when_not_required(self):
        request = normalize_source("void main() {}", offset_required=False)

        assert request.location is None
        assert request.sources == {MAIN_FILE: "void main() {}"}

    def test_missing_source(self):
        with pytest.raises(InvalidRequest, match="'source'"):
            normalize_source(None, 0)

    def test_missing_offset(self):
        with pytest.raises(InvalidRequest, match="'offset'"):
            normalize_source("void main() {}")

    def test_offset_at_end_of_source_is_valid(self):
        source = "void main() {}"
        request = normalize_source(source, len(source))

        assert request.location.offset == len(source)

    @pytest.mark.parametrize("offset", [-1, 15, "3", True, 2.5])
    def test_bad_offsets_rejected(self, offset):
        with pytest.raises(InvalidRequest):
            normalize_source("void main() {}", offset)

    def test_non_string_source_rejected(self):
        with pytest.raises(InvalidRequest):
            normalize_source(42, 0)

    def test_line_count(self):
        request = normalize_source("a\nb\nc", offset_required=False)

        assert request.line_count == 3


class TestNormalizeSources:
    """Multi-source calls pass through after the location is checked."""

    def test_passes_sources_through(self, sample_sources):
        request = normalize_sources(sample_sources, Location("greeter.dart", 4))

        assert request.sources == sample_sources
        assert request.location == Location("greeter.dart", 4)

    def test_location_must_name_a_source(self, sample_sources):
        with pytest.raises(InvalidRequest, match="not in the request sources"):
            normalize_sources(sample_sources, Location("missing.dart", 0))

    def test_missing_location(self, sample_sources):
        with pytest.raises(InvalidRequest, match="'location'"):
            normalize_sources(sample_sources)

    def test_missing_source_name(self, sample_sources):
        with pytest.raises(InvalidRequest, match="'sourceName'"):
            normalize_sources(sample_sources, Location(None, 0))

    @pytest.mark.parametrize("name", [["main.dart"], {"main.dart": 1}, 7])
    def test_source_name_must_be_a_string(self, sample_sources, name):
        location = Location.from_dict({"sourceName": name, "offset": 0})

        with pytest.raises(InvalidRequest, match="'sourceName' must be a string"):
            normalize_sources(sample_sources, location)

    def test_missing_offset_in_location(self, sample_sources):
        with pytest.raises(InvalidRequest, match="'offset'"):
            normalize_sources(sample_sources, Location("main.dart", None))

    def test_offset_checked_against_named_source(self):
        sources = {"a.dart": "x", "b.dart": "a much longer source"}

        with pytest.raises(InvalidRequest):
            normalize_sources(sources, Location("a.dart", 5))

        request = normalize_sources(sources, Location("b.dart", 5))
        assert request.location.offset == 5

    def test_location_optional_when_not_required(self, sample_sources):
        request = normalize_sources(sample_sources, location_required=False)

        assert request.location is None

    @pytest.mark.parametrize("sources", [None, {}, ["main.dart"], {"main.dart": 3}, {"": "x"}])
    def test_bad_source_maps_rejected(self, sources):
        with pytest.raises(InvalidRequest):
            normalize_sources(sources, location_required=False)

    def test_returned_map_is_a_copy(self, sample_sources):
        request = normalize_sources(sample_sources, location_required=False)
        request.sources["extra.dart"] = ""

        assert "extra.dart" not in sample_sources


class TestLocation:
    def test_from_dict(self):
        location = Location.from_dict({"sourceName": "main.dart", "offset": 3})

        assert location == Location("main.dart", 3)
        assert location.to_dict() == {"sourceName": "main.dart", "offset": 3}

    def test_from_none(self):
        assert Location.from_dict(None) is None

    def test_from_non_object(self):
        with pytest.raises(InvalidRequest):
            Location.from_dict("main.dart:3")
