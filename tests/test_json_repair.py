"""Tests for the lenient JSON fallback chain."""

import logging

from creative_orchestrator.utils.json_repair import ParseTier, parse_json_lenient, repair_json_text


class TestParseJsonLenient:
    """Each input lands on the expected tier."""

    def test_exact(self, caplog):
        with caplog.at_level(logging.WARNING):
            value, tier = parse_json_lenient('{"query": "tides", "slide_index": 2}')
        assert tier == ParseTier.EXACT
        assert value == {"query": "tides", "slide_index": 2}
        assert caplog.records == []

    def test_blank_input_is_empty_object(self):
        assert parse_json_lenient("   ") == ({}, ParseTier.EXACT)

    def test_trailing_comma_repaired(self, caplog):
        with caplog.at_level(logging.WARNING):
            value, tier = parse_json_lenient('{"a": [1, 2,], "b": "x",}')
        assert tier == ParseTier.REPAIRED
        assert value == {"a": [1, 2], "b": "x"}
        assert any("structural repair" in r.getMessage() for r in caplog.records)

    def test_code_fence_and_smart_quotes(self):
        text = '```json\n{“title”: “Intro”}\n```'
        value, tier = parse_json_lenient(text)
        assert tier == ParseTier.REPAIRED
        assert value == {"title": "Intro"}

    def test_truncated_payload_is_closed(self):
        value, tier = parse_json_lenient('{"slides": [{"title": "One"}, {"title": "Tw')
        assert tier == ParseTier.REPAIRED
        assert value["slides"][1] == {"title": "Tw"}

    def test_object_extracted_from_prose(self, caplog):
        with caplog.at_level(logging.WARNING):
            value, tier = parse_json_lenient('Here are the arguments: {"query": "moon"} hope that helps')
        assert tier == ParseTier.EXTRACTED
        assert value == {"query": "moon"}
        assert any("extracted object" in r.getMessage() for r in caplog.records)

    def test_garbage_falls_back_to_empty(self, caplog):
        with caplog.at_level(logging.WARNING):
            value, tier = parse_json_lenient("definitely not json", context="web_search arguments")
        assert tier == ParseTier.EMPTY
        assert value == {}
        assert any("web_search arguments" in r.getMessage() for r in caplog.records)

    def test_non_object_json_is_not_exact(self):
        _, tier = parse_json_lenient("[1, 2, 3]")
        assert tier == ParseTier.EMPTY


class TestRepairJsonText:
    def test_raw_newlines_inside_strings_removed(self):
        assert repair_json_text('{"a": "line one\nline two"}') == '{"a": "line one line two"}'
