"""Tests for tool-call parsing and the tool catalogue."""

import pytest

from creative_orchestrator.agents.tools import (
    TOOL_SPECS,
    ChartDataArgs,
    PlanStructureArgs,
    ToolKind,
    WebSearchArgs,
    parse_tool_call,
)
from creative_orchestrator.errors import ToolArgumentError

from conftest import tool_call


class TestToolSpecs:
    def test_every_kind_has_a_schema(self):
        names = [schema["function"]["name"] for schema in TOOL_SPECS]
        assert sorted(names) == sorted(k.value for k in ToolKind)


class TestParseToolCall:
    """Test name resolution and argument validation."""

    def test_valid_call(self):
        parsed = parse_tool_call(tool_call("web_search", {"query": "tides", "slide_index": 1}, call_id="c1"))
        assert parsed.kind is ToolKind.WEB_SEARCH
        assert isinstance(parsed.args, WebSearchArgs)
        assert parsed.args.search_type == "background"
        assert parsed.call_id == "c1"

    def test_unknown_tool(self):
        with pytest.raises(ToolArgumentError) as exc:
            parse_tool_call(tool_call("render_video", {}))
        assert "Unknown tool 'render_video'" in str(exc.value)
        assert exc.value.tool_name == "render_video"

    def test_malformed_json_rejected(self):
        with pytest.raises(ToolArgumentError) as exc:
            parse_tool_call(tool_call("web_search", "query = tides"))
        assert "malformed" in str(exc.value)

    def test_missing_required_field(self):
        with pytest.raises(ToolArgumentError) as exc:
            parse_tool_call(tool_call("generate_chart_data", {"chart_type": "bar"}))
        message = str(exc.value)
        assert "slide_index" in message
        assert "retry" in message

    def test_repairable_json_accepted(self):
        parsed = parse_tool_call(tool_call("plan_structure", '{"theme_style": "nature", "slides": [],}'))
        assert isinstance(parsed.args, PlanStructureArgs)
        assert parsed.args.theme_style == "nature"

    def test_empty_arguments_use_defaults(self):
        parsed = parse_tool_call(tool_call("finalize_prompt", ""))
        assert parsed.kind is ToolKind.FINALIZE_PROMPT
        assert parsed.args.additional_requirements == []

    def test_chart_requires_data_points(self):
        with pytest.raises(ToolArgumentError):
            parse_tool_call(tool_call("generate_chart_data", {"slide_index": 0, "data_points": []}))

    def test_chart_args(self):
        parsed = parse_tool_call(tool_call(
            "generate_chart_data",
            {"slide_index": 0, "chart_type": "pie", "data_points": [{"label": "A", "value": 3}]}
        ))
        assert isinstance(parsed.args, ChartDataArgs)
        assert parsed.args.data_points[0].value == 3.0
