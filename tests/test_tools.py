from unittest.mock import MagicMock, patch

import httpx
import pytest

from stepwise.errors import AgentExecutionError, AgentParsingError
from stepwise.models import FunctionCall
from stepwise.tools import (
    DuckDuckGoSearchTool,
    FinalAnswerTool,
    PythonInterpreterTool,
    Tool,
    ToolParams,
    ToolRegistry,
    VisitWebsiteTool,
    WikipediaSearchTool,
    html_to_text,
)


class AddParams(ToolParams):
    a: int
    b: int


class AddTool(Tool):
    name = "add"
    description = "Add two integers."
    params = AddParams

    def forward(self, params):
        return str(params.a + params.b)


def fake_response(status_code=200, text="", json_data=None, reason="OK"):
    response = MagicMock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.reason_phrase = reason
    response.text = text
    response.json.return_value = json_data or {}
    return response


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_registry_dispatch():
    registry = ToolRegistry([AddTool()])
    assert registry.call(FunctionCall(name="add", arguments={"a": 2, "b": 3})) == "5"


def test_registry_decodes_json_string_arguments():
    registry = ToolRegistry([AddTool()])
    assert registry.call(FunctionCall(name="add", arguments='{"a": 1, "b": 1}')) == "2"


def test_registry_unknown_tool():
    registry = ToolRegistry([AddTool()])
    with pytest.raises(AgentExecutionError, match="Tool 'nope' not found"):
        registry.call(FunctionCall(name="nope", arguments={}))


def test_registry_rejects_duplicate_names():
    registry = ToolRegistry([AddTool()])
    with pytest.raises(ValueError, match="already registered"):
        registry.register(AddTool())


def test_registry_bad_arguments_are_parsing_errors():
    registry = ToolRegistry([AddTool()])
    with pytest.raises(AgentParsingError) as exc_info:
        registry.call(FunctionCall(name="add", arguments={"a": "two"}))
    message = exc_info.value.message
    assert message.startswith("Error when executing tool with arguments:")
    assert "As a reminder, this tool's description is: Add two integers." in message


def test_registry_wraps_tool_exceptions():
    class Exploding(AddTool):
        name = "explode"

        def forward(self, params):
            raise RuntimeError("kaboom")

    registry = ToolRegistry([Exploding()])
    with pytest.raises(AgentExecutionError, match="kaboom"):
        registry.call(FunctionCall(name="explode", arguments={"a": 1, "b": 1}))


def test_tool_info_schema():
    registry = ToolRegistry([AddTool(), FinalAnswerTool()])
    infos = registry.tool_infos()

    assert [info.name for info in infos] == ["add", "final_answer"]
    assert infos[0].parameter_names() == ["a", "b"]
    assert registry.schemas()[1]["function"]["name"] == "final_answer"
    assert "add" in registry
    assert len(registry) == 2


def test_final_answer_accepts_numbers():
    assert FinalAnswerTool().forward_json({"answer": 42}) == "42"


# ---------------------------------------------------------------------------
# DuckDuckGo
# ---------------------------------------------------------------------------


@patch("ddgs.DDGS")
def test_search_success(mock_ddgs_cls):
    mock_ddgs_cls.return_value.text.return_value = [
        {"title": "Result 1", "body": "Body 1", "href": "http://1.com"}
    ]

    result = DuckDuckGoSearchTool().forward_json({"query": "test"})
    assert "Result 1" in result
    assert "Body 1" in result
    assert "http://1.com" in result


@patch("ddgs.DDGS")
def test_search_empty_query(mock_ddgs_cls):
    with pytest.raises(AgentExecutionError, match="No query provided"):
        DuckDuckGoSearchTool().forward_json({"query": "   "})
    mock_ddgs_cls.assert_not_called()


@patch("ddgs.DDGS")
def test_search_no_results(mock_ddgs_cls):
    mock_ddgs_cls.return_value.text.return_value = []
    assert "No results found" in DuckDuckGoSearchTool().forward_json({"query": "ghost"})


@patch("ddgs.DDGS")
def test_search_exception(mock_ddgs_cls):
    mock_ddgs_cls.return_value.text.side_effect = Exception("Network timeout")
    with pytest.raises(AgentExecutionError, match="Search failed: Network timeout"):
        DuckDuckGoSearchTool().forward_json({"query": "crash"})


# ---------------------------------------------------------------------------
# Web tools
# ---------------------------------------------------------------------------


@patch("httpx.get")
def test_visit_website_strips_markup(mock_get):
    mock_get.return_value = fake_response(
        text="<html><head><script>var x;</script></head><body><h1>Title</h1><p>Hello</p></body></html>"
    )

    result = VisitWebsiteTool().forward_json({"url": "example.com"})
    assert "Title" in result
    assert "Hello" in result
    assert "var x" not in result
    assert mock_get.call_args.args[0] == "https://example.com"


@patch("httpx.get")
def test_visit_website_http_error(mock_get):
    mock_get.return_value = fake_response(status_code=404, reason="Not Found")
    result = VisitWebsiteTool().forward_json({"url": "https://example.com/missing"})
    assert result == "Failed to fetch the webpage: HTTP 404 - Not Found"


@patch("httpx.get")
def test_visit_website_request_error(mock_get):
    mock_get.side_effect = httpx.ConnectError("refused")
    result = VisitWebsiteTool().forward_json({"url": "https://example.com"})
    assert result.startswith("Failed to make the request:")


@patch("httpx.get")
def test_wikipedia_summary(mock_get):
    mock_get.return_value = fake_response(json_data={"extract": "Python is a language."})
    result = WikipediaSearchTool().forward_json({"query": "Python programming"})

    assert result == "Python is a language."
    assert mock_get.call_args.args[0].endswith("/page/summary/Python_programming")


@patch("httpx.get")
def test_wikipedia_no_summary(mock_get):
    mock_get.return_value = fake_response(json_data={})
    assert WikipediaSearchTool().forward_json({"query": "x"}) == "No summary available."


def test_html_to_text_collapses_blank_lines():
    assert html_to_text("<p>a</p>\n\n\n\n<p>b</p>") == "a\n\nb"


# ---------------------------------------------------------------------------
# Python interpreter tool
# ---------------------------------------------------------------------------


def test_python_interpreter_tool():
    result = PythonInterpreterTool().forward_json({"code": "x = 6\nx * 7"})
    assert result == "Evaluation Result: 42"


def test_python_interpreter_tool_error():
    with pytest.raises(AgentExecutionError, match="Error evaluating code"):
        PythonInterpreterTool().forward_json({"code": "undefined_name"})
