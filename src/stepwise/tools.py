# tools.py
# Tool registry and the bundled tool implementations.
#
# Every tool declares a pydantic parameter model; its JSON schema is what the
# model sees and what incoming payloads are validated against. The agents
# never call tool classes directly, only ToolRegistry.call().

import json
import re
from functools import cached_property
from typing import Any, Iterable, Iterator
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from stepwise.errors import AgentError, AgentExecutionError, AgentParsingError, InterpreterError
from stepwise.interpreter import evaluate_python_code
from stepwise.models import FunctionCall, ToolInfo

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


# ---------------------------------------------------------------------------
# Base classes
# ---------------------------------------------------------------------------


class ToolParams(BaseModel):
    """Base for tool argument models. Numbers are accepted where text is declared."""

    model_config = ConfigDict(coerce_numbers_to_str=True)


class Tool:
    """
    A named capability the agent can invoke.

    Subclasses set `name`, `description` and `params`, and implement
    forward(). Raise from forward() to report a failure; the registry turns
    the exception into an AgentExecutionError.
    """

    name: str = ""
    description: str = ""
    params: type[ToolParams] = ToolParams

    def forward(self, params: Any) -> str:
        raise NotImplementedError

    @cached_property
    def tool_info(self) -> ToolInfo:
        return ToolInfo(
            name=self.name,
            description=self.description,
            parameters=self.params.model_json_schema(),
        )

    def inputs_description(self) -> str:
        return json.dumps(self.tool_info.parameters.get("properties", {}))

    def forward_json(self, payload: Any) -> str:
        """Validate a raw argument payload and run the tool."""
        if payload is None:
            payload = {}
        try:
            params = self.params.model_validate(payload)
        except ValidationError as exc:
            raise AgentParsingError(
                f"Error when executing tool with arguments: {payload!r}: {exc}. "
                f"As a reminder, this tool's description is: {self.description} "
                f"and takes inputs: {self.inputs_description()}"
            ) from exc

        try:
            return str(self.forward(params))
        except AgentError:
            raise
        except Exception as exc:
            raise AgentExecutionError(str(exc) or type(exc).__name__) from exc

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class ToolRegistry:
    """Name-indexed collection of tools. Names are unique."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if not tool.name:
            raise ValueError(f"{tool!r} has no name.")
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered.")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def tool_infos(self) -> list[ToolInfo]:
        return [tool.tool_info for tool in self._tools.values()]

    def schemas(self) -> list[dict[str, Any]]:
        return [info.to_openai() for info in self.tool_infos()]

    def call(self, function: FunctionCall) -> str:
        tool = self.get(function.name)
        if tool is None:
            raise AgentExecutionError(f"Tool '{function.name}' not found")
        return tool.forward_json(function.arguments)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


# ---------------------------------------------------------------------------
# Bundled tools
# ---------------------------------------------------------------------------


class FinalAnswerParams(ToolParams):
    answer: str = Field(..., description="The final answer to the problem")


class FinalAnswerTool(Tool):
    name = "final_answer"
    description = "Provides a final answer to the given problem."
    params = FinalAnswerParams

    def forward(self, params: FinalAnswerParams) -> str:
        return params.answer


class SearchParams(ToolParams):
    query: str = Field(..., description="The query to search for")


class DuckDuckGoSearchTool(Tool):
    name = "duckduckgo_search"
    description = (
        "Performs a duckduckgo web search for your query then returns a string "
        "of the top search results."
    )
    params = SearchParams

    def __init__(self, max_results: int = 10) -> None:
        self.max_results = max_results

    def forward(self, params: SearchParams) -> str:
        from ddgs import DDGS

        query = params.query.strip()
        if not query:
            raise ValueError("No query provided.")

        try:
            # Coerce the generator to a list to ensure actual execution
            results = list(DDGS().text(query, max_results=self.max_results))
        except Exception as exc:
            raise RuntimeError(f"Search failed: {exc}") from exc

        if not results:
            return "No results found."

        lines = []
        for r in results:
            lines.append(f"[{r.get('title', 'No Title')}]\n{r.get('body', '')}\nSource: {r.get('href', '')}")
        return "\n\n".join(lines)


class VisitWebsiteParams(ToolParams):
    url: str = Field(..., description="The url of the website to visit")


class VisitWebsiteTool(Tool):
    name = "visit_website"
    description = (
        "Visits a webpage at the given url and reads its content as text. "
        "Use this to browse webpages"
    )
    params = VisitWebsiteParams

    def __init__(self, timeout: float = 20.0) -> None:
        self.timeout = timeout

    def forward(self, params: VisitWebsiteParams) -> str:
        import httpx

        url = params.url.strip()
        if not re.match(r"^https?://", url):
            url = f"https://{url}"

        try:
            response = httpx.get(
                url,
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            return f"Failed to make the request: {exc}"

        if response.status_code == 999:
            return (
                "The website appears to be blocking automated access. "
                "Try visiting the URL directly in your browser."
            )
        if not response.is_success:
            return f"Failed to fetch the webpage: HTTP {response.status_code} - {response.reason_phrase}"
        return html_to_text(response.text)


class WikipediaSearchParams(ToolParams):
    query: str = Field(..., description="The term to search Wikipedia for")


class WikipediaSearchTool(Tool):
    name = "wikipedia_search"
    description = "Search Wikipedia for a term and return a short summary of the top article."
    params = WikipediaSearchParams

    SUMMARY_URL = "https://en.wikipedia.org/api/rest_v1/page/summary/{}"

    def forward(self, params: WikipediaSearchParams) -> str:
        import httpx

        url = self.SUMMARY_URL.format(quote(params.query.strip().replace(" ", "_")))
        response = httpx.get(url, headers={"User-Agent": USER_AGENT}, timeout=20.0)
        if not response.is_success:
            return f"Failed to fetch article: HTTP {response.status_code}"

        data = response.json()
        if data.get("extract"):
            return data["extract"]
        if data.get("detail"):
            return data["detail"]
        return "No summary available."


class PythonInterpreterParams(ToolParams):
    code: str = Field(
        ...,
        description=(
            "The code snippet to evaluate. All variables used in this snippet must be "
            "defined in this same snippet, else you will get an error. This code can "
            "only import the following python libraries: collections, datetime, "
            "itertools, math, queue, random, re, stat, statistics, time, unicodedata"
        ),
    )


class PythonInterpreterTool(Tool):
    name = "python_interpreter"
    description = "This is a tool that evaluates python code. It can be used to perform calculations."
    params = PythonInterpreterParams

    def forward(self, params: PythonInterpreterParams) -> str:
        try:
            result = evaluate_python_code(params.code)
        except InterpreterError as exc:
            raise RuntimeError(f"Error evaluating code: {exc}") from exc
        return f"Evaluation Result: {result}"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def html_to_text(html: str) -> str:
    """Strip markup, scripts and styles; collapse runs of blank lines."""
    from bs4 import BeautifulSoup

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text("\n")
    lines = [line.strip() for line in text.splitlines()]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


TOOL_FACTORIES = {
    "duckduckgo": DuckDuckGoSearchTool,
    "visit-website": VisitWebsiteTool,
    "wikipedia": WikipediaSearchTool,
    "python": PythonInterpreterTool,
}
