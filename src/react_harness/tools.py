# tools.py
# Built-in tool catalog.
# The harness never calls these functions directly; they are registered by
# name through build_registry() and reached only via the dispatcher.

from typing import Optional

from react_harness.config import AgentConfig
from react_harness.dispatcher import ToolDispatcher
from react_harness.errors import ConfigError
from react_harness.interpreter import AUTHORIZED_IMPORTS, CodeInterpreter
from react_harness.registry import Tool, ToolRegistry, tool

MAX_PAGE_CHARS = 10000
SERPAPI_URL = "https://serpapi.com/search.json"

_HIDDEN_TAGS = ["script", "style", "noscript", "template"]


@tool
def search(query: str, max_results: int = 4) -> str:
    """Performs a web search and returns the top results.

    Args:
        query: The search query to perform.
        max_results: Number of results to return.
    """
    from ddgs import DDGS

    query = query.strip()
    if not query:
        return "Error: no query provided."

    # Coerce the generator to a list to ensure actual execution
    results = list(DDGS().text(query, max_results=max_results))
    if not results:
        return "No results found."

    lines = []
    for r in results:
        lines.append(f"[{r.get('title', 'No Title')}]\n{r.get('body', '')}\nSource: {r.get('href', '')}")
    return "\n\n".join(lines)


def html_to_text(markup: str) -> str:
    from bs4 import BeautifulSoup

    soup = BeautifulSoup(markup, "html.parser")
    for element in soup(_HIDDEN_TAGS):
        element.decompose()
    lines = (" ".join(line.split()) for line in soup.get_text(separator="\n").splitlines())
    return "\n".join(line for line in lines if line)


@tool
def visit_website(url: str) -> str:
    """Visits a webpage at the given url and returns its content as plain text.

    Args:
        url: The url of the webpage to visit.
    """
    import httpx

    url = url.strip()
    if not url:
        return "Error: no URL provided."

    response = httpx.get(url, timeout=10, follow_redirects=True)
    response.raise_for_status()
    text = html_to_text(response.text)
    if len(text) > MAX_PAGE_CHARS:
        return text[:MAX_PAGE_CHARS] + "\n..._This content has been truncated._"
    return text or "The page has no readable text."


@tool(
    description=(
        "This is a tool that evaluates python code. It can be used to perform "
        "calculations. Make sure to print the result using print(). "
        f"Only these modules can be imported: {', '.join(AUTHORIZED_IMPORTS)}."
    )
)
def python_interpreter(code: str) -> str:
    """
    Args:
        code: The code snippet to evaluate. All variables used in this snippet
            must be defined in this same snippet, else you will get an error.
    """
    # Fresh context per call: nothing leaks between calls or concurrent runs.
    interpreter = CodeInterpreter(ToolDispatcher(ToolRegistry().freeze()))
    outcome = interpreter.run(code)
    if outcome.error is not None:
        raise RuntimeError(f"Error evaluating code: {outcome.error}")

    parts = [outcome.logs] if outcome.logs else []
    if outcome.result is not None:
        parts.append(outcome.result)
    if not parts:
        return "No Results. Make sure to print the result using print()."
    return "Evaluation Result: " + "\n".join(parts)


def google_search_tool(api_key: str) -> Tool:
    """Build the google_search tool bound to a SerpAPI key."""

    @tool(name="google_search")
    def google_search(query: str, filter_year: Optional[int] = None) -> str:
        """Performs a google web search for your query then returns the top search results.

        Args:
            query: The search query to perform.
            filter_year: Optionally restrict results to a certain year.
        """
        import httpx

        params = {
            "engine": "google",
            "q": query,
            "api_key": api_key,
            "google_domain": "google.com",
        }
        if filter_year is not None:
            params["tbs"] = f"cdr:1,cd_min:01/01/{filter_year},cd_max:12/31/{filter_year}"

        response = httpx.get(SERPAPI_URL, params=params, timeout=10)
        response.raise_for_status()
        pages = response.json().get("organic_results") or []
        if not pages:
            year = f" with filter year={filter_year}" if filter_year is not None else ""
            return (
                f"No results found for '{query}'{year}. "
                "Try with a more general query, or remove the year filter."
            )

        entries = []
        for idx, page in enumerate(pages):
            entry = f"{idx}. [{page.get('title', 'No Title')}]({page.get('link', '')})"
            if page.get("date"):
                entry += f"\nDate published: {page['date']}"
            if page.get("source"):
                entry += f"\nSource: {page['source']}"
            if page.get("snippet"):
                entry += f"\n{page['snippet']}"
            entries.append(entry)
        return "## Search Results\n" + "\n\n".join(entries)

    return google_search


TOOLS: dict[str, Tool] = {
    "search":             search,
    "visit_website":      visit_website,
    "python_interpreter": python_interpreter,
}


def build_catalog(config: AgentConfig) -> dict[str, Tool]:
    """TOOLS plus google_search when the config asks for it. Raises ConfigError without a key."""
    catalog = dict(TOOLS)
    if "google_search" in config.tools:
        if config.serpapi_api_key is None:
            raise ConfigError("The google_search tool needs a SerpAPI key. Set SERPAPI_API_KEY.")
        catalog["google_search"] = google_search_tool(config.serpapi_api_key.get_secret_value())
    return catalog
