"""Search and page-fetch collaborators used by the search_with_bing capability."""

import os
import sys

import httpx
from bs4 import BeautifulSoup

from errors import DependencyFailure

DEFAULT_BING_ENDPOINT = "https://api.bing.microsoft.com/v7.0/search"

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/114.0.0.0 Safari/537.36"
)

# Page chrome that carries no readable content
_STRIP_TAGS = ["script", "style", "noscript", "header", "footer", "nav", "aside", "form"]


def _timeout() -> float:
    return float(os.environ.get("AGENT_HTTP_TIMEOUT", "20"))


def search_with_bing(query: str, count: int = 5) -> list[tuple[str, str]]:
    """Return (url, snippet) pairs for *query*, best match first."""
    api_key = os.environ.get("BING_API_KEY")
    if not api_key:
        raise DependencyFailure("BING_API_KEY is not set")
    endpoint = os.environ.get("BING_SEARCH_ENDPOINT", DEFAULT_BING_ENDPOINT)

    print(f"[web] bing search: {query[:80]!r}", file=sys.stderr, flush=True)
    try:
        with httpx.Client(timeout=_timeout()) as client:
            r = client.get(
                endpoint,
                params={"q": query, "count": count, "textDecorations": False},
                headers={"Ocp-Apim-Subscription-Key": api_key},
            )
            r.raise_for_status()
            data = r.json()
    except httpx.HTTPError as e:
        raise DependencyFailure(f"bing search failed: {e}") from e
    except ValueError as e:
        raise DependencyFailure(f"bing search returned invalid JSON: {e}") from e

    pages = (data.get("webPages") or {}).get("value") or []
    return [(p["url"], p.get("snippet", "")) for p in pages if p.get("url")]


def html_to_text(html_text: str) -> str:
    soup = BeautifulSoup(html_text, "html.parser")
    for tag in soup(_STRIP_TAGS):
        tag.decompose()
    return soup.get_text(separator=" ", strip=True)


def get_webpage_text(url: str) -> str:
    """Fetch *url* and reduce it to visible text."""
    print(f"[web] fetching {url}", file=sys.stderr, flush=True)
    try:
        with httpx.Client(timeout=_timeout(), follow_redirects=True) as client:
            r = client.get(url, headers={
                "User-Agent": USER_AGENT,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            })
            r.raise_for_status()
    except httpx.HTTPError as e:
        raise DependencyFailure(f"fetching {url} failed: {e}") from e

    if "html" in r.headers.get("content-type", "html"):
        return html_to_text(r.text)
    return r.text
