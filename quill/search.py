"""Hosted search integration for Quill.

The site does not run its own search backend. A search page embeds the
hosted widget through ``{% include algolia.html %}``, which renders either
the widget bootstrap (``widget`` mode) or a small script that queries the
REST endpoint and writes hits into the mount point (``query`` mode).

Key pieces:
- SearchConfig: Credentials and widget options from quill.yaml.
- load_search_config: Reads and validates the ``search:`` section.
- render_widget: Markup for the include point.
- SearchClient: httpx client for the hosted query endpoint.
- build_search_records: Index records for the site's posts.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from types import TracebackType
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlencode

import httpx
from markupsafe import Markup

from .config import ConfigError
from .html_utils import escape_html, html_to_text
from .utils import strip_markup

if TYPE_CHECKING:
    from .content import Page

logger = logging.getLogger(__name__)

WIDGET_SCRIPT_URL = (
    "https://cdn.jsdelivr.net/npm/@algolia/algoliasearch-netlify-frontend@1"
    "/dist/algoliasearchNetlify.js"
)
WIDGET_STYLE_URL = (
    "https://cdn.jsdelivr.net/npm/@algolia/algoliasearch-netlify-frontend@1"
    "/dist/algoliasearchNetlify.css"
)
QUERY_URL_TEMPLATE = "https://{app_id}-dsn.algolia.net/1/indexes/{index}/query"

SEARCH_MODES = ("widget", "query")
RECORD_CONTENT_LIMIT = 5000

ENV_APP_ID = "QUILL_SEARCH_APP_ID"
ENV_API_KEY = "QUILL_SEARCH_API_KEY"


class SearchError(Exception):
    """Failure talking to the hosted search service.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status returned by the service, if any.
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass
class SearchConfig:
    """Configuration for the hosted search widget and query endpoint."""

    app_id: str = ""
    api_key: str = ""
    site_id: str = ""
    branch: str = "main"
    selector: str = "div#search"
    index_name: str = ""
    hits_per_page: int = 10
    mode: str = "widget"
    enabled: bool = False

    def __post_init__(self) -> None:
        if not self.index_name and self.site_id:
            self.index_name = f"netlify_{self.site_id}_{self.branch}_all"

    def widget_options(self) -> dict[str, str]:
        """The configuration object passed to the widget initializer."""
        return {
            "appId": self.app_id,
            "apiKey": self.api_key,
            "siteId": self.site_id,
            "branch": self.branch,
            "selector": self.selector,
        }

    @property
    def query_url(self) -> str:
        return QUERY_URL_TEMPLATE.format(
            app_id=self.app_id, index=quote(self.index_name, safe="")
        )


def load_search_config(
    config: dict[str, Any], environ: dict[str, str] | None = None
) -> SearchConfig:
    """Build a SearchConfig from the ``search:`` section of the site config.

    Credentials in the ``QUILL_SEARCH_APP_ID``/``QUILL_SEARCH_API_KEY``
    environment variables take precedence over the file.

    Returns:
        A disabled SearchConfig when the section is absent or has
        ``enabled: false``.

    Raises:
        ConfigError: If the section is malformed or misses required keys.
    """
    environ = os.environ if environ is None else environ
    section = config.get("search")
    if section is None:
        return SearchConfig()
    if not isinstance(section, dict):
        raise ConfigError("'search' must be a mapping")
    if section.get("enabled", True) is False:
        return SearchConfig()

    values: dict[str, Any] = {
        key: section[key]
        for key in (
            "app_id",
            "api_key",
            "site_id",
            "branch",
            "selector",
            "index_name",
            "hits_per_page",
            "mode",
        )
        if section.get(key) not in (None, "")
    }
    if environ.get(ENV_APP_ID):
        values["app_id"] = environ[ENV_APP_ID]
    if environ.get(ENV_API_KEY):
        values["api_key"] = environ[ENV_API_KEY]

    mode = str(values.get("mode", "widget"))
    if mode not in SEARCH_MODES:
        raise ConfigError(
            f"search.mode must be one of {', '.join(SEARCH_MODES)}, got {mode!r}"
        )
    required = ["app_id", "api_key"]
    if mode == "widget" or not values.get("index_name"):
        required.append("site_id")
    missing = [key for key in required if not values.get(key)]
    if missing:
        raise ConfigError(f"search is missing required keys: {', '.join(missing)}")
    try:
        hits_per_page = int(values.get("hits_per_page", 10))
    except (TypeError, ValueError) as exc:
        raise ConfigError("search.hits_per_page must be an integer") from exc
    if hits_per_page < 1:
        raise ConfigError("search.hits_per_page must be at least 1")

    return SearchConfig(
        app_id=str(values["app_id"]),
        api_key=str(values["api_key"]),
        site_id=str(values.get("site_id", "")),
        branch=str(values.get("branch", "main")),
        selector=str(values.get("selector", "div#search")),
        index_name=str(values.get("index_name", "")),
        hits_per_page=hits_per_page,
        mode=mode,
        enabled=True,
    )


def _script_json(value: Any) -> str:
    """JSON for embedding inside a <script> element."""
    return json.dumps(value, indent=2).replace("</", "<\\/")


_QUERY_SCRIPT = """\
<input type="search" class="search-input" placeholder="Search posts" aria-label="Search posts" data-search-input>
<script>
(() => {{
  const config = {config};
  const input = document.querySelector('[data-search-input]');
  const results = document.querySelector(config.selector);
  if (!input || !results) return;
  const escape = (s) => String(s).replace(/[&<>"]/g, (c) => ({{'&': '&amp;', '<': '&lt;', '>': '&gt;', '"': '&quot;'}})[c]);
  let latest = 0;
  input.addEventListener('input', async () => {{
    const ticket = ++latest;
    const params = new URLSearchParams({{query: input.value, hitsPerPage: String(config.hitsPerPage)}});
    const response = await fetch(config.url, {{
      method: 'POST',
      headers: {{'X-Algolia-Application-Id': config.appId, 'X-Algolia-API-Key': config.apiKey}},
      body: JSON.stringify({{params: params.toString()}}),
    }});
    if (!response.ok || ticket !== latest) return;
    const data = await response.json();
    results.innerHTML = '<ul class="search-hits">' + (data.hits || [])
      .filter((hit) => hit.url)
      .map((hit) => '<li><a href="' + escape(hit.url) + '">' + escape(hit.title || hit.url) + '</a></li>')
      .join('') + '</ul>';
  }});
}})();
</script>
"""


def render_widget(config: SearchConfig) -> Markup:
    """Render the markup injected by the search include point."""
    if not config.enabled:
        return Markup("<!-- search is not configured -->")
    if config.mode == "query":
        options = {
            "appId": config.app_id,
            "apiKey": config.api_key,
            "selector": config.selector,
            "url": config.query_url,
            "hitsPerPage": config.hits_per_page,
        }
        return Markup(_QUERY_SCRIPT.format(config=_script_json(options)))
    return Markup(
        f'<link rel="stylesheet" href="{WIDGET_STYLE_URL}">\n'
        f'<script type="text/javascript" src="{WIDGET_SCRIPT_URL}"></script>\n'
        '<script type="text/javascript">\n'
        f"  algoliasearchNetlify({_script_json(config.widget_options())});\n"
        "</script>\n"
    )


@dataclass
class SearchHit:
    """One record returned by the hosted query endpoint."""

    url: str
    title: str
    excerpt: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SearchHit | None:
        url = payload.get("url")
        if not url:
            return None
        hierarchy = payload.get("hierarchy") or {}
        title = payload.get("title") or hierarchy.get("lvl0") or url
        excerpt = payload.get("excerpt") or payload.get("description") or ""
        return cls(url=str(url), title=str(title), excerpt=str(excerpt), raw=payload)


class SearchClient:
    """Client for the hosted search query endpoint.

    Usage:
        with SearchClient(config) as client:
            hits = client.query("span of t")
    """

    def __init__(
        self,
        config: SearchConfig,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not config.enabled:
            raise ConfigError("search is not configured")
        self.config = config
        self._http_client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={
                "X-Algolia-Application-Id": config.app_id,
                "X-Algolia-API-Key": config.api_key,
            },
        )

    def __enter__(self) -> SearchClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._http_client.close()

    def query(
        self,
        text: str,
        index_name: str | None = None,
        hits_per_page: int | None = None,
    ) -> list[SearchHit]:
        """Run a free-text query against an index.

        Args:
            text: The query string.
            index_name: Index to query; defaults to the configured index.
            hits_per_page: Result count; defaults to the configured value.

        Returns:
            Hits in the order the service ranked them. Records without a
            URL are skipped.

        Raises:
            SearchError: On transport failures, non-2xx responses or
                malformed payloads.
        """
        index = index_name or self.config.index_name
        url = QUERY_URL_TEMPLATE.format(
            app_id=self.config.app_id, index=quote(index, safe="")
        )
        params = urlencode(
            {"query": text, "hitsPerPage": hits_per_page or self.config.hits_per_page}
        )
        logger.debug("Querying %s for %r", index, text)
        try:
            response = self._http_client.post(url, json={"params": params})
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SearchError(
                f"Search service returned {exc.response.status_code} for index {index!r}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            raise SearchError(f"Could not reach search service: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise SearchError("Search service returned invalid JSON") from exc
        raw_hits = payload.get("hits") if isinstance(payload, dict) else None
        if not isinstance(raw_hits, list):
            raise SearchError("Search response has no 'hits' list")
        hits = []
        for item in raw_hits:
            hit = SearchHit.from_payload(item) if isinstance(item, dict) else None
            if hit is not None:
                hits.append(hit)
        logger.debug("%d hits for %r", len(hits), text)
        return hits


def render_hits(hits: Iterable[SearchHit]) -> Markup:
    """Render hits as an HTML list of links."""
    items = "".join(
        f'<li><a href="{escape_html(hit.url)}">{escape_html(hit.title)}</a></li>'
        for hit in hits
    )
    return Markup(f'<ul class="search-hits">{items}</ul>')


def build_search_records(pages: Iterable[Page]) -> list[dict[str, Any]]:
    """Build index records for published content pages.

    One record per page, keyed by URL so re-indexing replaces rather than
    duplicates. Jinja pages are listings built from other pages and are
    left out.
    """
    records = []
    for page in pages:
        if page.draft or page.source_type == "jinja":
            continue
        records.append(
            {
                "objectID": page.url,
                "url": page.url,
                "title": page.title,
                "date": page.date.strftime("%Y-%m-%d"),
                "tags": list(page.tags),
                "category": page.category,
                "excerpt": page.excerpt or page.description,
                "content": html_to_text(
                    strip_markup(page.content), RECORD_CONTENT_LIMIT
                ),
            }
        )
    return records
