"""Content renderers for Quill.

Each renderer turns one kind of source body into page content.

Key classes:
- MarkdownRenderer: Markdown to HTML with Pygments highlighting and anchors.
- HTMLRenderer: Passes through HTML content.
- JinjaContentRenderer: Defers Jinja bodies to the TemplateEngine.
- RendererRegistry: Picks the renderer for a source path.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import mistune
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .html_utils import escape_html, rewrite_image_path
from .utils import is_html, is_markdown, is_template

logger = logging.getLogger(__name__)

# Fence names blog authors use that Pygments knows under another alias
_LANGUAGE_ALIASES = {
    "c#": "csharp",
    "cs": "csharp",
    "f#": "fsharp",
    "razor": "cshtml",
    "ps": "powershell",
}


def generate_heading_id(text: str) -> str:
    """Generate a URL-friendly anchor ID from heading text.

    Examples:
        >>> generate_heading_id("What's new in C# 8?")
        'whats-new-in-c-8'
    """
    slug = re.sub(r"<[^>]+>", "", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-")


class _BlogHTMLRenderer(mistune.HTMLRenderer):
    """Mistune renderer adding heading anchors, image rewriting and highlighting."""

    def __init__(self, folder: str):
        super().__init__(escape=False)
        self.folder = folder
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        base_id = generate_heading_id(text) or "section"
        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def image(self, text: str, url: str, title: str | None = None) -> str:
        return super().image(text, rewrite_image_path(url or "", self.folder), title)

    def block_code(self, code: str, info: str | None = None) -> str:
        language = (info or "").strip().split(None, 1)[0] if info else ""
        if language:
            lexer_name = _LANGUAGE_ALIASES.get(language.lower(), language)
            try:
                lexer = get_lexer_by_name(lexer_name, stripall=True)
            except ClassNotFound:
                logger.debug("No Pygments lexer for %r; leaving block plain", language)
            else:
                return highlight(code, lexer, HtmlFormatter(cssclass="highlight"))
        lang_class = f' class="language-{escape_html(language)}"' if language else ""
        return f"<pre><code{lang_class}>{escape_html(code)}</code></pre>\n"


class MarkdownRenderer:
    """Renders Markdown content to HTML."""

    source_type = "markdown"

    def can_render(self, path: Path) -> bool:
        return is_markdown(path)

    def render(self, content: str, folder: str) -> str:
        markdown = mistune.create_markdown(
            renderer=_BlogHTMLRenderer(folder),
            plugins=["strikethrough", "footnotes", "table", "url"],
        )
        return markdown(content)


class HTMLRenderer:
    """Passes through plain HTML content unchanged."""

    source_type = "html"

    def can_render(self, path: Path) -> bool:
        return is_html(path)

    def render(self, content: str, folder: str) -> str:
        return content


class JinjaContentRenderer:
    """Identifies Jinja template bodies.

    The actual rendering needs the full site context and is done by
    TemplateEngine.render_page.
    """

    source_type = "jinja"

    def can_render(self, path: Path) -> bool:
        return is_template(path)

    def render(self, content: str, folder: str) -> str:
        return content


class RendererRegistry:
    """Ordered registry of content renderers; the first match wins."""

    def __init__(self):
        self._renderers: list = []
        self.register(MarkdownRenderer())
        self.register(JinjaContentRenderer())
        self.register(HTMLRenderer())

    def register(self, renderer) -> None:
        self._renderers.append(renderer)

    def get_renderer(self, path: Path):
        for renderer in self._renderers:
            if renderer.can_render(path):
                return renderer
        return None


default_renderer_registry = RendererRegistry()
