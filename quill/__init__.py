"""Quill static blog generator.

Quill builds a personal technical blog from front-matter Markdown posts and
Jinja2 templates. It renders layouts, exposes the posts collection to
listing templates, writes sitemap/RSS feeds, and embeds a hosted search
widget through a ``{% include algolia.html %}`` include point.

The main entry point is the CLI module, which provides commands for
scaffolding a blog, building it, serving it with live reload, creating
posts and querying the hosted search index.
"""

__all__ = ["__version__"]
__version__ = "0.3.0"
