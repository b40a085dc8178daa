"""Tests for the metadata extractors, content renderers and page builder seams."""

from datetime import datetime
from pathlib import Path

from quill.content import ContentProcessor, DefaultPageBuilder, FileContentLoader
from quill.extractors import (
    CompositeMetadataExtractor,
    CoverImageExtractor,
    DateExtractor,
    DescriptionExtractor,
    TagExtractor,
    TitleExtractor,
)
from quill.renderers import (
    HTMLRenderer,
    JinjaContentRenderer,
    MarkdownRenderer,
    RendererRegistry,
)


def test_title_extractor():
    """Front matter title wins over the first heading."""
    extractor = TitleExtractor()
    assert extractor.extract("# Heading", {"title": "Front"}, Path("a.md"))["title"] == "Front"
    assert extractor.extract("# Heading\n\nText", {}, Path("a.md"))["title"] == "Heading"


def test_title_extractor_fallback():
    """Non-Markdown sources and heading-less posts use the filename."""
    extractor = TitleExtractor()
    assert extractor.extract("# Not used", {}, Path("my-page.html"))["title"] == "My Page"
    result = extractor.extract("No heading", {}, Path("2019-03-02-span-of-t.md"))
    assert result["title"] == "Span Of T"


def test_tag_extractor():
    """Tags come from front matter only; inline #words are not tags."""
    extractor = TagExtractor()
    result = extractor.extract("Using #region in C#", {"tags": "csharp, vs"}, Path("a.md"))
    assert result == {"tags": ["csharp", "vs"], "category": ""}

    result = extractor.extract(
        "", {"tags": ["csharp"], "categories": ["dotnet", "csharp"]}, Path("a.md")
    )
    assert result == {"tags": ["csharp", "dotnet"], "category": "dotnet"}


def test_date_extractor(tmp_path):
    """Dates come from front matter, then the filename, then the mtime."""
    dated = tmp_path / "2024-01-15-test.md"
    dated.write_text("content", encoding="utf-8")
    extractor = DateExtractor()
    assert extractor.extract("", {}, dated)["date"] == datetime(2024, 1, 15)
    assert extractor.extract("", {"date": "2019-03-02 10:00:00 +0000"}, dated)[
        "date"
    ] == datetime(2019, 3, 2, 10, 0)

    undated = tmp_path / "test.md"
    undated.write_text("content", encoding="utf-8")
    assert isinstance(extractor.extract("", {"date": "soon"}, undated)["date"], datetime)


def test_description_extractor():
    """The excerpt skips headings, images and code fences."""
    extractor = DescriptionExtractor()
    body = "# Title\n\n![cover](c.png)\n\n```cs\nx\n```\n\nFirst *real* paragraph.\n\nMore."
    result = extractor.extract(body, {}, Path("post.md"))
    assert result["excerpt"] == "First *real* paragraph."
    assert result["description"] == "First *real* paragraph."

    result = extractor.extract(body, {"excerpt": "Hand written", "description": "Meta"}, Path("post.md"))
    assert result == {"description": "Meta", "excerpt": "Hand written"}

    html = extractor.extract("<p>Hello</p>", {}, Path("page.html"))
    assert html == {"description": "Hello", "excerpt": ""}


def test_cover_image_extractor():
    extractor = CoverImageExtractor()
    assert extractor.extract("", {"cover-img": "a.png"}, Path("p.md")) == {"cover_image": "a.png"}
    assert extractor.extract("", {"cover-img": ["b.png", "c.png"]}, Path("p.md")) == {
        "cover_image": "b.png"
    }
    assert extractor.extract("", {"image": {"path": "d.png"}}, Path("p.md")) == {
        "cover_image": "d.png"
    }
    assert extractor.extract("", {}, Path("p.md")) == {"cover_image": ""}


def test_composite_extractor():
    """The composite splits front matter before running its extractors."""
    extractor = CompositeMetadataExtractor([TitleExtractor()])
    result = extractor.extract("---\nlayout: post\n---\n# Title\n", Path("test.md"))
    assert result == {
        "frontmatter": {"layout": "post"},
        "body": "# Title\n",
        "title": "Title",
    }


def test_composite_extractor_add():
    extractor = CompositeMetadataExtractor([])
    extractor.add_extractor(TitleExtractor())
    assert extractor.extract("# Title", Path("test.md"))["title"] == "Title"


def test_renderers():
    markdown = MarkdownRenderer()
    assert markdown.can_render(Path("test.md"))
    assert not markdown.can_render(Path("test.html"))
    assert "<h1" in markdown.render("# Hello\n\nWorld", "")

    html = HTMLRenderer()
    assert html.can_render(Path("test.html"))
    assert not html.can_render(Path("test.html.jinja"))
    assert html.render("<p>Test</p>", "") == "<p>Test</p>"

    jinja = JinjaContentRenderer()
    assert jinja.can_render(Path("test.html.jinja"))
    assert jinja.can_render(Path("feed.jinja"))
    assert jinja.render("{{ var }}", "") == "{{ var }}"


def test_renderer_registry():
    registry = RendererRegistry()
    assert registry.get_renderer(Path("test.md")).source_type == "markdown"
    assert registry.get_renderer(Path("test.html")).source_type == "html"
    assert registry.get_renderer(Path("index.html.jinja")).source_type == "jinja"
    assert registry.get_renderer(Path("test.xyz")) is None


def test_markdown_extras():
    html = MarkdownRenderer().render(
        "~~old~~\n\n| a | b |\n|---|---|\n| 1 | 2 |\n\nSee https://example.com\n", ""
    )
    assert "<del>old</del>" in html
    assert "<table>" in html
    assert '<a href="https://example.com">' in html


def test_content_processor_with_custom_components(tmp_path):
    site_dir = tmp_path / "site"
    (site_dir / "_layouts").mkdir(parents=True)
    (site_dir / "_layouts" / "default.html.jinja").write_text("default", encoding="utf-8")
    (site_dir / "test.md").write_text("# Test", encoding="utf-8")

    class ShoutingTitle:
        def extract(self, body, frontmatter, path):
            return {"title": "LOUD"}

    extractor = CompositeMetadataExtractor()
    extractor.add_extractor(ShoutingTitle())
    processor = ContentProcessor(
        site_dir,
        content_loader=FileContentLoader(site_dir),
        page_builder=DefaultPageBuilder(site_dir, metadata_extractor=extractor),
    )
    pages = processor.load()
    assert [p.title for p in pages] == ["LOUD"]


def test_page_builder_unknown_source_type(tmp_path):
    site_dir = tmp_path / "site"
    site_dir.mkdir()
    odd = site_dir / "test.xyz"
    odd.write_text("content", encoding="utf-8")
    page = DefaultPageBuilder(site_dir).build(odd)
    assert page.source_type == "unknown"
    assert page.content == "content"
