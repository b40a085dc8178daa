"""Command-line interface for Quill.

Commands:
- new: Scaffold a new blog.
- build: Build the site into the output directory.
- serve: Run development server with live reload.
- post: Create a new post interactively.
- search: Query the hosted search index.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from datetime import datetime
from pathlib import Path

import click
import questionary
import yaml

from . import __version__
from .config import ConfigError

_TEMPLATES_DIR = Path(__file__).parent / "templates" / "default"


@click.group()
@click.version_option(version=__version__, prog_name="quill")
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
def cli(verbose: bool):
    """Quill static blog generator."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _fail(title: str, *lines: str) -> None:
    click.echo(click.style(title, fg="red", bold=True), err=True)
    for line in lines:
        click.echo(line, err=True)
    raise SystemExit(1)


@cli.command()
@click.argument("name")
def new(name: str):
    """Scaffold a new Quill blog."""
    target = Path(name).resolve()
    if target.exists() and any(target.iterdir()):
        raise click.ClickException(
            f"Refusing to initialize into non-empty directory: {target}"
        )
    _scaffold(target)
    click.echo(f"New Quill blog created at {target}")


@cli.command()
@click.option("--drafts", is_flag=True, help="Include draft content")
def build(drafts: bool):
    """Build the site into the output directory."""
    project_root = Path.cwd()
    from .build import BuildError, build_site

    try:
        result = build_site(project_root, include_drafts=drafts)
    except BuildError as exc:
        try:
            rel_path = exc.source_path.relative_to(project_root)
        except ValueError:
            rel_path = exc.source_path
        _fail(
            "Build failed:",
            click.style(f"  File: {rel_path}", fg="yellow"),
            f"  Error: {exc.message}",
        )
    except ConfigError as exc:
        _fail("Configuration error:", f"  {exc}")
    except FileNotFoundError as exc:
        _fail("Build failed:", f"  {exc}")
    click.echo(f"Built {len(result.pages)} pages into {result.output_dir}")


@cli.command()
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.option(
    "--port",
    type=int,
    required=False,
    help="Port to run the dev server (overrides quill.yaml)",
)
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (overrides quill.yaml ws_port)",
)
def serve(drafts: bool, port: int | None, ws_port: int | None):
    """Run dev server with live reload."""
    project_root = Path.cwd()
    from .server import DevServer

    try:
        server = DevServer(project_root, http_port=port, ws_port=ws_port)
        server.start(include_drafts=drafts)
    except ConfigError as exc:
        _fail("Configuration error:", f"  {exc}")


@cli.command()
def post():
    """Create a new post interactively."""
    project_root = Path.cwd()
    site_dir = project_root / "site"
    if not site_dir.exists():
        raise click.ClickException(
            "No site/ directory found. Run this command from a Quill project root."
        )
    from .config import load_config

    try:
        posts_dir = site_dir / str(load_config(project_root).get("posts_dir") or "posts")
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    title = questionary.text(
        "Title:",
        validate=lambda x: len(x.strip()) > 0 or "Title cannot be empty",
        style=_questionary_style(),
    ).ask()
    if title is None:
        raise click.Abort()
    tags = questionary.text(
        "Tags (comma separated):", default="", style=_questionary_style()
    ).ask()
    if tags is None:
        raise click.Abort()
    draft = questionary.confirm(
        "Save as draft?", default=False, style=_questionary_style()
    ).ask()
    if draft is None:
        raise click.Abort()

    path = create_post(posts_dir, title.strip(), tags, draft=draft)
    click.echo(f"Created {path.relative_to(project_root)}")


def create_post(
    posts_dir: Path,
    title: str,
    tags: str = "",
    draft: bool = False,
    today: datetime | None = None,
) -> Path:
    """Write a dated Markdown post with a front matter block.

    Raises:
        click.ClickException: If a post with the same slug already exists.
    """
    from .utils import normalize_tags, slugify

    today = today or datetime.now()
    slug = slugify(title)
    filename = f"{today:%Y-%m-%d}-{slug}.md"
    if draft:
        filename = f"_{filename}"
    target = posts_dir / filename

    if posts_dir.exists():
        for existing in posts_dir.glob("*.md"):
            if slugify(existing.stem.lstrip("_")) == slug:
                raise click.ClickException(
                    f"A post with slug '{slug}' already exists: {existing.name}"
                )

    frontmatter = {
        "layout": "post",
        "title": title,
        "date": today.strftime("%Y-%m-%d"),
        "tags": normalize_tags(tags),
    }
    posts_dir.mkdir(parents=True, exist_ok=True)
    header = yaml.safe_dump(frontmatter, sort_keys=False, allow_unicode=True)
    target.write_text(f"---\n{header}---\n\n", encoding="utf-8")
    return target


@cli.command()
@click.argument("query")
@click.option("--limit", type=int, default=None, help="Number of hits to return")
@click.option("--index", "index_name", default=None, help="Index to query")
def search(query: str, limit: int | None, index_name: str | None):
    """Query the hosted search index configured in quill.yaml."""
    from .config import load_config
    from .search import SearchClient, SearchError, load_search_config

    try:
        config = load_search_config(load_config(Path.cwd()))
    except ConfigError as exc:
        _fail("Configuration error:", f"  {exc}")
    if not config.enabled:
        _fail("Search is not configured.", "  Add a 'search:' section to quill.yaml.")

    try:
        with SearchClient(config) as client:
            hits = client.query(query, index_name=index_name, hits_per_page=limit)
    except SearchError as exc:
        _fail("Search failed:", f"  {exc.message}")
    if not hits:
        click.echo("No results.")
        return
    for hit in hits:
        click.echo(f"{click.style(hit.title, bold=True)}  {hit.url}")


def _questionary_style():
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path) -> None:
    """Copy the default blog skeleton into ``root``."""
    for src_path in _TEMPLATES_DIR.rglob("*"):
        if src_path.is_dir():
            continue
        dest_path = root / src_path.relative_to(_TEMPLATES_DIR)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src_path, dest_path)
    config_path = root / "quill.yaml"
    config_path.write_text(
        config_path.read_text(encoding="utf-8").replace("{{ name }}", root.name),
        encoding="utf-8",
    )
    _try_git_init(root)


def _try_git_init(root: Path) -> None:
    """Initialize a git repository if git is available."""
    if os.environ.get("QUILL_SKIP_GIT_INIT") == "1":
        return
    git_bin = shutil.which("git")
    if not git_bin:
        return
    try:
        subprocess.run([git_bin, "init"], cwd=root, check=True, capture_output=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        logging.getLogger(__name__).warning("git init failed: %s", exc)
