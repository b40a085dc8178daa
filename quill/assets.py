"""Static asset handling for Quill.

Key components:
- AssetPipeline: Copies ``assets/`` into the output, minifying JavaScript
  and re-encoding raster images such as post covers.
- AssetResolver: Maps asset names used in templates to URLs.
- AssetNotFoundError: Raised when a template references a missing asset.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from pathlib import Path

from PIL import Image, UnidentifiedImageError
from rjsmin import jsmin

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ("png", "jpg", "jpeg", "gif", "svg", "webp")
OPTIMIZABLE_IMAGES = {".png", ".jpg", ".jpeg", ".webp"}


class AssetNotFoundError(Exception):
    """Error raised when an asset file is not found.

    Attributes:
        asset_name: The name of the asset that was requested.
        asset_type: The type of asset (e.g., "image", "js", "css").
        searched_paths: List of paths that were searched.
    """

    def __init__(self, asset_name: str, asset_type: str, searched_paths: list[Path]):
        self.asset_name = asset_name
        self.asset_type = asset_type
        self.searched_paths = searched_paths
        paths_str = ", ".join(str(p) for p in searched_paths)
        super().__init__(
            f"{asset_type} asset '{asset_name}' not found. Searched: {paths_str}"
        )


class AssetResolver:
    """Resolves asset names to URLs, checking that the files exist."""

    def __init__(
        self, assets_dir: Path, url_generator: Callable[[str], str] | None = None
    ):
        self.assets_dir = assets_dir
        self._url_generator = url_generator or (lambda x: x)

    def set_url_generator(self, url_generator: Callable[[str], str]) -> None:
        self._url_generator = url_generator

    def js_path(self, name: str) -> str:
        """Return the URL for ``assets/js/<name>.js``."""
        return self._resolve_exact(name, "js", "JavaScript")

    def css_path(self, name: str) -> str:
        """Return the URL for ``assets/css/<name>.css``."""
        return self._resolve_exact(name, "css", "CSS")

    def img_path(self, name: str) -> str:
        """Return the URL for an image under ``assets/images``.

        A name without extension is tried with png, jpg, jpeg, gif, svg and
        webp in that order.
        """
        images = self.assets_dir / "images"
        if Path(name).suffix.lstrip(".").lower() in IMAGE_EXTENSIONS:
            candidates = [name]
        else:
            candidates = [f"{name}.{ext}" for ext in IMAGE_EXTENSIONS]
        for candidate in candidates:
            if (images / candidate).is_file():
                return self._url_generator(f"/assets/images/{candidate}")
        raise AssetNotFoundError(name, "image", [images / c for c in candidates])

    def _resolve_exact(self, name: str, kind: str, label: str) -> str:
        if not name.endswith(f".{kind}"):
            name = f"{name}.{kind}"
        file_path = self.assets_dir / kind / name
        if not file_path.is_file():
            raise AssetNotFoundError(name, label, [file_path])
        return self._url_generator(f"/assets/{kind}/{name}")


class AssetPipeline:
    """Copies and optimizes static assets into the output directory.

    Attributes:
        assets_dir: Directory containing source assets.
        output_dir: Site output directory; assets land in ``output_dir/assets``.
    """

    def __init__(self, project_root: Path, output_dir: Path):
        self.assets_dir = project_root / "assets"
        self.output_dir = output_dir

    def run(self) -> list[Path]:
        """Process every asset file; returns the written destinations."""
        if not self.assets_dir.exists():
            return []
        target = self.output_dir / "assets"
        written = []
        for item in sorted(self.assets_dir.rglob("*")):
            if item.is_dir() or item.name.startswith("."):
                continue
            dest = target / item.relative_to(self.assets_dir)
            dest.parent.mkdir(parents=True, exist_ok=True)
            if item.suffix == ".js" and not item.name.endswith(".min.js"):
                self._minify_js(item, dest)
            elif item.suffix.lower() in OPTIMIZABLE_IMAGES:
                self._optimize_image(item, dest)
            else:
                shutil.copy2(item, dest)
            written.append(dest)
        logger.debug("Processed %d assets", len(written))
        return written

    def _minify_js(self, source: Path, dest: Path) -> None:
        dest.write_text(jsmin(source.read_text(encoding="utf-8")), encoding="utf-8")

    def _optimize_image(self, source: Path, dest: Path) -> None:
        try:
            with Image.open(source) as img:
                img.save(dest, optimize=True)
        except (OSError, UnidentifiedImageError) as exc:
            logger.warning("Could not optimize %s (%s); copying as-is", source, exc)
            shutil.copy2(source, dest)
            return
        # re-encoding can grow an already optimized file
        if dest.stat().st_size > source.stat().st_size:
            shutil.copy2(source, dest)
