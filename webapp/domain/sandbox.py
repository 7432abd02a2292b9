"""Mapping of /static URL paths onto files below the served directory."""

from pathlib import Path
from typing import Optional

INDEX_DOCUMENT = "index.html"


class ForbiddenPath(Exception):
    """Raised when a URL path would leave the served directory."""


class StaticRoot:
    """The directory behind the static prefix, resolved once per server.

    Paths arrive already percent-decoded. Every candidate is resolved with
    symlinks followed before the containment check, so a link that points
    outside the root is refused like a literal ``..``.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory).resolve()

    def contains(self, candidate: Path) -> bool:
        """Return True when candidate is the root or lies below it."""
        return candidate == self.directory or self.directory in candidate.parents

    def resolve(self, url_path: str) -> Path:
        """Return the absolute filesystem path named by url_path."""
        if "\x00" in url_path:
            raise ForbiddenPath(url_path)
        segments = [part for part in url_path.split("/") if part not in ("", ".")]
        if ".." in segments:
            raise ForbiddenPath(url_path)

        target = self.directory.joinpath(*segments).resolve()
        if not self.contains(target):
            raise ForbiddenPath(url_path)
        return target

    def locate(self, url_path: str) -> Optional[Path]:
        """Return the regular file to serve for url_path, or None.

        A directory is served through its index document and is never listed.
        """
        target = self.resolve(url_path)
        if target.is_dir():
            target = (target / INDEX_DOCUMENT).resolve()
            if not self.contains(target):
                raise ForbiddenPath(url_path)
        return target if target.is_file() else None
