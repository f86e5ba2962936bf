"""Locating the kql-lsp server binary.

An explicit path setting wins unchecked. Otherwise the candidate table is
probed in order: development build output, then the copy bundled with the
plugin, then the binary installed by ``cargo install`` in the user's home.
"""

import logging
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .config import SERVER_BINARY

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent


def is_windows(platform: str) -> bool:
    return platform.startswith("win") or platform == "cygwin"


def is_posix(platform: str) -> bool:
    return not is_windows(platform)


@dataclass(frozen=True)
class Candidate:
    """A possible server location.

    ``template`` is formatted with ``package_dir`` and ``home``; the candidate
    only applies on platforms accepted by ``platform``.
    """

    label: str
    template: str
    platform: Callable[[str], bool]

    def path(self, package_dir: Path, home: Path) -> Path:
        return Path(self.template.format(package_dir=package_dir, home=home))


@dataclass(frozen=True)
class SearchRoots:
    """Where the candidate templates are anchored."""

    package_dir: Path = PACKAGE_DIR
    home: Path = field(default_factory=Path.home)
    platform: str = sys.platform


CANDIDATE_PATHS: tuple[Candidate, ...] = (
    # Development: <repo>/target/debug/kql-lsp
    Candidate("development build", "{package_dir}/../../target/debug/" + SERVER_BINARY + ".exe", is_windows),
    Candidate("development build", "{package_dir}/../../target/debug/" + SERVER_BINARY, is_posix),
    # Production: bundled with the plugin
    Candidate("bundled", "{package_dir}/bin/" + SERVER_BINARY + ".exe", is_windows),
    Candidate("bundled", "{package_dir}/bin/" + SERVER_BINARY, is_posix),
    # Cargo bin directory
    Candidate("cargo install", "{home}/.cargo/bin/" + SERVER_BINARY + ".exe", is_windows),
    Candidate("cargo install", "{home}/.cargo/bin/" + SERVER_BINARY, is_posix),
)


def candidate_paths(
    roots: SearchRoots | None = None,
    candidates: Sequence[Candidate] = CANDIDATE_PATHS,
) -> list[Path]:
    """Candidate locations for the current platform, in precedence order."""
    roots = roots or SearchRoots()
    return [
        c.path(roots.package_dir, roots.home)
        for c in candidates
        if c.platform(roots.platform)
    ]


def resolve_server_path(
    override: str | None,
    roots: SearchRoots | None = None,
    candidates: Sequence[Candidate] = CANDIDATE_PATHS,
) -> Path | None:
    """Determine which server binary to use.

    A non-empty ``override`` is returned as-is, without looking at the
    filesystem. Otherwise the first existing candidate is returned, or None.
    Executability is not checked here; a non-executable file surfaces as a
    launch failure.
    """
    if override:
        logger.debug(f"Using configured server path: {override}")
        return Path(override)

    for path in candidate_paths(roots, candidates):
        if path.exists():
            logger.debug(f"Found {SERVER_BINARY} at {path}")
            return path

    logger.debug(f"No {SERVER_BINARY} binary found in candidate locations")
    return None
