from __future__ import annotations

import fnmatch
import os
from pathlib import Path
from typing import TYPE_CHECKING

import pathspec

from repo_fusion import path_guard
from repo_fusion.config import DEFAULT_EXCLUDED_DIRS, CandidatePath, FileKind
from repo_fusion.exceptions import ConfigError
from repo_fusion.logging import logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from repo_fusion.settings import Settings


def relpath(path: Path, root: Path) -> str:
    """Relative path of ``path`` from ``root`` with POSIX separators.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path, or the original path as a string when it is not under root.
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def normalize_globs(globs: Sequence[str]) -> list[str]:
    """Strip blanks and turn backslashes into forward slashes.

    Args:
        globs (Sequence[str]): the glob patterns to normalize

    Returns:
        list[str]: the normalized glob patterns, empty ones dropped
    """
    out: list[str] = []
    for g in globs:
        g2 = (g or "").strip()
        if g2:
            out.append(g2.replace("\\", "/"))
    return out


def match_any_glob(rel: str, globs: Sequence[str]) -> bool:
    return any(fnmatch.fnmatch(rel, g) for g in globs)


def read_gitignore(root: Path) -> list[str]:
    """Non-blank, non-comment lines of ``root/.gitignore``, or [] when absent or unreadable."""
    gitignore = root / ".gitignore"
    if not gitignore.is_file():
        return []
    try:
        content = gitignore.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("gitignore_unreadable", path=str(gitignore), error=str(exc))
        return []
    return [line.strip() for line in content.splitlines() if line.strip() and not line.strip().startswith("#")]


def build_ignore_spec(root: Path, settings: Settings) -> pathspec.GitIgnoreSpec:
    """Compile ``ignore_patterns`` plus, when enabled, the root ``.gitignore``."""
    lines = list(settings.ignore_patterns)
    if settings.use_gitignore:
        lines.extend(read_gitignore(root))
    return pathspec.GitIgnoreSpec.from_lines(lines)


def discover_candidates(root: str | Path, settings: Settings) -> list[CandidatePath]:
    """Walk ``root`` and list the files to ingest.

    Links are never followed while walking. Linked files are reported with
    kind ``symlink`` so the pipeline can apply the symlink policy; linked
    directories are skipped.

    Args:
        root: Directory to walk.
        settings: Extension groups, ignore patterns, globs and output names.

    Returns:
        list[CandidatePath]: Absolute candidates ordered by relative path,
        case-insensitively first, then exactly.

    Raises:
        ConfigError: If the root is not a directory or an extension group is unknown.
    """
    root_path = path_guard.canonical_root(root)
    if not root_path.is_dir():
        raise ConfigError(detail=f"root directory does not exist: {root_path}")

    extensions = settings.selected_extensions()
    ignore = build_ignore_spec(root_path, settings)
    includes = normalize_globs(settings.include_glob)
    excludes = normalize_globs(settings.exclude_glob)
    outputs = {path_guard.canonical_root(p) for p in settings.output_paths().values()}

    found: list[tuple[str, CandidatePath]] = []
    for dirpath, dirnames, filenames in os.walk(root_path):
        current = Path(dirpath)
        kept_dirs = []
        for name in dirnames:
            sub = current / name
            if name in DEFAULT_EXCLUDED_DIRS or ignore.match_file(relpath(sub, root_path) + "/"):
                continue
            if sub.is_symlink():
                logger.debug("directory_skipped", path=relpath(sub, root_path), reason="SYMLINKED_DIRECTORY")
                continue
            kept_dirs.append(name)
        dirnames[:] = sorted(kept_dirs) if settings.parse_subdirectories else []

        for name in filenames:
            full = current / name
            rel = relpath(full, root_path)
            if full.suffix.lower() not in extensions:
                continue
            if ignore.match_file(rel) or full in outputs:
                continue
            if includes and not match_any_glob(rel, includes):
                continue
            if excludes and match_any_glob(rel, excludes):
                continue
            kind = FileKind.SYMLINK if full.is_symlink() else FileKind.FILE
            found.append((rel, CandidatePath(raw=str(full), kind=kind)))

    found.sort(key=lambda item: (item[0].lower(), item[0]))
    logger.info("discovery_complete", root=str(root_path), candidates=len(found))
    return [candidate for _, candidate in found]
