"""Containment checks for candidate paths against a trusted root.

Containment is decided structurally: the path from the root to the candidate
is computed and rejected when it climbs out (its first segment is ``..``) or
cannot be expressed relative to the root at all. String prefix tests are never
used, so ``/srv/app-backup`` is not mistaken for a child of ``/srv/app``.

Canonicalization is lexical. Symbolic links are not followed here; link
targets are checked separately by :mod:`repo_fusion.symlink_audit`.
"""

from __future__ import annotations

import os
import unicodedata
from pathlib import Path

from repo_fusion.config import CandidatePath, ValidatedPath
from repo_fusion.exceptions import PathTraversalError


def canonical_root(root: str | os.PathLike[str]) -> Path:
    """Absolute, lexically normalized form of a root directory."""
    return Path(os.path.normpath(os.path.abspath(os.fspath(root))))


def _relative_to_root(candidate: str, root: str) -> str | None:
    """Root-relative path of ``candidate``, or None when it escapes the root."""
    absolute = os.path.normpath(os.path.join(root, candidate))
    try:
        relative = os.path.relpath(absolute, root)
    except ValueError:
        # Different drives on Windows.
        return None
    if os.path.isabs(relative):
        return None
    if relative.split(os.sep, 1)[0] == os.pardir:
        return None
    return relative


def _display_relative(candidate: str, root: str) -> str:
    absolute = os.path.normpath(os.path.join(root, candidate))
    try:
        return os.path.relpath(absolute, root)
    except ValueError:
        return absolute


def _interpretations(relative: str) -> list[str]:
    """Spellings under which a root-relative path is checked.

    The native spelling comes first. Backslashes read as separators catch
    mixed-separator attempts, and NFKC folds look-alike dots and slashes
    (fullwidth full stop, two dot leader, fullwidth solidus) into ASCII.
    Only the part below the root is rewritten; the root is trusted as spelled.
    """
    folded = unicodedata.normalize("NFKC", relative)
    variants = [relative, relative.replace("\\", "/"), folded, folded.replace("\\", "/")]
    return list(dict.fromkeys(variants))


def resolve(candidate: CandidatePath | str, root: str | os.PathLike[str]) -> ValidatedPath:
    """Prove that ``candidate`` lies inside ``root``.

    Args:
        candidate: Discovered path, absolute or relative to the root.
        root: Trusted root directory.

    Returns:
        ValidatedPath: Canonical absolute path and POSIX root-relative path.

    Raises:
        PathTraversalError: If any interpretation of the candidate escapes the
            root, if the candidate names the root itself, or if it holds a NUL byte.
    """
    raw = candidate.raw if isinstance(candidate, CandidatePath) else str(candidate)
    trusted = str(canonical_root(root))

    if "\x00" in raw:
        raise PathTraversalError(candidate=raw, root=trusted, reason="contains a NUL byte, rejected by")

    native_relative = _relative_to_root(raw, trusted)
    if native_relative is None:
        raise PathTraversalError(candidate=raw, root=trusted, relative_path=_display_relative(raw, trusted))
    for spelling in _interpretations(native_relative)[1:]:
        if _relative_to_root(spelling, trusted) is None:
            raise PathTraversalError(candidate=raw, root=trusted, relative_path=_display_relative(spelling, trusted))

    if native_relative == os.curdir:
        raise PathTraversalError(candidate=raw, root=trusted, reason="is the root directory itself, not a file in")

    canonical = Path(os.path.normpath(os.path.join(trusted, raw)))
    return ValidatedPath(canonical=canonical, relative=Path(native_relative).as_posix())


def is_within(path: str | os.PathLike[str], root: str | os.PathLike[str]) -> bool:
    """Whether ``path`` is the root or lies below it, compared lexically."""
    trusted = str(canonical_root(root))
    return _relative_to_root(os.fspath(path), trusted) is not None
