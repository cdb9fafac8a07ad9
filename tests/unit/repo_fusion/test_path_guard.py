from __future__ import annotations

import os
import unicodedata
from pathlib import Path

import pytest

from repo_fusion import path_guard
from repo_fusion.config import CandidatePath
from repo_fusion.exceptions import PathTraversalError


@pytest.mark.unit
def test_resolve_accepts_file_inside_root(tmp_path: Path) -> None:
    target = tmp_path / "a.js"

    validated = path_guard.resolve(str(target), tmp_path)

    assert validated.canonical == target
    assert validated.relative == "a.js"


@pytest.mark.unit
def test_resolve_accepts_relative_candidate_and_uses_posix_separators(tmp_path: Path) -> None:
    validated = path_guard.resolve(CandidatePath(raw="src/pkg/app.py"), tmp_path)

    assert validated.canonical == tmp_path / "src" / "pkg" / "app.py"
    assert validated.relative == "src/pkg/app.py"


@pytest.mark.unit
def test_resolve_collapses_parent_segments_that_stay_inside(tmp_path: Path) -> None:
    validated = path_guard.resolve("src/./lib/../a.js", tmp_path)

    assert validated.relative == "src/a.js"


@pytest.mark.unit
def test_resolve_rejects_parent_traversal(tmp_path: Path) -> None:
    root = tmp_path / "proj"
    root.mkdir()

    with pytest.raises(PathTraversalError) as excinfo:
        path_guard.resolve(f"{root}/../etc/passwd", root)

    assert excinfo.value.code == "PATH_TRAVERSAL"
    assert excinfo.value.relative_path.startswith("..")
    assert excinfo.value.root == str(root)


@pytest.mark.unit
def test_resolve_rejects_absolute_path_outside_root(tmp_path: Path) -> None:
    root = tmp_path / "proj"
    root.mkdir()

    with pytest.raises(PathTraversalError):
        path_guard.resolve("/etc/passwd", root)


@pytest.mark.unit
def test_resolve_does_not_confuse_prefix_sibling_with_child(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()

    with pytest.raises(PathTraversalError):
        path_guard.resolve(str(tmp_path / "root-backup" / "secret.txt"), root)

    validated = path_guard.resolve(str(root / "root-backup" / "notes.md"), root)
    assert validated.relative == "root-backup/notes.md"


@pytest.mark.unit
@pytest.mark.parametrize(
    "candidate",
    [
        "./../outside.txt",
        "src/./../../outside.txt",
        "..\\..\\etc\\passwd",
        "src\\..\\..\\outside.txt",
        "．．/outside.txt",
        "‥/outside.txt",
        "..／outside.txt",
    ],
)
def test_resolve_rejects_disguised_traversal(tmp_path: Path, candidate: str) -> None:
    root = tmp_path / "proj"
    root.mkdir()

    with pytest.raises(PathTraversalError):
        path_guard.resolve(candidate, root)


@pytest.mark.unit
@pytest.mark.parametrize("candidate", ["..hidden.txt", "a..b/c.txt", "src/...txt"])
def test_resolve_accepts_names_that_merely_contain_dots(tmp_path: Path, candidate: str) -> None:
    validated = path_guard.resolve(candidate, tmp_path)

    assert validated.relative == candidate


@pytest.mark.unit
def test_resolve_rejects_nul_byte(tmp_path: Path) -> None:
    with pytest.raises(PathTraversalError, match="NUL"):
        path_guard.resolve("a\x00.txt", tmp_path)


@pytest.mark.unit
def test_resolve_rejects_root_itself(tmp_path: Path) -> None:
    with pytest.raises(PathTraversalError):
        path_guard.resolve(str(tmp_path), tmp_path)


@pytest.mark.unit
def test_resolve_does_not_follow_symlinks_for_containment(tmp_path: Path) -> None:
    root = tmp_path / "proj"
    root.mkdir()
    outside = tmp_path / "outside.txt"
    outside.write_text("x", encoding="utf-8")
    link = root / "link.txt"
    try:
        link.symlink_to(outside)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not supported")

    validated = path_guard.resolve(str(link), root)

    assert validated.canonical == link


@pytest.mark.unit
def test_is_within_uses_structure_not_prefix(tmp_path: Path) -> None:
    root = tmp_path / "app"

    assert path_guard.is_within(root / "x.py", root)
    assert path_guard.is_within(root, root)
    assert not path_guard.is_within(tmp_path / "application" / "x.py", root)
    assert not path_guard.is_within(tmp_path, root)


@pytest.mark.unit
def test_canonical_root_is_absolute_and_normalized(tmp_path: Path) -> None:
    root = path_guard.canonical_root(f"{tmp_path}/a/../b/.")

    assert root == tmp_path / "b"
    assert root.is_absolute()


ROOT_NAMES = [
    pytest.param(unicodedata.normalize("NFD", "café"), id="decomposed-accent"),
    pytest.param("ｐｒｏｊ", id="fullwidth"),
    pytest.param("a\\b", id="backslash", marks=pytest.mark.skipif(os.sep == "\\", reason="separator on Windows")),
]


@pytest.mark.unit
@pytest.mark.parametrize("name", ROOT_NAMES)
def test_resolve_accepts_files_under_root_with_unusual_name(tmp_path: Path, name: str) -> None:
    root = tmp_path / name

    validated = path_guard.resolve(str(root / "src" / "a.js"), root)

    assert validated.canonical == root / "src" / "a.js"
    assert validated.relative == "src/a.js"


@pytest.mark.unit
@pytest.mark.parametrize("name", ROOT_NAMES)
@pytest.mark.parametrize("candidate", ["../outside.txt", "src\\..\\..\\outside.txt", "．．/outside.txt"])
def test_resolve_still_rejects_traversal_under_unusual_root(tmp_path: Path, name: str, candidate: str) -> None:
    root = tmp_path / name

    with pytest.raises(PathTraversalError):
        path_guard.resolve(candidate, root)
