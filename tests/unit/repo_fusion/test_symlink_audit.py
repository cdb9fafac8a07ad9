from __future__ import annotations

import threading
from pathlib import Path

import pytest

from repo_fusion.exceptions import BrokenSymlinkError, SymlinkRejectedError
from repo_fusion.symlink_audit import SymlinkAuditLog, SymlinkAuditor, SymlinkAuditStore


def _symlink(link: Path, target: Path) -> Path:
    try:
        link.symlink_to(target)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not supported")
    return link


@pytest.fixture
def root(tmp_path: Path) -> Path:
    root = tmp_path / "proj"
    root.mkdir()
    (root / "real.txt").write_text("real", encoding="utf-8")
    return root


@pytest.mark.unit
def test_admit_regular_file_without_audit(root: Path) -> None:
    log = SymlinkAuditLog()

    assert SymlinkAuditor(root).admit(root / "real.txt", allow_symlinks=False, audit_log=log)
    assert log.total == 0


@pytest.mark.unit
def test_admit_rejects_link_when_policy_disallows(root: Path) -> None:
    link = _symlink(root / "link.txt", root / "real.txt")
    log = SymlinkAuditLog()
    auditor = SymlinkAuditor(root)

    assert not auditor.admit(link, allow_symlinks=False, audit_log=log)
    with pytest.raises(SymlinkRejectedError):
        auditor.check(link, allow_symlinks=False, audit_log=log)
    assert log.total == 0


@pytest.mark.unit
def test_admit_records_resolved_link(root: Path) -> None:
    link = _symlink(root / "link.txt", root / "real.txt")
    log = SymlinkAuditLog()

    target = SymlinkAuditor(root).check(link, allow_symlinks=True, audit_log=log)

    assert target == (root / "real.txt").resolve()
    [entry] = log.entries()
    assert entry.symlink_path == link
    assert entry.resolved_target_path == target
    assert log.total == 1


@pytest.mark.unit
def test_admit_skips_broken_link_without_raising(root: Path) -> None:
    link = _symlink(root / "dangling.txt", root / "missing.txt")
    log = SymlinkAuditLog()
    auditor = SymlinkAuditor(root)

    assert not auditor.admit(link, allow_symlinks=True, audit_log=log)
    with pytest.raises(BrokenSymlinkError):
        auditor.check(link, allow_symlinks=True, audit_log=log)
    assert log.total == 0


@pytest.mark.unit
def test_admit_skips_link_to_directory(root: Path) -> None:
    (root / "sub").mkdir()
    link = _symlink(root / "dirlink", root / "sub")

    assert not SymlinkAuditor(root).admit(link, allow_symlinks=True, audit_log=SymlinkAuditLog())


@pytest.mark.unit
def test_admit_allows_target_outside_root_with_warning(root: Path, tmp_path: Path) -> None:
    outside = tmp_path / "outside.txt"
    outside.write_text("x", encoding="utf-8")
    link = _symlink(root / "out.txt", outside)
    log = SymlinkAuditLog()

    assert SymlinkAuditor(root).admit(link, allow_symlinks=True, audit_log=log)
    assert log.entries()[0].resolved_target_path == outside.resolve()


@pytest.mark.unit
def test_audit_log_keeps_last_entries_and_true_total(root: Path) -> None:
    total, kept = 12, 5
    log = SymlinkAuditLog(max_entries=kept)

    for i in range(total):
        log.record(root / f"link{i}", root / "real.txt")

    summary = log.summary()
    assert summary.total_symlinks == total
    assert [e.symlink_path.name for e in summary.entries] == [f"link{i}" for i in range(total - kept, total)]


@pytest.mark.unit
def test_audit_log_counts_exactly_under_concurrency(root: Path) -> None:
    log = SymlinkAuditLog(max_entries=10)

    def worker() -> None:
        for _ in range(200):
            log.record(root / "l", root / "real.txt")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert log.total == 1600
    assert len(log.entries()) == 10


@pytest.mark.unit
def test_audit_log_rejects_non_positive_capacity() -> None:
    with pytest.raises(ValueError, match="at least 1"):
        SymlinkAuditLog(max_entries=0)


@pytest.mark.unit
def test_store_is_keyed_by_canonical_root_and_clearable(tmp_path: Path) -> None:
    store = SymlinkAuditStore(max_entries=3)
    first = store.log_for(tmp_path / "a")
    first.record(tmp_path / "a" / "l", tmp_path / "a" / "t")

    assert store.log_for(f"{tmp_path}/a/.") is first
    assert store.summary(tmp_path / "a").total_symlinks == 1
    assert store.summary(tmp_path / "b").total_symlinks == 0

    store.clear(tmp_path / "a")

    assert store.summary(tmp_path / "a").entries == []
    assert store.log_for(tmp_path / "a") is not first


@pytest.mark.unit
def test_store_applies_capacity_when_creating_log(tmp_path: Path) -> None:
    store = SymlinkAuditStore()

    assert store.log_for(tmp_path, max_entries=7).max_entries == 7
    assert store.log_for(tmp_path, max_entries=99).max_entries == 7


@pytest.mark.unit
def test_check_treats_file_under_linked_directory_as_a_link(root: Path, tmp_path: Path) -> None:
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_text("secret", encoding="utf-8")
    _symlink(root / "linkdir", outside)
    path = root / "linkdir" / "secret.txt"
    log = SymlinkAuditLog()
    auditor = SymlinkAuditor(root)

    with pytest.raises(SymlinkRejectedError):
        auditor.check(path, allow_symlinks=False, audit_log=log)
    assert log.total == 0

    target = auditor.check(path, allow_symlinks=True, audit_log=log)

    assert target == (outside / "secret.txt").resolve()
    [entry] = log.entries()
    assert entry.symlink_path == path
    assert entry.resolved_target_path == target


@pytest.mark.unit
def test_follow_leaves_plain_files_alone_and_records_nothing(root: Path) -> None:
    link = _symlink(root / "link.txt", root / "real.txt")
    auditor = SymlinkAuditor(root)

    assert auditor.follow(root / "real.txt", allow_symlinks=False) is None
    assert auditor.follow(link, allow_symlinks=True) == (root / "real.txt").resolve()
