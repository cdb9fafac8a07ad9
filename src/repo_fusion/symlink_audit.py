from __future__ import annotations

import os
import threading
from collections import deque
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from repo_fusion import path_guard
from repo_fusion.exceptions import BrokenSymlinkError, SymlinkRejectedError
from repo_fusion.logging import logger

DEFAULT_MAX_AUDIT_ENTRIES = 100


class SymlinkAuditEntry(BaseModel):
    """One admitted symbolic link and the file it resolved to."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    symlink_path: Path
    resolved_target_path: Path
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SymlinkAuditSummary(BaseModel):
    """Snapshot of an audit log.

    ``total_symlinks`` counts every admission since the last clear, even those
    whose entries were evicted from the bounded ``entries`` list.
    """

    model_config = ConfigDict(frozen=True)

    total_symlinks: int = 0
    entries: list[SymlinkAuditEntry] = Field(default_factory=list)


class SymlinkAuditLog:
    """Bounded, thread-safe record of admitted symbolic links.

    Entries are kept in insertion order. Once ``max_entries`` is reached the
    oldest entry is dropped; the total counter keeps counting.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_AUDIT_ENTRIES) -> None:
        if max_entries < 1:
            msg = "max_entries must be at least 1"
            raise ValueError(msg)
        self._entries: deque[SymlinkAuditEntry] = deque(maxlen=max_entries)
        self._total = 0
        self._lock = threading.Lock()

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen or DEFAULT_MAX_AUDIT_ENTRIES

    @property
    def total(self) -> int:
        with self._lock:
            return self._total

    def record(self, symlink_path: Path, target: Path) -> SymlinkAuditEntry:
        entry = SymlinkAuditEntry(symlink_path=symlink_path, resolved_target_path=target)
        with self._lock:
            self._entries.append(entry)
            self._total += 1
        return entry

    def entries(self) -> list[SymlinkAuditEntry]:
        with self._lock:
            return list(self._entries)

    def summary(self) -> SymlinkAuditSummary:
        with self._lock:
            return SymlinkAuditSummary(total_symlinks=self._total, entries=list(self._entries))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total = 0


class SymlinkAuditStore:
    """Audit logs keyed by canonical root directory."""

    def __init__(self, max_entries: int = DEFAULT_MAX_AUDIT_ENTRIES) -> None:
        self._max_entries = max_entries
        self._logs: dict[Path, SymlinkAuditLog] = {}
        self._lock = threading.Lock()

    def log_for(self, root: str | os.PathLike[str], max_entries: int | None = None) -> SymlinkAuditLog:
        """Return the log for ``root``, creating it on first use.

        ``max_entries`` only applies when the log is created.
        """
        key = path_guard.canonical_root(root)
        with self._lock:
            log = self._logs.get(key)
            if log is None:
                log = SymlinkAuditLog(max_entries or self._max_entries)
                self._logs[key] = log
            return log

    def summary(self, root: str | os.PathLike[str]) -> SymlinkAuditSummary:
        key = path_guard.canonical_root(root)
        with self._lock:
            log = self._logs.get(key)
        return log.summary() if log is not None else SymlinkAuditSummary()

    def clear(self, root: str | os.PathLike[str]) -> None:
        """Forget everything recorded for ``root``."""
        with self._lock:
            self._logs.pop(path_guard.canonical_root(root), None)


class SymlinkAuditor:
    """Decide whether a discovered entry may be read, following links when allowed."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = path_guard.canonical_root(root)
        self._real_root = Path(os.path.realpath(self.root))

    @staticmethod
    def resolve_target(path: Path) -> Path:
        """Resolve a link to its final target.

        Raises:
            BrokenSymlinkError: If the chain is dangling or looping, or ends on
                something other than a regular file.
        """
        try:
            target = Path(os.path.realpath(path, strict=True))
        except (OSError, RuntimeError) as exc:
            raise BrokenSymlinkError(path=path, detail=str(exc) or "target does not exist") from exc
        if not target.is_file():
            raise BrokenSymlinkError(path=path, detail="target is not a regular file")
        return target

    def follow(self, path: str | os.PathLike[str], *, allow_symlinks: bool) -> Path | None:
        """Apply the link policy to ``path`` without recording anything.

        A path counts as linked when it is a link itself or when a linked
        directory above it moves its real location out of the real root.

        Args:
            path: Candidate path, already validated against the root.
            allow_symlinks: Whether links may be followed at all.

        Returns:
            Path | None: The resolved target for linked paths, ``None`` otherwise.

        Raises:
            SymlinkRejectedError: If ``path`` is linked and links are not allowed.
            BrokenSymlinkError: If the link cannot be resolved to a regular file.
        """
        path = Path(path)
        if not path.is_symlink() and path_guard.is_within(os.path.realpath(path), self._real_root):
            return None
        if not allow_symlinks:
            raise SymlinkRejectedError(path=path)

        target = self.resolve_target(path)
        if not (path_guard.is_within(target, self.root) or path_guard.is_within(target, self._real_root)):
            logger.warning("symlink_target_outside_root", symlink=str(path), target=str(target), root=str(self.root))
        return target

    @staticmethod
    def record(audit_log: SymlinkAuditLog, path: str | os.PathLike[str], target: str | os.PathLike[str]) -> None:
        audit_log.record(path, target)
        logger.info("symlink_admitted", symlink=str(path), target=str(target))

    def check(self, path: str | os.PathLike[str], *, allow_symlinks: bool, audit_log: SymlinkAuditLog) -> Path:
        """Return the path to read for ``path``, recording admitted links.

        Returns:
            Path: ``path`` itself for ordinary entries, the resolved target for links.

        Raises:
            SymlinkRejectedError: If ``path`` is linked and links are not allowed.
            BrokenSymlinkError: If the link cannot be resolved to a regular file.
        """
        target = self.follow(path, allow_symlinks=allow_symlinks)
        if target is None:
            return Path(path)
        self.record(audit_log, path, target)
        return target

    def admit(self, path: str | os.PathLike[str], *, allow_symlinks: bool, audit_log: SymlinkAuditLog) -> bool:
        """Boolean form of :meth:`check`. Rejections are logged, never raised."""
        try:
            self.check(path, allow_symlinks=allow_symlinks, audit_log=audit_log)
        except (SymlinkRejectedError, BrokenSymlinkError) as exc:
            logger.info("file_skipped", path=str(path), reason=exc.code, detail=exc.message)
            return False
        return True
