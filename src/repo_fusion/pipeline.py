"""Ingestion pipeline: from discovered candidates to ordered file records.

Each candidate goes through path validation, the symlink policy, the
resource budget and the content scanner, and ends up included, replaced by an
error placeholder, or skipped. Reads happen on a thread pool while results
are consumed in discovery order, so output order never depends on I/O timing.
"""

from __future__ import annotations

import stat
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from repo_fusion import path_guard
from repo_fusion.budget import ResourceBudget
from repo_fusion.config import CandidatePath, FileKind, FileRecord, ValidatedPath
from repo_fusion.content_scanner import looks_binary, scan
from repo_fusion.exceptions import (
    BinaryContentError,
    BrokenSymlinkError,
    ContentValidationError,
    IngestionCancelledError,
    IngestionError,
    NoFilesFoundError,
    PathTraversalError,
    PermissionDeniedError,
    SizeLimitExceededError,
    SymlinkRejectedError,
    TooManyFilesError,
)
from repo_fusion.hooks import HookRunner, load_hooks
from repo_fusion.logging import logger
from repo_fusion.symlink_audit import SymlinkAuditor, SymlinkAuditStore, SymlinkAuditSummary

if TYPE_CHECKING:
    from collections.abc import Sequence

    from repo_fusion.hooks import FileHook
    from repo_fusion.settings import Settings


class ProcessingStats(BaseModel):
    """What a run saw besides the records themselves.

    Paths are root-relative and listed in discovery order. ``secrets_detected``
    maps each file with redactions to the secret types found in it.
    """

    model_config = ConfigDict(frozen=True)

    binary_files_skipped: list[str] = Field(default_factory=list)
    minified_files_detected: list[str] = Field(default_factory=list)
    error_placeholders: list[str] = Field(default_factory=list)
    secrets_detected: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    skipped: dict[str, int] = Field(default_factory=dict)
    total_bytes: int = 0

    @computed_field
    @property
    def secret_type_counts(self) -> dict[str, int]:
        """Number of files in which each secret type was found."""
        counts: dict[str, int] = {}
        for types in self.secrets_detected.values():
            for secret_type in types:
                counts[secret_type] = counts.get(secret_type, 0) + 1
        return dict(sorted(counts.items()))

    @computed_field
    @property
    def files_skipped(self) -> int:
        return sum(self.skipped.values())


@dataclass
class _StatsCollector:
    binary: list[str] = field(default_factory=list)
    minified: list[str] = field(default_factory=list)
    placeholders: list[str] = field(default_factory=list)
    secrets: dict[str, tuple[str, ...]] = field(default_factory=dict)
    skipped: dict[str, int] = field(default_factory=dict)

    def skip(self, skip: _Skipped) -> None:
        self.skipped[skip.reason] = self.skipped.get(skip.reason, 0) + 1
        if skip.reason == BinaryContentError.code:
            self.binary.append(skip.path)
        elif skip.reason == "MINIFIED":
            self.minified.append(skip.path)

    def built(self, record: FileRecord) -> None:
        if record.is_placeholder:
            self.placeholders.append(record.relative_path)
        if record.issues.is_minified:
            self.minified.append(record.relative_path)
        if record.issues.secret_types:
            self.secrets[record.relative_path] = record.issues.secret_types

    def freeze(self, total_bytes: int) -> ProcessingStats:
        return ProcessingStats(
            binary_files_skipped=self.binary,
            minified_files_detected=self.minified,
            error_placeholders=self.placeholders,
            secrets_detected=self.secrets,
            skipped=self.skipped,
            total_bytes=total_bytes,
        )


class IngestionSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: Literal[True] = True
    records: list[FileRecord] = Field(default_factory=list)
    files_processed: int = 0
    symlink_audit: SymlinkAuditSummary = Field(default_factory=SymlinkAuditSummary)
    stats: ProcessingStats = Field(default_factory=ProcessingStats)


class IngestionFailure(BaseModel):
    """Run level failure.

    ``records`` holds what was built before the failure; callers decide
    whether to keep it.
    """

    model_config = ConfigDict(frozen=True)

    ok: Literal[False] = False
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    records: list[FileRecord] = Field(default_factory=list)
    stats: ProcessingStats = Field(default_factory=ProcessingStats)

    @property
    def suggestion(self) -> str:
        return str(self.details.get("suggestion", ""))


IngestionResult = IngestionSuccess | IngestionFailure


@dataclass(frozen=True)
class _Loaded:
    validated: ValidatedPath
    data: bytes
    link: tuple[Path, Path] | None = None


@dataclass(frozen=True)
class _Skipped:
    path: str
    reason: str
    detail: str = ""
    link: tuple[Path, Path] | None = None


class IngestionPipeline:
    """Turn candidate paths into file records for one trusted root.

    Args:
        settings: Limits and policies for the run.
        audit_store: Where symlink admissions are recorded. A private store is
            created when omitted.
        hooks: File hooks. When omitted, the hooks named in ``settings.hooks`` are loaded.
    """

    def __init__(
        self,
        settings: Settings,
        audit_store: SymlinkAuditStore | None = None,
        hooks: list[FileHook] | None = None,
    ) -> None:
        self.settings = settings
        self.audit_store = audit_store if audit_store is not None else SymlinkAuditStore()
        self.hooks = HookRunner(hooks if hooks is not None else load_hooks(settings.hooks))
        self.limits = settings.scan_limits()

    def _load(
        self,
        candidate: CandidatePath,
        root: Path,
        auditor: SymlinkAuditor,
        budget: ResourceBudget,
        cancel_event: threading.Event,
    ) -> _Loaded | _Skipped:
        """Blocking part of a candidate's trip: validation, link policy, stat and read."""
        if cancel_event.is_set():
            return _Skipped(candidate.raw, IngestionCancelledError.code)
        try:
            validated = path_guard.resolve(candidate, root)
        except PathTraversalError as exc:
            return _Skipped(candidate.raw, exc.code, exc.message)
        if candidate.kind is FileKind.DIRECTORY:
            return _Skipped(validated.relative, "DIRECTORY")

        try:
            target = auditor.follow(validated.canonical, allow_symlinks=self.settings.allow_symlinks)
        except (SymlinkRejectedError, BrokenSymlinkError) as exc:
            return _Skipped(validated.relative, exc.code, exc.message)
        link = (validated.canonical, target) if target is not None else None
        if target is None:
            target = validated.canonical

        try:
            try:
                info = target.stat()
            except OSError as exc:
                raise PermissionDeniedError(path=target, detail=exc.strerror or str(exc)) from exc
            if not stat.S_ISREG(info.st_mode):
                return _Skipped(validated.relative, "NOT_A_REGULAR_FILE", link=link)
            if budget.exceeds_file_cap(info.st_size):
                return _Skipped(
                    validated.relative,
                    "FILE_TOO_LARGE",
                    f"{info.st_size} bytes (max {self.settings.max_file_size_kb}KB)",
                    link=link,
                )
            try:
                data = target.read_bytes()
            except OSError as exc:
                raise PermissionDeniedError(path=target, detail=exc.strerror or str(exc)) from exc
            if looks_binary(data):
                raise BinaryContentError(path=target)
        except (PermissionDeniedError, BinaryContentError) as exc:
            return _Skipped(validated.relative, exc.code, exc.message, link=link)
        return _Loaded(validated, data, link=link)

    def _build_record(self, loaded: _Loaded) -> FileRecord | _Skipped:
        """CPU part: scan the content and decide between content and placeholder."""
        relative = loaded.validated.relative
        text = loaded.data.decode("utf-8", errors="replace")
        result = scan(text, relative, self.limits)

        if not result.valid:
            error = ContentValidationError(relative_path=relative, errors=result.errors)
            logger.warning("file_placeholder", path=relative, reason=error.code, detail=error.message)
            return FileRecord(
                relative_path=relative,
                canonical_path=loaded.validated.canonical,
                size_bytes=len(loaded.data),
                error_placeholder=result.error_placeholder,
                issues=result.issues,
            )

        if result.issues.is_minified:
            if self.settings.skip_minified:
                return _Skipped(relative, "MINIFIED")
            logger.info("minified_detected", path=relative)
        for warning in result.warnings:
            logger.warning("secrets_redacted", path=relative, detail=warning)
        content = result.redacted_content if result.redacted_content is not None else text
        return FileRecord(
            relative_path=relative,
            canonical_path=loaded.validated.canonical,
            size_bytes=len(loaded.data),
            content=content,
            issues=result.issues,
        )

    @staticmethod
    def _log_skip(skip: _Skipped) -> None:
        if skip.reason == PathTraversalError.code:
            logger.warning("path_traversal_rejected", path=skip.path, detail=skip.detail)
        else:
            logger.info("file_skipped", path=skip.path, reason=skip.reason, detail=skip.detail)

    @staticmethod
    def _fail(
        error: IngestionError,
        records: list[FileRecord],
        stats: ProcessingStats | None = None,
    ) -> IngestionFailure:
        logger.error("ingestion_failed", code=error.code, message=error.message, **error.details)
        return IngestionFailure(
            code=error.code,
            message=error.message,
            details=error.details,
            records=records,
            stats=stats or ProcessingStats(),
        )

    def run(
        self,
        candidates: Sequence[CandidatePath],
        root: str | Path | None = None,
        cancel_event: threading.Event | None = None,
    ) -> IngestionResult:
        """Ingest ``candidates`` under ``root``.

        Args:
            candidates: Discovered paths, in the order records must come out.
            root: Trusted root, ``settings.root`` when omitted.
            cancel_event: Set it from another thread to stop the run between files.

        Returns:
            IngestionResult: Records and audit summary, or the run level failure.
        """
        trusted = path_guard.canonical_root(root if root is not None else self.settings.root)
        cancel_event = cancel_event or threading.Event()
        self.audit_store.clear(trusted)
        audit_log = self.audit_store.log_for(trusted, self.settings.max_symlink_audit_entries)
        auditor = SymlinkAuditor(trusted)
        budget = ResourceBudget(
            max_files=self.settings.max_files,
            max_total_size_mb=self.settings.max_total_size_mb,
            max_file_size_kb=self.settings.max_file_size_kb,
        )
        records: list[FileRecord] = []

        try:
            budget.check_file_count(len(candidates))
        except TooManyFilesError as exc:
            return self._fail(exc, records)

        logger.info("ingestion_started", root=str(trusted), candidates=len(candidates))
        window = self.settings.max_workers * 4
        remaining = iter(candidates)
        pending: deque[Future[_Loaded | _Skipped]] = deque()
        collector = _StatsCollector()

        def fail(error: IngestionError) -> IngestionFailure:
            return self._fail(error, records, collector.freeze(budget.bytes_seen))

        with ThreadPoolExecutor(max_workers=self.settings.max_workers, thread_name_prefix="repo-fusion") as executor:

            def refill() -> None:
                while len(pending) < window:
                    candidate = next(remaining, None)
                    if candidate is None:
                        return
                    pending.append(executor.submit(self._load, candidate, trusted, auditor, budget, cancel_event))

            def abandon() -> None:
                for future in pending:
                    future.cancel()

            refill()
            while pending:
                if cancel_event.is_set():
                    abandon()
                    return fail(IngestionCancelledError(processed=len(records)))
                outcome = pending.popleft().result()
                refill()

                if outcome.link is not None:
                    auditor.record(audit_log, *outcome.link)
                if isinstance(outcome, _Skipped):
                    if outcome.reason != IngestionCancelledError.code:
                        self._log_skip(outcome)
                        collector.skip(outcome)
                    continue

                built = self._build_record(outcome)
                if isinstance(built, _Skipped):
                    self._log_skip(built)
                    collector.skip(built)
                    continue
                collector.built(built)
                record = self.hooks.before_file(built) if self.hooks else built
                if record is None:
                    collector.skip(_Skipped(built.relative_path, "HOOK_REJECTED"))
                    continue

                try:
                    budget.admit(record.size_bytes)
                except SizeLimitExceededError as exc:
                    abandon()
                    return fail(exc)
                records.append(record)

        if cancel_event.is_set():
            return fail(IngestionCancelledError(processed=len(records)))
        if not records:
            return fail(NoFilesFoundError(candidates=len(candidates)))

        summary = self.audit_store.summary(trusted)
        stats = collector.freeze(budget.bytes_seen)
        logger.info(
            "ingestion_complete",
            files_processed=len(records),
            placeholders=len(stats.error_placeholders),
            skipped=stats.files_skipped,
            skipped_by_reason=stats.skipped,
            binary_files=len(stats.binary_files_skipped),
            minified_files=len(stats.minified_files_detected),
            secret_types=stats.secret_type_counts,
            total_bytes=stats.total_bytes,
            symlinks=summary.total_symlinks,
        )
        return IngestionSuccess(records=records, files_processed=len(records), symlink_audit=summary, stats=stats)
