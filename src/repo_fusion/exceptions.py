from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from pathlib import Path


@dataclass(frozen=True)
class FusionError(Exception):
    """Base exception for errors in the repo_fusion package."""

    code: ClassVar[str] = "FUSION_ERROR"

    @property
    def message(self) -> str:
        """Human readable description of the error."""
        return self.__class__.__doc__ or self.code

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ConfigError(FusionError):
    """Raised when the configuration file or an option value is invalid."""

    code: ClassVar[str] = "CONFIG_ERROR"

    detail: str = ""
    source: Path | None = None

    @property
    def message(self) -> str:
        where = f" ({self.source})" if self.source else ""
        return f"Invalid configuration{where}: {self.detail}"


# ------------------------------ per-candidate --------------------------------


@dataclass(frozen=True)
class PathTraversalError(FusionError):
    """Raised when a candidate path resolves outside the trusted root."""

    code: ClassVar[str] = "PATH_TRAVERSAL"

    candidate: str
    root: str
    relative_path: str = ""
    reason: str = "resolves outside the root directory"

    @property
    def message(self) -> str:
        return f"Path traversal detected: {self.candidate!r} {self.reason} {self.root!r}"


@dataclass(frozen=True)
class SymlinkRejectedError(FusionError):
    """Raised when a symbolic link is met while symlinks are not allowed."""

    code: ClassVar[str] = "SYMLINK_NOT_ALLOWED"

    path: Path

    @property
    def message(self) -> str:
        return f"Symbolic link not allowed: {self.path}"


@dataclass(frozen=True)
class BrokenSymlinkError(FusionError):
    """Raised when a symbolic link target cannot be resolved to a regular file."""

    code: ClassVar[str] = "BROKEN_SYMLINK"

    path: Path
    detail: str = "target does not exist"

    @property
    def message(self) -> str:
        return f"Broken symbolic link {self.path}: {self.detail}"


@dataclass(frozen=True)
class PermissionDeniedError(FusionError):
    """Raised when a candidate file cannot be stat'ed or read."""

    code: ClassVar[str] = "PERMISSION_DENIED"

    path: Path
    detail: str = ""

    @property
    def message(self) -> str:
        return f"Cannot read {self.path}: {self.detail}"


@dataclass(frozen=True)
class BinaryContentError(FusionError):
    """Raised when a candidate file looks like binary content."""

    code: ClassVar[str] = "BINARY_CONTENT"

    path: Path

    @property
    def message(self) -> str:
        return f"Skipping binary file: {self.path}"


@dataclass(frozen=True)
class ContentValidationError(FusionError):
    """Raised when file content fails one or more validation rules."""

    code: ClassVar[str] = "CONTENT_VALIDATION_FAILED"

    relative_path: str
    errors: tuple[str, ...] = ()

    @property
    def message(self) -> str:
        return f"Content validation failed for {self.relative_path}: {'; '.join(self.errors)}"


# -------------------------------- run level ----------------------------------


@dataclass(frozen=True)
class IngestionError(FusionError):
    """Base class for errors that abort a whole ingestion run."""

    suggestion: str = ""

    @property
    def details(self) -> dict[str, Any]:
        """Structured details reported alongside the failure."""
        return {"suggestion": self.suggestion}


@dataclass(frozen=True)
class TooManyFilesError(IngestionError):
    """Raised when discovery found more candidates than `max_files`."""

    code: ClassVar[str] = "TOO_MANY_FILES"

    found: int = 0
    max_files: int = 0
    suggestion: str = "Use --include-glob patterns to filter files or increase the max_files limit"

    @property
    def message(self) -> str:
        return f"Too many files found ({self.found} > {self.max_files})"

    @property
    def details(self) -> dict[str, Any]:
        return {"filesFound": self.found, "maxFiles": self.max_files, "suggestion": self.suggestion}


@dataclass(frozen=True)
class SizeLimitExceededError(IngestionError):
    """Raised when the running byte total exceeds `max_total_size_mb`."""

    code: ClassVar[str] = "SIZE_LIMIT_EXCEEDED"

    limit_mb: float = 0.0
    total_bytes: int = 0
    suggestion: str = "Use --include-glob patterns to filter files or increase the max_total_size_mb limit"

    @property
    def message(self) -> str:
        total_mb = self.total_bytes / (1024 * 1024)
        return f"Total size limit exceeded ({total_mb:.2f}MB > {self.limit_mb:g}MB)"

    @property
    def details(self) -> dict[str, Any]:
        return {
            "maxTotalSizeMB": self.limit_mb,
            "totalBytes": self.total_bytes,
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True)
class NoFilesFoundError(IngestionError):
    """Raised when no candidate survived to inclusion or placeholder."""

    code: ClassVar[str] = "NO_FILES_FOUND"

    candidates: int = 0
    suggestion: str = "Check the root directory, extension groups and ignore patterns"

    @property
    def message(self) -> str:
        return "No files found to process."

    @property
    def details(self) -> dict[str, Any]:
        return {"candidates": self.candidates, "suggestion": self.suggestion}


@dataclass(frozen=True)
class IngestionCancelledError(IngestionError):
    """Raised when the caller cancelled the run."""

    code: ClassVar[str] = "CANCELLED"

    processed: int = 0
    suggestion: str = "Run the command again to produce a complete output"

    @property
    def message(self) -> str:
        return f"Ingestion cancelled after {self.processed} file(s)."

    @property
    def details(self) -> dict[str, Any]:
        return {"processed": self.processed, "suggestion": self.suggestion}
