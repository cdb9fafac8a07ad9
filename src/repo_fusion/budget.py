from __future__ import annotations

import threading

from repo_fusion.exceptions import SizeLimitExceededError, TooManyFilesError
from repo_fusion.logging import logger

BYTES_PER_MB = 1024 * 1024


def check_file_count(found: int, max_files: int) -> None:
    """Fail when discovery produced more candidates than allowed.

    Called once, before any file is read.

    Raises:
        TooManyFilesError: If ``found`` exceeds ``max_files``.
    """
    if found > max_files:
        raise TooManyFilesError(found=found, max_files=max_files)


def check_total_size(running_bytes: int, max_total_size_mb: float) -> None:
    """Fail when a byte total exceeds the configured ceiling.

    Raises:
        SizeLimitExceededError: If ``running_bytes`` is above ``max_total_size_mb``.
    """
    if running_bytes > max_total_size_mb * BYTES_PER_MB:
        raise SizeLimitExceededError(limit_mb=max_total_size_mb, total_bytes=running_bytes)


class ResourceBudget:
    """Running counters for one ingestion run.

    Counters only grow. ``admit`` is serialized, so totals stay exact when
    files are read concurrently.
    """

    def __init__(self, max_files: int, max_total_size_mb: float, max_file_size_kb: int) -> None:
        self.max_files = max_files
        self.max_total_size_mb = max_total_size_mb
        self.max_file_size_kb = max_file_size_kb
        self._files_seen = 0
        self._bytes_seen = 0
        self._lock = threading.Lock()

    @property
    def files_seen(self) -> int:
        return self._files_seen

    @property
    def bytes_seen(self) -> int:
        return self._bytes_seen

    def check_file_count(self, found: int) -> None:
        check_file_count(found, self.max_files)

    def exceeds_file_cap(self, size_bytes: int) -> bool:
        """Whether a single file is above ``max_file_size_kb``."""
        return size_bytes > self.max_file_size_kb * 1024

    def admit(self, size_bytes: int) -> None:
        """Account for one file.

        Raises:
            SizeLimitExceededError: If the new running total is above the ceiling.
                The counters keep the offending file, so the error reports the
                total that tripped the limit.
        """
        with self._lock:
            self._files_seen += 1
            self._bytes_seen += size_bytes
            total = self._bytes_seen
        try:
            check_total_size(total, self.max_total_size_mb)
        except SizeLimitExceededError:
            logger.warning("size_limit_exceeded", total_bytes=total, max_total_size_mb=self.max_total_size_mb)
            raise
