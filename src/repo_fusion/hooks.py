from __future__ import annotations

import importlib
from typing import Protocol, runtime_checkable

from repo_fusion.config import FileRecord
from repo_fusion.exceptions import ConfigError
from repo_fusion.logging import logger


@runtime_checkable
class FileHook(Protocol):
    """Extension point called around each file.

    ``before_file`` runs once the record is built and may return a replacement
    record, or None to drop the file. ``after_file`` runs on each rendered file
    block and returns the text to emit.
    """

    def before_file(self, record: FileRecord) -> FileRecord | None: ...

    def after_file(self, record: FileRecord, rendered: str) -> str: ...


class BaseFileHook:
    """No-op hook to subclass when only one extension point is needed."""

    def before_file(self, record: FileRecord) -> FileRecord | None:
        return record

    def after_file(self, record: FileRecord, rendered: str) -> str:  # noqa: ARG002
        return rendered


def _hook_name(hook: object) -> str:
    return getattr(hook, "name", None) or type(hook).__name__


class HookRunner:
    """Run hooks in order. A hook that raises is logged and skipped for that file."""

    def __init__(self, hooks: list[FileHook] | None = None) -> None:
        self.hooks = list(hooks or [])

    def __bool__(self) -> bool:
        return bool(self.hooks)

    def before_file(self, record: FileRecord) -> FileRecord | None:
        current = record
        for hook in self.hooks:
            try:
                result = hook.before_file(current)
            except Exception:
                logger.exception("hook_failed", hook=_hook_name(hook), stage="before_file", path=record.relative_path)
                continue
            if result is None:
                logger.info("file_skipped", path=record.relative_path, reason="REJECTED_BY_HOOK", hook=_hook_name(hook))
                return None
            if not isinstance(result, FileRecord):
                logger.error(
                    "hook_failed",
                    hook=_hook_name(hook),
                    stage="before_file",
                    path=record.relative_path,
                    detail=f"returned {type(result).__name__}, expected FileRecord or None",
                )
                continue
            current = result
        return current

    def after_file(self, record: FileRecord, rendered: str) -> str:
        current = rendered
        for hook in self.hooks:
            try:
                result = hook.after_file(record, current)
            except Exception:
                logger.exception("hook_failed", hook=_hook_name(hook), stage="after_file", path=record.relative_path)
                continue
            if not isinstance(result, str):
                logger.error(
                    "hook_failed",
                    hook=_hook_name(hook),
                    stage="after_file",
                    path=record.relative_path,
                    detail=f"returned {type(result).__name__}, expected str",
                )
                continue
            current = result
        return current


def load_hook(reference: str) -> FileHook:
    """Import a hook from a ``package.module:attribute`` reference.

    A class is instantiated without arguments. Any other object is used as is.

    Raises:
        ConfigError: If the reference is malformed, cannot be imported, or does
            not provide both hook methods.
    """
    module_name, sep, attribute = reference.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigError(detail=f"hook reference {reference!r} must look like 'module:attribute'")
    try:
        target = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as exc:
        raise ConfigError(detail=f"cannot load hook {reference!r}: {exc}") from exc

    hook = target() if isinstance(target, type) else target
    if not isinstance(hook, FileHook):
        raise ConfigError(detail=f"hook {reference!r} must define before_file and after_file")
    return hook


def load_hooks(references: list[str]) -> list[FileHook]:
    return [load_hook(reference) for reference in references]
