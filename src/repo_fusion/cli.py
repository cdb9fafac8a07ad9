"""
repo_fusion: merge a source tree into shareable documents.

Overview
--------
The default command walks a directory, keeps the files of the configured
extension groups that are not ignored (``ignore_patterns`` and ``.gitignore``),
checks each one (path containment, symlink policy, size budget, content
validation with secret redaction) and writes the result as plain text,
Markdown and/or HTML.

Usage
-----
    repo-fusion                                  # fuse the current directory
    repo-fusion --root ../app --format html      # one format, another root
    repo-fusion --extensions backend,config      # only some extension groups
    repo-fusion init                             # write repo-fusion.yaml
    repo-fusion config-check                     # print the effective settings

Exit status is 0 on success, 1 when the run fails (too many files, size limit,
nothing to fuse) and 2 on configuration errors.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from repo_fusion import __version__, path_guard
from repo_fusion.discovery import discover_candidates
from repo_fusion.exceptions import ConfigError, SizeLimitExceededError
from repo_fusion.hooks import load_hooks
from repo_fusion.logging import logger, setup_logging
from repo_fusion.output_construction import write_outputs
from repo_fusion.pipeline import IngestionFailure, IngestionPipeline
from repo_fusion.settings import CONFIG_FILENAME, default_config_yaml, load_settings

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def _split_commas(values: Sequence[str] | None) -> list[str] | None:
    if not values:
        return None
    return [item.strip() for value in values for item in value.split(",") if item.strip()]


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="repo-fusion",
        description="Merge a source tree into text, Markdown and HTML documents. "
        "Subcommands: 'init' writes a default config, 'config-check' validates it.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--root", type=str, default=None, help="Directory to fuse (default: config or '.').")
    p.add_argument("--config", type=str, default=None, help=f"Config file (default: {CONFIG_FILENAME}).")
    p.add_argument(
        "--format",
        dest="formats",
        action="append",
        choices=["txt", "md", "html"],
        default=None,
        help="Output format (repeatable).",
    )
    p.add_argument(
        "--extensions",
        action="append",
        default=None,
        help="Comma list of extension groups, e.g. backend,web (repeatable).",
    )
    p.add_argument("--include-glob", action="append", default=None, help="Include glob (repeatable).")
    p.add_argument("--exclude-glob", action="append", default=None, help="Exclude glob (repeatable).")
    p.add_argument(
        "--allow-symlinks",
        action="store_true",
        default=None,
        help="Follow symbolic links to files (each one is audited).",
    )
    p.add_argument("--max-files", type=int, default=None, help="Maximum number of candidate files.")
    p.add_argument("--max-total-size-mb", type=float, default=None, help="Maximum total size in MB.")
    p.add_argument("--max-file-size-kb", type=int, default=None, help="Files above are skipped.")
    p.add_argument(
        "--no-secrets-redaction",
        dest="exclude_secrets",
        action="store_false",
        default=None,
        help="Keep detected secrets in the output.",
    )
    p.add_argument(
        "--skip-minified",
        action="store_true",
        default=None,
        help="Leave out minified files instead of including them.",
    )
    p.add_argument("--output-name", type=str, default=None, help="Base name of the generated files.")
    p.add_argument("--log-file", type=str, default=None, help="Log file path.")
    return p.parse_args(argv)


def overrides_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """Settings fields given on the command line. Options left out are None and ignored."""
    return {
        "root": args.root,
        "formats": args.formats,
        "extension_groups": _split_commas(args.extensions),
        "include_glob": args.include_glob,
        "exclude_glob": args.exclude_glob,
        "allow_symlinks": args.allow_symlinks,
        "max_files": args.max_files,
        "max_total_size_mb": args.max_total_size_mb,
        "max_file_size_kb": args.max_file_size_kb,
        "exclude_secrets": args.exclude_secrets,
        "skip_minified": args.skip_minified,
        "output_name": args.output_name,
        "log_file": args.log_file,
    }


def _report_config_error(exc: ConfigError) -> int:
    print(f"Error: {exc.message}", file=sys.stderr)
    return EXIT_CONFIG_ERROR


def main_fuse(argv: Sequence[str]) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings(args.config, **overrides_from_args(args))
        setup_logging(settings.log_file or None, settings.log_level, force=True)
        candidates = discover_candidates(settings.root, settings)
        pipeline = IngestionPipeline(settings)
    except ConfigError as exc:
        return _report_config_error(exc)

    result = pipeline.run(candidates, settings.root)
    if isinstance(result, IngestionFailure):
        print(f"Error: {result.message}", file=sys.stderr)
        if result.suggestion:
            print(f"Suggestion: {result.suggestion}", file=sys.stderr)
        return EXIT_FAILURE

    title = path_guard.canonical_root(settings.root).name or "project"
    try:
        written = write_outputs(result.records, settings, title, pipeline.hooks)
    except SizeLimitExceededError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        print(f"Suggestion: {exc.suggestion}", file=sys.stderr)
        return EXIT_FAILURE

    placeholders = sum(1 for rec in result.records if rec.is_placeholder)
    print(f"Fusion completed: {result.files_processed} files processed ({placeholders} with validation errors).")
    for fmt, path in written.items():
        print(f"  {fmt}: {path}")
    stats = result.stats
    if stats.binary_files_skipped:
        print(f"Binary files skipped: {len(stats.binary_files_skipped)}")
    if stats.minified_files_detected:
        print(f"Minified files detected: {len(stats.minified_files_detected)}")
    if stats.secret_type_counts:
        found = ", ".join(f"{name} ({count})" for name, count in stats.secret_type_counts.items())
        print(f"Secrets redacted: {found}")
    if result.symlink_audit.total_symlinks:
        print(f"Symlinks followed: {result.symlink_audit.total_symlinks}")
    return EXIT_OK


def main_init(argv: Sequence[str]) -> int:
    p = argparse.ArgumentParser(prog="repo-fusion init", description=f"Write a default {CONFIG_FILENAME}.")
    p.add_argument("--root", type=str, default=".", help="Directory receiving the config file.")
    p.add_argument("--force", action="store_true", help="Overwrite an existing config file.")
    args = p.parse_args(argv)

    target = Path(args.root) / CONFIG_FILENAME
    if target.exists() and not args.force:
        print(f"Error: {target} already exists, use --force to overwrite it.", file=sys.stderr)
        return EXIT_FAILURE
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(default_config_yaml(), encoding="utf-8")
    logger.info("config_written", path=str(target))
    print(f"Wrote {target}")
    return EXIT_OK


def main_config_check(argv: Sequence[str]) -> int:
    p = argparse.ArgumentParser(prog="repo-fusion config-check", description="Validate the configuration.")
    p.add_argument("--root", type=str, default=None, help="Directory holding the config file.")
    p.add_argument("--config", type=str, default=None, help=f"Config file (default: {CONFIG_FILENAME}).")
    args = p.parse_args(argv)

    try:
        settings = load_settings(args.config, root=args.root)
        settings.selected_extensions()
        load_hooks(settings.hooks)
    except ConfigError as exc:
        return _report_config_error(exc)

    print(yaml.safe_dump(settings.model_dump(mode="json"), sort_keys=False, allow_unicode=True), end="")
    print("Configuration OK")
    return EXIT_OK


SUBCOMMANDS: dict[str, Callable[[Sequence[str]], int]] = {
    "init": main_init,
    "config-check": main_config_check,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if args and args[0] in SUBCOMMANDS:
        return SUBCOMMANDS[args[0]](args[1:])
    return main_fuse(args)


if __name__ == "__main__":
    raise SystemExit(main())
