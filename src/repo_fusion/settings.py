from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from repo_fusion.config import DEFAULT_IGNORE_PATTERNS, EXTENSION_GROUPS, ScanLimits
from repo_fusion.exceptions import ConfigError

ENV_FILE = find_dotenv(usecwd=True)
CONFIG_FILENAME = "repo-fusion.yaml"
CONFIG_ENV_VAR = "REPO_FUSION_CONFIG"

OutputFormat = Literal["txt", "md", "html"]


class Settings(BaseModel):
    """Configuration settings for a repo_fusion run."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    root: Path = Field(default=Path("."), description="Directory to fuse.")
    output_name: str = Field(
        default="project-fusioned",
        min_length=1,
        description="Base name of the generated files, without extension.",
    )
    output_dir: Path | None = Field(default=None, description="Output directory (defaults to root).")
    formats: list[OutputFormat] = Field(
        default_factory=lambda: ["txt", "md"],
        min_length=1,
        description="Output formats to generate.",
    )

    extension_groups: list[str] = Field(
        default_factory=list,
        description="Extension groups to include (empty means every group).",
    )
    parsed_file_extensions: dict[str, list[str]] = Field(
        default_factory=lambda: {name: list(exts) for name, exts in EXTENSION_GROUPS.items()},
        description="Named groups of file extensions.",
    )
    ignore_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS),
        description="Gitignore-style patterns to exclude.",
    )
    include_glob: list[str] = Field(default_factory=list, description="Include glob.")
    exclude_glob: list[str] = Field(default_factory=list, description="Exclude glob.")
    use_gitignore: bool = Field(default=True, description="Honor the root .gitignore.")
    parse_subdirectories: bool = Field(default=True, description="Descend into subdirectories.")

    allow_symlinks: bool = Field(default=False, description="Follow symbolic links to files.")
    max_symlink_audit_entries: int = Field(
        default=100,
        ge=1,
        description="Retained symlink audit entries per root.",
    )

    max_files: int = Field(default=10_000, ge=1, description="Maximum number of candidate files.")
    max_total_size_mb: float = Field(default=100, gt=0, description="Maximum total size in MB.")
    max_file_size_kb: int = Field(default=1024, ge=1, description="Files above are skipped.")
    max_base64_block_kb: float = Field(default=2, gt=0, description="Largest decoded base64 block.")
    max_line_length: int = Field(default=5000, ge=1, description="Longest accepted line.")
    max_token_length: int = Field(default=2000, ge=1, description="Longest accepted token.")
    exclude_secrets: bool = Field(default=True, description="Redact detected secrets.")
    skip_minified: bool = Field(default=False, description="Skip minified files that pass validation.")

    max_workers: int = Field(default=8, ge=1, le=64, description="Concurrent file readers.")
    hooks: list[str] = Field(
        default_factory=list,
        description="File hooks as 'module:attribute' references.",
    )
    log_file: str = Field(default="", description="Log file path.")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level.",
    )

    @property
    def output_directory(self) -> Path:
        """Directory receiving the generated documents."""
        return self.output_dir if self.output_dir is not None else self.root

    def scan_limits(self) -> ScanLimits:
        """Content scanner thresholds extracted from these settings."""
        return ScanLimits(
            max_base64_block_kb=self.max_base64_block_kb,
            max_line_length=self.max_line_length,
            max_token_length=self.max_token_length,
            exclude_secrets=self.exclude_secrets,
        )

    def selected_extensions(self) -> set[str]:
        """Resolve the configured extension groups into a set of lowercase suffixes.

        Returns:
            set[str]: Every extension of the selected groups.

        Raises:
            ConfigError: If a selected group is not defined.
        """
        names = self.extension_groups or list(self.parsed_file_extensions)
        unknown = [name for name in names if name not in self.parsed_file_extensions]
        if unknown:
            known = ", ".join(sorted(self.parsed_file_extensions))
            raise ConfigError(detail=f"unknown extension group(s) {', '.join(unknown)} (known: {known})")
        return {ext.lower() for name in names for ext in self.parsed_file_extensions[name]}

    def output_paths(self) -> dict[str, Path]:
        """Map each selected format to the file it will be written to."""
        return {fmt: self.output_directory / f"{self.output_name}.{fmt}" for fmt in self.formats}


def _config_path_from_env() -> str | None:
    if not ENV_FILE:
        return None
    return dotenv_values(ENV_FILE).get(CONFIG_ENV_VAR) or None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(detail=f"invalid YAML: {exc}", source=path) from exc
    except OSError as exc:
        raise ConfigError(detail=f"cannot read file: {exc}", source=path) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(detail="top level must be a mapping", source=path)
    return data


def load_settings(path: str | Path | None = None, **overrides: Any) -> Settings:
    """Load settings from a YAML file and apply explicit overrides.

    Without an explicit path, the file named by ``REPO_FUSION_CONFIG`` in the
    nearest ``.env`` is used, then ``repo-fusion.yaml`` under the root. A missing
    default file is not an error; defaults apply. A relative ``root`` read from
    a file is taken relative to that file.

    Args:
        path: Explicit configuration file.
        **overrides: Field values taking precedence over the file. None values are ignored.

    Returns:
        Settings: The validated settings.

    Raises:
        ConfigError: If the file is unreadable, is not valid YAML, or fails validation.
    """
    overrides = {key: value for key, value in overrides.items() if value is not None}
    explicit = path is not None or _config_path_from_env() is not None
    if path is None:
        path = _config_path_from_env() or Path(overrides.get("root", ".")) / CONFIG_FILENAME
    config_path = Path(path)

    data: dict[str, Any] = {}
    if config_path.is_file():
        data = _read_yaml(config_path)
        if "root" in data and not Path(str(data["root"])).is_absolute():
            data["root"] = config_path.parent / str(data["root"])
    elif explicit:
        raise ConfigError(detail="configuration file not found", source=config_path)

    data.update(overrides)
    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(detail=str(exc), source=config_path if config_path.is_file() else None) from exc


def default_config_yaml() -> str:
    """Render the default settings as a YAML document, as written by ``init``."""
    defaults = Settings().model_dump(mode="json")
    return yaml.safe_dump(defaults, sort_keys=False, allow_unicode=True)
