from __future__ import annotations

from enum import StrEnum, auto
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class FileType(StrEnum):
    """Categorization of source files, used to pick a code fence language."""

    BASH = auto()
    BATCH = auto()
    C = auto()
    CPP = auto()
    CSHARP = auto()
    CSS = auto()
    GDSCRIPT = auto()
    GO = auto()
    HTML = auto()
    INI = auto()
    JAVA = auto()
    JAVASCRIPT = auto()
    JSON = auto()
    MARKDOWN = auto()
    PHP = auto()
    POWERSHELL = auto()
    PYTHON = auto()
    RST = auto()
    RUBY = auto()
    RUST = auto()
    SVELTE = auto()
    TOML = auto()
    TYPESCRIPT = auto()
    VUE = auto()
    XML = auto()
    YAML = auto()
    OTHER = auto()


EXT2LANG: dict[str, FileType] = {
    ".adoc": FileType.OTHER,
    ".bat": FileType.BATCH,
    ".c": FileType.C,
    ".cc": FileType.CPP,
    ".cfg": FileType.INI,
    ".cmd": FileType.BATCH,
    ".cpp": FileType.CPP,
    ".cs": FileType.CSHARP,
    ".css": FileType.CSS,
    ".gd": FileType.GDSCRIPT,
    ".go": FileType.GO,
    ".h": FileType.C,
    ".hpp": FileType.CPP,
    ".html": FileType.HTML,
    ".import": FileType.INI,
    ".java": FileType.JAVA,
    ".js": FileType.JAVASCRIPT,
    ".json": FileType.JSON,
    ".jsx": FileType.JAVASCRIPT,
    ".md": FileType.MARKDOWN,
    ".php": FileType.PHP,
    ".ps1": FileType.POWERSHELL,
    ".py": FileType.PYTHON,
    ".rb": FileType.RUBY,
    ".rs": FileType.RUST,
    ".rst": FileType.RST,
    ".sh": FileType.BASH,
    ".svelte": FileType.SVELTE,
    ".toml": FileType.TOML,
    ".tres": FileType.INI,
    ".tscn": FileType.INI,
    ".ts": FileType.TYPESCRIPT,
    ".tsx": FileType.TYPESCRIPT,
    ".vue": FileType.VUE,
    ".xml": FileType.XML,
    ".yaml": FileType.YAML,
    ".yml": FileType.YAML,
}

_FENCE_LANGUAGE: dict[FileType, str] = {
    FileType.BASH: "bash",
    FileType.BATCH: "batch",
    FileType.C: "c",
    FileType.CPP: "cpp",
    FileType.CSHARP: "csharp",
    FileType.CSS: "css",
    FileType.GDSCRIPT: "gdscript",
    FileType.GO: "go",
    FileType.HTML: "html",
    FileType.INI: "ini",
    FileType.JAVA: "java",
    FileType.JAVASCRIPT: "javascript",
    FileType.JSON: "json",
    FileType.MARKDOWN: "markdown",
    FileType.PHP: "php",
    FileType.POWERSHELL: "powershell",
    FileType.PYTHON: "python",
    FileType.RST: "rst",
    FileType.RUBY: "ruby",
    FileType.RUST: "rust",
    FileType.SVELTE: "svelte",
    FileType.TOML: "toml",
    FileType.TYPESCRIPT: "typescript",
    FileType.VUE: "vue",
    FileType.XML: "xml",
    FileType.YAML: "yaml",
    FileType.OTHER: "",
}

EXTENSION_GROUPS: dict[str, list[str]] = {
    "backend": [".cs", ".go", ".java", ".php", ".py", ".rb", ".rs"],
    "config": [".json", ".toml", ".xml", ".yaml", ".yml"],
    "cpp": [".c", ".cc", ".cpp", ".h", ".hpp"],
    "doc": [".adoc", ".md", ".rst"],
    "godot": [".cfg", ".cs", ".gd", ".import", ".tres", ".tscn"],
    "scripts": [".bat", ".cmd", ".ps1", ".sh"],
    "web": [".css", ".html", ".js", ".jsx", ".svelte", ".ts", ".tsx", ".vue"],
}

# Directory names never descended into, whatever the ignore patterns say.
DEFAULT_EXCLUDED_DIRS = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        ".venv",
        "venv",
        "__pycache__",
        ".mypy_cache",
        ".ruff_cache",
        ".pytest_cache",
        "node_modules",
    },
)

DEFAULT_IGNORE_PATTERNS: list[str] = [
    "repo-fusion.yaml",
    "repo-fusion.log",
    "project-fusioned.*",
    "node_modules/",
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "dist/",
    "build/",
    "*.min.js",
    "*.min.css",
    ".env",
    ".env.*",
    "*.key",
    "*.pem",
    "**/credentials/*",
    "**/secrets/*",
    "*.log",
    "logs/",
    ".DS_Store",
    "Thumbs.db",
    ".vscode/",
    ".idea/",
    "*.swp",
    "*.swo",
]


def guess_file_type(path: Path | str) -> FileType:
    """Heuristic guess of file type based on extension.

    Args:
        path (Path | str): The file path to guess the type for.

    Returns:
        FileType: The guessed file type, or FileType.OTHER if unknown.
    """
    return EXT2LANG.get(Path(path).suffix.lower(), FileType.OTHER)


def guess_language(path: Path | str) -> str:
    """Get the suggested code fence language for a file path.

    Args:
        path (Path | str): The file path, only its suffix is used.

    Returns:
        str: The suggested language name for code fences, or empty string if none.
    """
    return _FENCE_LANGUAGE.get(guess_file_type(path), "")


class FileKind(StrEnum):
    """Declared type of a discovered path."""

    FILE = auto()
    SYMLINK = auto()
    DIRECTORY = auto()


class CandidatePath(BaseModel):
    """A path discovered during traversal, not trusted yet."""

    model_config = ConfigDict(frozen=True)

    raw: str = Field(..., min_length=1, description="Path as produced by the walker")
    kind: FileKind = Field(default=FileKind.FILE, description="Declared entry type")


class ValidatedPath(BaseModel):
    """A candidate proven to lie inside the trusted root.

    Attributes:
        canonical: Absolute, lexically normalized path (symlinks not followed).
        relative: Root-relative path with POSIX separators, used in output.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    canonical: Path
    relative: str


class ScanLimits(BaseModel):
    """Thresholds applied by the content scanner."""

    model_config = ConfigDict(frozen=True)

    max_base64_block_kb: float = Field(default=2, gt=0)
    max_line_length: int = Field(default=5000, gt=0)
    max_token_length: int = Field(default=2000, gt=0)
    exclude_secrets: bool = True


class ValidationIssues(BaseModel):
    """Risk flags derived from a file's content. Never mutated once computed."""

    model_config = ConfigDict(frozen=True)

    has_large_base64: bool = False
    base64_block_size_kb: float = 0.0
    has_long_lines: bool = False
    max_line_length: int = 0
    has_long_tokens: bool = False
    max_token_length: int = 0
    has_secrets: bool = False
    secret_types: tuple[str, ...] = ()
    is_minified: bool = False


class FileRecord(BaseModel):
    """Terminal artifact of the ingestion pipeline, consumed read-only by renderers.

    Attributes:
        relative_path: Path relative to the trusted root, POSIX separators.
        canonical_path: Absolute path of the file inside the root.
        size_bytes: File size on disk.
        content: File text (redacted when secret exclusion is on), or None.
        error_placeholder: Deterministic error text when validation failed, or None.
        issues: Validation flags computed for the content.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    relative_path: str = Field(..., description="File path relative to the root")
    canonical_path: Path = Field(..., description="Absolute file path")
    size_bytes: int = Field(..., ge=0, description="File size in bytes")
    content: str | None = Field(default=None, description="Validated file content")
    error_placeholder: str | None = Field(default=None, description="Validation error text")
    issues: ValidationIssues = Field(default_factory=ValidationIssues)

    @model_validator(mode="after")
    def _exactly_one_body(self) -> FileRecord:
        if (self.content is None) == (self.error_placeholder is None):
            msg = "exactly one of content and error_placeholder must be set"
            raise ValueError(msg)
        return self

    @computed_field
    @property
    def language(self) -> str:
        """Get the suggested code fence language based on the file extension."""
        return guess_language(self.relative_path)

    @computed_field
    @property
    def is_placeholder(self) -> bool:
        """Whether the record stands in for content that failed validation."""
        return self.error_placeholder is not None

    @property
    def body(self) -> str:
        """The text a renderer should emit for this file."""
        return self.error_placeholder if self.error_placeholder is not None else self.content or ""
