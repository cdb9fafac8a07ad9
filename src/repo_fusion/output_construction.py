from __future__ import annotations

import html
import io
import re
from typing import TYPE_CHECKING, Any

from repo_fusion.budget import check_total_size
from repo_fusion.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from repo_fusion.config import FileRecord
    from repo_fusion.hooks import HookRunner
    from repo_fusion.settings import Settings

    Renderer = Callable[[Sequence[FileRecord], str, HookRunner | None], str]

DOCUMENT_TITLE = "Generated Project Fusion File"
TEXT_RULE = "<!-- " + "=" * 60 + " -->"
VALIDATION_ERROR_LABEL = "Content Validation Error"
CONTENT_SECURITY_POLICY = "default-src 'none'; style-src 'unsafe-inline'; img-src data:"

_HTML_STYLE = """
body { font-family: system-ui, sans-serif; margin: 2rem auto; max-width: 72rem; color: #222; }
pre { background: #f6f8fa; padding: 1rem; overflow-x: auto; border-radius: 4px; }
nav ul { columns: 2; }
.file-section { margin-bottom: 2rem; }
.error-section { background: #fee; border-left: 4px solid #c00; padding: 0.5rem 1rem; }
""".strip()


def build_tree_lines(root_name: str, rel_paths: Sequence[str]) -> list[str]:
    """Build a visual tree representation of file paths.

    Args:
        root_name (str): the name to use for the root of the tree
        rel_paths (Sequence[str]): file paths relative to the root, POSIX separators (e.g. "src/main.py")

    Returns:
        list[str]: one string per tree line, directories first at each level
    """
    rels = sorted({p.strip("/") for p in rel_paths if p.strip("/")}, key=str.lower)
    tree: dict[str, Any] = {}
    for rp in rels:
        cur = tree
        *dirs, leaf = rp.split("/")
        for part in dirs:
            cur = cur.setdefault(part, {})
        cur.setdefault("__files__", set()).add(leaf)

    lines: list[str] = [root_name]

    def walk(node: dict[str, Any], prefix: str) -> None:
        dirs = sorted((k for k in node if k != "__files__"), key=str.lower)
        files = sorted(node.get("__files__", set()), key=str.lower)
        entries = [(d, node[d]) for d in dirs] + [(f, None) for f in files]
        for idx, (name, child) in enumerate(entries):
            last = idx == len(entries) - 1
            lines.append(prefix + ("└── " if last else "├── ") + name + ("/" if child is not None else ""))
            if child is not None:
                walk(child, prefix + ("    " if last else "│   "))

    walk(tree, "")
    return lines


def make_anchors(records: Sequence[FileRecord]) -> list[str]:
    """One unique, lowercase, ASCII anchor per record, in record order."""
    anchors: list[str] = []
    seen: dict[str, int] = {}
    for rec in records:
        base = re.sub(r"[^a-zA-Z0-9]", "-", rec.relative_path).lower()
        count = seen.get(base, 0)
        seen[base] = count + 1
        anchors.append(base if count == 0 else f"{base}-{count}")
    return anchors


def markdown_fence(content: str) -> str:
    """A backtick fence longer than any backtick run in ``content``."""
    longest = max((len(run) for run in re.findall(r"`+", content)), default=0)
    return "`" * max(3, longest + 1)


def _escape_link_text(text: str) -> str:
    return re.sub(r"([\\\[\]])", r"\\\1", text)


def _after(hooks: HookRunner | None, rec: FileRecord, block: str) -> str:
    return hooks.after_file(rec, block) if hooks else block


def render_text(records: Sequence[FileRecord], title: str, hooks: HookRunner | None = None) -> str:
    """Plain text document: a short header, then each file between comment rules."""
    out = io.StringIO()
    out.write(f"# {DOCUMENT_TITLE}\n")
    out.write(f"# Project: {title}\n")
    out.write(f"# Files: {len(records)}\n\n")
    for rec in records:
        block = f"{TEXT_RULE}\n<!-- FILE: {rec.relative_path:<54} -->\n{TEXT_RULE}\n{rec.body}\n\n"
        out.write(_after(hooks, rec, block))
    return out.getvalue()


def render_markdown(records: Sequence[FileRecord], title: str, hooks: HookRunner | None = None) -> str:
    """Markdown document with a table of contents, a structure tree and one section per file.

    Files that failed validation get a warning heading and their placeholder in
    a plain text block, so the placeholder text stays verbatim.
    """
    anchors = make_anchors(records)
    out = io.StringIO()
    out.write(f"# {DOCUMENT_TITLE}\n\n")
    out.write(f"**Project:** {title}\n\n")
    out.write(f"**Files:** {len(records)}\n\n")
    out.write("---\n\n")

    out.write("## 📁 Table of Contents\n\n")
    for rec, anchor in zip(records, anchors, strict=True):
        out.write(f"- [{_escape_link_text(rec.relative_path)}](#{anchor})\n")
    out.write("\n")

    out.write("## 🌳 Structure\n\n")
    out.write("```text\n")
    out.write("\n".join(build_tree_lines(title, [r.relative_path for r in records])))
    out.write("\n```\n\n---\n\n")

    for rec, anchor in zip(records, anchors, strict=True):
        fence = markdown_fence(rec.body)
        if rec.error_placeholder is not None:
            block = (
                f'<a id="{anchor}"></a>\n\n'
                f"## ⚠️ {rec.relative_path}\n\n"
                f"> **{VALIDATION_ERROR_LABEL}**\n\n"
                f"{fence}text\n{rec.error_placeholder}\n{fence}\n\n"
            )
        else:
            block = (
                f'<a id="{anchor}"></a>\n\n'
                f"## 📄 {rec.relative_path}\n\n"
                f"{fence}{rec.language}\n{rec.body}\n{fence}\n\n"
            )
        out.write(_after(hooks, rec, block))

    return out.getvalue().rstrip() + "\n"


def render_html(records: Sequence[FileRecord], title: str, hooks: HookRunner | None = None) -> str:
    """Standalone HTML page. Every piece of file or path text is escaped."""
    anchors = make_anchors(records)
    esc_title = html.escape(title)
    out = io.StringIO()
    out.write("<!DOCTYPE html>\n<html lang=\"en\">\n<head>\n")
    out.write('<meta charset="utf-8">\n')
    out.write(f'<meta http-equiv="Content-Security-Policy" content="{CONTENT_SECURITY_POLICY}">\n')
    out.write('<meta name="viewport" content="width=device-width, initial-scale=1">\n')
    out.write(f"<title>{esc_title} - {DOCUMENT_TITLE}</title>\n")
    out.write(f"<style>\n{_HTML_STYLE}\n</style>\n</head>\n<body>\n")
    out.write(f"<h1>{DOCUMENT_TITLE}</h1>\n")
    out.write(f"<p><strong>Project:</strong> {esc_title}</p>\n")
    out.write(f"<p><strong>Files:</strong> {len(records)}</p>\n")

    out.write("<nav>\n<h2>Table of Contents</h2>\n<ul>\n")
    for rec, anchor in zip(records, anchors, strict=True):
        out.write(f'<li><a href="#{anchor}">{html.escape(rec.relative_path)}</a></li>\n')
    out.write("</ul>\n</nav>\n")

    for rec, anchor in zip(records, anchors, strict=True):
        path = html.escape(rec.relative_path)
        if rec.error_placeholder is not None:
            block = (
                f'<section class="file-section error-section" id="{anchor}" role="alert">\n'
                f"<h2>⚠️ {path}</h2>\n"
                f"<p><strong>{VALIDATION_ERROR_LABEL}</strong></p>\n"
                f"<pre>{html.escape(rec.error_placeholder)}</pre>\n"
                "</section>\n"
            )
        else:
            lang = f' class="language-{rec.language}"' if rec.language else ""
            block = (
                f'<section class="file-section" id="{anchor}">\n'
                f"<h2>{path}</h2>\n"
                f"<pre><code{lang}>{html.escape(rec.body)}</code></pre>\n"
                "</section>\n"
            )
        out.write(_after(hooks, rec, block))

    out.write("</body>\n</html>\n")
    return out.getvalue()


RENDERERS: dict[str, Renderer] = {
    "txt": render_text,
    "md": render_markdown,
    "html": render_html,
}


def write_outputs(
    records: Sequence[FileRecord],
    settings: Settings,
    title: str,
    hooks: HookRunner | None = None,
) -> dict[str, Path]:
    """Render every configured format and write the documents.

    All documents are rendered and size-checked before any file is written, so
    an oversized output leaves nothing half written.

    Args:
        records (Sequence[FileRecord]): ordered records from a successful run
        settings (Settings): formats, output location and size ceiling
        title (str): project name shown in the headers
        hooks (HookRunner | None): hooks applied to each rendered file block

    Raises:
        SizeLimitExceededError: If a rendered document is above ``max_total_size_mb``.

    Returns:
        dict[str, Path]: the written file for each format
    """
    documents: dict[str, tuple[Path, str]] = {}
    for fmt, path in settings.output_paths().items():
        document = RENDERERS[fmt](records, title, hooks)
        check_total_size(len(document.encode("utf-8")), settings.max_total_size_mb)
        documents[fmt] = (path, document)

    written: dict[str, Path] = {}
    for fmt, (path, document) in documents.items():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(document, encoding="utf-8")
        logger.info("output_written", format=fmt, path=str(path), bytes=len(document.encode("utf-8")))
        written[fmt] = path
    return written
