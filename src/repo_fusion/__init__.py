"""repo_fusion: merge a source tree into shareable text, Markdown and HTML documents."""

__version__ = "0.3.0"
