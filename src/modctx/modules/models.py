"""Data models for resolved modules and their files."""

from __future__ import annotations

from pathlib import PurePosixPath

from pydantic import BaseModel, ConfigDict, Field


class FileEntry(BaseModel):
    """A single file belonging to a module."""

    model_config = ConfigDict(frozen=True)

    path: str  # relative to the module root, POSIX separators
    size_bytes: int = Field(ge=0)
    language: str = ""
    content: str = ""

    @property
    def directory(self) -> str:
        parent = str(PurePosixPath(self.path).parent)
        return "" if parent == "." else parent

    @property
    def line_count(self) -> int:
        return len(self.content.splitlines())


class ModuleDescriptor(BaseModel):
    """A resolved module: metadata plus its files in stored order.

    Read-only to the context pipeline. Files keep the order the resolver
    produced; nothing downstream re-sorts them.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    root_path: str
    description: str = ""
    files: tuple[FileEntry, ...] = ()
    dependencies: frozenset[str] = frozenset()

    @property
    def total_bytes(self) -> int:
        return sum(f.size_bytes for f in self.files)


# Language detection by file extension (fence tags in rendered contexts)
EXTENSION_LANGUAGE_MAP: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "jsx",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".rb": "ruby",
    ".java": "java",
    ".go": "go",
    ".rs": "rust",
    ".php": "php",
    ".cs": "csharp",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".h": "c",
    ".c": "c",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".json": "json",
    ".md": "markdown",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".toml": "toml",
    ".xml": "xml",
    ".sh": "bash",
    ".ps1": "powershell",
    ".sql": "sql",
    ".txt": "text",
}


def detect_language(file_path: str) -> str:
    """Detect language from file extension; empty string when unknown."""
    ext = PurePosixPath(file_path).suffix.lower()
    return EXTENSION_LANGUAGE_MAP.get(ext, "")
