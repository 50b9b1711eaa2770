"""File collection for modules - walks a module root honoring exclusions."""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path

from modctx.config import IndexerConfig

logger = logging.getLogger("modctx.scanner")

_BINARY_SNIFF_BYTES = 8192


def collect_files(root: str | Path, config: IndexerConfig | None = None) -> list[Path]:
    """Collect all text files under `root`, respecting exclusion patterns.

    Broken symlinks are skipped with a warning. Any other OSError (a file
    that cannot be stat'ed or opened) propagates to the caller.

    Returns:
        Absolute paths sorted by relative path, so repeated scans are stable.
    """
    root = Path(root).resolve()
    if config is None:
        config = IndexerConfig()

    files = []
    max_size = config.max_file_size_kb * 1024

    all_exclude = list(config.exclude_patterns)
    if config.respect_gitignore:
        all_exclude += read_gitignore(root)

    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)

        # Prune excluded directories in place so os.walk skips them
        dirnames[:] = [
            d
            for d in dirnames
            if not should_exclude(os.path.join(rel_dir, d) if rel_dir != "." else d, all_exclude)
        ]

        for filename in filenames:
            rel_path = (
                os.path.join(rel_dir, filename) if rel_dir != "." else filename
            )

            if should_exclude(rel_path, all_exclude):
                continue

            full_path = Path(dirpath) / filename
            if full_path.is_symlink() and not full_path.exists():
                logger.warning(f"Skipping broken symlink: {full_path}")
                continue

            if full_path.stat().st_size > max_size:
                logger.debug(f"Skipping {rel_path}: larger than {config.max_file_size_kb} KB")
                continue

            if _is_binary(full_path):
                continue

            files.append(full_path)

    return sorted(files, key=lambda p: p.relative_to(root).as_posix())


def should_exclude(path: str, patterns: list[str]) -> bool:
    """Check if a path matches any exclusion pattern."""
    path_parts = Path(path).parts
    for pattern in patterns:
        # Check against full path
        if fnmatch.fnmatch(path, pattern):
            return True
        # Check against any path component
        for part in path_parts:
            if fnmatch.fnmatch(part, pattern):
                return True
    return False


def read_gitignore(root: Path) -> list[str]:
    """Read .gitignore patterns from a directory."""
    gitignore = root / ".gitignore"
    if not gitignore.exists():
        return []

    patterns = []
    try:
        for line in gitignore.read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#") and not line.startswith("!"):
                if line.endswith("/"):
                    line = line[:-1]
                patterns.append(line.lstrip("/"))
    except OSError:
        return []
    return patterns


def _is_binary(path: Path) -> bool:
    with path.open("rb") as fh:
        return b"\0" in fh.read(_BINARY_SNIFF_BYTES)


def detect_candidate_modules(
    root: str | Path, config: IndexerConfig | None = None
) -> list[dict]:
    """Propose modules from the top-level directories of a project.

    Every non-excluded top-level directory that contains at least one
    collectable file becomes a candidate. Returns dicts with name, path and
    file_count, ordered by name.
    """
    root = Path(root).resolve()
    if config is None:
        config = IndexerConfig()

    excludes = list(config.exclude_patterns)
    if config.respect_gitignore:
        excludes += read_gitignore(root)

    candidates = []
    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        if not entry.is_dir() or entry.name.startswith("."):
            continue
        if should_exclude(entry.name, excludes):
            continue
        files = collect_files(entry, config)
        if files:
            candidates.append({
                "name": entry.name,
                "path": entry.name,
                "file_count": len(files),
            })
    return candidates
