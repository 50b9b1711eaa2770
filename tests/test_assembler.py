"""Tests for context assembly."""

from __future__ import annotations

import pytest

from modctx.context.assembler import ContextAssembler, format_size
from modctx.context.models import DetailLevel, TokenEstimator
from modctx.exceptions import InvalidLevel
from modctx.modules.models import FileEntry, ModuleDescriptor


@pytest.fixture
def descriptor() -> ModuleDescriptor:
    return ModuleDescriptor(
        name="app",
        root_path="app",
        description="Application code",
        files=(
            FileEntry(
                path="main.py",
                size_bytes=30,
                language="python",
                content='"""Entry point."""\nprint(1)\n',
            ),
            FileEntry(
                path="api/routes.py",
                size_bytes=2048,
                language="python",
                content="# Routes for the HTTP API\n\ndef health():\n    return 'ok'\n",
            ),
            FileEntry(
                path="NOTES",
                size_bytes=12,
                language="",
                content="\n\n---\n",
            ),
        ),
        dependencies=frozenset({"lib", "core"}),
    )


class TestAssembleLevels:
    def test_low_header_and_structure(self, descriptor: ModuleDescriptor):
        body = ContextAssembler().assemble(descriptor, DetailLevel.LOW)
        lines = body.splitlines()

        assert lines[0] == "# Module: app"
        assert "Application code" in lines
        assert "- Root: app" in lines
        assert "- Files: 3 (2.0 KB)" in lines
        assert "- Dependencies: core, lib" in lines
        assert "- ./: 2 files" in lines
        assert "- api/: 1 file" in lines
        assert "- api/routes.py (2.0 KB)" in lines
        assert "## File Summaries" not in body
        assert "## File Contents" not in body

    def test_directories_in_first_seen_order(self, descriptor: ModuleDescriptor):
        body = ContextAssembler().assemble(descriptor, "low")
        assert body.index("- ./: 2 files") < body.index("- api/: 1 file")

    def test_files_keep_stored_order(self, descriptor: ModuleDescriptor):
        body = ContextAssembler().assemble(descriptor, "low")
        assert body.index("- main.py") < body.index("- api/routes.py") < body.index("- NOTES")

    def test_medium_adds_summaries(self, descriptor: ModuleDescriptor):
        body = ContextAssembler().assemble(descriptor, DetailLevel.MEDIUM)
        lines = body.splitlines()

        assert "## File Summaries" in lines
        assert "- main.py [python, 2 lines, 30 B]: Entry point." in lines
        assert "- api/routes.py [python, 4 lines, 2.0 KB]: Routes for the HTTP API" in lines
        # No word anywhere in the file: no lead line
        assert "- NOTES [text, 3 lines, 12 B]" in lines
        assert "## File Contents" not in body

    def test_high_adds_fenced_contents(self, descriptor: ModuleDescriptor):
        body = ContextAssembler().assemble(descriptor, DetailLevel.HIGH)
        lines = body.splitlines()

        assert "## File Contents" in lines
        i = lines.index("### main.py (30 B)")
        assert lines[i + 1] == ""
        assert lines[i + 2] == "```python"
        assert lines[i + 3] == '"""Entry point."""'
        assert lines[i + 4] == "print(1)"
        assert lines[i + 5] == "```"

    def test_levels_are_textual_prefixes(self, descriptor: ModuleDescriptor):
        assembler = ContextAssembler()
        low = assembler.assemble(descriptor, "low")
        medium = assembler.assemble(descriptor, "medium")
        high = assembler.assemble(descriptor, "high")

        assert medium.startswith(low)
        assert high.startswith(medium)
        assert (
            TokenEstimator.estimate(low)
            < TokenEstimator.estimate(medium)
            < TokenEstimator.estimate(high)
        )

    def test_deterministic(self, descriptor: ModuleDescriptor):
        assembler = ContextAssembler()
        assert assembler.assemble(descriptor, "high") == assembler.assemble(descriptor, "high")

    def test_invalid_level(self, descriptor: ModuleDescriptor):
        with pytest.raises(InvalidLevel):
            ContextAssembler().assemble(descriptor, "extreme")

    def test_empty_module(self):
        empty = ModuleDescriptor(name="empty", root_path="empty")
        body = ContextAssembler().assemble(empty, "high")
        assert "- Dependencies: none" in body
        assert "*No files found*" in body


class TestFileContents:
    def test_fence_longer_than_inner_backticks(self):
        readme = FileEntry(
            path="README.md",
            size_bytes=40,
            language="markdown",
            content="Usage:\n\n```bash\nmake\n```\n",
        )
        descriptor = ModuleDescriptor(name="docs", root_path="docs", files=(readme,))
        lines = ContextAssembler().assemble(descriptor, "high").splitlines()

        i = lines.index("### README.md (40 B)")
        assert lines[i + 2] == "````markdown"
        assert "````" in lines[i + 3:]

    def test_truncates_past_size_ceiling(self):
        content = ("x" * 49 + "\n") * 40
        big = FileEntry(path="big.txt", size_bytes=2000, language="text", content=content)
        descriptor = ModuleDescriptor(name="big", root_path="big", files=(big,))
        body = ContextAssembler(max_file_size_kb=1).assemble(descriptor, "high")

        assert "... [truncated: 999 of 2,000 bytes shown]" in body
        assert body.count("x" * 49) == 20

    def test_small_files_not_truncated(self):
        small = FileEntry(path="a.py", size_bytes=10, language="python", content="a = 1\n")
        descriptor = ModuleDescriptor(name="m", root_path="m", files=(small,))
        body = ContextAssembler(max_file_size_kb=1).assemble(descriptor, "high")
        assert "truncated" not in body


class TestFormatSize:
    def test_units(self):
        assert format_size(512) == "512 B"
        assert format_size(2048) == "2.0 KB"
        assert format_size(3 * 1024 * 1024) == "3.0 MB"
