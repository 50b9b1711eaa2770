"""Context assembly - renders a module descriptor as markdown at a detail level.

Section order is fixed:

  1. ``# Module: <name>`` header with description, root and dependencies
  2. ``## Structure``      per-directory file counts
  3. ``## Files``          one line per file
  4. ``## File Summaries`` (MEDIUM, HIGH) language, lines, size, lead line
  5. ``## File Contents``  (HIGH) fenced bodies, truncated past the ceiling

Every level renders the previous level's sections verbatim and appends to
them, so LOW ⊂ MEDIUM ⊂ HIGH and token estimates grow with the level.
"""

from __future__ import annotations

import re

from modctx.context.models import DetailLevel
from modctx.modules.models import FileEntry, ModuleDescriptor

# Shared with the optimizer, which locates file bodies by these headings
FILE_CONTENTS_HEADING = "## File Contents"
FILE_HEADING_RE = re.compile(r"^### (?P<path>.+) \((?P<size>[^()]*)\)$")
TRUNCATION_MARKER = "... [truncated: {shown:,} of {total:,} bytes shown]"

_LEAD_STRIP = " \t#/*-;\"'<>!"
_LEAD_MAX_CHARS = 100
_BACKTICK_RUN_RE = re.compile(r"`{3,}")


def format_size(size: int) -> str:
    """Format a byte count in human-readable form."""
    if size < 1024:
        return f"{size} B"
    elif size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


class ContextAssembler:
    """Renders canonical context bodies. Pure and deterministic.

    Usage:
        assembler = ContextAssembler(max_file_size_kb=100)
        body = assembler.assemble(descriptor, DetailLevel.HIGH)
    """

    def __init__(self, max_file_size_kb: int = 100) -> None:
        self.max_file_bytes = max_file_size_kb * 1024

    def assemble(self, descriptor: ModuleDescriptor, level: DetailLevel | str) -> str:
        """Render `descriptor` at `level`.

        Raises:
            InvalidLevel: `level` is not low, medium or high.
        """
        level = DetailLevel.parse(level)
        sections: list[str] = []

        sections.extend(self._render_header(descriptor))
        sections.extend(self._render_structure(descriptor))
        sections.extend(self._render_listing(descriptor))

        if level >= DetailLevel.MEDIUM:
            sections.extend(self._render_summaries(descriptor))

        if level >= DetailLevel.HIGH:
            sections.extend(self._render_contents(descriptor))

        return "\n".join(sections)

    # -------------------------------------------------------------------
    # LOW
    # -------------------------------------------------------------------

    def _render_header(self, descriptor: ModuleDescriptor) -> list[str]:
        lines = [f"# Module: {descriptor.name}", ""]
        if descriptor.description:
            lines.extend([descriptor.description, ""])
        deps = ", ".join(sorted(descriptor.dependencies)) or "none"
        lines.extend([
            f"- Root: {descriptor.root_path}",
            f"- Files: {len(descriptor.files)} ({format_size(descriptor.total_bytes)})",
            f"- Dependencies: {deps}",
            "",
        ])
        return lines

    def _render_structure(self, descriptor: ModuleDescriptor) -> list[str]:
        lines = ["## Structure", ""]
        counts: dict[str, int] = {}
        for f in descriptor.files:
            counts[f.directory] = counts.get(f.directory, 0) + 1

        if not counts:
            lines.append("*No files found*")
        for directory, count in counts.items():
            label = f"{directory}/" if directory else "./"
            lines.append(f"- {label}: {_plural(count, 'file')}")
        lines.append("")
        return lines

    def _render_listing(self, descriptor: ModuleDescriptor) -> list[str]:
        lines = ["## Files", ""]
        for f in descriptor.files:
            lines.append(f"- {f.path} ({format_size(f.size_bytes)})")
        if not descriptor.files:
            lines.append("*No files found*")
        lines.append("")
        return lines

    # -------------------------------------------------------------------
    # MEDIUM
    # -------------------------------------------------------------------

    def _render_summaries(self, descriptor: ModuleDescriptor) -> list[str]:
        lines = ["## File Summaries", ""]
        for f in descriptor.files:
            facts = [f.language or "text", _plural(f.line_count, "line"),
                     format_size(f.size_bytes)]
            entry = f"- {f.path} [{', '.join(facts)}]"
            lead = self._lead_line(f)
            if lead:
                entry += f": {lead}"
            lines.append(entry)
        lines.append("")
        return lines

    @staticmethod
    def _lead_line(f: FileEntry) -> str:
        """First line of the file carrying a word, stripped of comment markers."""
        for raw in f.content.splitlines():
            line = raw.strip().strip(_LEAD_STRIP).strip()
            if any(ch.isalnum() for ch in line):
                if len(line) > _LEAD_MAX_CHARS:
                    line = line[:_LEAD_MAX_CHARS].rstrip() + "..."
                return line
        return ""

    # -------------------------------------------------------------------
    # HIGH
    # -------------------------------------------------------------------

    def _render_contents(self, descriptor: ModuleDescriptor) -> list[str]:
        lines = [FILE_CONTENTS_HEADING, ""]
        for f in descriptor.files:
            body = self._capped_body(f)
            fence = self._fence_for(body)
            lines.append(f"### {f.path} ({format_size(f.size_bytes)})")
            lines.append("")
            lines.append(f"{fence}{f.language}")
            if body:
                lines.append(body)
            lines.append(fence)
            lines.append("")
        return lines

    def _capped_body(self, f: FileEntry) -> str:
        """File content cut at the size ceiling, ending on a line boundary."""
        content = f.content.rstrip("\n")
        encoded = content.encode("utf-8")
        if len(encoded) <= self.max_file_bytes:
            return content

        head = encoded[: self.max_file_bytes].decode("utf-8", errors="ignore")
        cut = head.rfind("\n")
        if cut > 0:
            head = head[:cut]
        shown = len(head.encode("utf-8"))
        marker = TRUNCATION_MARKER.format(shown=shown, total=f.size_bytes)
        return f"{head}\n{marker}"

    @staticmethod
    def _fence_for(body: str) -> str:
        """A backtick fence longer than any backtick run inside the body."""
        longest = max((len(m.group(0)) for m in _BACKTICK_RUN_RE.finditer(body)), default=2)
        return "`" * max(3, longest + 1)
