"""Budget-driven context optimization.

Passes run in order of increasing information loss, each re-measured with
the token estimator, and the optimizer stops as soon as the body fits:

  1. collapse_whitespace  strip trailing blanks, squeeze blank-line runs
  2. truncate_fences      keep the first/last N lines of long code fences
  3. demote_files         replace file bodies with path+size stubs,
                          largest first

A pass is kept only if it lowers the estimate, so the result never costs
more than the input. If every pass is exhausted the most-reduced body is
returned anyway (best effort); failing to fit is not an error.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from modctx.context.assembler import FILE_HEADING_RE
from modctx.context.models import OptimizationResult, PassRecord, TokenEstimator
from modctx.exceptions import InvalidBudget

logger = logging.getLogger("modctx.optimizer")

_FENCE_OPEN_RE = re.compile(r"^\s*(?P<fence>`{3,})[^`]*$")
ELISION_MARKER = "... [{count} lines elided] ..."
OMISSION_MARKER = "*[content omitted: {count} lines]*"
_ELISION_RE = re.compile(r"^\.\.\. \[(?P<count>\d+) lines elided\] \.\.\.$")


@dataclass
class _Fence:
    """Line span of a fenced block: opening line, closing line (inclusive)."""

    start: int
    end: int

    @property
    def interior(self) -> int:
        return self.end - self.start - 1


def _find_fences(lines: list[str]) -> list[_Fence]:
    """Locate fenced blocks. An unclosed fence runs to the end of the text."""
    fences = []
    i = 0
    while i < len(lines):
        m = _FENCE_OPEN_RE.match(lines[i])
        if not m:
            i += 1
            continue
        width = len(m.group("fence"))
        j = i + 1
        while j < len(lines):
            closing = lines[j].strip()
            if len(closing) >= width and set(closing) == {"`"}:
                break
            j += 1
        fences.append(_Fence(i, j))
        i = j + 1
    return fences


def _source_lines(interior: list[str]) -> int:
    """Lines a fence held before truncation: elision markers count for what they hid."""
    count = 0
    for line in interior:
        m = _ELISION_RE.match(line)
        count += int(m.group("count")) if m else 1
    return count


class ContextOptimizer:
    """Reduces a rendered context to fit a token budget.

    Usage:
        optimizer = ContextOptimizer(fence_line_cap=120, fence_keep_lines=20)
        result = optimizer.optimize(body, token_budget=4000)
        print(result.final_tokens, result.reduction_percent)
    """

    def __init__(
        self,
        fence_line_cap: int = 120,
        fence_keep_lines: int = 20,
        estimator: type[TokenEstimator] = TokenEstimator,
    ) -> None:
        self.fence_line_cap = fence_line_cap
        self.fence_keep_lines = fence_keep_lines
        self.estimator = estimator

    def optimize(self, raw_body: str, token_budget: int) -> OptimizationResult:
        """Optimize `raw_body` towards `token_budget` tokens.

        Returns the body unchanged (reduction 0) when it already fits.
        """
        if isinstance(token_budget, bool) or not isinstance(token_budget, int) or token_budget <= 0:
            raise InvalidBudget(token_budget)

        original = self.estimator.estimate(raw_body)
        if original <= token_budget:
            return OptimizationResult(
                body=raw_body, original_tokens=original, final_tokens=original
            )

        body = raw_body
        tokens = original
        passes: list[PassRecord] = []

        for name, apply in (
            ("collapse_whitespace", self._collapse_whitespace),
            ("truncate_fences", self._truncate_fences),
        ):
            candidate = apply(body)
            candidate_tokens = self.estimator.estimate(candidate)
            if 0 < candidate_tokens < tokens:
                passes.append(PassRecord(
                    name=name, tokens_before=tokens, tokens_after=candidate_tokens
                ))
                body, tokens = candidate, candidate_tokens
            if tokens <= token_budget:
                break

        if tokens > token_budget:
            demoted, demoted_tokens = self._demote_files(body, tokens, token_budget)
            if demoted_tokens < tokens:
                passes.append(PassRecord(
                    name="demote_files", tokens_before=tokens, tokens_after=demoted_tokens
                ))
                body, tokens = demoted, demoted_tokens

        if tokens > token_budget:
            logger.info(
                f"Context still exceeds budget after all passes "
                f"({tokens} > {token_budget} tokens)"
            )

        return OptimizationResult(
            body=body,
            original_tokens=original,
            final_tokens=tokens,
            reduction_percent=(original - tokens) / original * 100,
            passes=passes,
            fits=tokens <= token_budget,
        )

    # -------------------------------------------------------------------
    # Pass 1: whitespace
    # -------------------------------------------------------------------

    @staticmethod
    def _collapse_whitespace(body: str) -> str:
        out: list[str] = []
        previous_blank = False
        for line in body.split("\n"):
            line = line.rstrip()
            if not line:
                if previous_blank:
                    continue
                previous_blank = True
            else:
                previous_blank = False
            out.append(line)
        return "\n".join(out).strip("\n")

    # -------------------------------------------------------------------
    # Pass 2: long fences
    # -------------------------------------------------------------------

    def _truncate_fences(self, body: str) -> str:
        lines = body.split("\n")
        keep = self.fence_keep_lines
        out: list[str] = []
        cursor = 0

        for fence in _find_fences(lines):
            interior = fence.interior
            if interior <= self.fence_line_cap or interior <= 2 * keep + 1:
                continue
            first = fence.start + 1
            last = fence.end  # exclusive bound of the interior
            out.extend(lines[cursor:first + keep])
            out.append(ELISION_MARKER.format(count=interior - 2 * keep))
            out.extend(lines[last - keep:last])
            cursor = last

        out.extend(lines[cursor:])
        return "\n".join(out)

    # -------------------------------------------------------------------
    # Pass 3: demote file bodies
    # -------------------------------------------------------------------

    def _demote_files(self, body: str, tokens: int, token_budget: int) -> tuple[str, int]:
        """Swap file bodies for stubs, largest first, until the budget is met."""
        lines = body.split("\n")
        fences = {f.start: f for f in _find_fences(lines)}

        # Segment the body: plain runs of lines and demotable file sections
        segments: list[list[str]] = []
        sections: list[tuple[int, int]] = []  # (segment index, interior lines)
        plain: list[str] = []
        i = 0
        while i < len(lines):
            fence = fences.get(i + 2)
            if (
                fence is not None
                and FILE_HEADING_RE.match(lines[i])
                and not lines[i + 1].strip()
            ):
                if plain:
                    segments.append(plain)
                    plain = []
                end = min(fence.end, len(lines) - 1)
                segments.append(lines[i:end + 1])
                interior = lines[fence.start + 1:fence.end]
                sections.append((len(segments) - 1, _source_lines(interior)))
                i = end + 1
            else:
                plain.append(lines[i])
                i += 1
        if plain:
            segments.append(plain)

        if not sections:
            return body, tokens

        sizes = {
            idx: self.estimator.estimate("\n".join(segments[idx])) for idx, _ in sections
        }
        order = sorted(sections, key=lambda s: (-sizes[s[0]], s[0]))

        for idx, interior in order:
            original_segment = segments[idx]
            segments[idx] = [
                original_segment[0],
                "",
                OMISSION_MARKER.format(count=interior),
            ]
            candidate = "\n".join(line for seg in segments for line in seg)
            candidate_tokens = self.estimator.estimate(candidate)
            if candidate_tokens < tokens:
                body, tokens = candidate, candidate_tokens
            else:
                segments[idx] = original_segment
            if tokens <= token_budget:
                break

        return body, tokens
