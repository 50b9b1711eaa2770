"""Data models for module context generation."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from modctx.exceptions import InvalidLevel


class DetailLevel(str, Enum):
    """How much file content a rendered context includes.

    Ordered by verbosity: LOW < MEDIUM < HIGH.
    """

    LOW = "low"  # Structure only
    MEDIUM = "medium"  # Structure + per-file summaries
    HIGH = "high"  # Full file bodies, capped per file

    @classmethod
    def parse(cls, value: object) -> DetailLevel:
        """Coerce a member or a case-insensitive name, rejecting anything else."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidLevel(value)

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, DetailLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, DetailLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, DetailLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, DetailLevel):
            return NotImplemented
        return self.rank >= other.rank


_LEVEL_RANK = {DetailLevel.LOW: 0, DetailLevel.MEDIUM: 1, DetailLevel.HIGH: 2}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContextArtifact(BaseModel):
    """An assembled (and possibly optimized) context for one module/level.

    Frozen: regeneration produces a new artifact, never a mutation.
    """

    model_config = ConfigDict(frozen=True)

    module_name: str
    level: DetailLevel
    body: str
    token_count: int = Field(ge=0)
    optimized: bool = False
    reduction_percent: float | None = Field(default=None, ge=0, lt=100)
    original_tokens: int | None = None  # Pre-optimization count, set when optimized
    generated_at: datetime = Field(default_factory=_utcnow)


class PassRecord(BaseModel):
    """Accounting for one optimizer pass that changed the body."""

    name: str
    tokens_before: int
    tokens_after: int

    @property
    def saved(self) -> int:
        return self.tokens_before - self.tokens_after


class OptimizationResult(BaseModel):
    """Output of the context optimizer."""

    body: str
    original_tokens: int
    final_tokens: int
    reduction_percent: float = 0.0
    passes: list[PassRecord] = Field(default_factory=list)
    fits: bool = True


class GenerationResult(BaseModel):
    """Result of generating (or fetching) a module context."""

    module_name: str
    level: DetailLevel
    token_count: int
    from_cache: bool
    context: str
    generation: int = 0


class ExportResult(BaseModel):
    """A module context prepared for hand-off to a language model client."""

    module_name: str
    level: DetailLevel
    token_count: int
    optimized: bool
    context: str
    token_budget: int
    reduction_percent: float | None = None
    original_tokens: int | None = None
    passes: list[PassRecord] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)


class TokenEstimator:
    """Estimate token counts for rendered contexts.

    Prose costs one token per 4 characters. Fence lines and everything inside
    a fenced code block cost one token per 3.5 characters, since code
    tokenizes denser than English. Fence state is tracked left to right, so
    extending a text never lowers its estimate.
    """

    FENCE = "```"
    # Integer weights keep the arithmetic exact: 7/28 = 1/4, 8/28 = 1/3.5
    PROSE_UNITS = 7
    CODE_UNITS = 8
    UNITS_PER_TOKEN = 28

    @classmethod
    def estimate(cls, text: str) -> int:
        """Estimate token count for a string. Empty text is 0 tokens."""
        if not text:
            return 0

        units = 0
        in_fence = False
        for line in text.splitlines(keepends=True):
            if line.lstrip().startswith(cls.FENCE):
                units += len(line) * cls.CODE_UNITS
                in_fence = not in_fence
            elif in_fence:
                units += len(line) * cls.CODE_UNITS
            else:
                units += len(line) * cls.PROSE_UNITS

        return -(-units // cls.UNITS_PER_TOKEN)

    @classmethod
    def fits(cls, text: str, token_budget: int) -> bool:
        return cls.estimate(text) <= token_budget
