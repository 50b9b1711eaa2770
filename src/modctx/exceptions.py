"""Custom exceptions for modctx."""


class ModCtxError(Exception):
    """Base exception for all modctx errors.

    Every subclass carries a stable ``code`` so callers (CLI, MCP clients)
    can branch on the failure kind without parsing messages.
    """

    code = "modctx_error"


class ConfigError(ModCtxError):
    """Configuration-related errors."""

    code = "config_error"


class RegistryError(ModCtxError):
    """Invalid module registry operations (duplicates, bad paths, ...)."""

    code = "registry_error"


class StorageError(ModCtxError):
    """Context store read/write failures."""

    code = "storage_error"


class ModuleNotFound(ModCtxError):
    """Raised when a module name is not registered."""

    code = "module_not_found"

    def __init__(self, name: str):
        self.module_name = name
        super().__init__(f"Module '{name}' not found")


class InvalidLevel(ModCtxError, ValueError):
    """Raised when a detail level is outside low/medium/high."""

    code = "invalid_level"

    def __init__(self, level: object):
        self.level = level
        super().__init__(
            f"Invalid detail level: {level!r}. Valid levels are: low, medium, high"
        )


class InvalidBudget(ModCtxError, ValueError):
    """Raised when a token budget is not a positive integer."""

    code = "invalid_budget"

    def __init__(self, budget: object):
        self.budget = budget
        super().__init__(f"Token budget must be a positive integer, got {budget!r}")


class ResolverUnavailable(ModCtxError):
    """The module registry or the file system behind it failed."""

    code = "resolver_unavailable"
