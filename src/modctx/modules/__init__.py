"""Module registry, scanning and resolution.

A module is a named subtree of the project. The registry records modules and
their dependencies; the resolver turns a name into a ModuleDescriptor holding
the module's files in stable order.
"""

from modctx.modules.models import FileEntry, ModuleDescriptor
from modctx.modules.registry import ModuleRegistry
from modctx.modules.resolver import ModuleResolver

__all__ = ["FileEntry", "ModuleDescriptor", "ModuleRegistry", "ModuleResolver"]
