"""Module registry - named subtrees of a project and their dependencies.

The registry is backed by the ``modules`` list of the project configuration
and persists every change through ``save_config``. Dependencies between
modules form a directed graph (``networkx``) used to order bulk generation
so a module's dependencies are rendered before it.
"""

from __future__ import annotations

import logging
from pathlib import Path

import networkx as nx

from modctx.config import ModuleConfig, ProjectConfig, save_config
from modctx.exceptions import ModuleNotFound, RegistryError

logger = logging.getLogger("modctx.registry")


class ModuleRegistry:
    """CRUD over registered modules, dependencies and the current focus."""

    def __init__(self, root: Path, config: ProjectConfig, autosave: bool = True) -> None:
        self.root = Path(root)
        self.config = config
        self.autosave = autosave

    def _save(self) -> None:
        if self.autosave:
            save_config(self.root, self.config)

    # -------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------

    def list_modules(self) -> list[ModuleConfig]:
        return list(self.config.modules)

    def has_module(self, name: str) -> bool:
        return any(m.name == name for m in self.config.modules)

    def get_module(self, name: str) -> ModuleConfig:
        for module in self.config.modules:
            if module.name == name:
                return module
        raise ModuleNotFound(name)

    def module_root(self, name: str) -> Path:
        """Absolute root directory of a module."""
        module = self.get_module(name)
        path = Path(module.path)
        return path if path.is_absolute() else self.root / path

    # -------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------

    def add_module(
        self,
        name: str,
        path: str,
        description: str = "",
        dependencies: list[str] | tuple[str, ...] = (),
    ) -> ModuleConfig:
        """Register a module rooted at `path` (absolute or project-relative).

        Every dependency is validated before anything is saved, so a failed
        call leaves the registry untouched.
        """
        if not name or not name.strip():
            raise RegistryError("Module name cannot be empty")
        if not path or not path.strip():
            raise RegistryError("Module path cannot be empty")

        full_path = Path(path) if Path(path).is_absolute() else self.root / path
        if not full_path.is_dir():
            raise RegistryError(f"Module path does not exist: {path}")
        if self.has_module(name):
            raise RegistryError(f"Module with name '{name}' already exists")

        deps: list[str] = []
        for dep in dependencies:
            if dep == name:
                raise RegistryError(f"Module '{name}' cannot depend on itself")
            self.get_module(dep)
            if dep not in deps:
                deps.append(dep)

        module = ModuleConfig(
            name=name,
            path=path,
            description=description or f"Module at {path}",
            dependencies=deps,
        )
        self.config.modules.append(module)
        self._save()
        logger.info(f"Registered module '{name}' at {path}")
        return module

    def remove_module(self, name: str) -> None:
        """Unregister a module and drop it from every dependency list."""
        self.get_module(name)
        self.config.modules = [m for m in self.config.modules if m.name != name]
        for module in self.config.modules:
            if name in module.dependencies:
                module.dependencies.remove(name)
        if self.config.focus == name:
            self.config.focus = None
        self._save()
        logger.info(f"Removed module '{name}'")

    def add_dependency(self, module_name: str, dependency_name: str) -> bool:
        """Record that `module_name` depends on `dependency_name`.

        Returns False when the dependency was already recorded.
        """
        module = self.get_module(module_name)
        self.get_module(dependency_name)
        if module_name == dependency_name:
            raise RegistryError(f"Module '{module_name}' cannot depend on itself")
        if dependency_name in module.dependencies:
            return False
        module.dependencies.append(dependency_name)
        self._save()
        return True

    def remove_dependency(self, module_name: str, dependency_name: str) -> bool:
        """Drop a dependency. Returns False when it was not recorded."""
        module = self.get_module(module_name)
        if dependency_name not in module.dependencies:
            return False
        module.dependencies.remove(dependency_name)
        self._save()
        return True

    # -------------------------------------------------------------------
    # Dependencies
    # -------------------------------------------------------------------

    def get_dependencies(self, name: str) -> dict:
        """Dependencies of a module and the modules that depend on it."""
        module = self.get_module(name)
        dependents = [
            m.name for m in self.config.modules if name in m.dependencies
        ]
        return {
            "module": name,
            "dependencies": list(module.dependencies),
            "dependents": dependents,
        }

    def dependency_graph(self) -> nx.DiGraph:
        """Graph with an edge dependency -> dependent for every recorded dependency."""
        graph = nx.DiGraph()
        for module in self.config.modules:
            graph.add_node(module.name)
        for module in self.config.modules:
            for dep in module.dependencies:
                if graph.has_node(dep):
                    graph.add_edge(dep, module.name)
        return graph

    def generation_order(self) -> list[str]:
        """Module names ordered so dependencies come before dependents.

        Cycles are collapsed into strongly connected components; members of a
        component keep their registration order.
        """
        graph = self.dependency_graph()
        position = {m.name: i for i, m in enumerate(self.config.modules)}
        try:
            return list(
                nx.lexicographical_topological_sort(graph, key=lambda n: position[n])
            )
        except nx.NetworkXUnfeasible:
            logger.warning("Dependency cycle detected between modules")
            return self._scc_order(graph, position)

    @staticmethod
    def _scc_order(graph: nx.DiGraph, position: dict[str, int]) -> list[str]:
        """Handle cycles via SCC condensation + topological sort of the SCC DAG."""
        condensed = nx.condensation(graph)
        members = condensed.graph["mapping"]
        first_seen = {}
        for node, scc in members.items():
            first_seen[scc] = min(first_seen.get(scc, position[node]), position[node])

        ordered = []
        for scc in nx.lexicographical_topological_sort(
            condensed, key=lambda s: first_seen[s]
        ):
            ordered.extend(
                sorted(condensed.nodes[scc]["members"], key=lambda n: position[n])
            )
        return ordered

    # -------------------------------------------------------------------
    # Focus
    # -------------------------------------------------------------------

    def set_focus(self, name: str | None) -> ModuleConfig | None:
        """Set (or clear, with None) the focused module."""
        if not name:
            self.config.focus = None
            self._save()
            return None
        module = self.get_module(name)
        self.config.focus = name
        self._save()
        return module

    def get_focus(self) -> ModuleConfig | None:
        """The focused module, or None. A stale focus is cleared."""
        if not self.config.focus:
            return None
        try:
            return self.get_module(self.config.focus)
        except ModuleNotFound:
            self.config.focus = None
            self._save()
            return None
