"""Dependency graph over declared resources."""
from typing import Dict, List, Sequence

from ..errors import CyclicDependency, InvalidConfiguration
from ..manifest.schema import ResourceSpec

UNVISITED, VISITING, DONE = 0, 1, 2


class DependencyGraph:
    """Directed acyclic graph of ResourceSpecs.

    Edges come from explicit `dependsOn`, `parent` links and output
    references inside the property bag. An edge A -> B means A depends on B.
    """

    def __init__(self, specs: Sequence[ResourceSpec]):
        """Build the graph.

        Args:
            specs: Specs in declaration order.

        Raises:
            InvalidConfiguration: If a spec depends on an unknown name.
        """
        self.specs = list(specs)
        self._index = {spec.logical_name: i for i, spec in enumerate(self.specs)}
        self._edges: Dict[str, List[str]] = {}
        self._reverse: Dict[str, List[str]] = {spec.logical_name: [] for spec in self.specs}

        for spec in self.specs:
            deps = spec.dependency_names()
            for dep in deps:
                if dep not in self._index:
                    raise InvalidConfiguration(f"{spec.logical_name}: depends on unknown resource '{dep}'")
            # Declaration order keeps the walk deterministic
            self._edges[spec.logical_name] = sorted(deps, key=self._index.__getitem__)

        for spec in self.specs:
            for dep in self._edges[spec.logical_name]:
                self._reverse[dep].append(spec.logical_name)

    def dependencies(self, name: str) -> List[str]:
        """Direct dependencies of `name`, in declaration order."""
        return list(self._edges[name])

    def dependents(self, name: str) -> List[str]:
        """Specs that directly depend on `name`, in declaration order."""
        return list(self._reverse[name])

    def order(self) -> List[ResourceSpec]:
        """Compute a creation order.

        Iterative depth-first walk with a visiting/done state per node. Roots
        and dependencies are taken in declaration order, so the same input
        always yields the same order.

        Returns:
            List[ResourceSpec]: Specs with every dependency before its dependents.

        Raises:
            CyclicDependency: If the graph contains a cycle.
        """
        state = {spec.logical_name: UNVISITED for spec in self.specs}
        ordered: List[str] = []

        for spec in self.specs:
            root = spec.logical_name
            if state[root] != UNVISITED:
                continue

            state[root] = VISITING
            path = [root]
            stack = [(root, iter(self._edges[root]))]

            while stack:
                node, pending = stack[-1]
                descended = False
                for dep in pending:
                    if state[dep] == VISITING:
                        raise CyclicDependency(path[path.index(dep):] + [dep])
                    if state[dep] == UNVISITED:
                        state[dep] = VISITING
                        path.append(dep)
                        stack.append((dep, iter(self._edges[dep])))
                        descended = True
                        break
                if not descended:
                    stack.pop()
                    path.pop()
                    state[node] = DONE
                    ordered.append(node)

        return [self.specs[self._index[name]] for name in ordered]
