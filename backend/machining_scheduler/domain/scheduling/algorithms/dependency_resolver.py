"""
Dependency Resolution and Critical Path Method (CPM)

Builds the dependency graph of a process-instance batch, detects cycles,
groups instances into topological levels and computes CPM timing
(earliest/latest start, slack, critical path). Durations are in minutes and
measured relative to the start of the batch.
"""

import logging
import time
from dataclasses import dataclass, field

from ...shared.exceptions import CircularDependencyError, DependencyError
from ..entities.process_instance import ProcessInstance
from ..entities.schedule_entry import Conflict

logger = logging.getLogger(__name__)

CRITICAL_SLACK_EPSILON = 0.1


@dataclass
class DependencyNode:
    """CPM node for one process instance."""

    process_instance_id: str
    duration: float
    dependencies: list[str] = field(default_factory=list)
    dependents: list[str] = field(default_factory=list)
    level: int = -1
    earliest_start: float = 0.0
    latest_start: float = 0.0
    slack: float = 0.0
    on_critical_path: bool = False

    @property
    def earliest_finish(self) -> float:
        return self.earliest_start + self.duration


@dataclass
class DependencyGraph:
    """Result of dependency analysis for a batch."""

    nodes: dict[str, DependencyNode]
    levels: list[list[str]]
    critical_path: list[str]
    total_duration: float
    has_cycles: bool = False
    cycles: list[list[str]] = field(default_factory=list)
    computation_time_ms: float = 0.0

    def dependents_map(self) -> dict[str, list[str]]:
        return {node_id: list(node.dependents) for node_id, node in self.nodes.items()}

    def is_critical(self, process_instance_id: str) -> bool:
        node = self.nodes.get(process_instance_id)
        return bool(node and node.on_critical_path)


class DependencyResolver:
    """
    Dependency graph builder for process instances.

    Usage:
        resolver = DependencyResolver()
        graph = resolver.build_dependency_graph(instances)
        if graph.has_cycles:
            ...
        ordered = resolver.get_sorted_process_instances(instances, graph)
    """

    def build_dependency_graph(
        self, instances: list[ProcessInstance]
    ) -> DependencyGraph:
        """
        Build the bidirectional graph, levels and CPM timing for a batch.

        Unknown dependency ids are ignored here; ``validate_dependencies``
        reports them. When a cycle exists CPM is skipped and only the acyclic
        part of the batch receives a level.
        """
        started = time.perf_counter()
        nodes = self._build_nodes(instances)
        cycles = self._find_cycles(nodes)
        levels = self._kahn_levels(nodes)

        for level_index, level in enumerate(levels):
            for node_id in level:
                nodes[node_id].level = level_index

        critical_path: list[str] = []
        total_duration = 0.0
        if not cycles:
            total_duration = self._calculate_cpm(nodes, levels)
            order = {node_id: index for index, node_id in enumerate(nodes)}
            critical_path = sorted(
                (node_id for node_id, node in nodes.items() if node.on_critical_path),
                key=lambda node_id: (nodes[node_id].earliest_start, order[node_id]),
            )

        graph = DependencyGraph(
            nodes=nodes,
            levels=levels,
            critical_path=critical_path,
            total_duration=total_duration,
            has_cycles=bool(cycles),
            cycles=cycles,
            computation_time_ms=(time.perf_counter() - started) * 1000,
        )
        logger.debug(
            "Dependency graph built: %d nodes, %d levels, %d critical, cycles=%s",
            len(nodes),
            len(levels),
            len(critical_path),
            graph.has_cycles,
        )
        return graph

    def dependency_errors(
        self, instances: list[ProcessInstance]
    ) -> list[DependencyError]:
        """Self-dependencies, unknown references and cycles, one error each."""
        errors: list[DependencyError] = []
        known_ids = {instance.id for instance in instances}

        for instance in instances:
            for dependency_id in instance.dependencies:
                if dependency_id == instance.id:
                    errors.append(
                        DependencyError(
                            f"Process {instance.label} depends on itself",
                            affected_ids=[instance.id],
                            suggested_resolution="Remove the self-dependency",
                        )
                    )
                elif dependency_id not in known_ids:
                    errors.append(
                        DependencyError(
                            f"Process {instance.label} depends on unknown "
                            f"process {dependency_id}",
                            affected_ids=[instance.id],
                            suggested_resolution=(
                                "Include the referenced process in the batch or "
                                "remove the dependency"
                            ),
                        )
                    )

        for cycle in self.find_cycles(instances):
            if len(cycle) == 2 and cycle[0] == cycle[1]:
                # Self loops are already reported above
                continue
            errors.append(CircularDependencyError([cycle]))
        return errors

    def validate_dependencies(self, instances: list[ProcessInstance]) -> list[Conflict]:
        """Report self-dependencies, unknown references and cycles as conflicts."""
        return [
            Conflict.from_error(error) for error in self.dependency_errors(instances)
        ]

    def topological_sort(self, instances: list[ProcessInstance]) -> list[list[str]]:
        """Group instance ids into levels with Kahn's algorithm."""
        return self._kahn_levels(self._build_nodes(instances))

    def find_cycles(self, instances: list[ProcessInstance]) -> list[list[str]]:
        """Return every cycle found by DFS as a path that repeats its first id."""
        return self._find_cycles(self._build_nodes(instances))

    def get_sorted_process_instances(
        self, instances: list[ProcessInstance], graph: DependencyGraph
    ) -> list[ProcessInstance]:
        """Instances level by level, critical-path members first within a level."""
        by_id = {instance.id: instance for instance in instances}
        ordered: list[ProcessInstance] = []
        for level in graph.levels:
            critical = [i for i in level if graph.is_critical(i)]
            others = [i for i in level if not graph.is_critical(i)]
            ordered.extend(by_id[i] for i in critical + others if i in by_id)
        return ordered

    def get_dependency_analysis(self, graph: DependencyGraph) -> dict[str, int | float]:
        """Summary figures for reporting."""
        return {
            "total_levels": len(graph.levels),
            "critical_path_length": len(graph.critical_path),
            "longest_chain": len(graph.levels),
            "widest_level": max((len(level) for level in graph.levels), default=0),
            "parallelism_opportunities": sum(
                1 for level in graph.levels if len(level) > 1
            ),
            "total_duration": graph.total_duration,
        }

    def _build_nodes(
        self, instances: list[ProcessInstance]
    ) -> dict[str, DependencyNode]:
        nodes = {
            instance.id: DependencyNode(
                process_instance_id=instance.id,
                duration=instance.total_duration_minutes,
            )
            for instance in instances
        }
        for instance in instances:
            node = nodes[instance.id]
            for dependency_id in dict.fromkeys(instance.dependencies):
                if dependency_id not in nodes:
                    continue
                node.dependencies.append(dependency_id)
                nodes[dependency_id].dependents.append(instance.id)
        return nodes

    def _kahn_levels(self, nodes: dict[str, DependencyNode]) -> list[list[str]]:
        in_degree = {node_id: len(node.dependencies) for node_id, node in nodes.items()}
        order = {node_id: index for index, node_id in enumerate(nodes)}
        current = [node_id for node_id, degree in in_degree.items() if degree == 0]
        levels: list[list[str]] = []

        while current:
            levels.append(current)
            ready: list[str] = []
            for node_id in current:
                for dependent_id in nodes[node_id].dependents:
                    in_degree[dependent_id] -= 1
                    if in_degree[dependent_id] == 0:
                        ready.append(dependent_id)
            current = sorted(ready, key=order.__getitem__)

        return levels

    def _find_cycles(self, nodes: dict[str, DependencyNode]) -> list[list[str]]:
        visited: set[str] = set()
        on_stack: set[str] = set()
        path: list[str] = []
        cycles: list[list[str]] = []

        def visit(node_id: str) -> None:
            visited.add(node_id)
            on_stack.add(node_id)
            path.append(node_id)
            for dependency_id in nodes[node_id].dependencies:
                if dependency_id in on_stack:
                    start = path.index(dependency_id)
                    cycles.append(path[start:] + [dependency_id])
                elif dependency_id not in visited:
                    visit(dependency_id)
            path.pop()
            on_stack.discard(node_id)

        for node_id in nodes:
            if node_id not in visited:
                visit(node_id)
        return cycles

    def _calculate_cpm(
        self, nodes: dict[str, DependencyNode], levels: list[list[str]]
    ) -> float:
        """Forward and backward pass; returns the project duration."""
        topological_order = [node_id for level in levels for node_id in level]

        # Forward pass
        for node_id in topological_order:
            node = nodes[node_id]
            node.earliest_start = max(
                (nodes[d].earliest_finish for d in node.dependencies), default=0.0
            )

        project_end = max(
            (node.earliest_finish for node in nodes.values()), default=0.0
        )

        # Backward pass
        for node_id in reversed(topological_order):
            node = nodes[node_id]
            if node.dependents:
                latest_finish = min(nodes[d].latest_start for d in node.dependents)
            else:
                latest_finish = project_end
            node.latest_start = latest_finish - node.duration
            node.slack = max(0.0, node.latest_start - node.earliest_start)
            node.on_critical_path = node.slack < CRITICAL_SLACK_EPSILON

        return project_end

