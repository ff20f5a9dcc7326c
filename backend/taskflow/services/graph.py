"""
Graph operations on the project hierarchy using NetworkX.

This module handles:
- Building the parent -> child graph for a set of projects
- Ordering exported projects so every parent is imported before its children
- Assembling the computed tree (children and paths) for display
"""

from typing import Hashable, Iterable

import networkx as nx

from taskflow.exceptions import HierarchyError
from taskflow.schemas import ProjectData, ProjectNode, ProjectRead
from taskflow.logging_config import get_logger

logger = get_logger(__name__)

PATH_SEPARATOR = " > "


def build_hierarchy_graph(edges: Iterable[tuple[Hashable, Hashable | None]]) -> nx.DiGraph:
    """
    Build a DiGraph from (node, parent) pairs.

    Edges go from parent -> child. Parents that are not themselves listed as
    nodes are ignored, so their children become roots of the graph.
    """
    pairs = list(edges)
    graph = nx.DiGraph()
    graph.add_nodes_from(node for node, _ in pairs)
    for node, parent in pairs:
        if parent is not None and parent in graph:
            graph.add_edge(parent, node)
    return graph


def restore_generations(projects: list[ProjectData]) -> list[list[ProjectData]]:
    """
    Group exported projects into import passes.

    Generation 0 holds projects whose parent is unset or not part of the
    export; generation n holds projects whose parent is in generation n-1.
    Input order is kept inside each generation.

    Raises HierarchyError if the exported parent pointers form a cycle.
    """
    # Exports without ids cannot be parents; give them unique keys
    keys = [p.id if p.id else ("unnumbered", index) for index, p in enumerate(projects)]
    graph = build_hierarchy_graph(
        (key, p.parent_id) for key, p in zip(keys, projects)
    )
    position = {key: index for index, key in enumerate(keys)}

    for key, p in zip(keys, projects):
        if p.parent_id is not None and p.parent_id not in graph:
            logger.warning(
                f"Project '{p.name}' references parent {p.parent_id} missing from the export; "
                f"importing it at the root level"
            )

    try:
        generations = list(nx.topological_generations(graph))
    except nx.NetworkXUnfeasible:
        cycle = nx.find_cycle(graph)
        names = [projects[position[child]].name for _, child in cycle]
        raise HierarchyError(
            f"Exported projects form a parent cycle: {' -> '.join(names)}"
        )

    return [
        [projects[position[key]] for key in sorted(generation, key=position.__getitem__)]
        for generation in generations
    ]


def build_forest(projects: list[ProjectRead]) -> list[ProjectNode]:
    """
    Assemble computed subtrees for a flat project listing.

    Projects whose parent is not in the listing are treated as roots.
    Children are ordered by name.
    """
    by_id = {p.id: p for p in projects}
    graph = build_hierarchy_graph((p.id, p.parent_id) for p in projects)

    def build(node_id: int, parent_path: str | None, depth: int) -> ProjectNode:
        project = by_id[node_id]
        path = project.name if parent_path is None else f"{parent_path}{PATH_SEPARATOR}{project.name}"
        children = sorted(graph.successors(node_id), key=lambda child: by_id[child].name)
        return ProjectNode(
            **project.model_dump(),
            path=path,
            depth=depth,
            children=[build(child, path, depth + 1) for child in children],
        )

    roots = sorted(
        (node for node in graph.nodes if graph.in_degree(node) == 0),
        key=lambda node: by_id[node].name,
    )
    return [build(root, None, 0) for root in roots]
