# flowpatch/lint/cycles.py

from typing import List

import networkx as nx

from flowpatch.utils.graph import build_graph


def find_cycle(workflow) -> List[str]:
    """
    Return the node ids of one directed cycle (in traversal order), or [] when
    the connection graph is acyclic.

    networkx walks the graph depth-first and reports a cycle as soon as an edge
    reaches a node still on the current DFS stack. Self-connections count.
    Endpoints are resolved id-first, then by name; unresolved ones are ignored.
    """
    G = build_graph(workflow)
    try:
        edges = nx.find_cycle(G, orientation="original")
    except nx.NetworkXNoCycle:
        return []
    return [u for u, _v, *_ in edges]


def has_cycles(workflow) -> bool:
    return not nx.is_directed_acyclic_graph(build_graph(workflow))
