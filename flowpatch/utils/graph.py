# utils/graph.py
from typing import Dict, Iterable, List, Optional
import networkx as nx

from flowpatch.batch.ops import Node


TRIGGER_KEYS = ("trigger", "webhook")


def is_trigger_type(node_type: str) -> bool:
    """Trigger-class nodes can start a run without an incoming connection."""
    t = (node_type or "").lower()
    return any(k in t for k in TRIGGER_KEYS)


def is_trigger_node(node: Node) -> bool:
    return is_trigger_type(node.type)


def has_trigger(nodes: Iterable[Node]) -> bool:
    return any(is_trigger_node(n) for n in nodes)


def build_node_index(nodes: Iterable[Node]) -> Dict[str, Node]:
    """
    Map BOTH id and name to the node definition.
    Ids take precedence over names; for duplicated names the first node wins.
    """
    nodes = list(nodes)
    idx: Dict[str, Node] = {n.id: n for n in nodes}
    for n in nodes:
        if n.name:
            idx.setdefault(n.name, n)
    return idx


def resolve_ref(index: Dict[str, Node], ref: str) -> Optional[str]:
    """Canonical node id for an id-or-name reference, None when unresolved."""
    node = index.get(ref)
    return node.id if node is not None else None


def build_graph(workflow) -> nx.DiGraph:
    """
    Build a DiGraph keyed by canonical node id from a WorkflowState-like object
    (anything with `.nodes` and `.connections`).

    Connection endpoints may be ids or display names; endpoints that do not
    resolve to a node are skipped rather than added as phantom nodes.
    """
    G = nx.DiGraph()
    for n in workflow.nodes:
        G.add_node(n.id, name=n.name, type=n.type)

    index = build_node_index(workflow.nodes)
    for c in workflow.connections:
        src = resolve_ref(index, c.source)
        tgt = resolve_ref(index, c.target)
        if src is None or tgt is None:
            continue
        G.add_edge(src, tgt)
    return G


def execution_order(G: nx.DiGraph) -> List[str]:
    """
    Topological order with ties broken by node insertion order.
    Raises networkx.NetworkXUnfeasible on cyclic graphs.
    """
    position = {nid: i for i, nid in enumerate(G.nodes)}
    return list(nx.lexicographical_topological_sort(G, key=lambda nid: position[nid]))
