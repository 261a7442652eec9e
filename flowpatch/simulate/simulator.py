# flowpatch/simulate/simulator.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import random

from flowpatch.lint.checker import ValidationResult, validate_workflow
from flowpatch.lint.rules import CODE, HTTP_REQUEST, WEBHOOK
from flowpatch.utils.graph import build_graph, execution_order


DEFAULT_NODE_COST_MS = 150
P95_FACTOR = 1.5

# Synthetic output shapes (field -> type name) for preview purposes
DATA_SHAPES: Dict[str, List[Dict[str, str]]] = {
    HTTP_REQUEST: [{"id": "number", "name": "string", "email": "string"}],
    WEBHOOK: [{"body": "object", "headers": "object", "query": "object"}],
    CODE: [{"result": "any"}],
}


@dataclass
class SimulationResult:
    ok: bool
    stats: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if not self.ok:
            return {"ok": False, "error": self.error}
        return {"ok": True, "stats": self.stats}


def _output_size(workflow_id: str, node_id: str) -> int:
    """Synthetic output size in [100, 1099], stable for a given workflow/node pair."""
    return random.Random(f"{workflow_id}:{node_id}").randint(100, 1099)


def simulate_workflow(
    workflow,
    node_cost_ms: int = DEFAULT_NODE_COST_MS,
    validation: Optional[ValidationResult] = None,
) -> SimulationResult:
    """
    Estimate cost and output shape of one run. No node logic executes.

    Only a workflow that validates is simulated; otherwise the result carries
    an error. Pass `validation` to reuse a result computed by the caller.
    """
    validation = validation if validation is not None else validate_workflow(workflow)
    if not validation.valid:
        return SimulationResult(ok=False, error="Workflow validation failed")

    names = {n.id: n.name for n in workflow.nodes}
    # a valid workflow is acyclic, so this never raises here
    order = execution_order(build_graph(workflow))

    nodes_visited = len(workflow.nodes)
    estimated = nodes_visited * node_cost_ms

    data_flow = [
        {"node": n.name, "outputSize": _output_size(workflow.id, n.id)}
        for n in workflow.nodes
    ]
    data_shapes = {
        n.name: {"output": [dict(s) for s in DATA_SHAPES[n.type]]}
        for n in workflow.nodes
        if n.type in DATA_SHAPES
    }

    stats = {
        "nodesVisited": nodes_visited,
        "estimatedDurationMs": estimated,
        "p95DurationMs": round(estimated * P95_FACTOR),
        "dataFlow": data_flow,
        "dataShapes": data_shapes,
        "executionOrder": [names[nid] for nid in order],
        "warnings": [
            {"code": l.code, "message": l.message, "node": l.node}
            for l in validation.warnings
        ],
    }
    return SimulationResult(ok=True, stats=stats)
