# flowpatch/store/state.py

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from jsonschema import Draft7Validator

from flowpatch.batch.ops import Connection, Node, OperationBatch, format_schema_error
from flowpatch.batch.schema import WORKFLOW_SCHEMA
from flowpatch.errors import OperationError, WorkflowSchemaError


SEED_TRIGGER = {
    "id": "manual-trigger",
    "name": "Manual Trigger",
    "type": "n8n-nodes-base.manualTrigger",
    "typeVersion": 1,
    "position": [250, 300],
    "parameters": {},
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def seed_trigger_node() -> Node:
    return Node.from_dict(SEED_TRIGGER)


_WORKFLOW_VALIDATOR = Draft7Validator(WORKFLOW_SCHEMA)


def validate_workflow_dict(data: Any) -> List[str]:
    """Return every structural problem of a workflow document; empty list means valid."""
    return [format_schema_error("", e, root="<workflow>") for e in _WORKFLOW_VALIDATOR.iter_errors(data)]


def connections_from_n8n(conns: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """
    Flatten n8n connections into the `{from, to, index}` list form.

        {"A": {"main": [[{"node": "B", "type": "main", "index": 0}]]}}
        -> [{"from": "A", "to": "B", "index": 0}]

    The outer list position is the source output slot and becomes `index`.

    Raises:
        WorkflowSchemaError: when the mapping does not have the n8n shape.
    """
    flat: List[Dict[str, Any]] = []
    errors: List[str] = []
    for src, outs in conns.items():
        if not isinstance(outs, Mapping):
            errors.append(f"connections.{src}: expected an object of output types")
            continue
        for kind, slots in outs.items():
            if not isinstance(slots, list):
                errors.append(f"connections.{src}.{kind}: expected a list of output slots")
                continue
            for out_idx, targets in enumerate(slots):
                if targets is None:
                    continue
                if not isinstance(targets, list):
                    errors.append(f"connections.{src}.{kind}[{out_idx}]: expected a list of targets")
                    continue
                for t in targets:
                    if not isinstance(t, Mapping) or not isinstance(t.get("node"), str):
                        errors.append(f"connections.{src}.{kind}[{out_idx}]: target without a node name")
                        continue
                    flat.append({"from": str(src), "to": t["node"], "index": out_idx})
    if errors:
        raise WorkflowSchemaError(errors)
    return flat


def _parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return utcnow()
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise WorkflowSchemaError([f"lastModified: {value!r} is not an ISO-8601 timestamp"])


@dataclass
class WorkflowState:
    id: str
    name: str
    nodes: List[Node] = field(default_factory=list)
    connections: List[Connection] = field(default_factory=list)
    version: int = 1
    last_modified: datetime = field(default_factory=utcnow)

    @classmethod
    def new(cls, workflow_id: str, name: str) -> "WorkflowState":
        """Fresh workflow holding only the seed Manual Trigger."""
        return cls(id=workflow_id, name=name, nodes=[seed_trigger_node()])

    def snapshot(self) -> "WorkflowState":
        """Deep copy sharing no mutable data with `self`."""
        return copy.deepcopy(self)

    # -------- lookups --------

    def node_by_id(self, node_id: str) -> Optional[Node]:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def resolve(self, ref: str) -> Optional[Node]:
        """
        Resolve a node reference: an id match wins, otherwise the display name
        must match exactly one node.

        Raises:
            OperationError: when the name matches more than one node.
        """
        by_id = self.node_by_id(ref)
        if by_id is not None:
            return by_id
        named = [n for n in self.nodes if n.name == ref]
        if len(named) > 1:
            raise OperationError(
                f'Node reference "{ref}" is ambiguous ({len(named)} nodes share this name)'
            )
        return named[0] if named else None

    # -------- wire shape --------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "nodes": [n.to_dict() for n in self.nodes],
            "connections": [c.to_dict() for c in self.connections],
            "version": self.version,
            "lastModified": self.last_modified.isoformat(),
        }

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "lastModified": self.last_modified.isoformat(),
            "nodeCount": len(self.nodes),
            "connectionCount": len(self.connections),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkflowState":
        """
        Build a state from its wire shape. `id`, `version`, `lastModified` are optional.
        n8n exports, whose `connections` map source names to output slots, are accepted too.

        Raises:
            WorkflowSchemaError: listing every structural problem found.
        """
        if isinstance(data, Mapping) and isinstance(data.get("connections"), Mapping):
            data = {**data, "connections": connections_from_n8n(data["connections"])}
        errors = validate_workflow_dict(data)
        if errors:
            raise WorkflowSchemaError(errors)

        return cls(
            id=str(data.get("id") or "imported"),
            name=str(data.get("name") or data.get("id") or "Imported Workflow"),
            nodes=[Node.from_dict(n) for n in data["nodes"]],
            connections=[Connection.from_dict(c) for c in data.get("connections") or []],
            version=int(data.get("version", 1)),
            last_modified=_parse_timestamp(data.get("lastModified")),
        )


@dataclass
class UndoEntry:
    undo_id: str
    previous_state: WorkflowState
    batch: OperationBatch


@dataclass
class RedoEntry:
    undo_id: str
    next_state: WorkflowState
    batch: OperationBatch


@dataclass
class ApplyResult:
    """Outcome of apply/undo/redo. On failure only `error` (and `code`) are set."""

    success: bool
    applied_count: int = 0
    undo_id: Optional[str] = None
    new_state: Optional[WorkflowState] = None
    error: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def failure(cls, error: str, code: Optional[str] = None) -> "ApplyResult":
        return cls(success=False, error=error, code=code)

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            payload: Dict[str, Any] = {"success": False, "error": self.error}
            if self.code:
                payload["code"] = self.code
            return payload
        return {
            "success": True,
            "appliedCount": self.applied_count,
            "undoId": self.undo_id,
            "newState": self.new_state.to_dict() if self.new_state else None,
        }
