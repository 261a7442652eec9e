"""Operation batch: typed, validated, JSON-serializable edit operations.

Each op describes a single change to a workflow graph:
  AddNode    - append a new node (fails if the id already exists)
  Connect    - add a directed connection between two nodes
  SetParams  - shallow-merge parameters into an existing node
  Delete     - remove a node and every connection touching it
  Annotate   - free-text note attached to a node; no graph change

Nodes are referenced by id or display name in Connect/SetParams/Delete.
The wire shape (see batch/schema.py) is the compatibility boundary: parse with
`parse_batch`, serialize with `OperationBatch.to_dict`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Union

from jsonschema import Draft7Validator

from flowpatch.batch.schema import OP_SCHEMAS, OPERATION_BATCH_SCHEMA
from flowpatch.errors import BatchSchemaError


# ---------------------------------------------------------------------------
# Graph value types
# ---------------------------------------------------------------------------


@dataclass
class Node:
    """A typed unit of work. `parameters` holds JSON-native values only."""

    id: str
    name: str
    type: str
    type_version: int = 1
    position: List[float] = field(default_factory=lambda: [0, 0])
    parameters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Node":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            type=str(data["type"]),
            type_version=data.get("typeVersion", 1),
            position=list(data.get("position") or [0, 0]),
            parameters=copy.deepcopy(dict(data.get("parameters") or {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "typeVersion": self.type_version,
            "position": list(self.position),
            "parameters": copy.deepcopy(self.parameters),
        }


@dataclass
class Connection:
    """Directed edge. `source`/`target` hold a node id or name."""

    source: str
    target: str
    index: int = 0

    @property
    def key(self) -> tuple:
        return (self.source, self.target, self.index)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Connection":
        idx = data.get("index")
        return cls(source=str(data["from"]), target=str(data["to"]), index=int(idx) if idx is not None else 0)

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.source, "to": self.target, "index": self.index}


# ---------------------------------------------------------------------------
# Operation types
# ---------------------------------------------------------------------------


@dataclass
class AddNode:
    node: Node
    op: str = "add_node"

    def to_dict(self) -> Dict[str, Any]:
        return {"op": self.op, "node": self.node.to_dict()}


@dataclass
class Connect:
    source: str
    target: str
    index: int = 0
    op: str = "connect"

    def to_dict(self) -> Dict[str, Any]:
        return {"op": self.op, "from": self.source, "to": self.target, "index": self.index}


@dataclass
class SetParams:
    name: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    op: str = "set_params"

    def to_dict(self) -> Dict[str, Any]:
        return {"op": self.op, "name": self.name, "parameters": copy.deepcopy(self.parameters)}


@dataclass
class Delete:
    name: str
    op: str = "delete"

    def to_dict(self) -> Dict[str, Any]:
        return {"op": self.op, "name": self.name}


@dataclass
class Annotate:
    name: str
    text: str
    op: str = "annotate"

    def to_dict(self) -> Dict[str, Any]:
        return {"op": self.op, "name": self.name, "text": self.text}


Operation = Union[AddNode, Connect, SetParams, Delete, Annotate]


@dataclass
class OperationBatch:
    """Ordered list of operations applied together, all or nothing."""

    ops: List[Operation] = field(default_factory=list)
    version: str = "v1"

    def to_dict(self) -> Dict[str, Any]:
        return {"version": self.version, "ops": [op.to_dict() for op in self.ops]}

    def count(self, op_name: str) -> int:
        return sum(1 for op in self.ops if op.op == op_name)

    def __len__(self) -> int:
        return len(self.ops)


# ---------------------------------------------------------------------------
# Validation / parsing
# ---------------------------------------------------------------------------

_BATCH_VALIDATOR = Draft7Validator(OPERATION_BATCH_SCHEMA)
_OP_VALIDATORS = {name: Draft7Validator(schema) for name, schema in OP_SCHEMAS.items()}


def format_schema_error(prefix: str, err, root: str = "<batch>") -> str:
    loc = (prefix + "".join(f"[{p}]" if isinstance(p, int) else f".{p}" for p in err.absolute_path)).lstrip(".")
    return f"{loc or root}: {err.message}"


def validate_batch_dict(data: Any) -> List[str]:
    """Return every structural problem of a wire-shaped batch; empty list means valid."""
    errors = [format_schema_error("", e) for e in _BATCH_VALIDATOR.iter_errors(data)]
    if errors:
        return errors

    for i, raw in enumerate(data["ops"]):
        validator = _OP_VALIDATORS[raw["op"]]
        for e in validator.iter_errors(raw):
            errors.append(format_schema_error(f"ops[{i}]", e))
    return errors


def _op_from_dict(raw: Mapping[str, Any]) -> Operation:
    kind = raw["op"]
    if kind == "add_node":
        return AddNode(node=Node.from_dict(raw["node"]))
    if kind == "connect":
        idx = raw.get("index")
        return Connect(source=raw["from"], target=raw["to"], index=int(idx) if idx is not None else 0)
    if kind == "set_params":
        return SetParams(name=raw["name"], parameters=copy.deepcopy(dict(raw["parameters"])))
    if kind == "delete":
        return Delete(name=raw["name"])
    return Annotate(name=raw["name"], text=raw["text"])


def parse_batch(data: Union[OperationBatch, Mapping[str, Any]]) -> OperationBatch:
    """
    Validate a wire-shaped batch and build the typed form.
    Already-typed batches pass through unchanged.

    Raises:
        BatchSchemaError: listing every structural problem found.
    """
    if isinstance(data, OperationBatch):
        return data
    errors = validate_batch_dict(data)
    if errors:
        raise BatchSchemaError(errors)
    return OperationBatch(
        version=data["version"],
        ops=[_op_from_dict(raw) for raw in data["ops"]],
    )
