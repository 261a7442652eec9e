# flowpatch/store/manager.py
"""
In-memory store of versioned workflow graphs.

Every mutation goes through a per-workflow re-entrant lock, so a batch is
either fully applied and committed or leaves the stored state untouched, even
when several threads share one store. Operations run against a deep copy of
the current state; the copy replaces the stored state only after the last
operation succeeded.
"""

from __future__ import annotations

import copy
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union
from uuid import uuid4

from flowpatch.batch.ops import (
    AddNode,
    Annotate,
    Connect,
    Connection,
    Delete,
    OperationBatch,
    SetParams,
    parse_batch,
)
from flowpatch.config import Settings
from flowpatch.errors import (
    BatchSchemaError,
    FlowPatchError,
    NothingToRedoError,
    NothingToUndoError,
    OperationError,
    UndoNotFoundError,
    WorkflowNotFoundError,
)
from flowpatch.lint.checker import ValidationResult, validate_workflow
from flowpatch.lint.rules import LintFinding
from flowpatch.simulate.simulator import SimulationResult, simulate_workflow
from flowpatch.store.state import (
    ApplyResult,
    RedoEntry,
    UndoEntry,
    WorkflowState,
    utcnow,
)
from flowpatch.utils.graph import build_node_index, resolve_ref
from flowpatch.utils.logger import get_logger

logger = get_logger("store")

BatchLike = Union[OperationBatch, Mapping[str, Any]]


def new_undo_id() -> str:
    return f"undo_{int(time.time() * 1000)}_{uuid4().hex[:9]}"


@dataclass
class _Entry:
    state: WorkflowState
    undo: List[UndoEntry] = field(default_factory=list)
    redo: List[RedoEntry] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock)


# ---------------------------------------------------------------------------
# Operation handlers: mutate the working copy, raise OperationError on failure
# ---------------------------------------------------------------------------

def _op_add_node(state: WorkflowState, op: AddNode) -> None:
    if state.node_by_id(op.node.id) is not None:
        raise OperationError(f"Node with id {op.node.id} already exists")
    state.nodes.append(copy.deepcopy(op.node))


def _op_connect(state: WorkflowState, op: Connect) -> None:
    source = state.resolve(op.source)
    if source is None:
        raise OperationError(f'Source node "{op.source}" not found')
    target = state.resolve(op.target)
    if target is None:
        raise OperationError(f'Target node "{op.target}" not found')

    # compare on resolved ids so an existing name-based edge also counts
    index = build_node_index(state.nodes)
    wanted = Connection(source.id, target.id, op.index)
    for c in state.connections:
        if Connection(resolve_ref(index, c.source), resolve_ref(index, c.target), c.index).key == wanted.key:
            return
    state.connections.append(wanted)


def _op_set_params(state: WorkflowState, op: SetParams) -> None:
    node = state.resolve(op.name)
    if node is None:
        raise OperationError(f'Node "{op.name}" not found')
    node.parameters = {**(node.parameters or {}), **copy.deepcopy(op.parameters)}


def _op_delete(state: WorkflowState, op: Delete) -> None:
    node = state.resolve(op.name)
    if node is None:
        raise OperationError(f'Node "{op.name}" not found')
    refs = {node.id, node.name}
    state.nodes = [n for n in state.nodes if n.id != node.id]
    state.connections = [
        c for c in state.connections
        if c.source not in refs and c.target not in refs
    ]


def _op_annotate(state: WorkflowState, op: Annotate) -> None:
    logger.debug("annotation on %r in %s: %s", op.name, state.id, op.text)


_HANDLERS: Dict[str, Callable[[WorkflowState, Any], None]] = {
    "add_node": _op_add_node,
    "connect": _op_connect,
    "set_params": _op_set_params,
    "delete": _op_delete,
    "annotate": _op_annotate,
}


def run_operations(state: WorkflowState, batch: OperationBatch) -> int:
    """Apply `batch` to `state` in order. Returns the applied count; raises on the first failure."""
    applied = 0
    for i, op in enumerate(batch.ops):
        try:
            _HANDLERS[op.op](state, op)
        except OperationError as e:
            if e.op_index is None:
                raise OperationError(e.message, i) from e
            raise
        applied += 1
    return applied


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class GraphStore:
    """
    Mapping of workflow id -> versioned graph plus its undo/redo stacks.

    Public methods never raise engine errors: failures come back as tagged
    results (ApplyResult.success False, ValidationResult with a
    workflow_not_found finding, SimulationResult.ok False).
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings()
        self._entries: Dict[str, _Entry] = {}
        self._registry_lock = threading.Lock()

    # -------- registry --------

    def create_workflow(self, workflow_id: str, name: str) -> WorkflowState:
        """Create (or replace) a workflow holding only the seed Manual Trigger."""
        state = WorkflowState.new(workflow_id, name)
        with self._registry_lock:
            if workflow_id in self._entries:
                logger.warning("workflow %s already existed; replacing it", workflow_id)
            self._entries[workflow_id] = _Entry(state=state)
        logger.info("created workflow %s (%s)", workflow_id, name)
        return state.snapshot()

    def load_workflow(self, data: Union[WorkflowState, Mapping[str, Any]]) -> WorkflowState:
        """
        Register an existing workflow (e.g. read from JSON) with empty history.

        Raises:
            WorkflowSchemaError: when `data` is not a well-formed workflow document.
        """
        state = data.snapshot() if isinstance(data, WorkflowState) else WorkflowState.from_dict(data)
        with self._registry_lock:
            self._entries[state.id] = _Entry(state=state)
        logger.info("loaded workflow %s (version %d, %d nodes)", state.id, state.version, len(state.nodes))
        return state.snapshot()

    def _entry(self, workflow_id: str) -> Optional[_Entry]:
        with self._registry_lock:
            return self._entries.get(workflow_id)

    def _ensure(self, workflow_id: str) -> _Entry:
        with self._registry_lock:
            entry = self._entries.get(workflow_id)
            if entry is None:
                entry = _Entry(state=WorkflowState.new(workflow_id, f"Workflow {workflow_id}"))
                self._entries[workflow_id] = entry
                logger.info("auto-created workflow %s", workflow_id)
            return entry

    @contextmanager
    def locked(self, workflow_id: str) -> Iterator[None]:
        """
        Hold the workflow's lock across several store calls (apply, validate,
        undo...). Auto-creates the workflow like apply_batch does.
        """
        entry = self._ensure(workflow_id)
        with entry.lock:
            yield

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowState]:
        entry = self._entry(workflow_id)
        if entry is None:
            return None
        with entry.lock:
            return entry.state.snapshot()

    def list_workflows(self) -> List[Dict[str, Any]]:
        with self._registry_lock:
            entries = list(self._entries.values())
        summaries = []
        for entry in entries:
            with entry.lock:
                summaries.append(entry.state.summary())
        return summaries

    def history(self, workflow_id: str) -> Dict[str, List[str]]:
        """Undo ids (oldest first) and pending redo ids (next redo last)."""
        entry = self._entry(workflow_id)
        if entry is None:
            return {"undo": [], "redo": []}
        with entry.lock:
            return {
                "undo": [u.undo_id for u in entry.undo],
                "redo": [r.undo_id for r in entry.redo],
            }

    def reset_all(self) -> None:
        """Discard every workflow and its history (test/debug hook)."""
        with self._registry_lock:
            self._entries.clear()
        logger.info("store reset")

    # -------- mutation --------

    def apply_batch(self, workflow_id: str, batch: BatchLike) -> ApplyResult:
        """
        Apply a batch atomically. The workflow is auto-created when missing.

        On success the version advances by one, an undo entry is pushed and the
        redo stack is cleared. On any failure the stored state is unchanged.
        """
        entry = self._ensure(workflow_id)
        try:
            parsed = copy.deepcopy(parse_batch(batch))
        except BatchSchemaError as e:
            logger.warning("rejected batch for %s: %s", workflow_id, e.message)
            return ApplyResult.failure(e.message, e.code)

        with entry.lock:
            return self._apply_locked(entry, parsed, clear_redo=True)

    def _apply_locked(self, entry: _Entry, batch: OperationBatch, clear_redo: bool) -> ApplyResult:
        previous = entry.state.snapshot()
        working = entry.state.snapshot()
        try:
            applied = run_operations(working, batch)
        except OperationError as e:
            logger.warning(
                "batch on %s failed at op %s: %s; state left at version %d",
                previous.id, e.op_index, e.message, previous.version,
            )
            return ApplyResult.failure(e.message, e.code)

        working.version = previous.version + 1
        working.last_modified = utcnow()
        entry.state = working

        undo_id = new_undo_id()
        entry.undo.append(UndoEntry(undo_id=undo_id, previous_state=previous, batch=batch))
        if clear_redo:
            entry.redo.clear()

        logger.info("applied %d op(s) to %s -> version %d (%s)", applied, working.id, working.version, undo_id)
        return ApplyResult(success=True, applied_count=applied, undo_id=undo_id, new_state=working.snapshot())

    def undo(self, workflow_id: str, undo_id: Optional[str] = None) -> ApplyResult:
        """
        Restore the state captured before a batch. Without `undo_id` the most
        recent batch is undone; with it, that specific entry is spliced out.
        The version still advances by one.
        """
        entry = self._entry(workflow_id)
        if entry is None:
            return self._failure(WorkflowNotFoundError(workflow_id))

        with entry.lock:
            try:
                item = self._pop_undo(entry, undo_id)
            except FlowPatchError as e:
                return self._failure(e)

            current = entry.state
            entry.redo.append(RedoEntry(undo_id=item.undo_id, next_state=current.snapshot(), batch=item.batch))

            restored = item.previous_state.snapshot()
            restored.version = current.version + 1
            restored.last_modified = utcnow()
            entry.state = restored

        logger.info("undid %s on %s -> version %d", item.undo_id, workflow_id, restored.version)
        return ApplyResult(
            success=True,
            applied_count=len(item.batch.ops),
            undo_id=item.undo_id,
            new_state=restored.snapshot(),
        )

    @staticmethod
    def _pop_undo(entry: _Entry, undo_id: Optional[str]) -> UndoEntry:
        if not entry.undo:
            raise NothingToUndoError()
        if undo_id is None:
            return entry.undo.pop()
        for i, item in enumerate(entry.undo):
            if item.undo_id == undo_id:
                return entry.undo.pop(i)
        raise UndoNotFoundError(undo_id)

    def redo(self, workflow_id: str) -> ApplyResult:
        """
        Re-apply the most recently undone batch through the normal apply path.
        The remaining redo entries are kept; a failed redo puts its entry back.
        """
        entry = self._entry(workflow_id)
        if entry is None:
            return self._failure(WorkflowNotFoundError(workflow_id))

        with entry.lock:
            if not entry.redo:
                return self._failure(NothingToRedoError())
            item = entry.redo.pop()
            result = self._apply_locked(entry, item.batch, clear_redo=False)
            if not result.success:
                entry.redo.append(item)
                logger.warning("redo of %s on %s failed: %s", item.undo_id, workflow_id, result.error)
        return result

    @staticmethod
    def _failure(err: FlowPatchError) -> ApplyResult:
        return ApplyResult.failure(err.message, err.code)

    # -------- read side --------

    def validate(self, workflow_id: str, autofix: bool = False) -> ValidationResult:
        """Lint a stored workflow; autofix repairs parameters in place without a version bump."""
        entry = self._entry(workflow_id)
        if entry is None:
            err = WorkflowNotFoundError(workflow_id)
            return ValidationResult(valid=False, lints=[LintFinding(err.code, "error", err.message)])
        with entry.lock:
            return validate_workflow(entry.state, autofix=autofix)

    def simulate(self, workflow_id: str) -> SimulationResult:
        entry = self._entry(workflow_id)
        if entry is None:
            return SimulationResult(ok=False, error=WorkflowNotFoundError(workflow_id).message)
        with entry.lock:
            return simulate_workflow(entry.state, node_cost_ms=self.settings.node_cost_ms)
