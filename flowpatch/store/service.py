# flowpatch/store/service.py
"""
Commit protocol on top of GraphStore:

    policy screen -> apply (atomic) -> validate -> undo when an error lint remains

so a committed workflow never stays in an invalid state. The whole sequence
runs under the workflow's lock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flowpatch.batch.ops import parse_batch
from flowpatch.config import PolicyOptions
from flowpatch.errors import BatchSchemaError
from flowpatch.lint.rules import LintFinding
from flowpatch.policy.enforcer import PolicyViolation, enforce_policies
from flowpatch.store.manager import BatchLike, GraphStore
from flowpatch.utils.logger import get_logger

logger = get_logger("service")


@dataclass
class CommitResult:
    ok: bool
    error: Optional[str] = None
    undo_id: Optional[str] = None
    applied_operations: int = 0
    version: Optional[int] = None
    lints: List[LintFinding] = field(default_factory=list)
    violations: List[PolicyViolation] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"ok": self.ok}
        if self.ok:
            d.update({"undoId": self.undo_id, "appliedOperations": self.applied_operations, "version": self.version})
        else:
            d["error"] = self.error
        if self.lints:
            d["lints"] = [l.to_dict() for l in self.lints]
        if self.violations:
            d["violations"] = [v.to_dict() for v in self.violations]
        if self.details:
            d["details"] = self.details
        return d


def commit_batch(
    store: GraphStore,
    workflow_id: str,
    batch: BatchLike,
    policy: Optional[PolicyOptions] = None,
    validate: bool = True,
) -> CommitResult:
    """
    Screen, apply and validate a batch as one unit.

    `policy=None` skips the policy screen. Any policy violation blocks the
    batch. When validation reports an error-level finding after a clean apply,
    the batch is undone via its undo id and `validation_failed` is returned.
    """
    with store.locked(workflow_id):
        try:
            parsed = parse_batch(batch)
        except BatchSchemaError as e:
            return CommitResult(ok=False, error=e.code, details={"errors": e.errors})

        if policy is not None:
            current = store.get_workflow(workflow_id)
            violations = enforce_policies(parsed, current, policy)
            if violations:
                logger.warning(
                    "batch for %s blocked by policy: %s",
                    workflow_id, ", ".join(v.code for v in violations),
                )
                return CommitResult(ok=False, error="policy_violation", violations=violations)

        result = store.apply_batch(workflow_id, parsed)
        if not result.success:
            return CommitResult(ok=False, error=result.error)

        if validate:
            rolled_back = _rollback_if_invalid(store, workflow_id, result.undo_id)
            if rolled_back is not None:
                return rolled_back

        return CommitResult(
            ok=True,
            undo_id=result.undo_id,
            applied_operations=result.applied_count,
            version=result.new_state.version if result.new_state else None,
        )


def redo_batch(store: GraphStore, workflow_id: str, validate: bool = True) -> CommitResult:
    """Redo the last undone batch, re-validating it like a fresh commit."""
    if store.get_workflow(workflow_id) is None:
        return CommitResult(ok=False, error="Workflow not found")
    with store.locked(workflow_id):
        result = store.redo(workflow_id)
        if not result.success:
            return CommitResult(ok=False, error=result.error)
        if validate:
            rolled_back = _rollback_if_invalid(store, workflow_id, result.undo_id)
            if rolled_back is not None:
                return rolled_back
        return CommitResult(
            ok=True,
            undo_id=result.undo_id,
            applied_operations=result.applied_count,
            version=result.new_state.version if result.new_state else None,
        )


def _rollback_if_invalid(store: GraphStore, workflow_id: str, undo_id: Optional[str]) -> Optional[CommitResult]:
    validation = store.validate(workflow_id)
    if validation.valid:
        return None
    undone = store.undo(workflow_id, undo_id)
    logger.warning(
        "validation failed for %s (%s); operations rolled back (undo ok=%s)",
        workflow_id, ", ".join(l.code for l in validation.errors), undone.success,
    )
    return CommitResult(ok=False, error="validation_failed", lints=validation.lints)


def critic(store: GraphStore, workflow_id: str) -> Dict[str, Any]:
    """Validation report before and after an autofix pass (the autofix is kept)."""
    if store.get_workflow(workflow_id) is None:
        return {"ok": False, "error": "Workflow not found"}
    with store.locked(workflow_id):
        before = store.validate(workflow_id)
        after = store.validate(workflow_id, autofix=True)
    return {"ok": after.valid, "before": before.to_dict(), "after": after.to_dict()}
