# flowpatch/errors.py

from __future__ import annotations

from typing import Any, Dict, List, Optional


class FlowPatchError(Exception):
    """Base class for engine errors. `code` is a stable identifier for callers."""

    code = "flowpatch_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class BatchSchemaError(FlowPatchError):
    """Raised when an operation batch fails structural validation.

    errors: list of human-readable schema messages, one per problem found.
    """

    code = "invalid_operation_batch"

    def __init__(self, errors: List[str]) -> None:
        super().__init__("Invalid operation batch: " + "; ".join(errors), {"errors": errors})
        self.errors = errors


class OperationError(FlowPatchError):
    """An operation could not be applied (unresolved reference, duplicate id...)."""

    code = "operation_failed"

    def __init__(self, message: str, op_index: Optional[int] = None) -> None:
        super().__init__(message, {"opIndex": op_index} if op_index is not None else None)
        self.op_index = op_index


class WorkflowNotFoundError(FlowPatchError):
    code = "workflow_not_found"

    def __init__(self, workflow_id: str) -> None:
        super().__init__("Workflow not found", {"workflowId": workflow_id})
        self.workflow_id = workflow_id


class UndoNotFoundError(FlowPatchError):
    code = "undo_not_found"

    def __init__(self, undo_id: str) -> None:
        super().__init__("Undo operation not found", {"undoId": undo_id})
        self.undo_id = undo_id


class NothingToUndoError(FlowPatchError):
    code = "nothing_to_undo"

    def __init__(self) -> None:
        super().__init__("Nothing to undo")


class NothingToRedoError(FlowPatchError):
    code = "nothing_to_redo"

    def __init__(self) -> None:
        super().__init__("Nothing to redo")


class WorkflowSchemaError(FlowPatchError):
    """Raised when a workflow document (e.g. a JSON file) has the wrong shape."""

    code = "invalid_workflow"

    def __init__(self, errors: List[str]) -> None:
        super().__init__("Invalid workflow: " + "; ".join(errors), {"errors": errors})
        self.errors = errors
