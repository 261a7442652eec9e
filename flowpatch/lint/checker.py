# flowpatch/lint/checker.py

from dataclasses import dataclass, field
from typing import Any, Dict, List

from flowpatch.lint.rules import LintFinding, apply_autofixes, compute_lints
from flowpatch.utils.logger import get_logger

logger = get_logger("lint")


@dataclass
class ValidationResult:
    valid: bool
    lints: List[LintFinding] = field(default_factory=list)
    fixed: List[str] = field(default_factory=list)

    @property
    def errors(self) -> List[LintFinding]:
        return [l for l in self.lints if l.level == "error"]

    @property
    def warnings(self) -> List[LintFinding]:
        return [l for l in self.lints if l.level == "warn"]

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"valid": self.valid, "lints": [l.to_dict() for l in self.lints]}
        if self.fixed:
            d["fixed"] = list(self.fixed)
        return d


def validate_workflow(workflow, autofix: bool = False) -> ValidationResult:
    """
    Lint a workflow. valid == no finding at level "error".

    With autofix=True, parameter-level errors are repaired in place first
    (placeholder url, default method/responseFormat/path) and the rules then
    run on the repaired graph. Trigger, connectivity and cycle findings are
    never fixed.
    """
    fixed: List[str] = []
    if autofix:
        fixed = apply_autofixes(workflow.nodes)
        if fixed:
            logger.info("autofix wrote %d default(s): %s", len(fixed), ", ".join(fixed))

    lints = compute_lints(workflow)
    valid = not any(l.level == "error" for l in lints)
    return ValidationResult(valid=valid, lints=lints, fixed=fixed)
