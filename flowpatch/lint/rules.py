# flowpatch/lint/rules.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from flowpatch.batch.ops import Node
from flowpatch.lint.cycles import find_cycle
from flowpatch.utils.graph import build_graph, has_trigger, is_trigger_node


HTTP_REQUEST = "n8n-nodes-base.httpRequest"
WEBHOOK = "n8n-nodes-base.webhook"
CODE = "n8n-nodes-base.code"

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")
WEBHOOK_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD")
RESPONSE_FORMATS = ("json", "text", "binary")


@dataclass
class LintFinding:
    code: str
    level: str
    message: str
    node: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"code": self.code, "level": self.level, "message": self.message}
        if self.node is not None:
            d["node"] = self.node
        return d


@dataclass
class ParamRule:
    """
    Parameter constraints for one node type.

    required: param -> safe default written by autofix when missing/empty
    enums:    param -> (allowed values, safe default)
    """

    required: Dict[str, Any] = field(default_factory=dict)
    enums: Dict[str, Tuple[Tuple[str, ...], str]] = field(default_factory=dict)


PARAM_RULES: Dict[str, ParamRule] = {
    HTTP_REQUEST: ParamRule(
        required={"url": "https://example.com"},
        enums={
            "method": (HTTP_METHODS, "GET"),
            "responseFormat": (RESPONSE_FORMATS, "json"),
        },
    ),
    WEBHOOK: ParamRule(
        required={"path": "webhook-endpoint"},
        enums={"httpMethod": (WEBHOOK_METHODS, "POST")},
    ),
}


def _has_nonempty(params: Dict[str, Any], key: str) -> bool:
    v = params.get(key)
    return v is not None and str(v).strip() != ""


def _invalid_enum(params: Dict[str, Any], key: str, allowed: Tuple[str, ...]) -> bool:
    """Only values that are present are checked; an absent enum falls back to the node default."""
    if key not in params or params[key] is None or params[key] == "":
        return False
    return params[key] not in allowed


# ---------- rule set ----------

def trigger_findings(nodes: List[Node]) -> List[LintFinding]:
    if has_trigger(nodes):
        return []
    return [LintFinding("missing_trigger", "warn", "Workflow has no trigger node")]


def connectivity_findings(workflow) -> List[LintFinding]:
    G = build_graph(workflow)
    findings: List[LintFinding] = []
    for node in workflow.nodes:
        if is_trigger_node(node):
            continue
        if G.in_degree(node.id) == 0:
            findings.append(LintFinding(
                "unconnected_node", "warn",
                f'Node "{node.name}" has no incoming connections', node.name,
            ))
        if G.out_degree(node.id) == 0:
            findings.append(LintFinding(
                "dangling_branch", "warn",
                f'Node "{node.name}" has no outgoing connections', node.name,
            ))
    return findings


def param_findings(nodes: List[Node]) -> List[LintFinding]:
    findings: List[LintFinding] = []
    for node in nodes:
        rule = PARAM_RULES.get(node.type)
        if rule is None:
            continue
        params = node.parameters or {}
        for key in rule.required:
            if not _has_nonempty(params, key):
                findings.append(LintFinding(
                    "missing_required_param", "error",
                    f'Node "{node.name}" is missing required parameter "{key}"', node.name,
                ))
        for key, (allowed, _default) in rule.enums.items():
            if _invalid_enum(params, key, allowed):
                findings.append(LintFinding(
                    "invalid_enum", "error",
                    f'Node "{node.name}" has invalid {key} "{params[key]}" '
                    f"(allowed: {', '.join(allowed)})", node.name,
                ))
    return findings


def cycle_findings(workflow) -> List[LintFinding]:
    cycle = find_cycle(workflow)
    if not cycle:
        return []
    names = {n.id: n.name for n in workflow.nodes}
    path = " -> ".join(names.get(nid, nid) for nid in cycle + cycle[:1])
    return [LintFinding(
        "circular_dependency", "error",
        f"Workflow contains circular dependencies ({path})",
    )]


def compute_lints(workflow) -> List[LintFinding]:
    """Run every rule; findings accumulate in rule order."""
    findings: List[LintFinding] = []
    findings += trigger_findings(workflow.nodes)
    findings += connectivity_findings(workflow)
    findings += param_findings(workflow.nodes)
    findings += cycle_findings(workflow)
    return findings


# ---------- autofix ----------

def apply_autofixes(nodes: List[Node]) -> List[str]:
    """
    Write safe defaults for missing required params and out-of-enum values.
    Mutates node parameters in place; structure is never touched.
    Returns one "<node>.<param>" entry per value written.
    """
    fixed: List[str] = []
    for node in nodes:
        rule = PARAM_RULES.get(node.type)
        if rule is None:
            continue
        if node.parameters is None:
            node.parameters = {}
        params = node.parameters
        for key, default in rule.required.items():
            if not _has_nonempty(params, key):
                params[key] = default
                fixed.append(f"{node.name}.{key}")
        for key, (allowed, default) in rule.enums.items():
            if _invalid_enum(params, key, allowed):
                params[key] = default
                fixed.append(f"{node.name}.{key}")
    return fixed
