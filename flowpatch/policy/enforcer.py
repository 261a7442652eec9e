# flowpatch/policy/enforcer.py

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

from flowpatch.batch.ops import OperationBatch
from flowpatch.config import PolicyOptions
from flowpatch.utils.graph import has_trigger


URL_PARAM_KEYS = ("url", "baseUrl")


@dataclass
class PolicyViolation:
    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            d["details"] = self.details
        return d


def payload_size(batch: OperationBatch) -> int:
    """UTF-8 byte length of the compact JSON wire form."""
    return len(json.dumps(batch.to_dict(), separators=(",", ":"), ensure_ascii=False).encode("utf-8"))


def _hostname(url: str) -> str:
    # schemeless values like "evil.com/path" are read as host + path
    try:
        parts = urlsplit(url if "//" in url else f"http://{url}")
    except ValueError:
        # malformed (e.g. unbalanced IPv6 brackets): nothing to match against
        return ""
    return (parts.hostname or "").lower()


def match_host(host: str, pattern: str) -> bool:
    """'*.example.com' matches any subdomain (not the bare domain); otherwise exact host."""
    pattern = pattern.strip().lower()
    if not pattern:
        return False
    if pattern.startswith("*."):
        return host.endswith(pattern[1:])
    return host == pattern


def is_blocked(url: str, patterns: Iterable[str]) -> bool:
    host = _hostname(url)
    return bool(host) and any(match_host(host, p) for p in patterns)


def _urls_set_by(batch: OperationBatch) -> List[str]:
    urls: List[str] = []
    for op in batch.ops:
        if op.op == "add_node":
            params = op.node.parameters
        elif op.op == "set_params":
            params = op.parameters
        else:
            continue
        for key in URL_PARAM_KEYS:
            value = (params or {}).get(key)
            if isinstance(value, str) and value.strip():
                urls.append(value.strip())
    return urls


def enforce_policies(
    batch: OperationBatch,
    current_graph,
    options: Optional[PolicyOptions] = None,
) -> List[PolicyViolation]:
    """
    Screen a proposed batch against quotas and blocklists before it is applied.

    Every check runs; the caller decides whether any violation blocks the batch.
    `current_graph` is the workflow as it is now (anything with `.nodes`).
    """
    cfg = options or PolicyOptions()
    violations: List[PolicyViolation] = []

    # 1) payload size
    size = payload_size(batch)
    if size > cfg.max_payload_bytes:
        violations.append(PolicyViolation(
            "payload_too_large",
            f"Batch payload exceeds {cfg.max_payload_bytes} bytes",
            {"payloadSize": size},
        ))

    # 2) operation count
    if len(batch.ops) > cfg.max_ops_per_batch:
        violations.append(PolicyViolation(
            "too_many_ops",
            f"Operation count exceeds {cfg.max_ops_per_batch}",
            {"ops": len(batch.ops)},
        ))

    # 3) added nodes
    added = batch.count("add_node")
    if added > cfg.max_nodes_added:
        violations.append(PolicyViolation(
            "too_many_nodes_added",
            f"Added nodes exceed {cfg.max_nodes_added}",
            {"addedNodes": added},
        ))

    # 4) domain blocklist
    if cfg.domain_blacklist:
        blocked = [u for u in _urls_set_by(batch) if is_blocked(u, cfg.domain_blacklist)]
        if blocked:
            violations.append(PolicyViolation(
                "domain_blacklist",
                "URLs match domain blacklist",
                {"urls": blocked},
            ))

    # 5) the graph must already hold a trigger
    if not has_trigger(current_graph.nodes):
        violations.append(PolicyViolation(
            "missing_trigger",
            "Graph must contain at least one trigger node",
        ))

    return violations
