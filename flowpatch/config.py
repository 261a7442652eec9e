# flowpatch/config.py
"""
Runtime settings read from environment variables.

    LOG_LEVEL                       logger level (library default INFO, CLI default WARNING)
    FLOWPATCH_LOG_DIR               directory for the rotating log file (off when unset)
    FLOWPATCH_NODE_COST_MS          simulator cost per node (default 150)
    FLOWPATCH_MIN_KEYWORD_HITS      planner template threshold (default 2)
    DIFF_POLICY_MAX_ADD_NODES       policy: max add_node ops per batch (default 20)
    DIFF_POLICY_MAX_OPS             policy: max ops per batch (default 500)
    DIFF_POLICY_MAX_PAYLOAD_BYTES   policy: max serialized batch size (default 256 KiB)
    DIFF_POLICY_DOMAIN_BLACKLIST    policy: comma separated hosts / *.suffix globs
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}")


def env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [s.strip() for s in raw.split(",") if s.strip()]


@dataclass
class PolicyOptions:
    max_nodes_added: int = 20
    max_ops_per_batch: int = 500
    max_payload_bytes: int = 256 * 1024
    domain_blacklist: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> "PolicyOptions":
        d = cls()
        return cls(
            max_nodes_added=env_int("DIFF_POLICY_MAX_ADD_NODES", d.max_nodes_added),
            max_ops_per_batch=env_int("DIFF_POLICY_MAX_OPS", d.max_ops_per_batch),
            max_payload_bytes=env_int("DIFF_POLICY_MAX_PAYLOAD_BYTES", d.max_payload_bytes),
            domain_blacklist=env_list("DIFF_POLICY_DOMAIN_BLACKLIST"),
        )


@dataclass
class Settings:
    log_level: Optional[str] = None
    log_dir: Optional[str] = None
    node_cost_ms: int = 150
    min_keyword_hits: int = 2
    policy: PolicyOptions = field(default_factory=PolicyOptions)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            log_level=os.getenv("LOG_LEVEL") or None,
            log_dir=os.getenv("FLOWPATCH_LOG_DIR") or None,
            node_cost_ms=env_int("FLOWPATCH_NODE_COST_MS", 150),
            min_keyword_hits=env_int("FLOWPATCH_MIN_KEYWORD_HITS", 2),
            policy=PolicyOptions.from_env(),
        )
