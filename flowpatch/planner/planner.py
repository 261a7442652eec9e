# flowpatch/planner/planner.py
# Free-text request -> operation batch. Template match first, keyword rules second.

from __future__ import annotations

import copy
import re
from typing import List, Optional

from flowpatch.batch.ops import AddNode, Annotate, Connect, Node, Operation, OperationBatch
from flowpatch.planner.matcher import MatchResult, PatternMatcher, contains_any
from flowpatch.planner.patterns import WorkflowPattern
from flowpatch.store.state import SEED_TRIGGER
from flowpatch.utils.logger import get_logger

logger = get_logger("planner")

BATCH_VERSION = "v1"
GRID_X0, GRID_DX, GRID_Y = 400, 200, 300

DEFAULT_URL = "https://api.example.com/data"
FALLBACK_URL = "https://jsonplaceholder.typicode.com/users"
DEFAULT_CRON = "0 9 * * *"

HTTP_KEYWORDS = ("http", "api", "fetch")
WEBHOOK_KEYWORDS = ("webhook",)
SCHEDULE_KEYWORDS = ("schedule", "cron")

_URL_RE = re.compile(r"https?://[^\s'\"<>]+")

# 5 or 6 whitespace separated cron fields
_CRON_RE = re.compile(r"(?<!\S)([\d*/,-]+(?:\s+[\d*/,-]+){4,5})(?!\S)")

CRON_PHRASES = (
    ("every minute", "* * * * *"),
    ("every hour", "0 * * * *"),
    ("hourly", "0 * * * *"),
    ("every day", "0 0 * * *"),
    ("every week", "0 0 * * 0"),
    ("weekly", "0 0 * * 0"),
    ("every month", "0 0 1 * *"),
    ("monthly", "0 0 1 * *"),
)

_METHOD_RULES = (
    ("POST", ("post", "create", "send")),
    ("PUT", ("put", "update")),
    ("DELETE", ("delete", "remove")),
)


def detect_http_method(text: str) -> str:
    t = text.lower()
    for method, verbs in _METHOD_RULES:
        if any(re.search(rf"\b{v}\b", t) for v in verbs):
            return method
    return "GET"


def extract_url(text: str) -> Optional[str]:
    m = _URL_RE.search(text or "")
    return m.group(0).rstrip(".,;:!?)]}") if m else None


def extract_cron(text: str) -> Optional[str]:
    """Explicit cron expression if present, else a cron for phrases like 'every hour'."""
    m = _CRON_RE.search(text or "")
    if m and any(ch.isdigit() or ch == "*" for ch in m.group(1)):
        return " ".join(m.group(1).split())
    t = (text or "").lower()
    for phrase, cron in CRON_PHRASES:
        if phrase in t:
            return cron
    return None


def operations_from_pattern(pattern: WorkflowPattern) -> List[Operation]:
    """Canned nodes -> add_node ops (ids node-<n>, horizontal grid), canned edges -> connect ops."""
    ops: List[Operation] = []
    for i, pn in enumerate(pattern.nodes):
        ops.append(AddNode(node=Node(
            id=f"node-{i + 1}",
            name=pn.name,
            type=pn.type,
            type_version=pn.type_version,
            position=[GRID_X0 + i * GRID_DX, GRID_Y],
            parameters=copy.deepcopy(pn.parameters),
        )))
    for source, target in pattern.connections:
        ops.append(Connect(source=source, target=target))
    return ops


class PatternPlanner:
    """
    Turns a prompt into an OperationBatch. Has no knowledge of live workflows;
    fallback batches connect from the seed "Manual Trigger" every workflow has.
    """

    def __init__(self, matcher: Optional[PatternMatcher] = None, min_keyword_hits: int = 2) -> None:
        self.matcher = matcher or PatternMatcher()
        self.min_keyword_hits = min_keyword_hits

    def plan(self, prompt: str) -> OperationBatch:
        match = self.matcher.best_match(prompt, min_hits=self.min_keyword_hits)
        if match is not None:
            logger.info(
                "matched pattern %s (score=%s, keywords=%s)",
                match.pattern.name, match.score, ", ".join(match.matched_keywords),
            )
            return self._from_match(match)

        ops = self._keyword_ops(prompt)
        if not ops:
            logger.info("no pattern or keyword rule matched; using default HTTP batch")
            ops = self._default_ops(prompt)
        return OperationBatch(version=BATCH_VERSION, ops=ops)

    def _from_match(self, match: MatchResult) -> OperationBatch:
        ops = operations_from_pattern(match.pattern)
        ops.append(Annotate(
            name=match.pattern.nodes[0].name,
            text=f"Generated from pattern: {match.pattern.name} (confidence: {match.confidence}%)",
        ))
        return OperationBatch(version=BATCH_VERSION, ops=ops)

    def _keyword_ops(self, prompt: str) -> List[Operation]:
        ops: List[Operation] = []
        trigger_name = SEED_TRIGGER["name"]

        if contains_any(prompt, HTTP_KEYWORDS):
            method = detect_http_method(prompt)
            ops.append(AddNode(node=Node(
                id="http-1",
                name="HTTP Request",
                type="n8n-nodes-base.httpRequest",
                type_version=4,
                position=[600, 300],
                parameters={
                    "method": method,
                    "url": extract_url(prompt) or DEFAULT_URL,
                    "responseFormat": "json",
                    "options": {},
                },
            )))
            ops.append(Connect(source=trigger_name, target="HTTP Request", index=0))
            ops.append(Annotate(name="HTTP Request", text=f"{method} request to fetch data"))

        if contains_any(prompt, WEBHOOK_KEYWORDS):
            ops.append(AddNode(node=Node(
                id="webhook-1",
                name="Webhook",
                type="n8n-nodes-base.webhook",
                type_version=1,
                position=[250, 500],
                parameters={"httpMethod": "POST", "path": "webhook-endpoint"},
            )))

        if contains_any(prompt, SCHEDULE_KEYWORDS):
            ops.append(AddNode(node=Node(
                id="cron-1",
                name="Schedule Trigger",
                type="n8n-nodes-base.scheduleTrigger",
                type_version=1,
                position=[250, 700],
                parameters={"rule": {"cronExpression": extract_cron(prompt) or DEFAULT_CRON}},
            )))

        return ops

    def _default_ops(self, prompt: str) -> List[Operation]:
        snippet = (prompt or "").strip()[:50]
        return [
            AddNode(node=Node(
                id="http-default",
                name="HTTP Request",
                type="n8n-nodes-base.httpRequest",
                type_version=4,
                position=[600, 300],
                parameters={"method": "GET", "url": FALLBACK_URL, "responseFormat": "json"},
            )),
            Connect(source=SEED_TRIGGER["name"], target="HTTP Request"),
            Annotate(name="HTTP Request", text=f'Created from request: "{snippet}"'),
        ]


def plan(prompt: str, min_keyword_hits: int = 2) -> OperationBatch:
    return PatternPlanner(min_keyword_hits=min_keyword_hits).plan(prompt)
