# flowpatch/planner/patterns.py
# Catalog of known workflow shapes the planner can instantiate.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple


@dataclass
class PatternNode:
    type: str
    type_version: int
    name: str
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WorkflowPattern:
    name: str
    keywords: Tuple[str, ...]
    nodes: List[PatternNode]
    connections: List[Tuple[str, str]] = field(default_factory=list)


WORKFLOW_PATTERNS: List[WorkflowPattern] = [
    WorkflowPattern(
        name="foreach-and-branching",
        keywords=("for each", "foreach", "each user", "branch", "if", "invalid", "telegram"),
        nodes=[
            PatternNode("n8n-nodes-base.httpRequest", 4, "HTTP Request", {
                "method": "GET",
                "url": "https://jsonplaceholder.typicode.com/users",
                "responseFormat": "json",
            }),
            PatternNode("n8n-nodes-base.code", 2, "For Each", {
                "jsCode": "return items.map(i => ({ json: i.json }));",
            }),
            PatternNode("n8n-nodes-base.if", 1, "IF Email Domain", {
                "conditions": {"string": [{"value1": "={{ $json.email }}", "operation": "contains", "value2": "@"}]},
            }),
            PatternNode("n8n-nodes-base.telegram", 1, "Telegram Notify", {
                "operation": "sendMessage",
                "text": "Invalid email detected",
            }),
        ],
        connections=[
            ("HTTP Request", "For Each"),
            ("For Each", "IF Email Domain"),
            ("IF Email Domain", "Telegram Notify"),
        ],
    ),
    WorkflowPattern(
        name="webhook-to-slack",
        keywords=("webhook", "slack", "notification", "alert"),
        nodes=[
            PatternNode("n8n-nodes-base.webhook", 1, "Webhook", {
                "httpMethod": "POST",
                "path": "webhook-endpoint",
            }),
            PatternNode("n8n-nodes-base.slack", 2, "Send to Slack", {
                "authentication": "oAuth2",
                "channel": "={{ $json.channel || '#general' }}",
                "text": "={{ $json.message }}",
            }),
        ],
        connections=[("Webhook", "Send to Slack")],
    ),
    WorkflowPattern(
        name="scheduled-report",
        keywords=("schedule", "report", "daily", "weekly", "cron"),
        nodes=[
            PatternNode("n8n-nodes-base.scheduleTrigger", 1, "Schedule", {
                "rule": {"cronExpression": "0 9 * * *"},
            }),
            PatternNode("n8n-nodes-base.httpRequest", 4, "Fetch Data", {
                "method": "GET",
                "url": "https://api.example.com/data",
            }),
            PatternNode("n8n-nodes-base.code", 2, "Transform Data", {
                "jsCode": "return items.map(item => ({ json: item.json }));",
            }),
            PatternNode("n8n-nodes-base.emailSend", 2, "Send Report", {
                "sendTo": "team@example.com",
                "subject": "Daily Report",
                "emailType": "html",
            }),
        ],
        connections=[
            ("Schedule", "Fetch Data"),
            ("Fetch Data", "Transform Data"),
            ("Transform Data", "Send Report"),
        ],
    ),
    WorkflowPattern(
        name="ai-enhanced-workflow",
        keywords=("ai", "langchain", "openai", "chat", "vector", "embedding"),
        nodes=[
            PatternNode("n8n-nodes-base.webhook", 1, "Webhook", {
                "httpMethod": "POST",
                "path": "ai-endpoint",
            }),
            PatternNode("@n8n/n8n-nodes-langchain.textSplitterCharacterTextSplitter", 1, "Text Splitter", {
                "chunkSize": 1000,
                "chunkOverlap": 100,
            }),
            PatternNode("@n8n/n8n-nodes-langchain.embeddingsOpenAi", 1, "Embeddings", {
                "model": "text-embedding-ada-002",
            }),
            PatternNode("@n8n/n8n-nodes-langchain.vectorStoreSupabase", 1, "Vector Store"),
            PatternNode("@n8n/n8n-nodes-langchain.agent", 1, "AI Agent"),
        ],
        connections=[
            ("Webhook", "Text Splitter"),
            ("Text Splitter", "Embeddings"),
            ("Embeddings", "Vector Store"),
            ("Vector Store", "AI Agent"),
        ],
    ),
    WorkflowPattern(
        name="github-automation",
        keywords=("github", "git", "commit", "issue", "pr", "pull request"),
        nodes=[
            PatternNode("n8n-nodes-base.githubTrigger", 1, "GitHub Trigger", {
                "events": ["push", "pull_request"],
            }),
            PatternNode("n8n-nodes-base.github", 1, "GitHub Action", {
                "operation": "createIssue",
                "owner": "={{ $json.repository.owner.login }}",
                "repository": "={{ $json.repository.name }}",
            }),
        ],
        connections=[("GitHub Trigger", "GitHub Action")],
    ),
    WorkflowPattern(
        name="stripe-integration",
        keywords=("stripe", "payment", "invoice", "subscription", "billing"),
        nodes=[
            PatternNode("n8n-nodes-base.stripeTrigger", 1, "Stripe Trigger", {
                "events": ["invoice.payment_succeeded"],
            }),
            PatternNode("n8n-nodes-base.quickbooks", 1, "QuickBooks", {
                "operation": "createInvoice",
            }),
        ],
        connections=[("Stripe Trigger", "QuickBooks")],
    ),
    WorkflowPattern(
        name="inventory-monitoring",
        keywords=("inventory", "stock", "alert", "monitoring", "warehouse"),
        nodes=[
            PatternNode("n8n-nodes-base.scheduleTrigger", 1, "Check Schedule", {
                "rule": {"interval": [{"field": "hours", "hoursInterval": 1}]},
            }),
            PatternNode("n8n-nodes-base.postgres", 2, "Check Inventory", {
                "operation": "executeQuery",
                "query": "SELECT * FROM inventory WHERE quantity < reorder_level",
            }),
            PatternNode("n8n-nodes-base.if", 1, "Low Stock?", {
                "conditions": {"number": [{"value1": "={{ $json.length }}", "operation": "larger", "value2": 0}]},
            }),
            PatternNode("n8n-nodes-base.slack", 2, "Alert", {
                "channel": "#inventory-alerts",
                "text": "Low stock detected for {{ $json.length }} items",
            }),
        ],
        connections=[
            ("Check Schedule", "Check Inventory"),
            ("Check Inventory", "Low Stock?"),
            ("Low Stock?", "Alert"),
        ],
    ),
    WorkflowPattern(
        name="insert-after-existing",
        keywords=("insert after", "logging", "debug", "log response"),
        nodes=[
            PatternNode("n8n-nodes-base.code", 2, "Log Response", {
                "jsCode": "console.log($json); return items;",
            }),
        ],
    ),
]
