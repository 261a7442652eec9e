#!/usr/bin/env python3
# flowpatch/cli.py

import json
import logging
from pathlib import Path
from typing import Any, List, Optional

import typer

from flowpatch.batch.ops import parse_batch
from flowpatch.config import PolicyOptions, Settings
from flowpatch.errors import BatchSchemaError, WorkflowSchemaError
from flowpatch.planner.planner import PatternPlanner
from flowpatch.policy.enforcer import enforce_policies
from flowpatch.store.manager import GraphStore
from flowpatch.store.service import commit_batch
from flowpatch.store.state import WorkflowState
from flowpatch.utils.io import dumps, load_prompts_file, read_json, write_json
from flowpatch.utils.logger import init_logger, level_from_name

app = typer.Typer(help="flowpatch CLI - plan, apply and check edit batches for n8n-style workflows")


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj if isinstance(ctx.obj, Settings) else Settings.from_env()


def _load_json(path: Path, what: str) -> Any:
    try:
        return read_json(path)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"{what} file {path} is not valid JSON: {e}")


def _load_workflow(path: Path) -> WorkflowState:
    try:
        return WorkflowState.from_dict(_load_json(path, "Workflow"))
    except WorkflowSchemaError as e:
        raise typer.BadParameter(f"Workflow file {path} is malformed: {'; '.join(e.errors)}")


def _load_store(ctx: typer.Context, workflow: Optional[Path], workflow_id: str):
    """Store holding one workflow: the given JSON file, or a fresh seeded workflow."""
    store = GraphStore(_settings(ctx))
    if workflow is not None:
        state = store.load_workflow(_load_workflow(workflow))
    else:
        state = store.create_workflow(workflow_id, f"Workflow {workflow_id}")
    return store, state.id


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG | INFO | WARNING | ERROR (default: $LOG_LEVEL or WARNING)"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Also write a rotating log file here"),
):
    settings = Settings.from_env()
    level = level_from_name(log_level or settings.log_level, logging.WARNING)
    init_logger(level=level, log_dir=log_dir or settings.log_dir)
    ctx.obj = settings


@app.command()
def plan(
    ctx: typer.Context,
    prompt: str = typer.Option(..., "--prompt", "-p", help="Natural-language description of the change"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write the batch JSON here instead of stdout"),
    min_hits: Optional[int] = typer.Option(None, "--min-hits", help="Keyword hits a template needs to be chosen"),
):
    """
    Turn a prompt into an operation batch (template match, then keyword rules).
    """
    settings = _settings(ctx)
    planner = PatternPlanner(min_keyword_hits=min_hits if min_hits is not None else settings.min_keyword_hits)
    batch = planner.plan(prompt).to_dict()
    if out is not None:
        write_json(out, batch)
        print(f"[ok] wrote {len(batch['ops'])} op(s) to {out}")
    else:
        print(dumps(batch))


@app.command()
def apply(
    ctx: typer.Context,
    batch: Path = typer.Option(..., "--batch", "-b", exists=True, readable=True, help="Operation batch JSON"),
    workflow: Optional[Path] = typer.Option(None, "--workflow", "-w", exists=True, readable=True, help="Workflow JSON (default: fresh workflow with a Manual Trigger)"),
    workflow_id: str = typer.Option("workflow", "--id", help="Id for the fresh workflow when --workflow is not given"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write the resulting workflow JSON here"),
    no_validate: bool = typer.Option(False, "--no-validate", help="Keep the batch even if validation reports errors"),
    policy: bool = typer.Option(False, "--policy", help="Screen the batch with the DIFF_POLICY_* limits first"),
):
    """
    Apply a batch atomically, validate the result and roll back on validation errors.
    """
    settings = _settings(ctx)
    store, wid = _load_store(ctx, workflow, workflow_id)

    result = commit_batch(
        store, wid, _load_json(batch, "Batch"),
        policy=settings.policy if policy else None,
        validate=not no_validate,
    )
    print(dumps(result.to_dict()))
    if not result.ok:
        raise typer.Exit(code=1)

    if out is not None:
        write_json(out, store.get_workflow(wid).to_dict())
        print(f"[ok] wrote workflow version {result.version} to {out}")


@app.command()
def validate(
    ctx: typer.Context,
    workflow: Path = typer.Option(..., "--workflow", "-w", exists=True, readable=True, help="Workflow JSON"),
    autofix: bool = typer.Option(False, "--autofix", help="Fill safe defaults for parameter errors"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write the (autofixed) workflow JSON here"),
):
    """
    Lint a workflow. Exit code 1 when an error-level finding remains.
    """
    store, wid = _load_store(ctx, workflow, "")
    result = store.validate(wid, autofix=autofix)
    print(dumps(result.to_dict()))

    if out is not None:
        write_json(out, store.get_workflow(wid).to_dict())
        print(f"[ok] wrote {out}")
    if not result.valid:
        raise typer.Exit(code=1)


@app.command()
def simulate(
    ctx: typer.Context,
    workflow: Path = typer.Option(..., "--workflow", "-w", exists=True, readable=True, help="Workflow JSON"),
    report: Optional[Path] = typer.Option(None, "--report", help="Write the full simulation stats JSON here"),
    path_sep: str = typer.Option(" -> ", "--path-sep", help="Separator for the execution order"),
):
    """
    Estimate duration and output shapes of a valid workflow (no node logic runs).
    """
    store, wid = _load_store(ctx, workflow, "")
    result = store.simulate(wid)
    if not result.ok:
        print(f"[error] {result.error}")
        raise typer.Exit(code=1)

    stats = result.stats
    print(f"NodesVisited:      {stats['nodesVisited']}")
    print(f"EstimatedDuration: {stats['estimatedDurationMs']} ms")
    print(f"P95Duration:       {stats['p95DurationMs']} ms")
    print(f"ExecutionOrder:    {path_sep.join(stats['executionOrder'])}")
    if stats["warnings"]:
        print("Warnings:")
        for w in stats["warnings"]:
            print(f"- [{w['code']}] {w['message']}")

    if report is not None:
        write_json(report, result.to_dict())
        print(f"[ok] wrote report to {report}")


@app.command("check-policy")
def check_policy(
    ctx: typer.Context,
    batch: Path = typer.Option(..., "--batch", "-b", exists=True, readable=True, help="Operation batch JSON"),
    workflow: Optional[Path] = typer.Option(None, "--workflow", "-w", exists=True, readable=True, help="Current workflow JSON (default: fresh workflow)"),
    max_nodes_added: Optional[int] = typer.Option(None, "--max-nodes-added"),
    max_ops: Optional[int] = typer.Option(None, "--max-ops"),
    max_payload_bytes: Optional[int] = typer.Option(None, "--max-payload-bytes"),
    block: Optional[List[str]] = typer.Option(None, "--block", help="Blocked host or *.suffix (repeatable)"),
):
    """
    Report every policy violation of a batch against the current graph. Exit code 1 on violations.
    """
    base = _settings(ctx).policy
    options = PolicyOptions(
        max_nodes_added=max_nodes_added if max_nodes_added is not None else base.max_nodes_added,
        max_ops_per_batch=max_ops if max_ops is not None else base.max_ops_per_batch,
        max_payload_bytes=max_payload_bytes if max_payload_bytes is not None else base.max_payload_bytes,
        domain_blacklist=list(block) if block else base.domain_blacklist,
    )
    try:
        parsed = parse_batch(_load_json(batch, "Batch"))
    except BatchSchemaError as e:
        print(dumps(e.to_dict()))
        raise typer.Exit(code=2)

    if workflow is not None:
        current = _load_workflow(workflow)
    else:
        current = WorkflowState.new("workflow", "Workflow")

    violations = enforce_policies(parsed, current, options)
    print(dumps({"ok": not violations, "violations": [v.to_dict() for v in violations]}))
    if violations:
        raise typer.Exit(code=1)


@app.command()
def bench(
    ctx: typer.Context,
    prompts: Path = typer.Option(..., "--prompts", exists=True, readable=True, help="Prompts file (blocks of '<case id>' + prompt lines)"),
    out: Path = typer.Option(Path("experiments/results/plan_report.csv"), "--out", help="CSV path to write results"),
    policy: bool = typer.Option(True, "--policy/--no-policy", help="Screen planned batches with the policy limits"),
    dump_dir: Optional[Path] = typer.Option(None, "--dump-dir", help="Write each resulting workflow JSON here"),
):
    """
    Plan every prompt into a fresh workflow, commit it, simulate it and export a CSV report.
    """
    import pandas as pd

    settings = _settings(ctx)
    planner = PatternPlanner(min_keyword_hits=settings.min_keyword_hits)

    rows = []
    for case_id, prompt in load_prompts_file(prompts):
        store = GraphStore(settings)
        store.create_workflow(case_id, case_id)

        batch = planner.plan(prompt)
        commit = commit_batch(store, case_id, batch, policy=settings.policy if policy else None)
        validation = store.validate(case_id)
        sim = store.simulate(case_id)
        state = store.get_workflow(case_id)
        stats = sim.stats or {}

        rows.append({
            "id": case_id,
            "ops": len(batch),
            "committed": commit.ok,
            "error": commit.error or "",
            "version": state.version,
            "nodes": len(state.nodes),
            "connections": len(state.connections),
            "warnings": len(validation.warnings),
            "estimatedDurationMs": stats.get("estimatedDurationMs"),
            "p95DurationMs": stats.get("p95DurationMs"),
        })
        print(f"[{case_id}] ops={len(batch)} committed={commit.ok} nodes={len(state.nodes)}")

        if dump_dir is not None:
            write_json(dump_dir / f"{case_id}.json", state.to_dict())

    out.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(rows).to_csv(out, index=False)
    print(f"[ok] wrote {out}")


if __name__ == "__main__":
    app()
