import threading
from datetime import datetime, timezone

import pytest

from flowpatch.batch.ops import AddNode, Connect, Node, OperationBatch
from flowpatch.errors import WorkflowSchemaError
from flowpatch.store.manager import GraphStore, new_undo_id
from flowpatch.store.state import SEED_TRIGGER, WorkflowState


def batch(*ops):
    return {"version": "v1", "ops": list(ops)}


def add(node):
    return {"op": "add_node", "node": node}


def connect(src, dst, index=0):
    return {"op": "connect", "from": src, "to": dst, "index": index}


def content(state):
    d = state.to_dict()
    return d["nodes"], d["connections"]


# ---------- creation / registry ----------

def test_create_workflow_seeds_manual_trigger(store):
    wf = store.get_workflow("wf1")
    assert wf.version == 1
    assert [n.to_dict() for n in wf.nodes] == [SEED_TRIGGER]
    assert wf.connections == []


def test_create_replaces_existing(store, make_node):
    store.apply_batch("wf1", batch(add(make_node("a"))))
    store.create_workflow("wf1", "Again")
    wf = store.get_workflow("wf1")
    assert wf.name == "Again"
    assert len(wf.nodes) == 1
    assert store.history("wf1") == {"undo": [], "redo": []}


def test_get_unknown_workflow_is_none(store):
    assert store.get_workflow("nope") is None


def test_apply_auto_creates_workflow(make_node):
    s = GraphStore()
    res = s.apply_batch("fresh", batch(add(make_node("a"))))
    assert res.success
    wf = s.get_workflow("fresh")
    assert wf.name == "Workflow fresh"
    assert [n.id for n in wf.nodes] == ["manual-trigger", "a"]
    assert wf.version == 2


def test_list_workflows_and_reset(store):
    store.create_workflow("wf2", "Other")
    summaries = {s["id"]: s for s in store.list_workflows()}
    assert set(summaries) == {"wf1", "wf2"}
    assert summaries["wf2"]["nodeCount"] == 1
    store.reset_all()
    assert store.list_workflows() == []


# ---------- loading workflow documents ----------

N8N_EXPORT = {
    "id": "n8n-1",
    "name": "Exported",
    "nodes": [
        {"id": "t", "name": "Manual Trigger", "type": "n8n-nodes-base.manualTrigger", "typeVersion": 1, "position": [250, 300], "parameters": {}},
        {"id": "h", "name": "HTTP Request", "type": "n8n-nodes-base.httpRequest", "typeVersion": 4.2, "position": [450, 300],
         "parameters": {"method": "GET", "url": "https://api.example.com"}},
        {"id": "c", "name": "Code", "type": "n8n-nodes-base.code", "typeVersion": 2, "position": [650, 300], "parameters": {}},
    ],
    "connections": {
        "Manual Trigger": {"main": [[{"node": "HTTP Request", "type": "main", "index": 0}]]},
        "HTTP Request": {"main": [None, [{"node": "Code", "type": "main", "index": 0}]]},
    },
}


def test_load_n8n_connection_map(store):
    state = store.load_workflow(N8N_EXPORT)
    assert [c.key for c in state.connections] == [("Manual Trigger", "HTTP Request", 0), ("HTTP Request", "Code", 1)]
    result = store.validate("n8n-1")
    assert result.valid
    # name-based endpoints resolve, so no node looks unconnected
    assert [l.code for l in result.lints if l.code == "unconnected_node"] == []


def test_load_keeps_version_zero_and_parses_z_timestamp(make_node):
    state = WorkflowState.from_dict({
        "id": "v0",
        "nodes": [make_node("a")],
        "version": 0,
        "lastModified": "2024-05-01T10:00:00Z",
    })
    assert state.version == 0
    assert state.last_modified == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("doc, fragment", [
    ({"nodes": [{"id": "a", "type": "n8n-nodes-base.code"}]}, "'name' is a required property"),
    ({"nodes": [], "connections": "Manual Trigger -> Code"}, "connections"),
    ({"nodes": [], "connections": {"Manual Trigger": {"main": [[{"type": "main"}]]}}}, "target without a node name"),
    ({"nodes": [], "lastModified": "yesterday"}, "lastModified"),
    ({"name": "no nodes"}, "'nodes' is a required property"),
])
def test_load_malformed_workflow_raises(store, doc, fragment):
    with pytest.raises(WorkflowSchemaError) as exc:
        store.load_workflow(doc)
    assert exc.value.code == "invalid_workflow"
    assert any(fragment in e for e in exc.value.errors), exc.value.errors
    assert store.list_workflows()[0]["id"] == "wf1"
    assert len(store.list_workflows()) == 1


def test_snapshots_do_not_alias_live_state(store, make_node):
    store.apply_batch("wf1", batch(add(make_node("a", parameters={"nested": {"k": 1}}))))
    snap = store.get_workflow("wf1")
    snap.nodes[1].parameters["nested"]["k"] = 99
    snap.nodes.append(Node(id="x", name="x", type="t"))
    fresh = store.get_workflow("wf1")
    assert fresh.nodes[1].parameters == {"nested": {"k": 1}}
    assert len(fresh.nodes) == 2


def test_undo_id_format():
    uid = new_undo_id()
    prefix, ms, suffix = uid.split("_")
    assert prefix == "undo"
    assert ms.isdigit()
    assert len(suffix) == 9


# ---------- apply ----------

def test_apply_bumps_version_and_returns_state(store, make_node):
    res = store.apply_batch("wf1", batch(add(make_node("a")), connect("Manual Trigger", "a")))
    assert res.success
    assert res.applied_count == 2
    assert res.undo_id.startswith("undo_")
    assert res.new_state.version == 2
    assert res.to_dict()["newState"]["version"] == 2


def test_atomicity_failed_batch_leaves_state_untouched(store, make_node):
    store.apply_batch("wf1", batch(add(make_node("a"))))
    before = store.get_workflow("wf1").to_dict()

    res = store.apply_batch("wf1", batch(
        add(make_node("b")),
        {"op": "set_params", "name": "a", "parameters": {"x": 1}},
        {"op": "delete", "name": "missing"},
    ))

    assert not res.success
    assert res.error == 'Node "missing" not found'
    assert res.code == "operation_failed"
    assert store.get_workflow("wf1").to_dict() == before
    assert len(store.history("wf1")["undo"]) == 1


def test_scenario_connect_to_missing_node_rolls_back_everything(store, make_node):
    res = store.apply_batch("wf1", batch(
        add(make_node("n1")),
        add(make_node("n2")),
        add(make_node("n3")),
        connect("n1", "n2"),
        connect("n2", "ghost"),
    ))
    assert res.success is False
    assert res.error == 'Target node "ghost" not found'
    wf = store.get_workflow("wf1")
    assert [n.id for n in wf.nodes] == ["manual-trigger"]
    assert wf.version == 1


def test_missing_source_message(store):
    res = store.apply_batch("wf1", batch(connect("ghost", "Manual Trigger")))
    assert res.error == 'Source node "ghost" not found'


def test_duplicate_node_id_fails(store, make_node):
    res = store.apply_batch("wf1", batch(add(make_node("manual-trigger", name="Other"))))
    assert not res.success
    assert res.error == "Node with id manual-trigger already exists"


def test_schema_error_is_a_tagged_failure(store):
    res = store.apply_batch("wf1", {"version": "v1", "ops": [{"op": "add_node", "node": {"id": "x"}}]})
    assert not res.success
    assert res.code == "invalid_operation_batch"
    assert "ops[0].node" in res.error
    assert store.get_workflow("wf1").version == 1


def test_typed_batch_is_accepted(store):
    typed = OperationBatch(ops=[
        AddNode(node=Node(id="a", name="A", type="n8n-nodes-base.code")),
        Connect(source="manual-trigger", target="a"),
    ])
    res = store.apply_batch("wf1", typed)
    assert res.success
    assert store.get_workflow("wf1").connections[0].key == ("manual-trigger", "a", 0)


def test_batch_objects_are_not_aliased_into_state(store):
    node = Node(id="a", name="A", type="n8n-nodes-base.code", parameters={"k": [1]})
    store.apply_batch("wf1", OperationBatch(ops=[AddNode(node=node)]))
    node.parameters["k"].append(2)
    assert store.get_workflow("wf1").nodes[1].parameters == {"k": [1]}


def test_version_monotonic_over_apply_undo_redo(store, make_node):
    versions = [store.get_workflow("wf1").version]
    store.apply_batch("wf1", batch(add(make_node("a"))))
    versions.append(store.get_workflow("wf1").version)
    store.apply_batch("wf1", batch(add(make_node("b"))))
    versions.append(store.get_workflow("wf1").version)
    store.undo("wf1")
    versions.append(store.get_workflow("wf1").version)
    store.redo("wf1")
    versions.append(store.get_workflow("wf1").version)
    assert versions == [1, 2, 3, 4, 5]


# ---------- individual operations ----------

def test_connect_is_idempotent(store, make_node):
    store.apply_batch("wf1", batch(add(make_node("a"))))
    store.apply_batch("wf1", batch(connect("manual-trigger", "a")))
    res = store.apply_batch("wf1", batch(connect("manual-trigger", "a")))
    assert res.success
    assert len(store.get_workflow("wf1").connections) == 1


def test_connect_by_name_and_id_is_the_same_edge(store, make_node):
    store.apply_batch("wf1", batch(add(make_node("a", name="Alpha"))))
    store.apply_batch("wf1", batch(connect("Manual Trigger", "Alpha")))
    store.apply_batch("wf1", batch(connect("manual-trigger", "a")))
    conns = store.get_workflow("wf1").connections
    assert [c.key for c in conns] == [("manual-trigger", "a", 0)]


def test_connect_distinct_output_index_adds_edge(store, make_node):
    store.apply_batch("wf1", batch(add(make_node("a")), connect("manual-trigger", "a"), connect("manual-trigger", "a", 1)))
    assert len(store.get_workflow("wf1").connections) == 2


def test_set_params_shallow_merge(store, make_node):
    store.apply_batch("wf1", batch(add(make_node("a", parameters={"keep": 1, "nested": {"x": 1}}))))
    store.apply_batch("wf1", batch({"op": "set_params", "name": "a", "parameters": {"nested": {"y": 2}, "new": True}}))
    assert store.get_workflow("wf1").nodes[1].parameters == {"keep": 1, "nested": {"y": 2}, "new": True}


def test_delete_cascades_connections(store, make_node):
    store.apply_batch("wf1", batch(
        add(make_node("a", name="A")),
        add(make_node("b", name="B")),
        connect("manual-trigger", "a"),
        connect("a", "b"),
        connect("manual-trigger", "b"),
    ))
    store.apply_batch("wf1", batch({"op": "delete", "name": "A"}))
    wf = store.get_workflow("wf1")
    assert [n.id for n in wf.nodes] == ["manual-trigger", "b"]
    assert [c.key for c in wf.connections] == [("manual-trigger", "b", 0)]


def test_delete_cascades_name_based_connections(store, make_node):
    wf = store.get_workflow("wf1").to_dict()
    wf["nodes"].append(make_node("a", name="A"))
    wf["connections"] = [{"from": "Manual Trigger", "to": "A", "index": 0}]
    store.load_workflow(wf)
    store.apply_batch("wf1", batch({"op": "delete", "name": "a"}))
    assert store.get_workflow("wf1").connections == []


def test_annotate_changes_nothing_but_version(store):
    before = content(store.get_workflow("wf1"))
    res = store.apply_batch("wf1", batch({"op": "annotate", "name": "Manual Trigger", "text": "entry point"}))
    assert res.success
    assert content(store.get_workflow("wf1")) == before
    assert store.get_workflow("wf1").version == 2


def test_ambiguous_name_reference_fails(store, make_node):
    store.apply_batch("wf1", batch(add(make_node("a", name="Dup")), add(make_node("b", name="Dup"))))
    res = store.apply_batch("wf1", batch({"op": "delete", "name": "Dup"}))
    assert not res.success
    assert "ambiguous" in res.error
    assert len(store.get_workflow("wf1").nodes) == 3


def test_id_match_wins_over_name(store, make_node):
    store.apply_batch("wf1", batch(add(make_node("a", name="b")), add(make_node("b", name="B2"))))
    store.apply_batch("wf1", batch({"op": "delete", "name": "b"}))
    assert [n.id for n in store.get_workflow("wf1").nodes] == ["manual-trigger", "a"]


# ---------- undo / redo ----------

def test_undo_on_fresh_workflow_is_nothing_to_undo(store):
    res = store.undo("wf1")
    assert res.success is False
    assert res.error == "Nothing to undo"
    assert res.code == "nothing_to_undo"


def test_undo_unknown_workflow(store):
    res = store.undo("nope")
    assert not res.success
    assert res.error == "Workflow not found"


def test_undo_redo_inverse_law(store, make_node):
    pre = content(store.get_workflow("wf1"))
    applied = store.apply_batch("wf1", batch(add(make_node("a")), connect("manual-trigger", "a")))
    post = content(store.get_workflow("wf1"))

    undone = store.undo("wf1")
    assert undone.success
    assert undone.undo_id == applied.undo_id
    assert undone.applied_count == 2
    assert content(store.get_workflow("wf1")) == pre

    redone = store.redo("wf1")
    assert redone.success
    assert content(store.get_workflow("wf1")) == post


def test_undo_specific_entry(store, make_node):
    first = store.apply_batch("wf1", batch(add(make_node("a"))))
    store.apply_batch("wf1", batch(add(make_node("b"))))

    res = store.undo("wf1", first.undo_id)
    assert res.success
    # restores the snapshot taken before the first batch
    assert [n.id for n in store.get_workflow("wf1").nodes] == ["manual-trigger"]
    assert first.undo_id not in store.history("wf1")["undo"]
    assert len(store.history("wf1")["undo"]) == 1


def test_undo_unknown_id(store, make_node):
    store.apply_batch("wf1", batch(add(make_node("a"))))
    res = store.undo("wf1", "undo_0_missing")
    assert not res.success
    assert res.error == "Undo operation not found"
    assert len(store.history("wf1")["undo"]) == 1


def test_redo_without_undo(store):
    res = store.redo("wf1")
    assert not res.success
    assert res.error == "Nothing to redo"


def test_new_apply_clears_redo(store, make_node):
    store.apply_batch("wf1", batch(add(make_node("a"))))
    store.undo("wf1")
    assert len(store.history("wf1")["redo"]) == 1
    store.apply_batch("wf1", batch(add(make_node("b"))))
    assert store.history("wf1")["redo"] == []


def test_redo_keeps_remaining_redo_entries(store, make_node):
    store.apply_batch("wf1", batch(add(make_node("a"))))
    store.apply_batch("wf1", batch(add(make_node("b"))))
    store.undo("wf1")
    store.undo("wf1")
    assert len(store.history("wf1")["redo"]) == 2

    store.redo("wf1")
    assert [n.id for n in store.get_workflow("wf1").nodes] == ["manual-trigger", "a"]
    assert len(store.history("wf1")["redo"]) == 1
    # the redo went through the apply path
    assert len(store.history("wf1")["undo"]) == 1
    assert store.get_workflow("wf1").version == 6
    store.redo("wf1")
    assert [n.id for n in store.get_workflow("wf1").nodes] == ["manual-trigger", "a", "b"]
    assert store.history("wf1")["redo"] == []
    assert store.get_workflow("wf1").version == 7


def test_failed_redo_keeps_entry(store, make_node):
    store.apply_batch("wf1", batch(add(make_node("a"))))
    store.undo("wf1")
    pending = store.history("wf1")["redo"]

    # make the undone batch impossible to re-apply
    with store.locked("wf1"):
        store._entries["wf1"].state.nodes.append(Node.from_dict(make_node("a")))

    res = store.redo("wf1")
    assert not res.success
    assert res.error == "Node with id a already exists"
    assert store.history("wf1")["redo"] == pending


# ---------- validate / simulate through the store ----------

def test_scenario_empty_url_then_autofix(store):
    res = store.apply_batch("wf1", batch(add({
        "id": "http-1",
        "name": "HTTP Request",
        "type": "n8n-nodes-base.httpRequest",
        "typeVersion": 4,
        "position": [450, 300],
        "parameters": {"url": ""},
    }), connect("Manual Trigger", "HTTP Request")))
    assert res.success

    report = store.validate("wf1")
    assert not report.valid
    assert any(l.code == "missing_required_param" and l.level == "error" for l in report.lints)

    version = store.get_workflow("wf1").version
    fixed = store.validate("wf1", autofix=True)
    assert fixed.valid
    assert fixed.errors == []
    assert store.get_workflow("wf1").nodes[1].parameters["url"] == "https://example.com"
    # autofix does not count as a batch
    assert store.get_workflow("wf1").version == version

    again = store.validate("wf1", autofix=True)
    assert again.fixed == []
    assert again.to_dict() == store.validate("wf1").to_dict()


def test_validate_unknown_workflow(store):
    res = store.validate("nope")
    assert not res.valid
    assert res.lints[0].code == "workflow_not_found"


def test_simulate_unknown_and_valid(store, make_node):
    assert store.simulate("nope").error == "Workflow not found"
    store.apply_batch("wf1", batch(add(make_node("a")), connect("manual-trigger", "a")))
    sim = store.simulate("wf1")
    assert sim.ok
    assert sim.stats["nodesVisited"] == 2
    assert sim.stats["estimatedDurationMs"] == 300


# ---------- concurrency ----------

def test_concurrent_batches_are_serialized(make_node):
    s = GraphStore()
    s.create_workflow("wf", "wf")

    def worker(i):
        s.apply_batch("wf", batch(add(make_node(f"n{i}")), connect("manual-trigger", f"n{i}")))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    wf = s.get_workflow("wf")
    assert wf.version == 21
    assert len(wf.nodes) == 21
    assert len(wf.connections) == 20
    assert len(s.history("wf")["undo"]) == 20
