import pytest

from flowpatch.batch.ops import AddNode, Annotate, Node, OperationBatch, SetParams
from flowpatch.config import PolicyOptions
from flowpatch.policy.enforcer import enforce_policies, is_blocked, match_host, payload_size
from flowpatch.store.state import WorkflowState


@pytest.fixture
def graph():
    return WorkflowState.new("wf", "wf")


def add_nodes(n):
    return [AddNode(node=Node(id=f"n{i}", name=f"N{i}", type="n8n-nodes-base.code")) for i in range(n)]


def codes(violations):
    return [v.code for v in violations]


def test_small_batch_passes(graph):
    assert enforce_policies(OperationBatch(ops=add_nodes(3)), graph) == []


def test_too_many_nodes_added(graph):
    violations = enforce_policies(OperationBatch(ops=add_nodes(21)), graph)
    assert codes(violations) == ["too_many_nodes_added"]
    assert violations[0].details == {"addedNodes": 21}
    assert violations[0].message == "Added nodes exceed 20"


def test_too_many_ops(graph):
    ops = [Annotate(name="Manual Trigger", text="x") for _ in range(4)]
    violations = enforce_policies(OperationBatch(ops=ops), graph, PolicyOptions(max_ops_per_batch=3))
    assert codes(violations) == ["too_many_ops"]


def test_payload_too_large(graph):
    batch = OperationBatch(ops=[Annotate(name="Manual Trigger", text="x" * 200)])
    assert payload_size(batch) > 200
    violations = enforce_policies(batch, graph, PolicyOptions(max_payload_bytes=100))
    assert codes(violations) == ["payload_too_large"]
    assert violations[0].details["payloadSize"] == payload_size(batch)


def test_payload_size_counts_utf8_bytes():
    ascii_batch = OperationBatch(ops=[Annotate(name="n", text="a")])
    wide_batch = OperationBatch(ops=[Annotate(name="n", text="é")])
    assert payload_size(wide_batch) == payload_size(ascii_batch) + 1


def test_all_checks_reported_together():
    bare = WorkflowState(id="wf", name="wf", nodes=[])
    ops = add_nodes(3)
    ops.append(SetParams(name="n0", parameters={"url": "https://blocked.io/x"}))
    options = PolicyOptions(max_nodes_added=2, max_ops_per_batch=3, max_payload_bytes=10, domain_blacklist=["blocked.io"])
    violations = enforce_policies(OperationBatch(ops=ops), bare, options)
    assert codes(violations) == [
        "payload_too_large",
        "too_many_ops",
        "too_many_nodes_added",
        "domain_blacklist",
        "missing_trigger",
    ]


def test_domain_blacklist_reads_add_node_and_set_params(graph):
    ops = [
        AddNode(node=Node(id="h", name="H", type="n8n-nodes-base.httpRequest",
                          parameters={"url": "https://api.bad.com/v1"})),
        SetParams(name="H", parameters={"baseUrl": "http://bad.com"}),
        SetParams(name="H", parameters={"url": "https://good.com"}),
    ]
    violations = enforce_policies(OperationBatch(ops=ops), graph, PolicyOptions(domain_blacklist=["*.bad.com", "bad.com"]))
    assert codes(violations) == ["domain_blacklist"]
    assert violations[0].details["urls"] == ["https://api.bad.com/v1", "http://bad.com"]


@pytest.mark.parametrize("host, pattern, expected", [
    ("evil.com", "evil.com", True),
    ("EVIL.com".lower(), "Evil.COM", True),
    ("api.evil.com", "evil.com", False),
    ("api.evil.com", "*.evil.com", True),
    ("a.b.evil.com", "*.evil.com", True),
    ("evil.com", "*.evil.com", False),
    ("notevil.com", "*.evil.com", False),
    ("evil.com", "", False),
])
def test_match_host(host, pattern, expected):
    assert match_host(host, pattern) is expected


@pytest.mark.parametrize("url, expected", [
    ("https://api.evil.com/path?q=1", True),
    ("https://user:pw@api.evil.com:8443/", True),
    ("api.evil.com/no-scheme", True),
    ("https://example.com/?next=api.evil.com", False),
    ("http://[::1", False),
    ("", False),
])
def test_is_blocked(url, expected):
    assert is_blocked(url, ["*.evil.com"]) is expected


def test_policy_options_from_env(monkeypatch):
    monkeypatch.setenv("DIFF_POLICY_MAX_ADD_NODES", "5")
    monkeypatch.setenv("DIFF_POLICY_MAX_OPS", "50")
    monkeypatch.setenv("DIFF_POLICY_MAX_PAYLOAD_BYTES", "1024")
    monkeypatch.setenv("DIFF_POLICY_DOMAIN_BLACKLIST", " evil.com, *.bad.io ,")
    opts = PolicyOptions.from_env()
    assert opts == PolicyOptions(
        max_nodes_added=5,
        max_ops_per_batch=50,
        max_payload_bytes=1024,
        domain_blacklist=["evil.com", "*.bad.io"],
    )


def test_policy_options_defaults(monkeypatch):
    for name in ("DIFF_POLICY_MAX_ADD_NODES", "DIFF_POLICY_MAX_OPS",
                 "DIFF_POLICY_MAX_PAYLOAD_BYTES", "DIFF_POLICY_DOMAIN_BLACKLIST"):
        monkeypatch.delenv(name, raising=False)
    opts = PolicyOptions.from_env()
    assert (opts.max_nodes_added, opts.max_ops_per_batch, opts.max_payload_bytes) == (20, 500, 262144)
    assert opts.domain_blacklist == []


def test_bad_integer_env(monkeypatch):
    monkeypatch.setenv("DIFF_POLICY_MAX_OPS", "lots")
    with pytest.raises(ValueError, match="DIFF_POLICY_MAX_OPS"):
        PolicyOptions.from_env()
