import pytest

from flowpatch.store.manager import GraphStore


@pytest.fixture
def store() -> GraphStore:
    s = GraphStore()
    s.create_workflow("wf1", "Test Workflow")
    return s


@pytest.fixture
def make_node():
    """Factory for wire-shaped node dicts."""

    def _make(node_id, name=None, type="n8n-nodes-base.code", parameters=None, x=400):
        return {
            "id": node_id,
            "name": name or node_id,
            "type": type,
            "typeVersion": 1,
            "position": [x, 300],
            "parameters": parameters if parameters is not None else {},
        }

    return _make
