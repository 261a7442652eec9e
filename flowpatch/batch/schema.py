#flowpatch/batch/schema.py
NODE_SCHEMA = {
    "type": "object",
    "required": ["id", "name", "type", "typeVersion", "position"],
    "properties": {
        "id": {
            "type": "string",
            "minLength": 1
        },
        "name": {
            "type": "string",
            "minLength": 1
        },
        # catalog key, e.g. "n8n-nodes-base.httpRequest"
        "type": {
            "type": "string",
            "minLength": 1
        },
        "typeVersion": {
            "type": "integer",
            "minimum": 0
        },
        # [x, y] canvas coordinate
        "position": {
            "type": "array",
            "items": {"type": "number"},
            "minItems": 2,
            "maxItems": 2
        },
        # free-form; missing is treated as {}
        "parameters": {
            "type": "object"
        }
    },
    "additionalProperties": True
}

_NODE_REF = {"type": "string", "minLength": 1}


def _op(name: str, required: list, properties: dict) -> dict:
    return {
        "type": "object",
        "required": ["op"] + required,
        "properties": {"op": {"const": name}, **properties},
        "additionalProperties": True,
    }


ADD_NODE_SCHEMA = _op("add_node", ["node"], {"node": NODE_SCHEMA})

CONNECT_SCHEMA = _op("connect", ["from", "to"], {
    "from": _NODE_REF,
    "to": _NODE_REF,
    # output slot ordinal
    "index": {"type": "integer", "minimum": 0},
})

SET_PARAMS_SCHEMA = _op("set_params", ["name", "parameters"], {
    "name": _NODE_REF,
    "parameters": {"type": "object"},
})

DELETE_SCHEMA = _op("delete", ["name"], {"name": _NODE_REF})

ANNOTATE_SCHEMA = _op("annotate", ["name", "text"], {
    "name": {"type": "string"},
    "text": {"type": "string"},
})

OP_SCHEMAS = {
    "add_node": ADD_NODE_SCHEMA,
    "connect": CONNECT_SCHEMA,
    "set_params": SET_PARAMS_SCHEMA,
    "delete": DELETE_SCHEMA,
    "annotate": ANNOTATE_SCHEMA,
}

OPERATION_BATCH_SCHEMA = {
    "type": "object",
    "required": ["version", "ops"],
    "properties": {
        # schema tag of the batch format, not the workflow version
        "version": {"type": "string"},
        "ops": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["op"],
                "properties": {
                    "op": {"enum": list(OP_SCHEMAS)}
                }
            }
        }
    },
    "additionalProperties": True
}

# Workflow file as accepted by WorkflowState.from_dict. `connections` is the
# flat list form; n8n exports (dict keyed by source name) are converted first.
CONNECTION_SCHEMA = {
    "type": "object",
    "required": ["from", "to"],
    "properties": {
        "from": _NODE_REF,
        "to": _NODE_REF,
        "index": {"type": "integer", "minimum": 0},
    },
    "additionalProperties": True,
}

WORKFLOW_SCHEMA = {
    "type": "object",
    "required": ["nodes"],
    "properties": {
        "id": {"type": ["string", "number"]},
        "name": {"type": "string"},
        "nodes": {
            "type": "array",
            "items": {
                **NODE_SCHEMA,
                # typeVersion/position fall back to defaults on load; n8n exports use versions like 4.2
                "required": ["id", "name", "type"],
                "properties": {**NODE_SCHEMA["properties"], "typeVersion": {"type": "number", "minimum": 0}},
            },
        },
        "connections": {"type": "array", "items": CONNECTION_SCHEMA},
        "version": {"type": "integer", "minimum": 0},
        "lastModified": {"type": "string"},
    },
    "additionalProperties": True,
}
