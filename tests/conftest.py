"""Shared n8n workflow fixtures."""

import pytest


def node(name, node_type="n8n-nodes-base.noOp", **extra):
    """Minimal n8n node entry."""
    entry = {
        "id": name.lower().replace(" ", "-"),
        "name": name,
        "type": node_type,
        "typeVersion": extra.pop("typeVersion", 1),
        "position": [0, 0],
        "parameters": extra.pop("parameters", {}),
    }
    entry.update(extra)
    return entry


def link(*targets):
    """One output port: a list of `main` targets."""
    return [{"node": target, "type": "main", "index": 0} for target in targets]


@pytest.fixture
def make_node():
    return node


@pytest.fixture
def make_link():
    return link


@pytest.fixture
def linear_workflow():
    """Trigger -> Fetch Data -> Transform."""
    return {
        "name": "Linear",
        "id": "wf-linear",
        "nodes": [
            node("Manual Trigger", "n8n-nodes-base.manualTrigger"),
            node(
                "Fetch Data",
                "n8n-nodes-base.httpRequest",
                parameters={"url": "=https://api.example.com/users/{{ $json.userId }}"},
                credentials={"httpHeaderAuth": {"id": "7", "name": "Example API"}},
            ),
            node(
                "Transform",
                "n8n-nodes-base.set",
                parameters={"value": "={{ $('Fetch Data').item.json.id }}"},
            ),
        ],
        "connections": {
            "Manual Trigger": {"main": [link("Fetch Data")]},
            "Fetch Data": {"main": [link("Transform")]},
        },
        "settings": {"executionOrder": "v1", "timezone": "Europe/Berlin"},
    }


@pytest.fixture
def diamond_workflow():
    """Trigger -> If; true -> A, false -> B; A, B -> Merge."""
    return {
        "name": "Diamond",
        "nodes": [
            node("Start", "n8n-nodes-base.manualTrigger"),
            node(
                "Check Status",
                "n8n-nodes-base.if",
                typeVersion=2,
                parameters={
                    "conditions": {
                        "combinator": "and",
                        "conditions": [
                            {
                                "leftValue": "={{ $json.status }}",
                                "rightValue": "active",
                                "operator": {"type": "string", "operation": "equals"},
                            }
                        ],
                    }
                },
            ),
            node("Handle Active"),
            node("Handle Inactive"),
            node("Merge", "n8n-nodes-base.merge"),
        ],
        "connections": {
            "Start": {"main": [link("Check Status")]},
            "Check Status": {"main": [link("Handle Active"), link("Handle Inactive")]},
            "Handle Active": {"main": [link("Merge")]},
            "Handle Inactive": {"main": [[{"node": "Merge", "type": "main", "index": 1}]]},
        },
    }


@pytest.fixture
def loop_workflow():
    """Trigger -> Loop (v3); loop output -> Process -> Loop; done output -> Done."""
    return {
        "name": "Batches",
        "nodes": [
            node("Start", "n8n-nodes-base.manualTrigger"),
            node("Loop Over Items", "n8n-nodes-base.splitInBatches", typeVersion=3),
            node("Process", "n8n-nodes-base.code"),
            node("Done"),
        ],
        "connections": {
            "Start": {"main": [link("Loop Over Items")]},
            "Loop Over Items": {"main": [link("Done"), link("Process")]},
            "Process": {"main": [link("Loop Over Items")]},
        },
    }
