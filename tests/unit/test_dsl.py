"""Tests for DSL parsing, validation and graph queries."""

import json

import pytest

from chainflow.dsl import DefinitionParser, extract_node_parameters
from chainflow.errors import DefinitionValidationError, MalformedDefinition


def _workflow(nodes, edges):
    return {"id": "wf", "name": "Test", "nodes": nodes, "edges": edges}


def _linear():
    return _workflow(
        [
            {
                "id": "start",
                "type": "start",
                "parameters": [
                    {"name": "x", "type": "number", "required": True},
                    {"name": "mode", "defaultValue": "fast"},
                ],
            },
            {"id": "a", "type": "code", "name": "Shape", "data": {"codeType": "json"}},
            {"id": "b", "type": "code"},
            {"id": "end", "type": "end"},
        ],
        [
            {"source": "start", "target": "a"},
            {"source": "a", "target": "b"},
            {"source": "a", "target": "end", "sourcePort": "done"},
            {"source": "b", "target": "end"},
        ],
    )


def test_parse_accepts_json_text_bytes_and_dict():
    parser = DefinitionParser()
    doc = _linear()

    from_dict = parser.parse(doc)
    from_text = parser.parse(json.dumps(doc))
    from_bytes = parser.parse(json.dumps(doc).encode())

    assert [n.id for n in from_dict.nodes] == ["start", "a", "b", "end"]
    assert from_text == from_dict
    assert from_bytes == from_dict
    assert from_dict.edges[2].source_port == "done"


def test_parse_accepts_config_as_node_data():
    parser = DefinitionParser()
    definition = parser.parse(
        _workflow([{"id": "n", "type": "tool", "config": {"toolName": "search"}}], [])
    )
    assert definition.nodes[0].data == {"toolName": "search"}


@pytest.mark.parametrize("content", ["", "   ", b"", "not json", "[1, 2]", '{"nodes": 5}'])
def test_parse_rejects_malformed_documents(content):
    with pytest.raises(MalformedDefinition):
        DefinitionParser().parse(content)


def test_validate_accepts_well_formed_graph():
    parser = DefinitionParser()
    parser.validate(parser.parse(_linear()))


@pytest.mark.parametrize(
    "nodes,edges,message",
    [
        ([], [], "no nodes"),
        ([{"id": "end", "type": "end"}], [], "no start node"),
        ([{"id": "start", "type": "start"}], [], "no end node"),
        (
            [
                {"id": "start", "type": "start"},
                {"id": "s2", "type": "start"},
                {"id": "end", "type": "end"},
            ],
            [],
            "more than one start node",
        ),
        (
            [
                {"id": "start", "type": "start"},
                {"id": "start", "type": "end"},
            ],
            [],
            "Duplicate node id",
        ),
        (
            [
                {"id": "start", "type": "start"},
                {"id": "", "type": "code"},
                {"id": "end", "type": "end"},
            ],
            [],
            "must not be empty",
        ),
        (
            [{"id": "start", "type": "start"}, {"id": "end", "type": "end"}],
            [{"source": "start", "target": "ghost"}],
            "target node does not exist",
        ),
        (
            [{"id": "start", "type": "start"}, {"id": "end", "type": "end"}],
            [{"source": "ghost", "target": "end"}],
            "source node does not exist",
        ),
    ],
)
def test_validate_rejects_invalid_graphs(nodes, edges, message):
    parser = DefinitionParser()
    definition = parser.parse(_workflow(nodes, edges))
    for _ in range(2):
        with pytest.raises(DefinitionValidationError, match=message):
            parser.validate(definition)


def test_graph_queries_follow_edge_order():
    parser = DefinitionParser()
    definition = parser.parse(_linear())

    assert parser.get_start_node(definition).id == "start"
    assert [n.id for n in parser.get_end_nodes(definition)] == ["end"]
    assert parser.get_node_by_id(definition, "a").display_name == "Shape"
    assert parser.get_node_by_id(definition, "b").display_name == "code"
    assert parser.get_node_by_id(definition, "missing") is None
    assert [n.id for n in parser.get_next_nodes(definition, "a")] == ["b", "end"]
    assert [n.id for n in parser.get_previous_nodes(definition, "end")] == ["a", "b"]
    assert parser.get_next_nodes(definition, "end") == []
    assert len(parser.get_outgoing_edges(definition, "a")) == 2


def test_start_parameters_and_round_trip():
    parser = DefinitionParser()
    definition = parser.parse(_linear())

    params = parser.get_start_parameters(definition)
    assert [p.name for p in params] == ["x", "mode"]
    assert params[0].required is True
    assert params[1].default_value == "fast"

    dumped = json.loads(parser.to_json(definition))
    assert dumped["edges"][2]["sourcePort"] == "done"
    assert dumped["nodes"][0]["parameters"][1]["defaultValue"] == "fast"
    assert parser.parse(dumped) == definition


def test_extract_node_parameters_reads_data_list():
    parser = DefinitionParser()
    definition = parser.parse(
        _workflow(
            [
                {
                    "id": "confirm",
                    "type": "human_confirm",
                    "data": {
                        "confirmParameters": [
                            {"name": "approved", "type": "boolean", "required": True},
                            {"description": "no name, ignored"},
                            "garbage",
                        ]
                    },
                }
            ],
            [],
        )
    )
    params = extract_node_parameters(definition.nodes[0], "confirmParameters")
    assert [p.name for p in params] == ["approved"]
    assert params[0].type == "boolean"
