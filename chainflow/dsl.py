"""Parsing, validation and graph queries for the workflow DSL."""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional

from pydantic import ValidationError

from .contracts import (
    NodeType,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    WorkflowParameter,
)
from .errors import DefinitionValidationError, MalformedDefinition

logger = logging.getLogger(__name__)


class DefinitionParser:
    """Turns DSL documents into :class:`WorkflowDefinition` graphs.

    The parser holds no state; every query takes the definition it operates
    on, so a single instance can be shared by all runs.
    """

    def parse(self, content: str | bytes | dict[str, Any]) -> WorkflowDefinition:
        """Deserialize ``content`` into a definition.

        Raises:
            MalformedDefinition: If the content is empty, is not valid JSON or
                does not have the shape of a workflow document.
        """
        if content is None or (isinstance(content, (str, bytes)) and not content.strip()):
            raise MalformedDefinition("Workflow content is empty")

        if isinstance(content, dict):
            data = content
        else:
            try:
                data = json.loads(content)
            except json.JSONDecodeError as e:
                raise MalformedDefinition(f"Failed to parse workflow JSON: {e}") from e

        if not isinstance(data, dict):
            raise MalformedDefinition("Workflow document must be a JSON object")

        try:
            return WorkflowDefinition.model_validate(data)
        except ValidationError as e:
            raise MalformedDefinition(f"Invalid workflow document: {e}") from e

    def validate(self, definition: WorkflowDefinition) -> None:
        """Check the structural invariants of ``definition``.

        Raises:
            DefinitionValidationError: On the first violated invariant.
        """
        if definition is None:
            raise DefinitionValidationError("Workflow definition is empty")
        if not definition.nodes:
            raise DefinitionValidationError("Workflow has no nodes")

        node_ids: set[str] = set()
        for node in definition.nodes:
            if not node.id:
                raise DefinitionValidationError("Node id must not be empty")
            if node.id in node_ids:
                raise DefinitionValidationError(f"Duplicate node id: {node.id}")
            node_ids.add(node.id)

        start_nodes = [n for n in definition.nodes if n.type == NodeType.START.value]
        if not start_nodes:
            raise DefinitionValidationError("Workflow has no start node")
        if len(start_nodes) > 1:
            ids = ", ".join(n.id for n in start_nodes)
            raise DefinitionValidationError(f"Workflow has more than one start node: {ids}")

        if not self.get_end_nodes(definition):
            raise DefinitionValidationError("Workflow has no end node")

        for edge in definition.edges:
            if edge.source not in node_ids:
                raise DefinitionValidationError(f"Edge source node does not exist: {edge.source}")
            if edge.target not in node_ids:
                raise DefinitionValidationError(f"Edge target node does not exist: {edge.target}")

    # ------------------------------------------------------------------
    # Graph queries
    def get_start_node(self, definition: WorkflowDefinition) -> Optional[WorkflowNode]:
        for node in definition.nodes:
            if node.type == NodeType.START.value:
                return node
        return None

    def get_end_nodes(self, definition: WorkflowDefinition) -> List[WorkflowNode]:
        return [n for n in definition.nodes if n.type == NodeType.END.value]

    def get_node_by_id(
        self, definition: WorkflowDefinition, node_id: str
    ) -> Optional[WorkflowNode]:
        for node in definition.nodes:
            if node.id == node_id:
                return node
        return None

    def get_outgoing_edges(
        self, definition: WorkflowDefinition, node_id: str
    ) -> List[WorkflowEdge]:
        return [e for e in definition.edges if e.source == node_id]

    def get_next_nodes(
        self, definition: WorkflowDefinition, node_id: str
    ) -> List[WorkflowNode]:
        """Targets of the outgoing edges of ``node_id`` in edge order."""
        next_nodes = []
        for edge in self.get_outgoing_edges(definition, node_id):
            node = self.get_node_by_id(definition, edge.target)
            if node is not None:
                next_nodes.append(node)
        return next_nodes

    def get_previous_nodes(
        self, definition: WorkflowDefinition, node_id: str
    ) -> List[WorkflowNode]:
        prev_nodes = []
        for edge in definition.edges:
            if edge.target == node_id:
                node = self.get_node_by_id(definition, edge.source)
                if node is not None:
                    prev_nodes.append(node)
        return prev_nodes

    def get_start_parameters(
        self, definition: WorkflowDefinition
    ) -> List[WorkflowParameter]:
        """Parameters declared on the start node, if any."""
        start = self.get_start_node(definition)
        if start is None:
            return []
        return extract_node_parameters(start, "parameters")

    def to_json(self, definition: WorkflowDefinition) -> str:
        return definition.model_dump_json(by_alias=True, exclude_none=True)


def extract_node_parameters(node: WorkflowNode, key: str) -> List[WorkflowParameter]:
    """Read a parameter list from ``node.parameters`` or ``node.data[key]``."""
    if key == "parameters" and node.parameters:
        return list(node.parameters)

    raw = node.data.get(key)
    if not isinstance(raw, list):
        return list(node.parameters or [])

    params: List[WorkflowParameter] = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("name"):
            logger.debug(f"Ignoring malformed parameter entry on node {node.id}: {item!r}")
            continue
        try:
            params.append(WorkflowParameter.model_validate(item))
        except ValidationError:
            logger.warning(f"Ignoring invalid parameter on node {node.id}: {item!r}")
    return params
