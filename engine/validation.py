"""
Publish-time flow graph validation.

A flow that fails these checks cannot be published, so the walker never
meets an ambiguous or dangling graph in normal operation.
"""

import logging
from collections import Counter
from typing import List

from engine.errors import FlowValidationError, UnsupportedNodeType
from engine.node_config import parse_node_config
from engine.types import DEFAULT_HANDLES, FlowGraph

logger = logging.getLogger(__name__)


def validate_graph(graph: FlowGraph) -> List[str]:
    """Return every structural problem found; an empty list means valid."""
    problems: List[str] = []
    node_ids = Counter(node.id for node in graph.nodes)

    for node_id, count in node_ids.items():
        if count > 1:
            problems.append(f"Duplicate node id '{node_id}'")

    triggers = graph.trigger_nodes()
    if len(triggers) != 1:
        problems.append(f"Flow must have exactly one trigger node, found {len(triggers)}")
    else:
        successors = graph.outgoing(triggers[0].id)
        if len(successors) != 1:
            problems.append(
                f"Trigger node '{triggers[0].id}' must have exactly one outgoing edge, "
                f"found {len(successors)}"
            )
    trigger_ids = {node.id for node in triggers}

    for node in graph.nodes:
        try:
            parse_node_config(node.type, node.config)
        except UnsupportedNodeType:
            problems.append(f"Node '{node.id}' has unsupported type '{node.type}'")
        except FlowValidationError as e:
            problems.extend(f"Node '{node.id}': {problem}" for problem in e.problems)

    handles = Counter()
    for edge in graph.edges:
        if edge.source_node_id not in node_ids:
            problems.append(f"Edge '{edge.id}' starts at unknown node '{edge.source_node_id}'")
        if edge.target_node_id not in node_ids:
            problems.append(f"Edge '{edge.id}' ends at unknown node '{edge.target_node_id}'")
        if edge.target_node_id in trigger_ids:
            problems.append(f"Edge '{edge.id}' targets the trigger node")
        handle = None if edge.source_handle in DEFAULT_HANDLES else edge.source_handle
        handles[(edge.source_node_id, handle)] += 1

    # Fan-out: one handle wired to several targets
    for (source, handle), count in handles.items():
        if count > 1:
            label = handle if handle is not None else "default"
            problems.append(
                f"Node '{source}' has {count} edges on handle '{label}'"
            )

    return problems


def ensure_valid(graph: FlowGraph) -> None:
    """
    Raises:
        FlowValidationError: with every problem found
    """
    problems = validate_graph(graph)
    if problems:
        logger.warning(
            f"Flow {graph.flow.id} failed validation: {len(problems)} problem(s)",
            extra={"flow_id": graph.flow.id},
        )
        raise FlowValidationError(problems)
