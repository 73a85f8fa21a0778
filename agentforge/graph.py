"""
Graph helpers and execution ordering.

Only main-flow edges take part in ordering. Tool edges (targetHandle "tool")
attach a node to an agent as a callable capability; the agent invokes it, the
scheduler never does.
"""

import logging
from collections import deque
from typing import Dict, List

from .errors import DuplicateNodeId, GraphCycleError
from .schemas import Edge, Node

logger = logging.getLogger(__name__)


def main_flow_edges(edges: List[Edge]) -> List[Edge]:
    return [edge for edge in edges if not edge.is_tool]


def tool_edges_for(node_id: str, edges: List[Edge]) -> List[Edge]:
    """Tool edges wired into the given (agent) node."""
    return [edge for edge in edges if edge.is_tool and edge.target == node_id]


def incoming_edges(node_id: str, edges: List[Edge]) -> List[Edge]:
    """Incoming main-flow edges in declaration order."""
    return [edge for edge in edges if not edge.is_tool and edge.target == node_id]


def is_tool_only(node: Node, edges: List[Edge]) -> bool:
    """True when the node is only ever wired as a tool into an agent."""
    touching = [edge for edge in edges if node.id in (edge.source, edge.target)]
    if not touching:
        return False
    return all(edge.is_tool and edge.source == node.id for edge in touching)


def execution_order(nodes: List[Node], edges: List[Edge]) -> List[Node]:
    """
    Kahn's algorithm over main-flow edges.

    The ready queue is seeded in node declaration order and successors are
    released in edge declaration order, so ties are broken by declaration
    order and the result is deterministic.

    Raises DuplicateNodeId or GraphCycleError before anything runs.
    """
    seen = set()
    duplicates = []
    for node in nodes:
        if node.id in seen and node.id not in duplicates:
            duplicates.append(node.id)
        seen.add(node.id)
    if duplicates:
        raise DuplicateNodeId(duplicates)

    scheduled = [node for node in nodes if not is_tool_only(node, edges)]
    by_id: Dict[str, Node] = {node.id: node for node in scheduled}

    in_degree: Dict[str, int] = {node.id: 0 for node in scheduled}
    adjacency: Dict[str, List[str]] = {node.id: [] for node in scheduled}

    flow_edges = main_flow_edges(edges)
    for edge in flow_edges:
        if edge.source not in by_id or edge.target not in by_id:
            logger.warning(f"Ignoring edge {edge.id or '?'}: {edge.source} -> {edge.target} references an unknown node")
            continue
        adjacency[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    queue = deque(node.id for node in scheduled if in_degree[node.id] == 0)
    ordered: List[Node] = []
    while queue:
        node_id = queue.popleft()
        ordered.append(by_id[node_id])
        for neighbor in adjacency[node_id]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    logger.info(
        f"Topological sort: {len(ordered)}/{len(scheduled)} nodes ordered "
        f"({len(flow_edges)} main-flow edges, {len(edges) - len(flow_edges)} tool edges)"
    )

    if len(ordered) < len(scheduled):
        stuck = [node_id for node_id, degree in in_degree.items() if degree > 0]
        raise GraphCycleError(stuck)

    return ordered
