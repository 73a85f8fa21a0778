import json
import logging
import re
from typing import Any, Dict, List

from .context import CONTEXT_KEY, ExecutionContext
from .graph import incoming_edges
from .schemas import Edge, Node

logger = logging.getLogger(__name__)

REFERENCE_PATTERN = re.compile(r"\{\{([\w\.\-]+)\}\}")


def resolve_inputs(node: Node, context: ExecutionContext, edges: List[Edge], namespaced: bool = False) -> Dict[str, Any]:
    """
    Build the input map a block receives.

    1. node config
    2. each upstream main-flow output, in edge order (later edges win)
    3. global run inputs (always win)

    Upstream outputs are merged by bare field name, so two producers of the
    same field overwrite each other. Pass namespaced=True to get each output
    under its source node id instead.

    Template markers such as {{node.field}} are left as-is; blocks that want
    them call render_template themselves.
    """
    inputs: Dict[str, Any] = dict(node.config)

    for edge in incoming_edges(node.id, edges):
        output = context.node_outputs.get(edge.source)
        if output is None:
            continue
        if namespaced:
            inputs[edge.source] = output
        else:
            previous = inputs.get(CONTEXT_KEY)
            inputs.update(output)
            # $context maps from several producers are merged key by key
            shared = output.get(CONTEXT_KEY)
            if isinstance(previous, dict) and isinstance(shared, dict):
                inputs[CONTEXT_KEY] = {**previous, **shared}

    inputs.update(context.global_inputs)
    return inputs


def _lookup_reference(path: str, context: ExecutionContext):
    parts = path.split(".")
    if parts[0] == "env" and len(parts) == 2:
        return context.env(parts[1])

    if len(parts) < 2:
        return None

    value: Any = context.node_outputs.get(parts[0])
    if value is None:
        return None

    # {{node.output.field}} is the same as {{node.field}}
    fields = parts[2:] if parts[1] == "output" and len(parts) > 2 else parts[1:]
    for field in fields:
        if isinstance(value, dict) and field in value:
            value = value[field]
        else:
            return None
    return value


def render_template(value: Any, context: ExecutionContext) -> Any:
    """Substitute {{nodeId.field}} and {{env.NAME}} markers inside a string."""
    if not isinstance(value, str) or "{{" not in value:
        return value

    def replace(match):
        resolved = _lookup_reference(match.group(1), context)
        if resolved is None:
            logger.warning(f"Unresolved reference: {match.group(0)}")
            return match.group(0)
        if isinstance(resolved, (dict, list)):
            return json.dumps(resolved, indent=2, ensure_ascii=False)
        return str(resolved)

    return REFERENCE_PATTERN.sub(replace, value)
