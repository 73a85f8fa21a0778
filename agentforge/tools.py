"""
Tools the agent can call.

A Tool is usually an adapter over a registered block (block_tool), but any
callable with a name, description and JSON-schema parameters can be one.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .errors import ToolNotFound
from .graph import tool_edges_for
from .schemas import BlockCategory, Workflow

logger = logging.getLogger(__name__)

ALL_TOOLS = ("all", "*")

JSON_TYPES = {
    "string": "string",
    "number": "number",
    "boolean": "boolean",
    "object": "object",
    "array": "array",
    "select": "string",
}


class Tool:
    def __init__(
        self,
        name: str,
        description: str,
        parameters: Dict[str, Any],
        handler: Callable[[Dict[str, Any], Any], Any],
        node_id: Optional[str] = None,
        block_type: Optional[str] = None,
    ):
        self.name = name
        self.description = description
        self.parameters = parameters
        self.handler = handler
        # Set when the tool comes from a node wired to the agent with a tool edge
        self.node_id = node_id
        self.block_type = block_type

    def execute(self, args: Dict[str, Any], context) -> Any:
        return self.handler(args, context)

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def parameter_schema(block_cls) -> Dict[str, Any]:
    """JSON schema for a block's declared inputs. Auto-fill fields are never required."""
    properties = {}
    required = []
    for spec in block_cls.INPUTS:
        properties[spec.name] = {
            "type": JSON_TYPES.get(spec.type, "string"),
            "description": spec.description,
        }
        if spec.required and not spec.auto_fill:
            required.append(spec.name)
    return {"type": "object", "properties": properties, "required": required}


def fill_arguments(block_cls, args: Dict[str, Any], presets: Dict[str, Any], agent_inputs: Dict[str, Any], context) -> Dict[str, Any]:
    """
    Merge a tool call's arguments with everything the model is not expected
    to know. Priority: call argument, node config (wired tool node preset,
    then the agent's own inputs for auto-fill fields), shared run context.
    """
    merged = dict(presets)
    merged.update({key: value for key, value in args.items() if value not in (None, "")})

    for spec in block_cls.INPUTS:
        if not spec.auto_fill or merged.get(spec.name) not in (None, ""):
            continue
        value = None
        for key in spec.auto_fill:
            value = agent_inputs.get(key)
            if value in (None, ""):
                value = context.shared_value(key) if context is not None else None
            if value not in (None, ""):
                break
        if value not in (None, ""):
            merged[spec.name] = value
    return merged


def block_tool(block_cls, presets: Optional[Dict[str, Any]] = None, agent_inputs: Optional[Dict[str, Any]] = None, node_id: Optional[str] = None) -> Tool:
    """Adapt a block class into a Tool. A fresh block instance serves every call."""
    presets = dict(presets or {})
    agent_inputs = dict(agent_inputs or {})

    def handler(args, context):
        inputs = fill_arguments(block_cls, args, presets, agent_inputs, context)
        return block_cls().execute(inputs, context)

    return Tool(
        name=block_cls.BLOCK_TYPE,
        description=block_cls.DESCRIPTION,
        parameters=parameter_schema(block_cls),
        handler=handler,
        node_id=node_id,
        block_type=block_cls.BLOCK_TYPE,
    )


def parse_allow_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = str(value).split(",")
    return [str(item).strip() for item in items if str(item).strip()]


def allowed(block_cls, entries: List[str]) -> bool:
    category = block_cls.CATEGORY.value if isinstance(block_cls.CATEGORY, BlockCategory) else str(block_cls.CATEGORY)
    for entry in entries:
        if entry in ALL_TOOLS or entry == block_cls.BLOCK_TYPE:
            return True
        if entry.startswith("category:") and entry[len("category:"):] == category:
            return True
        if entry.endswith(".*") and entry[:-2] == category:
            return True
    return False


class ToolCatalog:
    def __init__(self, tools: Optional[List[Tool]] = None):
        self.tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.add(tool)

    def add(self, tool: Tool):
        if tool.name in self.tools:
            logger.warning(f"Tool {tool.name} added twice, replacing the earlier one (node {self.tools[tool.name].node_id or '-'})")
        self.tools[tool.name] = tool

    def get(self, name: str) -> Tool:
        tool = self.tools.get(name)
        if tool is None:
            raise ToolNotFound(name)
        return tool

    def names(self) -> List[str]:
        return list(self.tools)

    def to_openai(self) -> List[Dict[str, Any]]:
        return [tool.to_openai() for tool in self.tools.values()]

    def __len__(self):
        return len(self.tools)


def assemble_tools(
    registry,
    agent_node_id: str,
    workflow: Workflow,
    allow_list: Any = None,
    agent_inputs: Optional[Dict[str, Any]] = None,
    exclude: tuple = (),
) -> ToolCatalog:
    """
    Build the agent's tool catalog for one run.

    Tool edges wired into the agent node are authoritative; only when there
    are none does the text allow-list apply. Trigger blocks never become tools.
    """
    catalog = ToolCatalog()

    def usable(block_cls) -> bool:
        return block_cls is not None and block_cls.CATEGORY != BlockCategory.TRIGGER and block_cls.BLOCK_TYPE not in exclude

    wired = tool_edges_for(agent_node_id, workflow.edges)
    if wired:
        for edge in wired:
            node = workflow.get_node(edge.source)
            if node is None:
                logger.warning(f"Tool edge {edge.id or '?'} points at missing node {edge.source}")
                continue
            block_cls = registry.get(node.blockType)
            if not usable(block_cls):
                logger.warning(f"Node {node.id} ({node.blockType}) cannot be used as a tool")
                continue
            catalog.add(block_tool(block_cls, presets=node.config, agent_inputs=agent_inputs, node_id=node.id))
        if allow_list:
            logger.info(f"Agent {agent_node_id} has tool edges, ignoring allow-list '{allow_list}'")
    else:
        entries = parse_allow_list(allow_list)
        for block_cls in registry.blocks():
            if usable(block_cls) and allowed(block_cls, entries):
                catalog.add(block_tool(block_cls, agent_inputs=agent_inputs))

    logger.info(f"Found {len(catalog)} tools for node {agent_node_id}: {catalog.names()}")
    return catalog
