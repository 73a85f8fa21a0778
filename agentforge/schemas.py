from enum import Enum
from datetime import datetime, timezone
from pydantic import BaseModel, Field, model_validator
from typing import List, Dict, Any, Optional, Literal

TOOL_HANDLE = "tool"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class BlockCategory(str, Enum):
    TRIGGER = "trigger"
    DATA = "data"
    ACTION = "action"
    LOGIC = "logic"
    AI = "ai"


class InputSpec(BaseModel):
    name: str
    type: str = "string"  # string, number, boolean, object, array
    required: bool = False
    description: str = ""
    # Shared-context keys this field is back-filled from (chat id, credentials...)
    auto_fill: List[str] = []


class OutputSpec(BaseModel):
    name: str
    type: str = "string"
    description: str = ""


class BlockSchema(BaseModel):
    type: str
    name: str
    description: str
    category: BlockCategory
    inputs: List[InputSpec]
    outputs: List[OutputSpec]
    creditCost: float


class Node(BaseModel):
    id: str
    blockType: str
    config: Dict[str, Any] = {}

    @model_validator(mode="before")
    @classmethod
    def _from_canvas(cls, data):
        # Canvas documents nest the block type and config under "data"
        if isinstance(data, dict) and "blockType" not in data and isinstance(data.get("data"), dict):
            inner = data["data"]
            data = {
                "id": data.get("id"),
                "blockType": inner.get("type") or data.get("type"),
                "config": inner.get("config") or {},
            }
        return data


class Edge(BaseModel):
    id: Optional[str] = None
    source: str
    target: str
    sourceHandle: Optional[str] = None
    targetHandle: Optional[str] = None

    @property
    def is_tool(self) -> bool:
        return self.targetHandle == TOOL_HANDLE


class Workflow(BaseModel):
    nodes: List[Node] = []
    edges: List[Edge] = []

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


EventType = Literal["nodeStarted", "nodeCompleted", "nodeFailed"]


class NodeEvent(BaseModel):
    type: EventType
    workflowId: str
    executionId: str
    nodeId: str
    nodeType: str
    payload: Dict[str, Any] = {}
    timestamp: str = Field(default_factory=utc_now)


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: str = "{}"  # raw JSON text as produced by the model


class AgentMessage(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def to_openai(self) -> Dict[str, Any]:
        """Chat-completions wire format."""
        message: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in self.tool_calls
            ]
        if self.tool_call_id:
            message["tool_call_id"] = self.tool_call_id
        if self.name:
            message["name"] = self.name
        return message


class ExecutionRecord(BaseModel):
    executionId: str
    workflowId: str
    userId: str
    status: Literal["running", "success", "failed"] = "running"
    output: Dict[str, Any] = {}
    nodeOutputs: Dict[str, Dict[str, Any]] = {}
    error: Optional[str] = None
    failedNodeId: Optional[str] = None
    executionTimeMs: int = 0
    creditsUsed: float = 0
    nodesExecuted: int = 0
    startedAt: str = Field(default_factory=utc_now)


class RunRequest(BaseModel):
    workflow: Workflow
    userId: str
    inputs: Dict[str, Any] = {}
    executionId: Optional[str] = None
    envVars: Dict[str, str] = {}
