"""
Error taxonomy for workflow runs.

Fatal errors abort the run they occur in. ToolNotFound never reaches the
caller: the agent loop turns it into a tool-error message. Running out of
agent iterations is not an error at all, see AgentState.
"""

from typing import List, Optional


class WorkflowError(Exception):
    """Base class for every error raised by the engine."""


class GraphCycleError(WorkflowError):
    def __init__(self, node_ids: List[str]):
        self.node_ids = node_ids
        super().__init__(f"Workflow contains cycles in main flow (nodes: {', '.join(node_ids)})")


class DuplicateNodeId(WorkflowError):
    def __init__(self, node_ids: List[str]):
        self.node_ids = node_ids
        super().__init__(f"Workflow reuses node ids: {', '.join(node_ids)}")


class UnknownBlockType(WorkflowError):
    def __init__(self, block_type: str, node_id: Optional[str] = None):
        self.block_type = block_type
        self.node_id = node_id
        super().__init__(f'Block type "{block_type}" not found')


class InsufficientCredits(WorkflowError):
    def __init__(self, required: float, available: float):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient credits: {available} available, {required} required")


class BlockExecutionError(WorkflowError):
    """A block operation failed. Always tagged with the failing node."""

    def __init__(self, node_id: str, message: str, block_type: Optional[str] = None):
        self.node_id = node_id
        self.block_type = block_type
        self.message = message
        super().__init__(f"Node {node_id} failed: {message}")


class ToolNotFound(WorkflowError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Tool {name} not found")


class ProviderExhausted(WorkflowError):
    """Every (provider, model) candidate of a cascade failed."""

    def __init__(self, attempts: List[str]):
        self.attempts = attempts
        detail = "; ".join(attempts) if attempts else "no candidates configured"
        super().__init__(f"All model providers failed: {detail}")
