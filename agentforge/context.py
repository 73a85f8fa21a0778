import re
from typing import Any, Dict, Optional

from .errors import WorkflowError
from .schemas import Workflow

CONTEXT_KEY = "$context"


def upper_snake(name: str) -> str:
    """botToken -> BOT_TOKEN"""
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name).upper()


class ExecutionContext:
    """
    Per-run state. Created fresh for every invocation and discarded after;
    only the summarized ExecutionRecord outlives the run.
    """

    def __init__(
        self,
        workflow_id: str,
        execution_id: str,
        user_id: str,
        workflow: Optional[Workflow] = None,
        global_inputs: Optional[Dict[str, Any]] = None,
        env_vars: Optional[Dict[str, str]] = None,
        hub=None,
        providers=None,
        registry=None,
    ):
        self.workflow_id = workflow_id
        self.execution_id = execution_id
        self.user_id = user_id
        self.workflow = workflow or Workflow()
        self.global_inputs = dict(global_inputs or {})
        self.env_vars = dict(env_vars or {})
        self.node_outputs: Dict[str, Dict[str, Any]] = {}
        self.credits_used = 0.0
        self.hub = hub
        self.providers = providers
        self.registry = registry
        # Node currently being executed, for blocks that need their own id
        self.current_node_id: Optional[str] = None

    def record_output(self, node_id: str, output: Dict[str, Any]):
        if node_id in self.node_outputs:
            raise WorkflowError(f"Output for node {node_id} already recorded in this run")
        self.node_outputs[node_id] = output

    def env(self, name: str) -> Optional[str]:
        if name in self.env_vars:
            return self.env_vars[name]
        return self.env_vars.get(upper_snake(name))

    def shared_value(self, key: str) -> Any:
        """
        Look up a run-level shared value: global inputs first, then the
        "$context" maps published by executed nodes (latest wins), then
        environment variables.
        """
        value = self.global_inputs.get(key)
        if value not in (None, ""):
            return value

        for output in reversed(list(self.node_outputs.values())):
            shared = output.get(CONTEXT_KEY) if isinstance(output, dict) else None
            if isinstance(shared, dict) and shared.get(key) not in (None, ""):
                return shared[key]

        return self.env(key)

    def emit(self, event_type: str, node_id: str, node_type: str, payload: Optional[Dict[str, Any]] = None):
        if self.hub is None:
            return
        self.hub.emit(self.workflow_id, self.execution_id, event_type, node_id, node_type, payload or {})
