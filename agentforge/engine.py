import time
import uuid
import asyncio
import logging
import threading
from typing import Any, Dict, Optional

from .billing import CreditLedger, InMemoryCreditLedger
from .context import ExecutionContext
from .errors import BlockExecutionError, InsufficientCredits, UnknownBlockType, WorkflowError
from .events import EventHub
from .graph import execution_order
from .node_registry import registry as default_registry
from .providers import ProviderRegistry
from .resolver import resolve_inputs
from .schemas import ExecutionRecord, Node, Workflow

logger = logging.getLogger(__name__)


class NodeExecutor:
    """Runs one node: lookup, credit precondition, execute, charge + record, events."""

    def __init__(self, registry, ledger: CreditLedger, namespaced_inputs: bool = False):
        self.registry = registry
        self.ledger = ledger
        self.namespaced_inputs = namespaced_inputs

    def run_node(self, node: Node, context: ExecutionContext) -> Dict[str, Any]:
        block_cls = self.registry.get(node.blockType)
        if block_cls is None:
            raise UnknownBlockType(node.blockType, node.id)

        cost = block_cls.CREDIT_COST
        balance = self.ledger.balance(context.user_id)
        if balance < cost:
            raise InsufficientCredits(cost, balance)

        inputs = resolve_inputs(node, context, context.workflow.edges, namespaced=self.namespaced_inputs)
        logger.debug(f"Executing node {node.id} ({node.blockType}, cost {cost})")

        started = time.monotonic()
        context.emit("nodeStarted", node.id, node.blockType)
        context.current_node_id = node.id
        try:
            output = block_cls().execute(inputs, context)
        except Exception as e:
            duration = int((time.monotonic() - started) * 1000)
            context.emit("nodeFailed", node.id, node.blockType, {"error": str(e), "duration": duration})
            raise BlockExecutionError(node.id, str(e), node.blockType) from e
        finally:
            context.current_node_id = None

        # Charge first: a failed charge leaves no output behind
        try:
            if node.id in context.node_outputs:
                raise WorkflowError(f"Output for node {node.id} already recorded in this run")
            self.ledger.charge(context.user_id, cost, workflow_id=context.workflow_id, block_type=node.blockType)
            context.record_output(node.id, output)
        except Exception as e:
            duration = int((time.monotonic() - started) * 1000)
            context.emit("nodeFailed", node.id, node.blockType, {"error": str(e), "duration": duration})
            raise
        context.credits_used += cost

        duration = int((time.monotonic() - started) * 1000)
        context.emit("nodeCompleted", node.id, node.blockType, {"output": output, "duration": duration})
        logger.debug(f"Node {node.id} executed successfully in {duration}ms")
        return output


class WorkflowEngine:
    def __init__(
        self,
        registry=None,
        ledger: Optional[CreditLedger] = None,
        hub: Optional[EventHub] = None,
        providers: Optional[ProviderRegistry] = None,
        namespaced_inputs: bool = False,
    ):
        self.registry = registry or default_registry
        self.ledger = ledger or InMemoryCreditLedger()
        self.hub = hub or EventHub()
        self.providers = providers or ProviderRegistry.from_config()
        self.executor = NodeExecutor(self.registry, self.ledger, namespaced_inputs=namespaced_inputs)
        self.runs: Dict[str, ExecutionRecord] = {}
        self._runs_lock = threading.Lock()

    def _save(self, record: ExecutionRecord):
        with self._runs_lock:
            self.runs[record.executionId] = record

    def get_run(self, execution_id: str) -> Optional[ExecutionRecord]:
        with self._runs_lock:
            return self.runs.get(execution_id)

    def execute(
        self,
        workflow: Workflow,
        user_id: str,
        inputs: Optional[Dict[str, Any]] = None,
        workflow_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        env_vars: Optional[Dict[str, str]] = None,
    ) -> ExecutionRecord:
        """
        Run every main-flow node once, in topological order, one at a time.

        The first failure aborts the run: the record is marked failed with
        the message and elapsed time, and the error is re-raised.
        """
        workflow_id = workflow_id or "adhoc"
        execution_id = execution_id or str(uuid.uuid4())
        started = time.monotonic()

        record = ExecutionRecord(executionId=execution_id, workflowId=workflow_id, userId=user_id)
        self._save(record)

        context = ExecutionContext(
            workflow_id=workflow_id,
            execution_id=execution_id,
            user_id=user_id,
            workflow=workflow,
            global_inputs=inputs,
            env_vars=env_vars,
            hub=self.hub,
            providers=self.providers,
            registry=self.registry,
        )

        logger.info(f"Workflow execution started: {workflow_id}/{execution_id} for user {user_id}")
        try:
            ordered = execution_order(workflow.nodes, workflow.edges)
            for node in ordered:
                try:
                    self.executor.run_node(node, context)
                except WorkflowError as e:
                    logger.error(f"Node execution failed: {node.id} ({node.blockType}): {e}")
                    if isinstance(e, BlockExecutionError):
                        record.failedNodeId = e.node_id
                    else:
                        record.failedNodeId = node.id
                    raise
        except WorkflowError as e:
            record.status = "failed"
            record.error = str(e)
            record.nodeOutputs = dict(context.node_outputs)
            record.nodesExecuted = len(context.node_outputs)
            record.creditsUsed = context.credits_used
            record.executionTimeMs = int((time.monotonic() - started) * 1000)
            self._save(record)
            logger.error(f"Workflow execution failed: {workflow_id}/{execution_id}: {e}")
            raise

        record.status = "success"
        record.output = context.node_outputs[ordered[-1].id] if ordered else {}
        record.nodeOutputs = dict(context.node_outputs)
        record.nodesExecuted = len(ordered)
        record.creditsUsed = context.credits_used
        record.executionTimeMs = int((time.monotonic() - started) * 1000)
        self._save(record)

        logger.info(
            f"Workflow execution completed: {workflow_id}/{execution_id} "
            f"in {record.executionTimeMs}ms, {record.creditsUsed} credits"
        )
        return record


async def run_workflow(engine: WorkflowEngine, workflow: Workflow, user_id: str, **kwargs) -> ExecutionRecord:
    """Run on a worker thread so independent runs proceed concurrently."""
    return await asyncio.to_thread(engine.execute, workflow, user_id, **kwargs)
