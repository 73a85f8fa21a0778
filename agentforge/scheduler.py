import logging
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .engine import WorkflowEngine, run_workflow
from .errors import WorkflowError
from .schemas import Workflow

logger = logging.getLogger(__name__)

SCHEDULE_TRIGGER = "schedule_trigger"


class SchedulerService:
    """Runs activated workflows whose entry point is a schedule trigger."""

    def __init__(self, engine: WorkflowEngine):
        self.scheduler = AsyncIOScheduler()
        self.engine = engine
        self.active: Dict[str, Dict[str, Any]] = {}

    def start(self):
        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Scheduler stopped")

    def build_trigger(self, config: Dict[str, Any]):
        seconds = config.get("interval_seconds")
        if seconds:
            return IntervalTrigger(seconds=int(seconds))

        expr = config.get("interval") or "*/5 * * * *"
        return CronTrigger.from_crontab(expr, timezone=config.get("timezone") or "UTC")

    def activate(self, workflow_id: str, workflow: Workflow, user_id: str, env_vars: Optional[Dict[str, str]] = None):
        trigger_node = next((node for node in workflow.nodes if node.blockType == SCHEDULE_TRIGGER), None)
        if trigger_node is None:
            raise ValueError(f"Workflow {workflow_id} has no {SCHEDULE_TRIGGER} node")

        trigger = self.build_trigger(trigger_node.config)
        self.scheduler.add_job(
            self.execute_job,
            trigger,
            args=[workflow_id, workflow, user_id, env_vars or {}],
            id=workflow_id,
            replace_existing=True,
        )
        self.active[workflow_id] = {"userId": user_id, "trigger": str(trigger)}
        logger.info(f"Scheduled workflow '{workflow_id}' with {trigger}")
        return trigger

    def deactivate(self, workflow_id: str) -> bool:
        if workflow_id not in self.active:
            return False
        self.scheduler.remove_job(workflow_id)
        del self.active[workflow_id]
        logger.info(f"Workflow '{workflow_id}' deactivated")
        return True

    async def execute_job(self, workflow_id: str, workflow: Workflow, user_id: str, env_vars: Dict[str, str]):
        logger.info(f"Executing scheduled workflow: {workflow_id}")
        try:
            record = await run_workflow(
                self.engine,
                workflow,
                user_id,
                inputs={"triggerType": "schedule"},
                workflow_id=workflow_id,
                env_vars=env_vars,
            )
            logger.info(f"Workflow '{workflow_id}' finished in {record.executionTimeMs}ms")
        except WorkflowError as e:
            logger.error(f"Workflow '{workflow_id}' execution failed: {e}")
