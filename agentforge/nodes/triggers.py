import time
import logging
from pocketflow import Node

from .base import BaseBlock
from ..context import CONTEXT_KEY
from ..schemas import BlockCategory, InputSpec, OutputSpec

logger = logging.getLogger(__name__)


class TriggerBlock(BaseBlock):
    """Triggers read the run's global inputs rather than their resolved inputs."""
    CATEGORY = BlockCategory.TRIGGER

    def prep(self, shared):
        context = shared["context"]
        return {"inputs": shared["inputs"], "global_inputs": dict(context.global_inputs)}


class ManualTriggerBlock(TriggerBlock, Node):
    """Entry point of a manually started run."""

    BLOCK_TYPE = "manual_trigger"
    NAME = "Manual Trigger"
    DESCRIPTION = "Triggers workflow manually via API call or UI button. Accepts custom input data."
    INPUTS = [
        InputSpec(name="inputSchema", type="object", description="Optional JSON schema for expected input data"),
    ]
    OUTPUTS = [
        OutputSpec(name="manualRun", type="boolean", description="Always true for manual runs"),
        OutputSpec(name="timestamp", type="number", description="Unix timestamp (ms) when triggered"),
        OutputSpec(name="inputData", type="object", description="Custom data provided by user"),
    ]

    def exec(self, prep_res):
        logger.info("Manual trigger executed")
        return {
            "manualRun": True,
            "timestamp": int(time.time() * 1000),
            "inputData": prep_res["global_inputs"],
        }


class WebhookTriggerBlock(TriggerBlock, Node):
    BLOCK_TYPE = "webhook_trigger"
    NAME = "Webhook Trigger"
    DESCRIPTION = "Starts the workflow from an incoming webhook payload"
    OUTPUTS = [
        OutputSpec(name="triggerData", type="object", description="Raw webhook payload"),
        OutputSpec(name="timestamp", type="number"),
    ]

    def exec(self, prep_res):
        return {
            "triggerData": prep_res["global_inputs"].get("triggerData") or {},
            "timestamp": int(time.time() * 1000),
        }


class ScheduleTriggerBlock(TriggerBlock, Node):
    # The block itself doesn't "execute" the schedule, SchedulerService does.
    # When the run starts it only marks the trigger.
    BLOCK_TYPE = "schedule_trigger"
    NAME = "Schedule Trigger"
    DESCRIPTION = 'Triggers workflow on a schedule using cron expression. Example: "*/5 * * * *" runs every 5 minutes.'
    INPUTS = [
        InputSpec(name="interval", required=True, description='Cron expression (e.g., "*/5 * * * *")'),
        InputSpec(name="timezone", description='Timezone for schedule (e.g., "UTC")'),
        InputSpec(name="interval_seconds", type="number", description="Fixed interval instead of a cron expression"),
    ]
    OUTPUTS = [
        OutputSpec(name="timestamp", type="number", description="Unix timestamp (ms) when trigger fired"),
        OutputSpec(name="scheduledRun", type="boolean", description="Always true for scheduled runs"),
        OutputSpec(name="triggerType", description="Always 'schedule'"),
    ]

    def exec(self, prep_res):
        logger.info("Schedule trigger executed")
        return {
            "timestamp": int(time.time() * 1000),
            "scheduledRun": True,
            "triggerType": "schedule",
        }


class TelegramTriggerBlock(TriggerBlock, Node):
    """Unpacks a Telegram update delivered as triggerData."""

    BLOCK_TYPE = "telegram_trigger"
    NAME = "Telegram Trigger"
    DESCRIPTION = "Starts the workflow when the bot receives a Telegram message"
    OUTPUTS = [
        OutputSpec(name="chatId", description="Chat the message came from"),
        OutputSpec(name="text", description="Message text"),
        OutputSpec(name="username", description="Sender username"),
        OutputSpec(name="userId", description="Sender Telegram id"),
        OutputSpec(name="messageId", type="number"),
    ]

    def exec(self, prep_res):
        update = prep_res["global_inputs"].get("triggerData") or {}
        message = update.get("message") or update.get("edited_message") or {}
        chat = message.get("chat") or {}
        sender = message.get("from") or {}

        chat_id = str(chat["id"]) if chat.get("id") is not None else ""
        if not chat_id:
            logger.warning("Telegram trigger ran without a message in triggerData")

        return {
            "chatId": chat_id,
            "text": message.get("text", ""),
            "username": sender.get("username", ""),
            "userId": str(sender.get("id", "")),
            "messageId": message.get("message_id"),
            # Shared with every downstream block, e.g. to reply in the same chat
            CONTEXT_KEY: {"chatId": chat_id},
        }
