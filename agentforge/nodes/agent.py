import json
import time
import logging
from enum import Enum
from pocketflow import Node
from typing import Any, Dict, List, Optional

from .base import BaseBlock, require_input
from .. import config
from ..errors import ProviderExhausted, ToolNotFound
from ..providers import ProviderRegistry
from ..resolver import render_template
from ..schemas import AgentMessage, BlockCategory, InputSpec, OutputSpec, ToolCall
from ..tools import ToolCatalog, assemble_tools

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_MESSAGE = "You are a helpful AI assistant. Use available tools to help the user."
DEFAULT_ALLOW_LIST = "send_telegram,token_info"

# Tools whose call already puts the answer in front of the user
DELIVERY_TOOLS = ("send_telegram",)


class AgentState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    FAILED = "failed"


TERMINAL_STATES = (AgentState.DONE, AgentState.MAX_ITERATIONS_REACHED, AgentState.FAILED)


class AgentLoop:
    """
    Bounded model/tool state machine.

    AWAITING_MODEL -> EXECUTING_TOOLS -> AWAITING_MODEL -> ... until the model
    answers without tool calls (DONE), the step counter reaches
    max_iterations (MAX_ITERATIONS_REACHED, success=False) or the provider
    cascade is exhausted (FAILED, ProviderExhausted propagates).

    Tool calls run one at a time in the order the model listed them. Tool
    failures, unknown tools and bad arguments are answered with an error
    payload so the model can react; they never end the loop.
    """

    def __init__(self, cascade, catalog: ToolCatalog, context, max_iterations: Optional[int] = None):
        self.cascade = cascade
        self.catalog = catalog
        self.context = context
        self.max_iterations = max_iterations or config.AGENT_MAX_ITERATIONS
        self.state = AgentState.AWAITING_MODEL
        self.iterations = 0
        self.messages: List[AgentMessage] = []
        self.tools_used: List[str] = []
        # Set once a delivery tool has actually returned
        self.delivered_by_tool = False

    def run(self, system_prompt: str, task: str) -> Dict[str, Any]:
        self.messages = [
            AgentMessage(role="system", content=system_prompt),
            AgentMessage(role="user", content=task),
        ]
        self.state = AgentState.AWAITING_MODEL
        reply: Optional[AgentMessage] = None

        while self.state not in TERMINAL_STATES:
            if self.state == AgentState.AWAITING_MODEL:
                if self.iterations >= self.max_iterations:
                    self.state = AgentState.MAX_ITERATIONS_REACHED
                    break
                self.iterations += 1
                logger.info(f"Agent iteration {self.iterations}/{self.max_iterations}")
                try:
                    reply = self.cascade.complete(self.messages, self.catalog.to_openai() or None)
                except ProviderExhausted:
                    self.state = AgentState.FAILED
                    raise
                self.messages.append(reply)
                self.state = AgentState.EXECUTING_TOOLS if reply.tool_calls else AgentState.DONE

            elif self.state == AgentState.EXECUTING_TOOLS:
                logger.info(f"Agent wants to use {len(reply.tool_calls)} tool(s)")
                for call in reply.tool_calls:
                    self.messages.append(self.invoke(call))
                self.state = AgentState.AWAITING_MODEL

        if self.state == AgentState.DONE:
            logger.info(f"Agent completed after {self.iterations} iteration(s), {len(self.tools_used)} tool call(s)")
            response = reply.content
        else:
            logger.warning(f"Agent reached max iterations ({self.max_iterations})")
            response = (reply.content if reply else "") or "Agent reached maximum iterations"

        return {
            "response": response or "",
            "toolsUsed": list(self.tools_used),
            "conversationHistory": [message.model_dump(exclude_none=True) for message in self.messages],
            "success": self.state == AgentState.DONE,
            "iterations": self.iterations,
            "state": self.state.value,
            "model": getattr(self.cascade, "last_model", None),
        }

    def invoke(self, call: ToolCall) -> AgentMessage:
        """Run one tool call and answer it with a tool message."""
        self.tools_used.append(call.name)

        try:
            tool = self.catalog.get(call.name)
        except ToolNotFound as e:
            logger.error(str(e))
            return self._tool_message(call, {"error": str(e)})

        try:
            args = json.loads(call.arguments or "{}")
            if not isinstance(args, dict):
                raise ValueError("arguments must be a JSON object")
        except ValueError as e:
            logger.error(f"Tool {call.name} called with invalid arguments: {e}")
            return self._tool_message(call, {"error": f"Invalid arguments: {e}"})

        logger.info(f"Executing tool: {call.name} with {args}")
        started = time.monotonic()
        if tool.node_id:
            self.context.emit("nodeStarted", tool.node_id, tool.block_type, {"asTool": True})

        try:
            result = tool.execute(args, self.context)
        except Exception as e:
            duration = int((time.monotonic() - started) * 1000)
            logger.error(f"Tool {call.name} failed: {e}")
            if tool.node_id:
                self.context.emit("nodeFailed", tool.node_id, tool.block_type, {"error": str(e), "duration": duration, "asTool": True})
            return self._tool_message(call, {"error": str(e)})

        if tool.node_id:
            duration = int((time.monotonic() - started) * 1000)
            self.context.emit("nodeCompleted", tool.node_id, tool.block_type, {"output": result, "duration": duration, "asTool": True})
        if call.name in DELIVERY_TOOLS:
            self.delivered_by_tool = True
        logger.info(f"Tool {call.name} executed successfully")
        return self._tool_message(call, result)

    @staticmethod
    def _tool_message(call: ToolCall, payload: Any) -> AgentMessage:
        return AgentMessage(
            role="tool",
            tool_call_id=call.id,
            name=call.name,
            content=json.dumps(payload, default=str, ensure_ascii=False),
        )


class AgentBlock(BaseBlock, Node):
    """
    AI Agent with tool calling.

    Tools are the blocks wired to this node with tool edges, or, when none are
    wired, the blocks named by enabledTools ("send_telegram,token_info",
    "category:data", "data.*" or "all").
    """
    BLOCK_TYPE = "ai_agent"
    NAME = "AI Agent"
    DESCRIPTION = "AI Agent with tool calling capabilities. Can use connected blocks as tools to perform actions."
    CATEGORY = BlockCategory.AI
    CREDIT_COST = 30
    INPUTS = [
        InputSpec(name="prompt", required=True, description="User message/prompt for the AI agent"),
        InputSpec(name="systemMessage", description="System prompt to guide agent behavior"),
        InputSpec(name="chatId", description="Telegram chat ID (for send_telegram tool)", auto_fill=["chatId"]),
        InputSpec(name="botToken", description="Telegram bot token (for send_telegram tool)", auto_fill=["botToken", "TELEGRAM_BOT_TOKEN"]),
        InputSpec(name="enabledTools", description="Comma-separated tools, category wildcards or 'all'"),
        InputSpec(name="model", type="select", description="AI Model (default: first entry of the model cascade)"),
        InputSpec(name="maxIterations", type="number", description="Maximum tool calling iterations (default: 5)"),
    ]
    OUTPUTS = [
        OutputSpec(name="response", description="Final agent response"),
        OutputSpec(name="toolsUsed", type="array", description="List of tools that were called"),
        OutputSpec(name="conversationHistory", type="array", description="Full conversation with tool calls"),
        OutputSpec(name="success", type="boolean", description="Whether agent completed successfully"),
        OutputSpec(name="iterations", type="number"),
        OutputSpec(name="delivered", type="boolean", description="Whether the answer was delivered by the fallback send"),
    ]

    def prep(self, shared):
        inputs = shared["inputs"]
        context = shared["context"]
        return {
            "inputs": inputs,
            "context": context,
            "prompt": render_template(require_input(inputs, "prompt"), context),
            "system": render_template(inputs.get("systemMessage") or DEFAULT_SYSTEM_MESSAGE, context),
            "allow_list": inputs.get("enabledTools", DEFAULT_ALLOW_LIST),
            "model": inputs.get("model"),
            "max_iterations": int(inputs.get("maxIterations") or config.AGENT_MAX_ITERATIONS),
        }

    def exec(self, prep_res):
        context = prep_res["context"]
        registry = context.registry
        if registry is None:
            from ..node_registry import registry

        catalog = assemble_tools(
            registry,
            getattr(context, "current_node_id", None) or "",
            context.workflow,
            allow_list=prep_res["allow_list"],
            agent_inputs=prep_res["inputs"],
            exclude=(self.BLOCK_TYPE,),
        )
        if len(catalog) == 0:
            logger.warning("No tools enabled for AI Agent")

        providers = context.providers or ProviderRegistry.from_config()
        cascade = providers.cascade(prep_res["model"])

        logger.info(f"AI Agent started with {len(cascade.candidates)} model candidate(s)")
        loop = AgentLoop(cascade, catalog, context, max_iterations=prep_res["max_iterations"])
        result = loop.run(prep_res["system"], prep_res["prompt"])

        result["delivered"] = False
        if loop.state == AgentState.DONE and result["response"]:
            result["delivered"] = self.deliver(result["response"], loop.delivered_by_tool, prep_res["inputs"], context, registry)
        return result

    def deliver(self, answer: str, delivered_by_tool: bool, inputs: Dict[str, Any], context, registry) -> bool:
        """Send the final answer once when the agent never called a delivery tool itself."""
        if delivered_by_tool:
            return False

        block_cls = registry.get("send_telegram")
        chat_id = inputs.get("chatId") or context.shared_value("chatId")
        bot_token = inputs.get("botToken") or context.shared_value("botToken") or context.env("TELEGRAM_BOT_TOKEN")
        if block_cls is None or not chat_id or not bot_token:
            return False

        try:
            block_cls().execute({"message": answer, "chatId": chat_id, "botToken": bot_token}, context)
        except Exception as e:
            logger.error(f"Fallback delivery of agent answer failed: {e}")
            return False
        logger.info(f"Delivered agent answer to chat {chat_id}")
        return True
