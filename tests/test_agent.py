import json
import unittest
from unittest.mock import patch

from agentforge.context import ExecutionContext
from agentforge.errors import ProviderExhausted
from agentforge.events import EventHub
from agentforge.node_registry import BlockRegistry
from agentforge.nodes.agent import AgentBlock, AgentLoop, AgentState
from agentforge.nodes.telegram import SendTelegramBlock
from agentforge.providers import ProviderCascade
from agentforge.schemas import AgentMessage, Edge, Node, ToolCall, Workflow
from agentforge.tools import Tool, ToolCatalog, block_tool

from fakes import EchoBlock, FakeProvider, LookupBlock, answer, call_tool, fake_providers


def make_context(**kwargs):
    return ExecutionContext("wf", "ex", "u1", **kwargs)


def cascade_for(provider):
    return ProviderCascade([(provider, "m")], sleep=lambda _: None)


class TestAgentLoop(unittest.TestCase):
    def test_answer_without_tools_ends_after_one_iteration(self):
        provider = FakeProvider(replies=[answer("hello")])
        loop = AgentLoop(cascade_for(provider), ToolCatalog(), make_context(), max_iterations=5)

        result = loop.run("system", "task")

        self.assertTrue(result["success"])
        self.assertEqual(result["response"], "hello")
        self.assertEqual(result["iterations"], 1)
        self.assertEqual(loop.state, AgentState.DONE)
        self.assertEqual(len(provider.calls), 1)
        roles = [m["role"] for m in result["conversationHistory"]]
        self.assertEqual(roles, ["system", "user", "assistant"])

    def test_iteration_bound(self):
        provider = FakeProvider(replies=[call_tool("lookup", '{"query": "q"}', content="still working")], repeat_last=True)
        catalog = ToolCatalog([block_tool(LookupBlock)])
        loop = AgentLoop(cascade_for(provider), catalog, make_context(), max_iterations=2)

        result = loop.run("system", "task")

        self.assertFalse(result["success"])
        self.assertEqual(result["iterations"], 2)
        self.assertEqual(len(provider.calls), 2)
        self.assertEqual(loop.state, AgentState.MAX_ITERATIONS_REACHED)
        self.assertEqual(result["state"], "max_iterations_reached")
        self.assertEqual(result["response"], "still working")
        self.assertEqual(result["toolsUsed"], ["lookup", "lookup"])

    def test_unknown_tool_is_reported_to_the_model(self):
        provider = FakeProvider(replies=[call_tool("nope", call_id="c9"), answer("sorry")])
        loop = AgentLoop(cascade_for(provider), ToolCatalog(), make_context())

        result = loop.run("system", "task")

        self.assertTrue(result["success"])
        self.assertEqual(result["iterations"], 2)
        tool_message = result["conversationHistory"][3]
        self.assertEqual(tool_message["role"], "tool")
        self.assertEqual(tool_message["tool_call_id"], "c9")
        self.assertEqual(tool_message["name"], "nope")
        self.assertIn("not found", json.loads(tool_message["content"])["error"])
        # The second model call saw the error
        self.assertEqual(provider.calls[1]["messages"][-1].role, "tool")

    def test_tool_failure_and_bad_arguments_do_not_stop_the_loop(self):
        def explode(args, context):
            raise RuntimeError("tool broke")

        catalog = ToolCatalog([Tool("explode", "fails", {"type": "object", "properties": {}}, explode)])
        provider = FakeProvider(replies=[
            call_tool("explode", call_id="a"),
            call_tool("explode", arguments="{not json", call_id="b"),
            answer("gave up"),
        ])
        loop = AgentLoop(cascade_for(provider), catalog, make_context())

        result = loop.run("system", "task")

        self.assertTrue(result["success"])
        errors = [json.loads(m["content"])["error"] for m in result["conversationHistory"] if m["role"] == "tool"]
        self.assertEqual(errors[0], "tool broke")
        self.assertTrue(errors[1].startswith("Invalid arguments"))

    def test_tool_calls_run_sequentially_in_request_order(self):
        seen = []

        def record(args, context):
            seen.append(args["n"])
            return {"n": args["n"]}

        catalog = ToolCatalog([Tool("record", "records", {"type": "object"}, record)])
        reply = AgentMessage(role="assistant", tool_calls=[
            ToolCall(id=f"c{n}", name="record", arguments=json.dumps({"n": n})) for n in range(3)
        ])
        provider = FakeProvider(replies=[reply, answer("done")])
        loop = AgentLoop(cascade_for(provider), catalog, make_context())

        result = loop.run("system", "task")

        self.assertEqual(seen, [0, 1, 2])
        tool_ids = [m["tool_call_id"] for m in result["conversationHistory"] if m["role"] == "tool"]
        self.assertEqual(tool_ids, ["c0", "c1", "c2"])

    def test_tools_are_sent_to_the_model(self):
        provider = FakeProvider(replies=[answer("ok")])
        loop = AgentLoop(cascade_for(provider), ToolCatalog([block_tool(LookupBlock)]), make_context())
        loop.run("system", "task")
        self.assertEqual(provider.calls[0]["tools"][0]["function"]["name"], "lookup")

    def test_provider_exhaustion_fails_the_loop(self):
        provider = FakeProvider(replies=[RuntimeError("down")])
        loop = AgentLoop(cascade_for(provider), ToolCatalog(), make_context())

        with self.assertRaises(ProviderExhausted):
            loop.run("system", "task")
        self.assertEqual(loop.state, AgentState.FAILED)

    def test_wired_tool_emits_node_events(self):
        hub = EventHub()
        events = []
        hub.subscribe("wf", "ex", events.append)
        tool = block_tool(LookupBlock, node_id="lk")
        provider = FakeProvider(replies=[call_tool("lookup", '{"query": "x"}'), answer("done")])
        loop = AgentLoop(cascade_for(provider), ToolCatalog([tool]), make_context(hub=hub))

        loop.run("system", "task")

        self.assertEqual([(e.type, e.nodeId) for e in events], [("nodeStarted", "lk"), ("nodeCompleted", "lk")])
        self.assertTrue(events[1].payload["asTool"])


class TestAgentBlock(unittest.TestCase):
    def run_agent(self, provider, config, edges=(), extra_nodes=(), registry=None, **context_kwargs):
        registry = registry or BlockRegistry([EchoBlock, LookupBlock, SendTelegramBlock, AgentBlock])
        workflow = Workflow(nodes=[Node(id="agent", blockType="ai_agent", config=config)] + list(extra_nodes), edges=list(edges))
        context = make_context(workflow=workflow, registry=registry, providers=fake_providers(provider), **context_kwargs)
        context.current_node_id = "agent"
        return AgentBlock().execute(config, context)

    def test_uses_allow_list_tools(self):
        provider = FakeProvider(replies=[call_tool("lookup", '{"query": "SOL"}'), answer("SOL is fine")])

        output = self.run_agent(provider, {"prompt": "How is SOL?", "enabledTools": "data.*"})

        self.assertTrue(output["success"])
        self.assertEqual(output["response"], "SOL is fine")
        self.assertEqual(output["toolsUsed"], ["lookup"])
        self.assertEqual(output["model"], "fake:fake-model")
        tool_result = json.loads(output["conversationHistory"][3]["content"])
        self.assertEqual(tool_result, {"answer": "result for SOL"})
        sent_tools = [t["function"]["name"] for t in provider.calls[0]["tools"]]
        self.assertEqual(sent_tools, ["lookup"])

    def test_system_and_prompt_start_the_conversation(self):
        provider = FakeProvider(replies=[answer("hi")])

        self.run_agent(provider, {"prompt": "task text", "systemMessage": "be brief", "enabledTools": ""})

        first = provider.calls[0]["messages"]
        self.assertEqual((first[0].role, first[0].content), ("system", "be brief"))
        self.assertEqual((first[1].role, first[1].content), ("user", "task text"))
        self.assertIsNone(provider.calls[0]["tools"])

    def test_tool_edges_are_authoritative(self):
        provider = FakeProvider(replies=[answer("ok")])
        self.run_agent(
            provider,
            {"prompt": "go", "enabledTools": "all"},
            edges=[Edge(source="e1", target="agent", targetHandle="tool")],
            extra_nodes=[Node(id="e1", blockType="echo")],
        )
        sent_tools = [t["function"]["name"] for t in provider.calls[0]["tools"]]
        self.assertEqual(sent_tools, ["echo"])

    @patch("agentforge.nodes.telegram.send_message")
    def test_delivery_safety_net(self, mock_send):
        mock_send.return_value = {"ok": True, "result": {"message_id": 7}}
        provider = FakeProvider(replies=[answer("final answer")])
        token = "123456:" + "A" * 35

        output = self.run_agent(
            provider,
            {"prompt": "go", "enabledTools": "", "chatId": "42"},
            env_vars={"TELEGRAM_BOT_TOKEN": token},
        )

        self.assertTrue(output["delivered"])
        mock_send.assert_called_once_with(token, "42", "final answer", "Markdown")

    @patch("agentforge.nodes.telegram.send_message")
    def test_no_safety_net_when_agent_already_delivered(self, mock_send):
        mock_send.return_value = {"ok": True, "result": {"message_id": 7}}
        token = "123456:" + "A" * 35
        provider = FakeProvider(replies=[call_tool("send_telegram", '{"message": "hi"}'), answer("sent")])

        output = self.run_agent(
            provider,
            {"prompt": "go", "enabledTools": "send_telegram", "chatId": "42", "botToken": token},
        )

        self.assertFalse(output["delivered"])
        self.assertEqual(mock_send.call_count, 1)

    @patch("agentforge.nodes.telegram.send_message")
    def test_safety_net_failure_keeps_run_successful(self, mock_send):
        mock_send.side_effect = RuntimeError("telegram down")
        provider = FakeProvider(replies=[answer("final")])

        output = self.run_agent(
            provider,
            {"prompt": "go", "enabledTools": "", "chatId": "42", "botToken": "123456:" + "A" * 35},
        )

        self.assertTrue(output["success"])
        self.assertFalse(output["delivered"])

    def test_no_delivery_without_channel(self):
        provider = FakeProvider(replies=[answer("final")])
        output = self.run_agent(provider, {"prompt": "go", "enabledTools": ""})
        self.assertFalse(output["delivered"])

    @patch("agentforge.nodes.telegram.send_message")
    def test_safety_net_runs_when_delivery_tool_was_unavailable(self, mock_send):
        mock_send.return_value = {"ok": True, "result": {"message_id": 7}}
        token = "123456:" + "A" * 35
        provider = FakeProvider(replies=[call_tool("send_telegram", '{"message": "hi"}'), answer("final")])

        output = self.run_agent(
            provider,
            {"prompt": "go", "enabledTools": "echo", "chatId": "42", "botToken": token},
        )

        self.assertEqual(output["toolsUsed"], ["send_telegram"])
        self.assertTrue(output["delivered"])
        mock_send.assert_called_once_with(token, "42", "final", "Markdown")
