import unittest
from unittest.mock import MagicMock, patch

import pytest

from agentforge.context import CONTEXT_KEY, ExecutionContext
from agentforge.errors import UnknownBlockType
from agentforge.node_registry import BlockRegistry, registry
from agentforge.nodes.telegram import SendTelegramBlock
from agentforge.nodes.triggers import ManualTriggerBlock, ScheduleTriggerBlock, TelegramTriggerBlock, WebhookTriggerBlock
from agentforge.nodes.web import HttpRequestBlock, TokenInfoBlock
from agentforge.schemas import BlockCategory

from fakes import EchoBlock

VALID_TOKEN = "123456789:" + "a" * 35


def make_context(**kwargs):
    return ExecutionContext("wf", "ex", "u1", **kwargs)


def json_response(payload, status=200):
    response = MagicMock()
    response.status_code = status
    response.ok = status < 400
    response.json.return_value = payload
    return response


class TestTriggers(unittest.TestCase):
    def test_manual_trigger_exposes_run_inputs(self):
        output = ManualTriggerBlock().execute({}, make_context(global_inputs={"topic": "sol"}))
        self.assertTrue(output["manualRun"])
        self.assertEqual(output["inputData"], {"topic": "sol"})
        self.assertIsInstance(output["timestamp"], int)

    def test_webhook_trigger(self):
        output = WebhookTriggerBlock().execute({}, make_context(global_inputs={"triggerData": {"a": 1}}))
        self.assertEqual(output["triggerData"], {"a": 1})

    def test_schedule_trigger(self):
        output = ScheduleTriggerBlock().execute({"interval": "*/5 * * * *"}, make_context())
        self.assertTrue(output["scheduledRun"])
        self.assertEqual(output["triggerType"], "schedule")

    def test_telegram_trigger_publishes_chat(self):
        update = {"message": {
            "message_id": 11,
            "text": "price of SOL?",
            "chat": {"id": 4242},
            "from": {"id": 7, "username": "alice"},
        }}
        context = make_context(global_inputs={"triggerData": update})

        output = TelegramTriggerBlock().execute({}, context)

        self.assertEqual(output["chatId"], "4242")
        self.assertEqual(output["text"], "price of SOL?")
        self.assertEqual(output["username"], "alice")
        self.assertEqual(output["userId"], "7")
        self.assertEqual(output["messageId"], 11)
        self.assertEqual(output[CONTEXT_KEY], {"chatId": "4242"})

        # Downstream blocks find the chat through shared context
        context.global_inputs.clear()
        context.record_output("trigger", output)
        self.assertEqual(context.shared_value("chatId"), "4242")

    def test_telegram_trigger_without_message(self):
        output = TelegramTriggerBlock().execute({}, make_context())
        self.assertEqual(output["chatId"], "")
        self.assertEqual(output["text"], "")


class TestSendTelegram(unittest.TestCase):
    @patch("agentforge.nodes.telegram.requests.post")
    def test_sends_message(self, mock_post):
        mock_post.return_value = json_response({"ok": True, "result": {"message_id": 99}})

        output = SendTelegramBlock().execute(
            {"message": "hello", "chatId": "42", "botToken": VALID_TOKEN},
            make_context(),
        )

        self.assertEqual(output, {"success": True, "messageId": 99, "chatId": "42"})
        url = mock_post.call_args.args[0]
        self.assertEqual(url, f"https://api.telegram.org/bot{VALID_TOKEN}/sendMessage")
        self.assertEqual(mock_post.call_args.kwargs["json"], {"chat_id": "42", "text": "hello", "parse_mode": "Markdown"})

    @patch("agentforge.nodes.telegram.requests.post")
    def test_chat_and_token_from_context(self, mock_post):
        mock_post.return_value = json_response({"ok": True, "result": {"message_id": 1}})
        context = make_context(env_vars={"TELEGRAM_BOT_TOKEN": VALID_TOKEN})
        context.record_output("trigger", {CONTEXT_KEY: {"chatId": "555"}})

        output = SendTelegramBlock().execute({"message": "reply"}, context)

        self.assertEqual(output["chatId"], "555")
        self.assertEqual(mock_post.call_args.kwargs["json"]["chat_id"], "555")

    @patch("agentforge.nodes.telegram.requests.post")
    def test_invalid_token_is_rejected(self, mock_post):
        with self.assertRaises(ValueError):
            SendTelegramBlock().execute({"message": "hi", "chatId": "1", "botToken": "nope"}, make_context())
        mock_post.assert_not_called()

    @patch("agentforge.nodes.telegram.requests.post")
    def test_api_errors_raise(self, mock_post):
        mock_post.return_value = json_response({"ok": False, "description": "Bad Request: chat not found"}, status=400)
        with self.assertRaises(RuntimeError) as ctx:
            SendTelegramBlock().execute({"message": "hi", "chatId": "1", "botToken": VALID_TOKEN}, make_context())
        self.assertIn("Chat not found", str(ctx.exception))


class TestWebBlocks(unittest.TestCase):
    @patch("agentforge.nodes.web.requests.request")
    def test_http_request_renders_url(self, mock_request):
        mock_request.return_value = json_response({"price": 3})
        context = make_context(env_vars={"API_HOST": "api.example.com"})
        context.record_output("trigger", {"symbol": "SOL"})

        output = HttpRequestBlock().execute({"url": "https://{{env.API_HOST}}/price/{{trigger.symbol}}"}, context)

        self.assertEqual(output, {"status": 200, "data": {"price": 3}, "ok": True})
        method, url = mock_request.call_args.args
        self.assertEqual((method, url), ("GET", "https://api.example.com/price/SOL"))
        self.assertIsNone(mock_request.call_args.kwargs["json"])

    @patch("agentforge.nodes.web.requests.request")
    def test_http_post_body(self, mock_request):
        mock_request.return_value = json_response({"ok": True}, status=201)

        HttpRequestBlock().execute({"url": "http://x", "method": "post", "body": '{"a": 1}'}, make_context())

        self.assertEqual(mock_request.call_args.args[0], "POST")
        self.assertEqual(mock_request.call_args.kwargs["json"], {"a": 1})

    @patch("agentforge.nodes.web.requests.get")
    def test_token_info(self, mock_get):
        mock_get.return_value = json_response({"pairs": [{
            "baseToken": {"name": "Wrapped SOL", "symbol": "SOL"},
            "priceUsd": "150.1",
            "priceChange": {"h24": 2.5},
            "volume": {"h24": 1000},
            "liquidity": {"usd": 5000},
            "fdv": 9000,
            "dexId": "raydium",
            "pairAddress": "pair1",
        }]})

        output = TokenInfoBlock().execute({"token_address": " So111 "}, make_context())

        self.assertEqual(output["symbol"], "SOL")
        self.assertEqual(output["price_usd"], "150.1")
        self.assertEqual(output["liquidity_usd"], 5000)
        self.assertEqual(output["token_address"], "So111")

    @patch("agentforge.nodes.web.requests.get")
    def test_token_info_without_pairs(self, mock_get):
        mock_get.return_value = json_response({"pairs": None})
        output = TokenInfoBlock().execute({"token_address": "x"}, make_context())
        self.assertIn("error", output)


def test_default_registry_lists_builtin_blocks():
    types = {schema.type for schema in registry.get_all_metadata()}
    assert types == {
        "manual_trigger", "webhook_trigger", "schedule_trigger", "telegram_trigger",
        "http_request", "token_info", "send_telegram", "llm_analysis", "ai_agent",
    }
    agent = registry.require("ai_agent").get_schema()
    assert agent.category == BlockCategory.AI
    assert agent.creditCost == 30


def test_registry_lookup_and_registration():
    blocks = BlockRegistry()
    with pytest.raises(UnknownBlockType):
        blocks.require("echo")
    assert blocks.get("echo") is None

    blocks.register(EchoBlock)
    assert blocks.require("echo") is EchoBlock

    class Nameless:
        BLOCK_TYPE = ""

    with pytest.raises(ValueError):
        blocks.register(Nameless)


def test_schema_wire_format():
    data = EchoBlock.get_schema().model_dump(mode="json")
    assert data["type"] == "echo"
    assert data["category"] == "action"
    assert data["creditCost"] == 1
    assert data["inputs"][0]["name"] == "text"
