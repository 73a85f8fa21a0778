import re
import logging
import requests
from pocketflow import Node

from .base import BaseBlock, require_input
from .. import config
from ..resolver import render_template
from ..schemas import BlockCategory, InputSpec, OutputSpec

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org/bot{token}/{method}"
BOT_TOKEN_PATTERN = re.compile(r"^\d+:[A-Za-z0-9_-]{35}$")


def send_message(bot_token: str, chat_id: str, text: str, parse_mode: str = "Markdown") -> dict:
    """Call Telegram's sendMessage and return the decoded reply."""
    response = requests.post(
        TELEGRAM_API.format(token=bot_token, method="sendMessage"),
        json={"chat_id": chat_id, "text": text, "parse_mode": parse_mode},
        timeout=config.HTTP_TIMEOUT,
    )
    try:
        payload = response.json()
    except ValueError:
        payload = {"ok": False, "description": response.text}

    if response.status_code == 404:
        raise RuntimeError("Telegram bot not found. Check your Bot Token from @BotFather.")
    if response.status_code == 403:
        raise RuntimeError("Bot is blocked or not allowed to send messages to this chat.")
    if not payload.get("ok"):
        description = payload.get("description") or f"HTTP {response.status_code}"
        if "chat not found" in description:
            raise RuntimeError("Chat not found. Check your Chat ID.")
        raise RuntimeError(f"Telegram API error: {description}")
    return payload


class SendTelegramBlock(BaseBlock, Node):
    """
    Send a message through a Telegram bot.

    chatId and botToken are normally filled from shared run context: the
    Telegram trigger publishes the chat id and TELEGRAM_BOT_TOKEN comes from
    the workflow's environment variables.
    """
    BLOCK_TYPE = "send_telegram"
    NAME = "Send Telegram Message"
    DESCRIPTION = (
        "Send a message to Telegram chat. Use this when you need to respond to the user "
        "or send any information to Telegram."
    )
    CATEGORY = BlockCategory.ACTION
    INPUTS = [
        InputSpec(name="message", required=True, description="Message text to send"),
        InputSpec(name="chatId", required=True, description="Telegram chat ID", auto_fill=["chatId"]),
        InputSpec(
            name="botToken",
            required=True,
            description="Telegram Bot Token from @BotFather",
            auto_fill=["botToken", "TELEGRAM_BOT_TOKEN"],
        ),
        InputSpec(name="parseMode", description="HTML, Markdown, or MarkdownV2 (default: Markdown)"),
    ]
    OUTPUTS = [
        OutputSpec(name="success", type="boolean", description="Whether message was sent successfully"),
        OutputSpec(name="messageId", type="number", description="ID of sent message"),
        OutputSpec(name="chatId", description="Chat ID where message was sent"),
    ]

    def prep(self, shared):
        inputs = shared["inputs"]
        context = shared["context"]

        bot_token = inputs.get("botToken") or context.shared_value("botToken") or context.env("TELEGRAM_BOT_TOKEN")
        chat_id = inputs.get("chatId") or context.shared_value("chatId")

        return {
            "bot_token": render_template(bot_token, context),
            "chat_id": render_template(chat_id, context),
            "message": render_template(inputs.get("message"), context),
            "parse_mode": inputs.get("parseMode") or "Markdown",
        }

    def exec(self, prep_res):
        bot_token = str(require_input(prep_res, "bot_token", "Set TELEGRAM_BOT_TOKEN in the workflow environment."))
        chat_id = str(require_input(prep_res, "chat_id", "Connect a Telegram Trigger or set it in block config."))
        message = str(require_input(prep_res, "message"))

        if "{{" in bot_token:
            raise ValueError(f"Bot Token contains unresolved reference: {bot_token}")
        if not BOT_TOKEN_PATTERN.match(bot_token):
            raise ValueError("Invalid Bot Token format. Expected format: 123456789:ABCdef...")

        logger.info(f"Sending Telegram message to chat {chat_id} ({len(message)} chars)")
        result = send_message(bot_token, chat_id, message, prep_res["parse_mode"])

        return {
            "success": True,
            "messageId": (result.get("result") or {}).get("message_id"),
            "chatId": chat_id,
        }
