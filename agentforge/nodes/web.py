import json
import logging
import requests
from pocketflow import Node

from .base import BaseBlock, require_input
from .. import config
from ..resolver import render_template
from ..schemas import BlockCategory, InputSpec, OutputSpec

logger = logging.getLogger(__name__)


class HttpRequestBlock(BaseBlock, Node):
    """Fetch data from an HTTP endpoint (supports {{node.field}} and {{env.NAME}} in url/body)."""
    BLOCK_TYPE = "http_request"
    NAME = "HTTP Request"
    DESCRIPTION = "Call an HTTP endpoint and return its JSON or text response"
    CATEGORY = BlockCategory.DATA
    CREDIT_COST = 1
    INPUTS = [
        InputSpec(name="url", required=True, description="Endpoint URL"),
        InputSpec(name="method", description="HTTP method (default: GET)"),
        InputSpec(name="headers", type="object", description="Request headers"),
        InputSpec(name="body", type="object", description="JSON body for POST/PUT/PATCH"),
        InputSpec(name="timeout", type="number", description="Timeout in seconds"),
    ]
    OUTPUTS = [
        OutputSpec(name="status", type="number", description="HTTP status code"),
        OutputSpec(name="data", type="object", description="Parsed JSON body, or text"),
        OutputSpec(name="ok", type="boolean"),
    ]

    DEFAULT_USER_AGENT = "AgentForge/1.0"

    def __init__(self):
        super().__init__(max_retries=2, wait=1)

    def prep(self, shared):
        inputs = shared["inputs"]
        context = shared["context"]

        body = inputs.get("body")
        if isinstance(body, str) and body.strip():
            body = render_template(body, context)
            try:
                body = json.loads(body)
            except json.JSONDecodeError:
                pass

        return {
            "url": render_template(require_input(inputs, "url"), context),
            "method": str(inputs.get("method") or "GET").upper(),
            "headers": inputs.get("headers") or {},
            "body": body or None,
            "timeout": float(inputs.get("timeout") or config.HTTP_TIMEOUT),
        }

    def exec(self, prep_res):
        headers = {"User-Agent": self.DEFAULT_USER_AGENT, **prep_res["headers"]}
        logger.info(f"HTTP {prep_res['method']} {prep_res['url']}")

        response = requests.request(
            prep_res["method"],
            prep_res["url"],
            headers=headers,
            json=prep_res["body"] if prep_res["method"] in ("POST", "PUT", "PATCH") else None,
            timeout=prep_res["timeout"],
        )
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError:
            data = response.text

        return {"status": response.status_code, "data": data, "ok": response.ok}


class TokenInfoBlock(BaseBlock, Node):
    """Look up a Solana token on DexScreener."""
    BLOCK_TYPE = "token_info"
    NAME = "Token Info"
    DESCRIPTION = (
        "Fetch information about a Solana token by its address. "
        "Returns price, market cap, liquidity, and other data from DexScreener."
    )
    CATEGORY = BlockCategory.DATA
    CREDIT_COST = 2
    INPUTS = [
        InputSpec(name="token_address", required=True, description="Solana token address (contract address)"),
    ]
    OUTPUTS = [
        OutputSpec(name="name"),
        OutputSpec(name="symbol"),
        OutputSpec(name="price_usd", type="number"),
        OutputSpec(name="price_change_24h", type="number"),
        OutputSpec(name="volume_24h", type="number"),
        OutputSpec(name="liquidity_usd", type="number"),
        OutputSpec(name="market_cap", type="number"),
        OutputSpec(name="dex"),
        OutputSpec(name="pair_address"),
    ]

    API_URL = "https://api.dexscreener.com/latest/dex/tokens/{address}"

    def __init__(self):
        super().__init__(max_retries=2, wait=1)

    def prep(self, shared):
        return {"token_address": str(require_input(shared["inputs"], "token_address")).strip()}

    def exec(self, prep_res):
        address = prep_res["token_address"]
        response = requests.get(self.API_URL.format(address=address), timeout=config.HTTP_TIMEOUT)
        response.raise_for_status()

        pairs = (response.json() or {}).get("pairs") or []
        if not pairs:
            # Reported in the output rather than raised
            return {"error": "Token not found or no trading pairs available", "token_address": address}

        # Get main pair (usually the one with highest liquidity)
        pair = pairs[0]
        return {
            "token_address": address,
            "name": pair.get("baseToken", {}).get("name"),
            "symbol": pair.get("baseToken", {}).get("symbol"),
            "price_usd": pair.get("priceUsd"),
            "price_change_24h": (pair.get("priceChange") or {}).get("h24"),
            "volume_24h": (pair.get("volume") or {}).get("h24"),
            "liquidity_usd": (pair.get("liquidity") or {}).get("usd"),
            "market_cap": pair.get("fdv"),
            "dex": pair.get("dexId"),
            "pair_address": pair.get("pairAddress"),
        }
