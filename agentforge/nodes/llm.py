import json
import logging
from pocketflow import Node

from .base import BaseBlock, require_input
from .. import config
from ..providers import OpenAICompatibleProvider, ProviderCascade, ProviderRegistry
from ..resolver import render_template
from ..schemas import AgentMessage, BlockCategory, InputSpec, OutputSpec

logger = logging.getLogger(__name__)


class LLMAnalysisBlock(BaseBlock, Node):
    """
    Single-turn text generation.

    Features:
    - Variable injection: {field} for any resolved input, {{node.field}} for a
      specific node's output, {{env.NAME}} for environment variables
    - Model settings resolve node config -> run inputs (llm_base_url,
      llm_api_key, llm_model) -> application defaults
    - A custom api_base is tried first, then the configured model cascade
    """
    BLOCK_TYPE = "llm_analysis"
    NAME = "LLM Analysis"
    DESCRIPTION = "Analyze data or generate text with a language model"
    CATEGORY = BlockCategory.AI
    CREDIT_COST = 10
    INPUTS = [
        InputSpec(name="prompt", required=True, description="User prompt, can use {field} placeholders"),
        InputSpec(name="systemPrompt", description="System prompt"),
        InputSpec(name="model", type="select", description="Model name"),
        InputSpec(name="api_base", description="OpenAI compatible endpoint, e.g. http://localhost:1234/v1"),
        InputSpec(name="api_key", description="API key for api_base"),
        InputSpec(name="temperature", type="number", description="Sampling temperature (default: 0.7)"),
    ]
    OUTPUTS = [
        OutputSpec(name="response", description="Generated text"),
        OutputSpec(name="model", description="provider:model that answered"),
        OutputSpec(name="success", type="boolean"),
    ]

    def prep(self, shared):
        inputs = shared["inputs"]
        context = shared["context"]
        run_inputs = context.global_inputs

        prompt = str(require_input(inputs, "prompt"))
        for key, value in inputs.items():
            # Handle complex types
            if isinstance(value, (dict, list)):
                value = json.dumps(value, ensure_ascii=False)
            prompt = prompt.replace(f"{{{key}}}", str(value))

        return {
            "api_base": inputs.get("api_base") or run_inputs.get("llm_base_url"),
            "api_key": inputs.get("api_key") or run_inputs.get("llm_api_key") or config.LLM_API_KEY,
            "model": inputs.get("model") or run_inputs.get("llm_model"),
            "system_prompt": render_template(inputs.get("systemPrompt") or "You are a helpful assistant.", context),
            "user_prompt": render_template(prompt, context),
            "temperature": float(inputs.get("temperature", 0.7)),
            "providers": context.providers,
        }

    def build_cascade(self, prep_res) -> ProviderCascade:
        providers = prep_res["providers"] or ProviderRegistry.from_config()
        if not prep_res["api_base"]:
            return providers.cascade(prep_res["model"])

        custom = OpenAICompatibleProvider("custom", prep_res["api_base"], prep_res["api_key"])
        fallback = providers.cascade()
        return ProviderCascade([(custom, prep_res["model"] or config.LLM_MODEL)] + fallback.candidates)

    def exec(self, prep_res):
        cascade = self.build_cascade(prep_res)
        messages = [
            AgentMessage(role="system", content=prep_res["system_prompt"]),
            AgentMessage(role="user", content=prep_res["user_prompt"]),
        ]
        logger.info(f"LLM analysis with {len(cascade.candidates)} model candidate(s)")
        reply = cascade.complete(messages, temperature=prep_res["temperature"])
        return {"response": reply.content, "model": cascade.last_model, "success": True}
