import os
from pathlib import Path

# Define the root directory of the project
ROOT_DIR = Path(__file__).resolve().parent.parent

# App Defaults - LLM Configuration (local OpenAI compatible server)
LLM_BASE_URL = os.environ.get("LLM_BASE_URL", "http://localhost:1234/v1")
LLM_API_KEY = os.environ.get("LLM_API_KEY", "lm-studio")
LLM_MODEL = os.environ.get("LLM_MODEL", "local-model")

# Hosted providers
OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
OPENROUTER_BASE_URL = os.environ.get("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
OPENROUTER_API_KEY = os.environ.get("OPENROUTER_API_KEY", "")

# Ordered (provider, model) fallback list: "provider:model,provider:model"
MODEL_CASCADE = os.environ.get(
    "MODEL_CASCADE",
    "openrouter:openai/gpt-4o-mini,openai:gpt-4o-mini,local:local-model",
)

# Timeouts (seconds)
LLM_TIMEOUT = float(os.environ.get("LLM_TIMEOUT", "60"))
HTTP_TIMEOUT = float(os.environ.get("HTTP_TIMEOUT", "15"))

# Agent loop
AGENT_MAX_ITERATIONS = int(os.environ.get("AGENT_MAX_ITERATIONS", "5"))
AGENT_RATE_LIMIT_ATTEMPTS = int(os.environ.get("AGENT_RATE_LIMIT_ATTEMPTS", "3"))
AGENT_BACKOFF_BASE = float(os.environ.get("AGENT_BACKOFF_BASE", "1.0"))

# Billing
DEFAULT_CREDITS = float(os.environ.get("DEFAULT_CREDITS", "0"))


def parse_cascade(value: str):
    """Parse "provider:model,provider:model" into a list of (provider, model) pairs."""
    pairs = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        provider, _, model = item.partition(":")
        if not model:
            raise ValueError(f"Invalid cascade entry '{item}', expected provider:model")
        pairs.append((provider.strip(), model.strip()))
    return pairs
