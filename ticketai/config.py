"""Configuration for the classification/routing workers (environment variables)."""

import os


def _flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


REDIS_URL: str = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
REDIS_CONN_TIMEOUT: int = int(os.environ.get("REDIS_CONN_TIMEOUT", "5"))

# --- Queues ---
CLASSIFICATION_QUEUE: str = os.environ.get("CLASSIFICATION_QUEUE", "ai:classification:queue")
CLASSIFICATION_RETRY_QUEUE: str = os.environ.get(
    "CLASSIFICATION_RETRY_QUEUE", "ai:classification:queue:retry"
)
ROUTING_QUEUE: str = os.environ.get("ROUTING_QUEUE", "ai:routing:queue")
QUEUE_BLOCK_TIMEOUT_SECONDS: int = int(os.environ.get("QUEUE_BLOCK_TIMEOUT_SECONDS", "5"))
WORKER_ERROR_BACKOFF_SECONDS: float = float(os.environ.get("WORKER_ERROR_BACKOFF_SECONDS", "1.0"))
# Worker status hashes expire unless refreshed; keep well above QUEUE_BLOCK_TIMEOUT_SECONDS.
WORKER_STATUS_TTL_SECONDS: int = int(os.environ.get("WORKER_STATUS_TTL_SECONDS", "60"))
ENABLE_AUTO_ROUTING: bool = _flag("ENABLE_AUTO_ROUTING")

# --- Classification service (OpenAI-compatible chat completions) ---
# A Kimi (Moonshot) key takes precedence over OpenAI.
KIMI_API_KEY: str = os.environ.get("KIMI_API_KEY", "")
KIMI_BASE_URL: str = os.environ.get("KIMI_BASE_URL", "https://api.moonshot.cn/v1")
KIMI_MODEL: str = os.environ.get("KIMI_MODEL", "moonshot-v1-8k")
OPENAI_API_KEY: str = os.environ.get("OPENAI_API_KEY", "")
OPENAI_BASE_URL: str = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_MODEL: str = os.environ.get("OPENAI_MODEL", "gpt-4")
AI_TEMPERATURE: float = float(os.environ.get("AI_TEMPERATURE", "0.3"))
AI_TIMEOUT_SECONDS: float = float(os.environ.get("AI_TIMEOUT_SECONDS", "60"))
AI_MAX_RETRIES: int = int(os.environ.get("AI_MAX_RETRIES", "2"))

# --- Routing ---
ROUTING_RULE_CONFIDENCE_FLOOR: bool = _flag("ROUTING_RULE_CONFIDENCE_FLOOR")
TICKET_LOCK_TIMEOUT_SECONDS: float = float(os.environ.get("TICKET_LOCK_TIMEOUT_SECONDS", "30"))

# Optional: Slack or Discord webhook URL for operational alerts (escalations, unroutable tickets,
# permanent classification-service failures).
WEBHOOK_URL: str = os.environ.get("WEBHOOK_URL", "")
WEBHOOK_TIMEOUT_SECONDS: float = float(os.environ.get("WEBHOOK_TIMEOUT_SECONDS", "5"))

# Register demo agents/teams for DEFAULT_TENANT at worker startup.
SEED_MOCK_DIRECTORY: bool = _flag("SEED_MOCK_DIRECTORY")
DEFAULT_TENANT: str = os.environ.get("DEFAULT_TENANT", "demo")


def ai_provider() -> str:
    """'kimi' when a Kimi key is configured, else 'openai'."""
    return "kimi" if KIMI_API_KEY else "openai"


def ai_model() -> str:
    return KIMI_MODEL if KIMI_API_KEY else OPENAI_MODEL
