"""Configuration for the tenant chat service."""

import os
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-based configuration."""

    # Service
    host: str = "0.0.0.0"
    port: int = 8090

    # MongoDB (chat_histories, chat_sessions, tenants)
    mongodb_url: str = os.getenv("MONGODB_URL", "mongodb://localhost:27017/tenantchat")
    mongodb_database: str = os.getenv("MONGODB_DATABASE", "tenantchat")

    # LLM provider
    # litellm routes by "<provider>/<model>"; bare tenant model ids get this prefix.
    # Provider credentials (GEMINI_API_KEY, ...) are read by litellm from the environment
    llm_model_prefix: str = os.getenv("LLM_MODEL_PREFIX", "gemini/")

    # Heartbeat: no token for this long = dead (0 = no liveness check)
    llm_heartbeat_seconds: float = float(os.getenv("LLM_HEARTBEAT_SECONDS", "0"))

    # Tenant defaults (used when no tenant config exists)
    default_persona: str = "You are a helpful AI assistant."
    default_model: str = os.getenv("DEFAULT_MODEL", "gemini-2.5-pro")
    default_tenant_id: str = "default"

    # Fail with 404 when an explicit tenantId has no config
    require_known_tenant: bool = False

    # Summarization: one service-wide model, independent of the tenant's chat model
    summary_model: str = os.getenv("SUMMARY_MODEL", "")  # empty = default_model
    summary_temperature: float = 0.2
    summary_max_tokens: int = 1024
    summary_message_max_chars: int = 2000

    # Serialize turns of the same session inside this process
    serialize_session_turns: bool = True

    # Listing / polling
    session_list_limit: int = 50
    disconnect_poll_interval: float = 0.25

    class Config:
        env_prefix = "TENANTCHAT_"


settings = Settings()
