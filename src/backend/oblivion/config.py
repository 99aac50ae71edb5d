"""
Application configuration via environment variables.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment / .env file."""

    # App
    app_name: str = "Oblivion Fleet"
    debug: bool = True

    # CORS
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Fleet
    max_active_sessions: int = 3
    query_timeout_seconds: float = 30.0  # 0 disables the per-session timeout
    provider_max_retries: int = 3
    provider_retry_base_delay: float = 1.0  # seconds, doubles on each retry
    provider_http_timeout: float = 60.0
    default_temperature: float = 0.7
    default_max_tokens: int = 2048
    usage_max_calls: int = 1000  # individual call records kept; totals are unbounded

    # Consensus
    agreement_threshold: float = 0.3
    synthesis_top_k: int = 20
    latency_norm_ms: float = 10000.0
    synthesizer_provider: str = ""  # e.g. "ollama"; empty = heuristic only
    synthesizer_model: str = ""
    synthesizer_api_key: str = ""  # only for providers that require a key

    # Credentials
    credential_store_path: str = "./data/credentials.json"
    credential_kdf_iterations: int = 120_000

    # Prompts
    prompt_store_path: str = "./data/prompts.json"  # empty = memory only

    # Provider endpoints
    ollama_host: str = "http://127.0.0.1:11434"
    ollama_pull_timeout_seconds: float = 600.0
    openai_like_base_url: str = ""

    # Execution
    sandbox_mode: str = "bridge"  # "bridge" or "local"
    bridge_url: str = "http://127.0.0.1:8765"
    bridge_token: str = ""
    sandbox_timeout_seconds: float = 60.0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
