"""
Configuration
=============
Typed settings loaded from environment variables (and a local .env file).

Every other module reads configuration through get_settings() so tests can
override a single cached instance instead of patching os.environ everywhere.
"""
import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    # Env values arrive as strings; validating defaults coerces and checks them.
    model_config = ConfigDict(validate_default=True)

    # Chat model providers
    llm_provider: str = Field(default_factory=lambda: os.getenv("LLM_PROVIDER", "").lower())
    openai_api_key: str = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    openai_model: str = Field(default_factory=lambda: os.getenv("OPENAI_MODEL", "gpt-4o-mini"))
    groq_api_key: str = Field(default_factory=lambda: os.getenv("GROQ_API_KEY", ""))
    groq_model: str = Field(default_factory=lambda: os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile"))
    azure_openai_api_key: str = Field(default_factory=lambda: os.getenv("AZURE_OPENAI_API_KEY", ""))
    azure_openai_endpoint: str = Field(default_factory=lambda: os.getenv("AZURE_OPENAI_ENDPOINT", ""))
    azure_openai_deployment: str = Field(default_factory=lambda: os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4o"))
    azure_openai_api_version: str = Field(
        default_factory=lambda: os.getenv("AZURE_OPENAI_API_VERSION", "2024-12-01-preview")
    )

    # Model used by the model step. Empty → provider default (see providers.py).
    default_model: str = Field(default_factory=lambda: os.getenv("DEFAULT_MODEL", ""))

    # Safety classifier (served by Groq; disabled when GROQ_API_KEY is unset)
    llama_guard_model: str = Field(
        default_factory=lambda: os.getenv("LLAMA_GUARD_MODEL", "meta-llama/llama-guard-4-12b")
    )

    # Graph runtime
    recursion_limit: int = Field(default_factory=lambda: os.getenv("RECURSION_LIMIT", "25"), ge=1)
    tools_server_path: str = Field(default_factory=lambda: os.getenv("TOOLS_SERVER_PATH", ""))

    # Feedback forwarding (LangSmith)
    langchain_api_key: str = Field(default_factory=lambda: os.getenv("LANGCHAIN_API_KEY", ""))

    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    def missing(self) -> list[str]:
        """Return the names of unset keys the service needs to answer anything."""
        if self.openai_api_key or self.groq_api_key or self.azure_openai_api_key:
            return []
        return ["OPENAI_API_KEY | GROQ_API_KEY | AZURE_OPENAI_API_KEY"]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
