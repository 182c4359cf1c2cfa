"""
LLM Providers
=============
Builds the LangChain chat models from settings.

Provider auto-detection priority: Groq → Azure OpenAI → OpenAI
Override with LLM_PROVIDER=groq|azure|openai to force a specific provider.

build_agent_config() returns an explicit AgentConfig (model map + default)
that is passed into the graph; there is no module-level model registry.
"""
import logging
from dataclasses import dataclass

from langchain_core.language_models import BaseChatModel

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class AgentConfig:
    models: dict[str, BaseChatModel]
    default_model: str
    recursion_limit: int = 25

    def __post_init__(self):
        if self.default_model not in self.models:
            raise ValueError(
                f"Default model '{self.default_model}' is not one of {sorted(self.models)}"
            )

    def model(self) -> BaseChatModel:
        return self.models[self.default_model]


def detect_provider(settings: Settings | None = None) -> str:
    """
    Return which LLM provider to use.

    Checks LLM_PROVIDER first (explicit override), then falls back
    to whichever API key is present in the environment.
    """
    settings = settings or get_settings()
    if settings.llm_provider in ("groq", "azure", "openai"):
        return settings.llm_provider
    if settings.groq_api_key:
        return "groq"
    if settings.azure_openai_api_key:
        return "azure"
    return "openai"


def build_models(settings: Settings | None = None) -> dict[str, BaseChatModel]:
    """
    Return every chat model the configured keys allow, keyed by model name.

    Groq   → ChatGroq        (GROQ_MODEL)
    Azure  → AzureChatOpenAI (temperature omitted — o-series rejects it)
    OpenAI → ChatOpenAI      (OPENAI_MODEL), also the fallback when no key is set
    """
    settings = settings or get_settings()
    models: dict[str, BaseChatModel] = {}

    if settings.groq_api_key:
        from langchain_groq import ChatGroq
        models[settings.groq_model] = ChatGroq(
            model=settings.groq_model,
            api_key=settings.groq_api_key,
            temperature=0,
        )

    if settings.azure_openai_api_key:
        from langchain_openai import AzureChatOpenAI
        models[settings.azure_openai_deployment] = AzureChatOpenAI(
            azure_endpoint=settings.azure_openai_endpoint,
            azure_deployment=settings.azure_openai_deployment,
            api_version=settings.azure_openai_api_version,
            api_key=settings.azure_openai_api_key,
        )

    if settings.openai_api_key or not models:
        from langchain_openai import ChatOpenAI
        models[settings.openai_model] = ChatOpenAI(
            model=settings.openai_model,
            api_key=settings.openai_api_key or None,
            temperature=0.5,
        )

    return models


def default_model_name(settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    if settings.default_model:
        return settings.default_model
    return {
        "groq": settings.groq_model,
        "azure": settings.azure_openai_deployment,
        "openai": settings.openai_model,
    }[detect_provider(settings)]


def build_agent_config(settings: Settings | None = None) -> AgentConfig:
    settings = settings or get_settings()
    config = AgentConfig(
        models=build_models(settings),
        default_model=default_model_name(settings),
        recursion_limit=settings.recursion_limit,
    )
    logger.info("[LLM] Models: %s (default: %s)", sorted(config.models), config.default_model)
    return config


def build_guard_model(settings: Settings | None = None) -> BaseChatModel | None:
    """Return the Llama Guard chat model, or None when GROQ_API_KEY is unset."""
    settings = settings or get_settings()
    if not settings.groq_api_key:
        return None

    from langchain_groq import ChatGroq
    return ChatGroq(
        model=settings.llama_guard_model,
        api_key=settings.groq_api_key,
        temperature=0,
    )
