"""
Provider Registry — static catalog of supported providers and models.

Adapter dispatch is a lookup keyed by provider id: each provider maps to an
AdapterFactory, built by default from its AdapterKind. Custom providers (or
test doubles) are added with `register()` / `register_adapter()`.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

import httpx

from oblivion.config import settings
from oblivion.errors import UnknownProvider
from oblivion.models.schemas import AdapterKind, Provider
from oblivion.providers.anthropic import AnthropicAdapter
from oblivion.providers.base import ProviderAdapter, SecretSource
from oblivion.providers.cohere import CohereAdapter
from oblivion.providers.gemini import GeminiAdapter
from oblivion.providers.ollama import OllamaAdapter
from oblivion.providers.openai_compat import OpenAICompatibleAdapter

logger = logging.getLogger(__name__)

# (provider, model_name, secret_source, http_client) -> adapter
AdapterFactory = Callable[
    [Provider, str, Optional[SecretSource], Optional[httpx.AsyncClient]], ProviderAdapter
]

ADAPTER_CLASSES = {
    AdapterKind.OPENAI_COMPATIBLE: OpenAICompatibleAdapter,
    AdapterKind.ANTHROPIC: AnthropicAdapter,
    AdapterKind.GEMINI: GeminiAdapter,
    AdapterKind.COHERE: CohereAdapter,
    AdapterKind.OLLAMA: OllamaAdapter,
}


def _tags(*names: str) -> FrozenSet[str]:
    return frozenset(names)


# ──────────────────────────────────────────────
# Provider catalog
# ──────────────────────────────────────────────

def default_providers() -> List[Provider]:
    """Build the startup catalog. Endpoint overrides come from settings."""
    return [
        Provider(
            provider_id="openai",
            display_name="OpenAI",
            capability_tags=_tags("general", "coding", "analysis"),
            base_url="https://api.openai.com/v1",
            models=("gpt-4o", "gpt-4o-mini", "gpt-4", "gpt-3.5-turbo"),
            model_capabilities=(
                ("gpt-4", _tags("general", "coding", "analysis")),
                ("gpt-3.5-turbo", _tags("general", "conversation")),
                ("code-davinci", _tags("coding", "debugging")),
            ),
        ),
        Provider(
            provider_id="google",
            display_name="Google Gemini",
            capability_tags=_tags("general", "multimodal", "analysis"),
            kind=AdapterKind.GEMINI,
            base_url="https://generativelanguage.googleapis.com",
            models=("gemini-1.5-pro", "gemini-1.5-flash", "gemini-pro"),
            model_capabilities=(
                ("gemini-pro-vision", _tags("vision", "image-analysis")),
                ("gemini", _tags("general", "multimodal", "analysis")),
            ),
        ),
        Provider(
            provider_id="anthropic",
            display_name="Anthropic",
            capability_tags=_tags("reasoning", "analysis", "safety"),
            kind=AdapterKind.ANTHROPIC,
            base_url="https://api.anthropic.com",
            models=("claude-3-5-sonnet-latest", "claude-3-5-haiku-latest"),
            model_capabilities=(
                ("claude-3", _tags("reasoning", "analysis", "safety")),
                ("claude-instant", _tags("conversation", "general")),
            ),
        ),
        Provider(
            provider_id="groq",
            display_name="Groq",
            capability_tags=_tags("fast-inference", "general"),
            base_url="https://api.groq.com/openai/v1",
            models=("llama-3.1-8b-instant", "mixtral-8x7b-32768"),
            model_capabilities=(
                ("mixtral", _tags("fast-inference", "general")),
                ("llama", _tags("open-source", "general")),
            ),
        ),
        Provider(
            provider_id="cohere",
            display_name="Cohere",
            capability_tags=_tags("text-generation", "summarization"),
            kind=AdapterKind.COHERE,
            base_url="https://api.cohere.com",
            models=("command-r-plus", "command-r"),
            model_capabilities=(
                ("command", _tags("text-generation", "summarization")),
                ("embed", _tags("embeddings", "search")),
            ),
        ),
        Provider(
            provider_id="ollama",
            display_name="Ollama",
            capability_tags=_tags("local", "general", "open-source"),
            kind=AdapterKind.OLLAMA,
            base_url=settings.ollama_host,
            requires_key=False,
            models=("llama3", "mistral", "codellama"),
            model_capabilities=(("codellama", _tags("coding", "local")),),
        ),
        Provider(
            provider_id="mistral",
            display_name="MistralAI",
            capability_tags=_tags("general", "coding"),
            base_url="https://api.mistral.ai/v1",
            models=("mistral-large-latest", "codestral-latest"),
            model_capabilities=(("codestral", _tags("coding", "debugging")),),
        ),
        Provider(
            provider_id="deepseek",
            display_name="Deepseek",
            capability_tags=_tags("coding", "reasoning"),
            base_url="https://api.deepseek.com/v1",
            models=("deepseek-chat", "deepseek-reasoner"),
        ),
        Provider(
            provider_id="together",
            display_name="Together AI",
            capability_tags=_tags("open-source", "general"),
            base_url="https://api.together.xyz/v1",
        ),
        Provider(
            provider_id="perplexity",
            display_name="Perplexity",
            capability_tags=_tags("search", "general"),
            base_url="https://api.perplexity.ai",
        ),
        Provider(
            provider_id="fireworks",
            display_name="Fireworks AI",
            capability_tags=_tags("fast-inference", "open-source"),
            base_url="https://api.fireworks.ai/inference/v1",
        ),
        Provider(
            provider_id="deepinfra",
            display_name="DeepInfra",
            capability_tags=_tags("open-source", "general"),
            base_url="https://api.deepinfra.com/v1/openai",
        ),
        Provider(
            provider_id="cerebras",
            display_name="Cerebras",
            capability_tags=_tags("fast-inference", "general"),
            base_url="https://api.cerebras.ai/v1",
        ),
        Provider(
            provider_id="openai-like",
            display_name="OpenAI-Like",
            capability_tags=_tags("general"),
            base_url=settings.openai_like_base_url or None,
        ),
    ]


class ProviderRegistry:
    """
    Lookup table of providers and the adapter factory for each.

    Usage:
        registry = ProviderRegistry()
        registry.capabilities_of("openai", "gpt-4o")
        adapter = registry.create_adapter("openai", "gpt-4o", secret_source)
    """

    def __init__(self, providers: Optional[Iterable[Provider]] = None):
        self._providers: Dict[str, Provider] = {}
        self._factories: Dict[str, AdapterFactory] = {}
        for provider in (default_providers() if providers is None else providers):
            self.register(provider)

    def register(self, provider: Provider, factory: Optional[AdapterFactory] = None) -> None:
        """Add or replace a provider. Without a factory, the adapter class comes from its kind."""
        if factory is None:
            adapter_cls = ADAPTER_CLASSES.get(provider.kind)
            if adapter_cls is None:
                raise ValueError(f"Provider {provider.provider_id} of kind {provider.kind.value} needs a factory")
            factory = adapter_cls
        self._providers[provider.provider_id] = provider
        self._factories[provider.provider_id] = factory

    def register_adapter(self, provider_id: str, factory: AdapterFactory) -> None:
        """Swap the adapter factory of an existing provider."""
        self.get(provider_id)
        self._factories[provider_id] = factory

    def list_providers(self) -> List[Provider]:
        return list(self._providers.values())

    def get(self, provider_id: str) -> Provider:
        try:
            return self._providers[provider_id]
        except KeyError:
            raise UnknownProvider(provider_id) from None

    def capabilities_of(self, provider_id: str, model_name: Optional[str] = None) -> FrozenSet[str]:
        """
        Capability tags for a provider, narrowed to a model when known.

        Model tags are matched by the longest model-name prefix; unknown
        models fall back to the provider's tags.
        """
        provider = self.get(provider_id)
        if model_name:
            name = model_name.lower()
            matches = [
                (prefix, tags) for prefix, tags in provider.model_capabilities
                if name.startswith(prefix.lower())
            ]
            if matches:
                return max(matches, key=lambda m: len(m[0]))[1]
        return provider.capability_tags

    def create_adapter(
        self,
        provider_id: str,
        model_name: str,
        secret_source: Optional[SecretSource] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> ProviderAdapter:
        provider = self.get(provider_id)
        factory = self._factories[provider_id]
        logger.debug(f"Creating {provider.kind.value} adapter for {provider_id}/{model_name}")
        return factory(provider, model_name, secret_source, http_client)
