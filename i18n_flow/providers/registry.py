"""Provider registry backed by YAML profiles."""

from __future__ import annotations

from typing import Any, Dict

from i18n_flow.registry.profile_store import ProfileStore
from .base import BaseProvider, ProviderError
from .openai_compat import OpenAICompatProvider
from .static import StaticProvider


class ProviderRegistry:
    def __init__(self, store: ProfileStore):
        self.store = store
        self._cache: Dict[str, BaseProvider] = {}

    def _load_prompt(self, profile: Dict[str, Any]) -> Dict[str, Any]:
        ref = profile.get("prompt")
        if isinstance(ref, dict):
            return ref
        if not ref:
            return {}
        return self.store.load_profile("prompt", str(ref))

    def get_provider(self, ref: str) -> BaseProvider:
        if ref in self._cache:
            return self._cache[ref]
        profile = self.store.load_profile("provider", ref)
        provider_type = str(profile.get("type") or profile.get("provider") or "openai_compat")
        if provider_type == "openai_compat":
            provider: BaseProvider = OpenAICompatProvider(profile, prompt=self._load_prompt(profile))
        elif provider_type == "static":
            provider = StaticProvider(profile)
        else:
            raise ProviderError(f"Unsupported provider type: {provider_type}")
        self._cache[ref] = provider
        return provider
