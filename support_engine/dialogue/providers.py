"""LLM provider credentials and per-tier sampling parameters."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ProviderCredentials:
    """Credentials and endpoint resolved for one provider."""

    provider: str
    api_key: str | None
    base_url: str | None = None
    api_version: str | None = None
    extras: dict[str, str] = field(default_factory=dict)

    @property
    def configured(self) -> bool:
        if self.provider == "azure":
            return bool(self.api_key and self.base_url)
        return bool(self.api_key)


class ProviderRegistry:
    """Resolve provider credentials from explicit overrides or the environment.

    Only providers that speak the OpenAI chat completions protocol are
    listed; ``base_url`` points the ``openai`` SDK at compatible gateways.
    Azure also needs an ``api_version`` and uses the endpoint as
    ``azure_endpoint``.
    """

    _ENV_MAP: Mapping[str, tuple[str, str | None]] = {
        "openai": ("OPENAI_API_KEY", "OPENAI_BASE_URL"),
        "azure": ("AZURE_OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT"),
        "openrouter": ("OPENROUTER_API_KEY", "OPENROUTER_BASE_URL"),
    }
    _API_VERSION_ENV: Mapping[str, tuple[str, str]] = {
        "azure": ("AZURE_OPENAI_API_VERSION", "2024-06-01"),
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, str]] | None = None):
        self._overrides = {k.lower(): dict(v) for k, v in (overrides or {}).items()}

    def get_credentials(self, provider: str) -> ProviderCredentials:
        key = provider.lower()
        if key in self._overrides:
            override = self._overrides[key]
            return ProviderCredentials(
                provider=key,
                api_key=override.get("api_key"),
                base_url=override.get("base_url"),
                api_version=override.get("api_version"),
                extras={
                    k: v
                    for k, v in override.items()
                    if k not in {"api_key", "base_url", "api_version"}
                },
            )
        if key not in self._ENV_MAP:
            raise KeyError(f"LLM provider '{provider}' is not supported")
        key_var, url_var = self._ENV_MAP[key]
        api_version = None
        if key in self._API_VERSION_ENV:
            version_var, default_version = self._API_VERSION_ENV[key]
            api_version = os.getenv(version_var, default_version)
        return ProviderCredentials(
            provider=key,
            api_key=os.getenv(key_var),
            base_url=os.getenv(url_var) if url_var else None,
            api_version=api_version,
        )

    def list_supported_providers(self) -> dict[str, bool]:
        """Map each known provider to whether credentials are present."""

        providers = set(self._ENV_MAP) | set(self._overrides)
        return {name: self.get_credentials(name).configured for name in sorted(providers)}


class ResponseParameterStore:
    """Sampling parameters per model tier.

    The fast tier answers routine questions, so it is kept short and fairly
    deterministic; the capable tier gets more room for complaints and
    multi-part questions.
    """

    _DEFAULTS: Mapping[str, dict[str, Any]] = {
        "fast": {"temperature": 0.4, "max_tokens": 400},
        "capable": {"temperature": 0.5, "max_tokens": 700},
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, Any]] | None = None):
        self._defaults: dict[str, dict[str, Any]] = {
            tier: dict(params) for tier, params in self._DEFAULTS.items()
        }
        if overrides:
            for tier, params in overrides.items():
                self._defaults.setdefault(tier.lower(), {}).update(params)

    def for_tier(self, tier: str) -> dict[str, Any]:
        return dict(self._defaults.get(tier.lower(), {"temperature": 0.5}))
