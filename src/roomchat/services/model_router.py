"""Resolve a room's selected model into a provider binding.

The router does not couple to concrete SDK clients. It decides, once per run,
which of the three provider variants serves a model name and which credential
and endpoint it uses; :mod:`roomchat.services.providers` turns that binding
into a streaming adapter. Keeping the decision here keeps it unit-testable
without importing any SDK.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

from .provider_errors import ProviderCredentialMissing


class ProviderKind(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"
    CLAUDE = "claude"


@dataclass(frozen=True)
class ProviderBinding:
    """Everything an adapter needs to call one provider for one model."""

    kind: ProviderKind
    model: str
    base_url: str
    api_key: str = field(repr=False)

    @property
    def streaming(self) -> bool:
        return self.kind is ProviderKind.OPENAI


class ModelRouter:
    """Maps model names to provider variants by vendor keyword."""

    PROVIDER_CONFIG: Dict[ProviderKind, Dict[str, object]] = {
        ProviderKind.OPENAI: {
            "api_key_env": "OPENAI_API_KEY",
            "base_url_env": "OPENAI_BASE_URL",
            "model_env": "OPENAI_MODEL",
            "default_model": "gpt-4o-mini",
            "default_base_url": "https://api.openai.com/v1",
            "markers": (),
            "label": "OpenAI",
        },
        ProviderKind.GEMINI: {
            "api_key_env": "GEMINI_API_KEY",
            "base_url_env": "GEMINI_BASE_URL",
            "model_env": "GEMINI_MODEL",
            "default_model": "gemini-1.5-flash",
            "default_base_url": "https://generativelanguage.googleapis.com/v1beta",
            "markers": ("gemini",),
            "label": "Google Gemini",
        },
        ProviderKind.CLAUDE: {
            "api_key_env": "ANTHROPIC_API_KEY",
            "base_url_env": "ANTHROPIC_BASE_URL",
            "model_env": "ANTHROPIC_MODEL",
            "default_model": "claude-3-5-sonnet-latest",
            "default_base_url": "https://api.anthropic.com/v1",
            "markers": ("claude",),
            "label": "Anthropic Claude",
        },
    }

    def __init__(self, env: Optional[Mapping[str, str]] = None, default_model: str = "gpt-4o-mini") -> None:
        self._env = env if env is not None else os.environ
        self._default_model = default_model

    # ------------------------------------------------------------------
    # Provider resolution helpers
    # ------------------------------------------------------------------
    def provider_for_model(self, model_name: str) -> ProviderKind:
        lowered = (model_name or "").lower()
        for kind, cfg in self.PROVIDER_CONFIG.items():
            markers: Tuple[str, ...] = cfg["markers"]  # type: ignore[assignment]
            if any(marker in lowered for marker in markers):
                return kind
        # Anything without a vendor keyword goes to the chat-completions API.
        return ProviderKind.OPENAI

    def credential_available(self, kind: ProviderKind) -> bool:
        key_env = str(self.PROVIDER_CONFIG[kind]["api_key_env"])
        return bool((self._env.get(key_env) or "").strip())

    def _base_url(self, kind: ProviderKind) -> str:
        cfg = self.PROVIDER_CONFIG[kind]
        base = self._env.get(str(cfg["base_url_env"])) or str(cfg["default_base_url"])
        return base.rstrip("/")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def resolve_binding(self, model_name: Optional[str]) -> ProviderBinding:
        """Return the binding for ``model_name`` (or the default model).

        Raises
        ------
        ProviderCredentialMissing
            If the provider serving the model has no API key configured. This
            is checked before any network call is attempted.
        """

        model = (model_name or "").strip() or self._default_model
        kind = self.provider_for_model(model)
        key_env = str(self.PROVIDER_CONFIG[kind]["api_key_env"])
        api_key = (self._env.get(key_env) or "").strip()
        if not api_key:
            raise ProviderCredentialMissing(f"{key_env} is not set; cannot call {kind.value} model {model}")
        return ProviderBinding(kind=kind, model=model, base_url=self._base_url(kind), api_key=api_key)

    def catalog(self) -> List[Dict[str, object]]:
        """Configured model per provider and whether it can be called right now."""

        out: List[Dict[str, object]] = []
        for kind, cfg in self.PROVIDER_CONFIG.items():
            model = self._env.get(str(cfg["model_env"])) or str(cfg["default_model"])
            out.append(
                {
                    "provider": kind.value,
                    "model": model,
                    "label": f"{cfg['label']} ({model})",
                    "streaming": kind is ProviderKind.OPENAI,
                    "available": self.credential_available(kind),
                }
            )
        return out
