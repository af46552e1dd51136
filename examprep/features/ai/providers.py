"""
examprep/features/ai/providers.py

Static set of chat-completion providers and their wire shapes.

Hosted providers (OpenAI, DeepSeek) share the OpenAI request/response
format and bearer auth. The local provider (Ollama) has its own shape, no
auth, a liveness probe and a longer timeout.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from examprep.core.config import Settings, settings
from examprep.models.ai import ChatMessage


class ProviderKind(str, Enum):
    LOCAL = "local"
    HOSTED = "hosted"


class MalformedResponse(ValueError):
    """Provider answered 2xx but the envelope has no text."""


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    kind: ProviderKind
    chat_url: str
    model: str
    timeout_seconds: float
    api_key: Optional[str] = None
    probe_url: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return self.kind == ProviderKind.LOCAL

    @property
    def is_configured(self) -> bool:
        return self.is_local or bool(self.api_key)

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if not self.is_local and self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def build_payload(
        self, messages: List[ChatMessage], max_tokens: int, temperature: float
    ) -> Dict[str, Any]:
        if self.is_local:
            return {
                "model": self.model,
                "messages": messages,
                "stream": False,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            }
        return {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

    def extract_text(self, data: Any) -> str:
        try:
            if self.is_local:
                content = data["message"]["content"]
            else:
                content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponse(f"{self.name}: unexpected response envelope") from exc
        if not isinstance(content, str):
            raise MalformedResponse(f"{self.name}: response content is not text")
        return content


def _join(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def build_providers(cfg: Optional[Settings] = None) -> Mapping[str, ProviderConfig]:
    """Provider table from settings; keyed by the AI_PROVIDER identifier."""
    cfg = cfg or settings
    return {
        "openai": ProviderConfig(
            name="openai",
            kind=ProviderKind.HOSTED,
            chat_url=_join(cfg.OPENAI_BASE_URL, "chat/completions"),
            model=cfg.OPENAI_MODEL,
            api_key=cfg.OPENAI_API_KEY,
            timeout_seconds=cfg.AI_HOSTED_TIMEOUT_SECONDS,
        ),
        "deepseek": ProviderConfig(
            name="deepseek",
            kind=ProviderKind.HOSTED,
            chat_url=_join(cfg.DEEPSEEK_BASE_URL, "chat/completions"),
            model=cfg.DEEPSEEK_MODEL,
            api_key=cfg.DEEPSEEK_API_KEY,
            timeout_seconds=cfg.AI_HOSTED_TIMEOUT_SECONDS,
        ),
        "ollama": ProviderConfig(
            name="ollama",
            kind=ProviderKind.LOCAL,
            chat_url=_join(cfg.OLLAMA_BASE_URL, "api/chat"),
            model=cfg.OLLAMA_MODEL,
            timeout_seconds=cfg.AI_LOCAL_TIMEOUT_SECONDS,
            probe_url=_join(cfg.OLLAMA_BASE_URL, "api/tags"),
        ),
    }
