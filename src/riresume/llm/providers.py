from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from openai import OpenAI

from riresume.config import Settings
from riresume.types import ModelResponse

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are an expert resume writer and ATS analyst. Follow the requested output format exactly."


@dataclass(slots=True)
class ProviderConfig:
    name: str
    base_url: str
    api_key: str
    timeout_sec: int
    enabled: bool = True


class LLMProvider:
    """OpenAI-compatible endpoint, preferring the Responses API."""

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.client = OpenAI(
            base_url=config.base_url,
            api_key=config.api_key or "unset",
            timeout=float(config.timeout_sec),
        )

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def available(self) -> bool:
        return self.config.enabled and bool(self.config.api_key)

    def complete_text(self, *, model: str, prompt: str, system: str = SYSTEM_PROMPT) -> ModelResponse:
        try:
            return self._responses(model=model, prompt=prompt, system=system)
        except Exception as exc:
            if not responses_endpoint_missing(exc):
                raise
            logger.warning(
                "Responses API unavailable on %s (%s); using chat.completions",
                self.config.name,
                exc,
            )
            return self._chat(model=model, prompt=prompt, system=system)

    def complete_json(self, *, model: str, prompt: str, system: str = SYSTEM_PROMPT) -> dict[str, Any]:
        return parse_json(self.complete_text(model=model, prompt=prompt, system=system).content)

    def _responses(self, *, model: str, prompt: str, system: str) -> ModelResponse:
        response = self.client.responses.create(model=model, instructions=system, input=prompt)
        return ModelResponse(
            content=getattr(response, "output_text", "") or "",
            raw=_raw(response, "responses"),
        )

    def _chat(self, *, model: str, prompt: str, system: str) -> ModelResponse:
        response = self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        )
        return ModelResponse(content=chat_text(response), raw=_raw(response, "chat_completions"))


def _raw(response: Any, api_path: str) -> dict[str, Any]:
    raw = response.model_dump() if hasattr(response, "model_dump") else {}
    if not isinstance(raw, dict):
        raw = {"raw": raw}
    raw["api_path"] = api_path
    return raw


def chat_text(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None) if message is not None else None
    if content is None:
        return ""
    return content if isinstance(content, str) else str(content)


def responses_endpoint_missing(exc: Exception) -> bool:
    if getattr(exc, "status_code", None) == 404:
        return True
    message = str(exc).strip().lower()
    return bool(message) and ("not found" in message or "404" in message)


def parse_json(content: str) -> dict[str, Any]:
    """First JSON object in ``content``, tolerating markdown code fences."""
    candidate = content.strip()
    if not candidate:
        return {}

    if "```" in candidate:
        for block in candidate.split("```"):
            block = block.strip()
            if block.startswith("json"):
                block = block[4:].strip()
            if block.startswith("{") and block.endswith("}"):
                candidate = block
                break

    start, end = candidate.find("{"), candidate.rfind("}")
    if start > 0 and end > start:
        candidate = candidate[start : end + 1]

    try:
        value = json.loads(candidate)
    except json.JSONDecodeError:
        logger.warning("Model output was not valid JSON")
        return {}
    return value if isinstance(value, dict) else {}


class ProviderPool:
    def __init__(self, settings: Settings):
        self.settings = settings
        self._providers: dict[str, LLMProvider] = {}

    def get(self, name: str) -> LLMProvider:
        if name not in self._providers:
            self._providers[name] = LLMProvider(self._config(name))
        return self._providers[name]

    def ordered(self, preferred: str) -> list[LLMProvider]:
        names = [preferred] + [name for name in ("openai", "local") if name != preferred]
        return [self.get(name) for name in names]

    def _config(self, name: str) -> ProviderConfig:
        if name == "local":
            return ProviderConfig(
                name="local",
                base_url=self.settings.local_llm_base_url,
                api_key=self.settings.local_llm_api_key,
                timeout_sec=self.settings.local_llm_timeout_sec,
                enabled=self.settings.local_llm_enabled,
            )
        if name == "openai":
            return ProviderConfig(
                name="openai",
                base_url=self.settings.openai_base_url,
                api_key=self.settings.openai_api_key,
                timeout_sec=self.settings.openai_timeout_sec,
            )
        raise ValueError(f"unknown LLM provider '{name}'")
