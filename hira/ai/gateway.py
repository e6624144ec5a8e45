"""
HIRA Lifecycle Engine
LLM gateway used by hazard suggestions.

Routes a chat request to a provider chosen from the model name. Gemini is
used when ``GEMINI_API_KEY`` is set; otherwise, or for unknown models, the
deterministic local stub answers. Failed calls are retried with exponential
backoff (1s, 2s, 4s ...) up to ``LLM_MAX_RETRIES`` attempts.

Usage:
    from hira.ai.gateway import get_gateway
    result = get_gateway(current_app).chat(messages, purpose="hira_suggestions")
    result["content"]
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class LLMProvider(ABC):
    """One backend able to answer a chat request.

    ``chat`` receives ``[{"role": "system"|"user"|"assistant", "content": str}]``
    and returns ``{"content", "prompt_tokens", "completion_tokens", "model"}``.
    """

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        ...


def split_system_prompt(messages: list) -> tuple[str, list]:
    """Return (joined system text, remaining turns)."""
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    return system, [m for m in messages if m["role"] != "system"]


class GeminiProvider(LLMProvider):
    """Google Gemini through the ``google-genai`` client (created on first call)."""

    def __init__(self, api_key: str):
        self.api_key = api_key
        self._client = None

    @property
    def client(self):
        if self._client is None:
            try:
                from google import genai
            except ImportError as exc:
                raise RuntimeError("Gemini requires the 'ai' extra: pip install google-genai") from exc
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str, **kwargs) -> dict:
        from google.genai import types

        system, turns = split_system_prompt(messages)
        contents = [
            types.Content(role="model" if m["role"] == "assistant" else "user",
                          parts=[types.Part(text=m["content"])])
            for m in turns
        ]
        config = types.GenerateContentConfig(
            temperature=kwargs.get("temperature", 0.3),
            max_output_tokens=kwargs.get("max_tokens", 2048),
            system_instruction=system or None,
            response_mime_type="application/json",
        )
        response = self.client.models.generate_content(model=model, contents=contents, config=config)

        usage = response.usage_metadata
        return {
            "content": response.text or "",
            "prompt_tokens": getattr(usage, "prompt_token_count", 0) or 0,
            "completion_tokens": getattr(usage, "candidates_token_count", 0) or 0,
            "model": model,
        }


# keyword → (hazard, description, control, recommendation, likelihood, consequence)
_STUB_HAZARDS = (
    ("height", "Fall from height", "Worker falls from an elevated platform or ladder",
     "Guard rails and full-body harness", "Provide certified scaffolding and fall arrest", 3, 5),
    ("weld", "Burns and fume inhalation", "Hot work exposes the welder to sparks and fumes",
     "Welding screens and local exhaust ventilation", "Issue a hot-work permit for each job", 3, 4),
    ("electric", "Electric shock", "Contact with live conductors during work",
     "Lock-out / tag-out before work", "Verify isolation with a voltage tester", 2, 5),
    ("chemical", "Chemical exposure", "Skin or respiratory contact with hazardous substances",
     "Chemical-resistant PPE and SDS at point of use", "Substitute with a less hazardous chemical", 3, 4),
    ("lift", "Manual handling injury", "Strain from lifting or carrying heavy loads",
     "Mechanical lifting aids", "Train workers in safe manual handling", 3, 3),
)


class LocalStubProvider(LLMProvider):
    """Keyword-matched canned suggestions; no network, same output for the same prompt."""

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        prompt = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")
        content = self.suggest(prompt)
        return {
            "content": content,
            "prompt_tokens": len(prompt.split()),
            "completion_tokens": len(content.split()),
            "model": "local-stub",
        }

    @staticmethod
    def suggest(prompt: str) -> str:
        lower = prompt.lower()
        matches = [h for h in _STUB_HAZARDS if h[0] in lower] or [_STUB_HAZARDS[-1]]
        scores = [(h[5], h[6]) for h in matches]
        payload = {
            "hazards": [h[1] for h in matches],
            "description": [h[2] for h in matches],
            "controls": [h[3] for h in matches],
            "recommendations": [h[4] for h in matches],
            "routine": ["Routine"] * len(matches),
            "likelihood": [lk for lk, _ in scores],
            "consequence": [c for _, c in scores],
            "significant": ["Significant" if lk * c > 12 else "Not Significant" for lk, c in scores],
            "confidence": 0.75,
        }
        # Fenced like real model output so the parser's fence stripping is exercised
        return "```json\n" + json.dumps(payload, indent=2) + "\n```"


class LLMGateway:
    """Model → provider routing with retry.

    ``register_provider`` replaces or adds a backend by name, which is how
    tests inject scripted providers.
    """

    PROVIDER_MAP = {
        "gemini-2.5-flash": "gemini",
        "gemini-2.5-pro": "gemini",
        "gemini-2.0-flash": "gemini",
        "local-stub": "local",
    }
    DEFAULT_CHAT_MODEL = "gemini-2.5-flash"
    MAX_BACKOFF_SECONDS = 4

    def __init__(self, app=None):
        config = app.config if app is not None else {}
        self.default_model = config.get("LLM_DEFAULT_CHAT_MODEL") or self.DEFAULT_CHAT_MODEL
        self.max_retries = config.get("LLM_MAX_RETRIES") or 3
        self._providers: dict[str, LLMProvider] = {"local": LocalStubProvider()}
        if config.get("GEMINI_API_KEY"):
            self._providers["gemini"] = GeminiProvider(config["GEMINI_API_KEY"])

    def register_provider(self, name: str, provider: LLMProvider) -> None:
        self._providers[name] = provider

    def resolve(self, model: str) -> tuple[str, LLMProvider]:
        name = self.PROVIDER_MAP.get(model, "local")
        if name not in self._providers:
            logger.warning("LLM provider %r not configured, using local stub for %s", name, model)
            name = "local"
        return name, self._providers[name]

    def chat(self, messages: list, model: str | None = None, *, purpose: str = "",
             max_retries: int | None = None, **kwargs) -> dict:
        """
        Returns the provider result plus ``provider`` and ``latency_ms``.

        Raises:
            RuntimeError: all attempts failed (the last error is chained).
        """
        model = model or self.default_model
        attempts = max_retries or self.max_retries
        name, provider = self.resolve(model)

        for attempt in range(1, attempts + 1):
            started = time.perf_counter()
            try:
                result = provider.chat(messages, model, **kwargs)
            except Exception as exc:
                logger.warning("LLM %s attempt %d/%d failed: %s", purpose or "call",
                               attempt, attempts, exc)
                if attempt == attempts:
                    raise RuntimeError(f"LLM call failed after {attempts} attempts") from exc
                threading.Event().wait(min(2 ** (attempt - 1), self.MAX_BACKOFF_SECONDS))
                continue

            result["provider"] = name
            result["latency_ms"] = int((time.perf_counter() - started) * 1000)
            logger.info("LLM %s ok: provider=%s model=%s tokens=%d latency=%dms",
                        purpose or "call", name, result["model"],
                        result["prompt_tokens"] + result["completion_tokens"],
                        result["latency_ms"])
            return result


def get_gateway(app) -> LLMGateway:
    """The app's gateway, created on first use and kept in ``app.extensions``."""
    gateway = app.extensions.get("hira_llm_gateway")
    if gateway is None:
        gateway = app.extensions["hira_llm_gateway"] = LLMGateway(app=app)
    return gateway
