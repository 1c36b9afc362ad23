"""Chat-completion client that turns a Context into typed decisions.

Supports the built-in deepseek and qwen providers plus any OpenAI-compatible
custom endpoint. Every failure carries the partial AIResult so the caller can
log the prompts and raw reply that led to it.
"""

from dataclasses import dataclass

import httpx

from autotrader.ai.parser import DecisionParseError, parse_decisions, split_reply
from autotrader.ai.prompts import DEFAULT_TEMPLATE, PromptBuilder
from autotrader.config import AISettings, TraderConfig
from autotrader.exceptions import (
    AIEmptyDecisionsError,
    AIParseError,
    AITransportError,
    TraderConfigError,
)
from autotrader.logging import get_logger
from autotrader.models import AIResult, Context

logger = get_logger(__name__)

CHAT_COMPLETIONS_PATH = "/chat/completions"

BUILTIN_PROVIDERS: dict[str, tuple[str, str]] = {
    "deepseek": ("https://api.deepseek.com/v1/chat/completions", "deepseek-chat"),
    "qwen": ("https://dashscope.aliyuncs.com/compatible-mode/v1/chat/completions", "qwen-plus"),
}


@dataclass(frozen=True)
class AIProvider:
    """Resolved endpoint for one trader."""

    name: str
    url: str
    model: str
    api_key: str

    def __repr__(self) -> str:
        return f"AIProvider(name={self.name!r}, url={self.url!r}, model={self.model!r})"


def resolve_provider(config: TraderConfig, settings: AISettings) -> AIProvider:
    """Pick URL, model and key for a trader; custom values override built-ins.

    Raises:
        TraderConfigError: If no API key is available.
    """
    custom_key = config.custom_api_key.get_secret_value()
    if config.ai_model == "custom":
        url = config.custom_api_url
        model = config.custom_model_name
        api_key = custom_key
    else:
        url, model = BUILTIN_PROVIDERS[config.ai_model]
        url = config.custom_api_url or url
        model = config.custom_model_name or model
        builtin_key = getattr(settings, f"{config.ai_model}_api_key").get_secret_value()
        api_key = custom_key or builtin_key

    if not url.rstrip("/").endswith(CHAT_COMPLETIONS_PATH):
        url = url.rstrip("/") + CHAT_COMPLETIONS_PATH
    if not api_key:
        raise TraderConfigError(f"trader {config.id}: no API key for ai_model {config.ai_model}")
    return AIProvider(name=config.ai_model, url=url, model=model, api_key=api_key)


class AIClient:
    """Calls the model and parses its reply into Decisions.

    Args:
        provider: Endpoint, model and key.
        settings: Sampling parameters and HTTP timeout.
        prompts: Prompt renderer; a default PromptBuilder is created if omitted.
        http_client: Optional shared client (tests inject a MockTransport).
    """

    def __init__(
        self,
        provider: AIProvider,
        settings: AISettings | None = None,
        prompts: PromptBuilder | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._provider = provider
        self._settings = settings or AISettings()
        self._prompts = prompts or PromptBuilder()
        self._client = http_client

    @property
    def provider(self) -> AIProvider:
        return self._provider

    async def decide(
        self,
        context: Context,
        *,
        template_name: str = DEFAULT_TEMPLATE,
        custom_prompt: str = "",
        override_base: bool = False,
    ) -> AIResult:
        """Compose prompts, call the model and parse its decisions.

        Raises:
            AITransportError: Endpoint unreachable or non-2xx.
            AIParseError: No decodable decision array in the reply.
            AIEmptyDecisionsError: The array held no valid decision.
        """
        result = AIResult()
        result.system_prompt = self._prompts.system_prompt(context, template_name, custom_prompt, override_base)
        result.user_prompt = self._prompts.user_prompt(context)

        try:
            result.raw_response = await self.complete(result.system_prompt, result.user_prompt)
        except httpx.HTTPError as e:
            logger.error("ai_request_failed", provider=self._provider.name, error=str(e))
            raise AITransportError(f"AI request failed: {e}", result) from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise AITransportError(f"malformed AI response: {e}", result) from e

        try:
            cot, json_text = split_reply(result.raw_response)
            result.cot_trace = cot
            decisions, rejected = parse_decisions(json_text)
        except DecisionParseError as e:
            result.cot_trace = result.cot_trace or result.raw_response
            raise AIParseError(str(e), result) from e

        result.decisions = decisions
        if not decisions:
            detail = "; ".join(rejected) if rejected else "empty decision list"
            raise AIEmptyDecisionsError(f"no valid decisions: {detail}", result)

        logger.info(
            "ai_decisions_parsed",
            provider=self._provider.name,
            count=len(decisions),
            rejected=len(rejected),
        )
        return result

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """POST one chat completion and return the reply text."""
        payload = {
            "model": self._provider.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self._provider.api_key}",
            "Content-Type": "application/json",
        }

        if self._client is not None:
            response = await self._client.post(self._provider.url, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self._settings.timeout_seconds) as client:
                response = await client.post(self._provider.url, json=payload, headers=headers)
        response.raise_for_status()

        message = response.json()["choices"][0]["message"]
        content = message.get("content") or ""
        reasoning = message.get("reasoning_content") or ""
        # reasoning models return their trace separately
        return f"{reasoning}\n\n{content}" if reasoning else content
