"""
Forgeflow Claude Chat Client

Wraps the Anthropic SDK (anthropic.AsyncAnthropic) behind the
AgentChatClient protocol. Agent ids map to model names; anything
not mapped uses the default model.

SDK errors are translated into the Forgeflow taxonomy so the runner
harness can pick the right handler:
- APIConnectionError / APITimeoutError / 5xx -> NetworkError
- AuthenticationError / PermissionDeniedError -> AuthError (not recoverable)
- RateLimitError -> RateLimitError (with retry-after when given)
"""

from __future__ import annotations

from typing import Any

import anthropic

from forgeflow.core.models import ChatMessage, ChatResponse
from forgeflow.exceptions import AuthError, ForgeflowError, NetworkError, RateLimitError
from forgeflow.logging import get_logger

logger = get_logger("forgeflow.adapters.claude")

DEFAULT_MODEL = "claude-sonnet-4-5"
DEFAULT_MAX_TOKENS = 4096


class ClaudeChatClient:
    """AgentChatClient backed by the Anthropic Messages API.

    Falls back to the ANTHROPIC_API_KEY env var if no client is provided.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        client: anthropic.AsyncAnthropic | None = None,
        agent_models: dict[str, str] | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        self._model = model
        self._client = client or anthropic.AsyncAnthropic()
        self._agent_models = dict(agent_models or {})
        self._max_tokens = max_tokens

    def model_for(self, agent: str) -> str:
        return self._agent_models.get(agent, self._model)

    async def send_message(
        self,
        agent: str,
        messages: list[ChatMessage],
        options: dict[str, Any] | None = None,
    ) -> ChatResponse:
        options = dict(options or {})
        system_parts = [m.content for m in messages if m.role == "system"]
        if options.get("system"):
            system_parts.insert(0, options["system"])

        kwargs: dict[str, Any] = {
            "model": self.model_for(agent),
            "max_tokens": int(options.get("max_tokens", self._max_tokens)),
            "messages": [
                {"role": m.role, "content": m.content} for m in messages if m.role != "system"
            ],
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)
        if options.get("temperature") is not None:
            kwargs["temperature"] = options["temperature"]

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise translate_error(e) from e

        text = "".join(block.text for block in response.content if block.type == "text")
        return ChatResponse(
            content=text,
            metadata={
                "model": response.model,
                "stop_reason": response.stop_reason,
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )


def translate_error(error: anthropic.APIError) -> ForgeflowError:
    """Map an Anthropic SDK error onto the Forgeflow taxonomy."""
    if isinstance(error, anthropic.RateLimitError):
        retry_after = None
        header = error.response.headers.get("retry-after") if error.response is not None else None
        if header:
            try:
                retry_after = float(header)
            except ValueError:
                retry_after = None
        return RateLimitError(f"Rate limited by provider: {error.message}", retry_after=retry_after)
    if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return AuthError(f"Provider rejected credentials: {error.message}", recoverable=False)
    if isinstance(error, anthropic.APIConnectionError):
        return NetworkError(f"Could not reach provider: {error.message}")
    if isinstance(error, anthropic.APIStatusError) and error.status_code >= 500:
        return NetworkError(
            f"Provider error {error.status_code}: {error.message}",
            context={"status_code": error.status_code},
        )
    status = getattr(error, "status_code", None)
    return NetworkError(
        f"Provider request failed: {error.message}",
        recoverable=False,
        context={"status_code": status},
    )
