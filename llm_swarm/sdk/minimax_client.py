"""
MiniMax client.

Calls MiniMax M2.5 through its OpenAI-compatible chat completions
endpoint. Every transport or protocol failure surfaces as GatewayError.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from ..config.loader import GatewayConfig
from ..core.pricing import DEFAULT_PRICING, ModelPricing, estimate_cost
from ..core.token_counter import TokenUsage

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Raised when the remote model call fails."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class QueryResult:
    """One completed prompt."""
    response: str
    model: str
    usage: TokenUsage
    cost_estimate_usd: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "model": self.model,
            "usage": self.usage.to_dict(),
            "cost_estimate_usd": self.cost_estimate_usd,
        }


class MinimaxClient:
    """Async MiniMax client.

    Retries are disabled so each call maps to exactly one attempt and a
    timeout surfaces as an ordinary failure.
    """

    def __init__(self, config: GatewayConfig, pricing: ModelPricing = DEFAULT_PRICING):
        """Initialize the client.

        Args:
            config: Gateway settings
            pricing: Price pair used for cost estimates

        Raises:
            ValueError: If the API key is missing
        """
        if not config.api_key or not config.api_key.strip():
            raise ValueError("MINIMAX_API_KEY environment variable is required")

        self.config = config
        self.pricing = pricing
        self.model = config.model
        self.client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=0,
        )

    async def query(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> QueryResult:
        """Send one prompt and return the completion.

        Args:
            prompt: User prompt
            system: Optional system prompt
            max_tokens: Max response tokens (defaults to config)
            temperature: Sampling temperature (defaults to config)

        Returns:
            QueryResult with text, usage and cost estimate

        Raises:
            GatewayError: On non-2xx responses, network failures, timeouts
                or a malformed payload
        """
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens if max_tokens is not None else self.config.max_tokens,
                temperature=temperature if temperature is not None else self.config.temperature,
            )
        except openai.APIStatusError as e:
            raise GatewayError(
                f"MiniMax API error {e.status_code}: {e.message}",
                status_code=e.status_code
            ) from e
        except openai.APITimeoutError as e:
            raise GatewayError(
                f"MiniMax API timeout after {self.config.timeout_seconds:g}s"
            ) from e
        except openai.APIError as e:
            raise GatewayError(f"MiniMax API request failed: {e}") from e

        if not getattr(response, "choices", None):
            raise GatewayError("MiniMax API returned no choices")

        text = response.choices[0].message.content or ""
        usage = _usage_from(response.usage)

        return QueryResult(
            response=text,
            model=getattr(response, "model", None) or self.model,
            usage=usage,
            cost_estimate_usd=estimate_cost(usage, self.pricing)
        )


def _usage_from(usage: Any) -> TokenUsage:
    # Missing usage is accounted as zero rather than failing the call
    if usage is None:
        logger.warning("MiniMax response missing usage information")
        return TokenUsage.zero()
    return TokenUsage(
        input_tokens=usage.prompt_tokens or 0,
        output_tokens=usage.completion_tokens or 0
    )
