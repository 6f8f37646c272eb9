"""Oracle — thin async wrapper around the Anthropic Messages API.

Maps SDK failures onto the planner's error taxonomy and bounds every call
with ORACLE_TIMEOUT_SECONDS so a stalled request fails instead of hanging.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import anthropic

from brain.errors import (
    ConfigurationError,
    GenerationError,
    ParseError,
    QuotaExceededError,
)
from server.config import (
    ANTHROPIC_API_KEY,
    ANTHROPIC_MODEL,
    ORACLE_MAX_TOKENS,
    ORACLE_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

KEY_HINT = "Set ANTHROPIC_API_KEY in .env to a valid Anthropic key."


class OracleUnavailableError(GenerationError):
    """The oracle endpoint could not be reached at all."""


class OracleClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_tokens: Optional[int] = None,
        client=None,
    ):
        self.api_key = ANTHROPIC_API_KEY if api_key is None else api_key
        self.model = model or ANTHROPIC_MODEL
        self.timeout = timeout or ORACLE_TIMEOUT_SECONDS
        self.max_tokens = max_tokens or ORACLE_MAX_TOKENS
        if client is not None:
            self.client = client
        else:
            self.client = anthropic.AsyncAnthropic(api_key=self.api_key) if self.api_key else None

    @property
    def available(self) -> bool:
        return self.client is not None

    async def complete(self, prompt: str, system: str = "", max_tokens: Optional[int] = None) -> str:
        """Send one user prompt and return the concatenated text reply."""
        if not self.client:
            raise ConfigurationError("ANTHROPIC_API_KEY is not set — cannot reach the oracle", hint=KEY_HINT)

        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        logger.debug("Oracle call: model=%s prompt length %d chars", self.model, len(prompt))
        try:
            message = await asyncio.wait_for(self.client.messages.create(**kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise GenerationError(f"Oracle did not answer within {self.timeout:.0f}s") from exc
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as exc:
            raise ConfigurationError(f"Oracle rejected the credentials: {exc}", hint=KEY_HINT) from exc
        except anthropic.RateLimitError as exc:
            raise QuotaExceededError("Rate limit exceeded. Please try again later.") from exc
        except anthropic.APIStatusError as exc:
            if exc.status_code == 402:
                raise QuotaExceededError(
                    "Payment required. Please add credits to your workspace.",
                    payment_required=True,
                ) from exc
            raise GenerationError(f"Oracle error: HTTP {exc.status_code}") from exc
        except anthropic.APITimeoutError as exc:
            raise GenerationError("Oracle request timed out") from exc
        except anthropic.APIConnectionError as exc:
            raise OracleUnavailableError(f"Oracle unreachable: {exc}") from exc

        text = "".join(
            getattr(block, "text", "") for block in message.content if getattr(block, "type", "text") == "text"
        ).strip()
        logger.debug("Oracle raw response length %d chars", len(text))
        if not text:
            raise ParseError("Oracle returned an empty response")
        return text
