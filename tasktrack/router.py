"""
tasktrack Router: Tiered Text Generation

Routes generation calls through LiteLLM so callers only name a
capability tier ("haiku" | "sonnet" | "opus"), never a vendor.
Every call is bounded by a timeout and none of them raise: failures
come back as a GenerationResult with success=False.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import litellm
from loguru import logger
from pydantic import BaseModel

from tasktrack.config_loader import TrackConfig


MODEL_TIERS = ("haiku", "sonnet", "opus")


# ---------------------------------------------------------------------------
# Model capability helpers
# ---------------------------------------------------------------------------

def _is_gpt5_model(model: str) -> bool:
    """GPT-5 family models have restricted parameter support."""
    normalized = model.lower().replace("openai/", "")
    return normalized.startswith("gpt-5")


def _is_o_series_model(model: str) -> bool:
    """OpenAI o-series reasoning models don't support temperature."""
    normalized = model.lower().replace("openai/", "")
    return normalized.startswith(("o1", "o3", "o4"))


def _build_kwargs(
    model: str,
    messages: list[dict[str, str]],
    temperature: float,
    max_tokens: int,
) -> dict[str, Any]:
    """
    Build LiteLLM kwargs with per-model param filtering.
    Different model families support different parameters.
    """
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
    }

    if not _is_gpt5_model(model) and not _is_o_series_model(model):
        kwargs["temperature"] = temperature

    return kwargs


def _extract_text(response: Any) -> str:
    try:
        return response.choices[0].message.content or ""
    except (AttributeError, IndexError, KeyError, TypeError):
        return ""


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class GenerationResult(BaseModel):
    text: str = ""
    success: bool
    error: str = ""
    timed_out: bool = False
    model: str = ""
    latency_ms: int = 0


class Router:
    """
    Tier-based model router.

    Callers use `await router.prompt(text, tier)`. The router resolves the
    tier to a model string, enforces the timeout and reports the outcome.
    """

    def __init__(self, config: TrackConfig):
        self.config = config
        self._tier_model_map = {
            "haiku": config.routing.haiku,
            "sonnet": config.routing.sonnet,
            "opus": config.routing.opus,
        }

        litellm.suppress_debug_info = True

    def resolve_model(self, tier: str) -> str:
        """Resolve a capability tier to a specific model string.

        Raises:
            ValueError: If the tier is not one of MODEL_TIERS.
        """
        model = self._tier_model_map.get(tier)
        if not model:
            raise ValueError(f"Unknown model tier: {tier}. Known: {list(self._tier_model_map)}")
        return model

    async def prompt(
        self,
        text: str,
        tier: str = "haiku",
        *,
        timeout: float | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> GenerationResult:
        """Send one prompt and wait at most `timeout` seconds for the reply.

        The default timeout is limits.generation_timeout. Exceeding it
        yields success=False with timed_out=True; the pending call is
        cancelled.
        """
        if timeout is None:
            timeout = self.config.limits.generation_timeout

        try:
            model = self.resolve_model(tier)
        except ValueError as e:
            logger.warning(f"[ROUTER] {e}")
            return GenerationResult(success=False, error=str(e))

        messages = [{"role": "user", "content": text}]
        kwargs = _build_kwargs(model, messages, temperature, max_tokens)

        logger.debug(f"[ROUTER] {tier} -> {model} ({len(text)} chars, timeout {timeout}s)")
        start = time.monotonic()

        try:
            response = await asyncio.wait_for(litellm.acompletion(**kwargs), timeout=timeout)
        except asyncio.TimeoutError:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.warning(f"[ROUTER] {tier} timed out after {timeout}s")
            return GenerationResult(
                success=False,
                error=f"generation timed out after {timeout}s",
                timed_out=True,
                model=model,
                latency_ms=elapsed_ms,
            )
        except Exception as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.warning(f"[ROUTER] {tier} failed: {e}")
            return GenerationResult(
                success=False,
                error=str(e),
                model=model,
                latency_ms=elapsed_ms,
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        content = _extract_text(response)
        if not content.strip():
            logger.warning(f"[ROUTER] {tier} returned empty output")
            return GenerationResult(
                success=False,
                error="empty response",
                model=model,
                latency_ms=elapsed_ms,
            )

        logger.debug(f"[ROUTER] {tier} complete: {len(content)} chars, {elapsed_ms}ms")
        return GenerationResult(
            text=content,
            success=True,
            model=model,
            latency_ms=elapsed_ms,
        )
