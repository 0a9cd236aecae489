"""
tasktrack Agents

Each agent is:
  - A prompt template
  - A tolerant parser into a strict output schema
  - A deterministic fallback for when generation fails

Agents are stateless between runs. State lives in the repo.
They never raise on bad model output; the fallback is returned instead.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from tasktrack.router import GenerationResult, Router

T = TypeVar("T", bound=BaseModel)


class AgentContext(BaseModel):
    """Shared context passed to every agent invocation."""
    task_id: str
    objective: str = ""
    repo_path: str = ""
    title: str = ""
    requirements: list[str] = []
    diff: str = ""
    diff_summarized: bool = False
    extra: dict[str, Any] = {}


class BaseAgent(ABC, Generic[T]):
    """
    Base class for tasktrack agents.

    Subclasses define:
      - tier: str: model capability tier for the router
      - build_prompt(): constructs the single prompt string
      - parse_response(): extracts structured output, may raise
      - fallback(): output used when generation or parsing fails
    """

    name: str = "agent"
    tier: str = "haiku"
    max_tokens: int = 1024

    def __init__(self, router: Router, timeout: float | None = None):
        self.router = router
        self.timeout = timeout

    async def run(self, context: AgentContext) -> T:
        """Execute the agent: build prompt → call model → parse, or fall back."""
        prompt = self.build_prompt(context)
        result = await self.router.prompt(
            prompt,
            tier=self.tier,
            timeout=self.timeout,
            max_tokens=self.max_tokens,
        )
        if not result.success:
            reason = "timed out" if result.timed_out else result.error
            logger.warning(f"[{self.name.upper()}] Generation failed ({reason}); using fallback")
            return self.fallback(context, result)

        try:
            return self.parse_response(result, context)
        except (ValueError, ValidationError) as e:
            logger.warning(f"[{self.name.upper()}] Unparseable response: {e}")
            logger.debug(f"[{self.name.upper()}] Raw response: {result.text[:500]}")
            return self.fallback(context, result)

    @abstractmethod
    def build_prompt(self, context: AgentContext) -> str:
        ...

    @abstractmethod
    def parse_response(self, result: GenerationResult, context: AgentContext) -> T:
        """Parse model text into the output schema. Raise ValueError on junk."""
        ...

    @abstractmethod
    def fallback(self, context: AgentContext, result: GenerationResult) -> T:
        ...
