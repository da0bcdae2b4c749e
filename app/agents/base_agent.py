"""Base class for Pydantic AI agents."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, cast

from pydantic import BaseModel
from pydantic_ai import Agent
from pydantic_ai.exceptions import AgentRunError

from app.config import settings
from app.core.exceptions import PlannerError

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT", bound=BaseModel)
OutputT = TypeVar("OutputT", bound=BaseModel)


@dataclass(slots=True)
class TokenTally:
    """Token usage summed over every run of one agent instance."""

    runs: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, usage: Any) -> None:
        self.runs += 1
        self.input_tokens += int(getattr(usage, "input_tokens", 0) or 0)
        self.output_tokens += int(getattr(usage, "output_tokens", 0) or 0)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class BaseAgent(ABC, Generic[InputT, OutputT]):
    """Structured-output LLM call with a typed input model.

    Subclasses provide ``system_prompt``, ``output_type`` and ``_build_prompt``.
    Model errors surface as ``PlannerError`` so callers can count the turn and move on.
    """

    model: str | None = None
    temperature: float = settings.planner_temperature
    max_retries: int = settings.llm_max_retries

    def __init__(self, model_override: str | None = None) -> None:
        # Runtime override, then class attribute, then settings
        self._model = model_override or self.model or settings.planner_model
        self._agent: Agent[None, OutputT] | None = None
        self.tally = TokenTally()
        logger.debug(
            "Agent configured",
            extra={"agent": self.__class__.__name__, "model": self._model},
        )

    @property
    def agent(self) -> Agent[None, OutputT]:
        """Pydantic AI agent, built on first use."""
        if self._agent is None:
            self._agent = cast(
                Agent[None, OutputT],
                Agent(
                    model=self._model,
                    output_type=self.output_type,
                    system_prompt=self.system_prompt,
                    retries=self.max_retries,
                    model_settings={"temperature": self.temperature},
                ),
            )
        return self._agent

    @property
    @abstractmethod
    def system_prompt(self) -> str: ...

    @property
    @abstractmethod
    def output_type(self) -> type[OutputT]: ...

    @abstractmethod
    def _build_prompt(self, input_data: InputT) -> str: ...

    async def run(
        self,
        input_data: InputT,
        context: dict[str, Any] | None = None,
    ) -> OutputT:
        """Send the prompt built from ``input_data`` and return the validated output."""
        extra = {**(context or {}), "agent": self.__class__.__name__, "model": self._model}
        prompt = self._build_prompt(input_data)

        started = time.perf_counter()
        try:
            result = await self.agent.run(prompt)
        except AgentRunError as e:
            logger.warning("Agent run failed", extra={**extra, "error": str(e)})
            raise PlannerError(f"Model call failed: {e}", {"model": self._model}) from e

        usage = result.usage()
        self.tally.add(usage)
        logger.info(
            "Agent run completed",
            extra={
                **extra,
                "prompt_length": len(prompt),
                "duration_s": round(time.perf_counter() - started, 2),
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
                "tokens_so_far": self.tally.total_tokens,
            },
        )
        return result.output
