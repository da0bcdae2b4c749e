"""LLM planner agent that drives the categorization loop."""

import json
import logging
from collections.abc import Sequence

from pydantic import BaseModel, Field

from app.agents.base_agent import BaseAgent
from app.schemas.planner import PlannerObservation, PlannerResponse, PlannerStep, PlannerTurn

logger = logging.getLogger(__name__)

MAX_PROMPT_TURNS = 8


class TopicPlannerInput(BaseModel):
    """Input for one planner turn."""

    observation: PlannerObservation
    turns: list[PlannerTurn] = Field(default_factory=list)


class TopicPlannerAgent(BaseAgent[TopicPlannerInput, PlannerResponse]):
    """Chooses one tool step per call: fetch_context, find_topics or finalize."""

    @property
    def system_prompt(self) -> str:
        return """You sort chat messages into a taxonomy of specific topics so a team can follow the issues and tasks being discussed. Each call you return exactly one step.

## Steps

- **fetch_context** (message_count 1-10, default 5): recent channel messages, the thread parent and the channel's current topic. Start here.
- **find_topics** (query, include_all): ranked existing topics with confidence scores and a recommendation (assign / review / create). include_all also returns an overview of the taxonomy.
- **finalize** (action assign|create, reasoning, topic_id, topic_name, improved_name, improved_description, new_topic): your decision. It ends the loop once it passes validation.

## How to work

1. Look at context first. Thread replies and short replies ("ok", "done", "looks good") almost always belong to the thread parent's topic or the channel's current topic.
2. Search with the concrete terms of the message.
3. On a review or create recommendation, search again with synonyms, broader terms or related concepts before giving up. Two or three different queries are normal.
4. Assign when a topic clearly covers the message. Create only after repeated searches confirm the subject is new.

## Topics, not categories

- Good topics are specific: "Payment API timeout", "Redis memory leak", "User onboarding flow".
- Never create broad buckets such as "Bugs", "Backend", "Misc", "General", "API", "DevOps".
- Do not mint a near-copy of an existing topic. If "Stripe 401 errors" exists, "Stripe auth failure" is the same topic.
- Name new topics "[Component] - [Issue]" where it fits, with a one-line description and a few keywords.

## Output

- reasoning describes the path taken, e.g. "first search for X was weak, searching Y found Z".
- When assigning to a vaguely named topic you may propose improved_name or improved_description.
- If the last observation carries an error, fix the step it complains about. A rejected create lists the existing topic it duplicates; prefer assigning to it.
- You have a limited number of steps. Finalize before they run out."""

    @property
    def output_type(self) -> type[PlannerResponse]:
        return PlannerResponse

    def _build_prompt(self, input_data: TopicPlannerInput) -> str:
        observation = input_data.observation
        message = observation.message
        turns = input_data.turns[-MAX_PROMPT_TURNS:]

        history = "\n".join(
            f"Step {turn.iteration}: {json.dumps(turn.step, default=str)}\n"
            f"Result: {json.dumps(turn.result, default=str) if turn.result is not None else turn.error}"
            for turn in turns
        ) or "No steps taken yet."

        latest = ""
        if observation.error:
            latest = f"\n## Last step was rejected\n{observation.error}\n"
        if observation.last_result is not None:
            latest += (
                f"\n## Latest result ({observation.last_tool})\n"
                f"{json.dumps(observation.last_result, default=str)}\n"
            )

        return f"""Categorize this message.

## Message
Channel: #{message.channel_name}
User: {message.user}
Thread reply: {message.is_thread_reply}
Length: {message.length} characters (short: {message.is_short})
Text: {message.text}

## Progress
Step {observation.iteration} of {observation.max_iterations}.
{history}
{latest}
Return the next step."""

    async def decide(
        self,
        observation: PlannerObservation,
        turns: Sequence[PlannerTurn],
    ) -> PlannerStep:
        """Planner entry point used by the decision loop."""
        response = await self.run(
            TopicPlannerInput(observation=observation, turns=list(turns)),
            context={
                "message_id": observation.message.message_id,
                "iteration": observation.iteration,
            },
        )
        return response.step
