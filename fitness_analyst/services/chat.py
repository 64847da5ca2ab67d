"""Conversation manager for the fitness coaching assistant.

Keeps the full message history for display but only forwards the most
recent messages upstream.  A failed turn never raises: it resolves into a
fixed apology from the assistant.
"""

from __future__ import annotations

import json
import logging

from fitness_analyst.core.completions import CompletionClient
from fitness_analyst.core.exceptions import ChatError, FitnessAnalystError
from fitness_analyst.models.chat import ChatMessage, ChatRole
from fitness_analyst.models.profile import Plan, Profile

logger = logging.getLogger(__name__)

CHAT_MAX_TOKENS = 500
CHAT_TEMPERATURE = 0.8
DEFAULT_CONTEXT_MESSAGES = 5

GREETING = (
    "Hi! 👋 I'm your AI fitness assistant. Ask me anything about workouts, exercises, "
    "nutrition, or fitness tips! 💪"
)
FALLBACK_REPLY = "Sorry, I encountered an error. Please try again! 🔄"
OFF_TOPIC_REPLY = (
    "I'm your fitness assistant and I specialize in workouts, nutrition, and health topics! 💪 "
    "Ask me about exercises, training tips, or nutrition advice instead!"
)

COACH_PERSONA = f"""You are an expert fitness coach and personal trainer specializing in workouts, exercises, nutrition, and health.

IMPORTANT RULES:
1. ONLY answer questions related to: fitness, workouts, exercises, nutrition, diet, health, wellness, strength training, cardio, bodybuilding, weight loss, muscle gain, sports performance, injury prevention, recovery, and supplements.

2. If the user asks about ANYTHING else (weather, politics, general knowledge, entertainment, etc.), politely decline and redirect them back to fitness topics.

3. Keep responses concise (2-4 sentences), friendly, and encouraging. Use emojis occasionally to make it engaging.

4. If you detect an off-topic question, respond with: "{OFF_TOPIC_REPLY}"

Provide helpful, accurate fitness advice based on current exercise science."""


def new_history() -> list[ChatMessage]:
    """Start a conversation with the assistant greeting."""
    return [ChatMessage(role=ChatRole.ASSISTANT, content=GREETING)]


def build_profile_context(profile: Profile | None) -> str:
    """Profile block for the system prompt; empty unless a name is set."""
    if profile is None or not profile.name:
        return ""
    return (
        "\nUser Profile Context:\n"
        f"- Name: {profile.name}\n"
        f"- Age: {profile.age}\n"
        f"- Gender: {profile.gender.value}\n"
        f"- Current Weight: {profile.current_weight} kg\n"
        f"- Target Weight: {profile.target_weight} kg\n"
        f"- Fitness Goal: {profile.fitness_goal.value}\n"
        f"- Activity Level: {profile.activity_level.value}\n"
        f"- Equipment: {profile.equipment.value}\n"
    )


def build_plan_context(plan: Plan | None) -> str:
    """Plan block for the system prompt; empty when there is no plan."""
    if plan is None:
        return ""
    sections = json.dumps(plan.plan.model_dump(by_alias=True), ensure_ascii=False)
    return f"\nCURRENTLY GENERATED PLAN:\n{sections}\n"


def build_system_prompt(profile: Profile | None, plan: Plan | None) -> str:
    """Persona and guardrails, grounded with the optional context blocks."""
    return f"{COACH_PERSONA}\n{build_profile_context(profile)}\n{build_plan_context(plan)}"


class ConversationManager:
    """Runs chat turns against the completion endpoint.

    Args:
        completions: Completion client shared with the plan pipeline.
        context_messages: How many prior messages are sent as context.
    """

    def __init__(
        self,
        completions: CompletionClient,
        context_messages: int = DEFAULT_CONTEXT_MESSAGES,
    ) -> None:
        if context_messages < 1:
            raise ValueError("context_messages must be >= 1")
        self._completions = completions
        self.context_messages = context_messages

    def build_messages(
        self,
        prior: list[ChatMessage],
        user_message: ChatMessage,
        profile: Profile | None,
        plan: Plan | None,
    ) -> list[dict[str, str]]:
        """System prompt, the trailing context window, then the new question."""
        window = prior[-self.context_messages :]
        return [
            {"role": "system", "content": build_system_prompt(profile, plan)},
            *(message.to_dict() for message in window),
            user_message.to_dict(),
        ]

    async def ask(
        self,
        history: list[ChatMessage],
        user_text: str,
        profile: Profile | None = None,
        last_plan: Plan | None = None,
    ) -> list[ChatMessage]:
        """Run one chat turn.

        The user message is appended to ``history`` before the request is
        sent so it is visible while awaiting the reply; exactly one
        assistant message (the reply or the fallback) follows it.

        Args:
            history: The conversation, mutated in place.
            user_text: Raw input; whitespace-only input is ignored.
            profile: Profile used to ground the answer.
            last_plan: Current plan used to ground the answer.

        Returns:
            The same ``history`` list.
        """
        if not user_text or not user_text.strip():
            return history

        prior = list(history)
        user_message = ChatMessage(role=ChatRole.USER, content=user_text)
        history.append(user_message)

        try:
            reply = await self._reply(self.build_messages(prior, user_message, profile, last_plan))
        except FitnessAnalystError as e:
            logger.warning("Chat turn failed: %s", e.message, extra={"code": e.code})
            reply = FALLBACK_REPLY
        except Exception:
            logger.exception("Unexpected chat failure")
            reply = FALLBACK_REPLY

        history.append(ChatMessage(role=ChatRole.ASSISTANT, content=reply))
        return history

    async def _reply(self, messages: list[dict[str, str]]) -> str:
        content = await self._completions.complete(
            messages,
            temperature=CHAT_TEMPERATURE,
            max_tokens=CHAT_MAX_TOKENS,
        )
        if not content.strip():
            raise ChatError("Empty reply from the completion endpoint")
        return content
