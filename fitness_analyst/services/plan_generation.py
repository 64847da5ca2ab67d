"""Plan generation pipeline.

Turns a profile into a prompt, asks the completion endpoint for a JSON
plan, and validates the reply into a ``Plan``.  Persisting the result is
the caller's job (see ``ProfileSyncController.generate_plan``).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from pydantic import ValidationError as PydanticValidationError

from fitness_analyst.core.completions import CompletionClient
from fitness_analyst.core.exceptions import ParseError, ValidationError
from fitness_analyst.models.profile import Plan, Profile, format_number, parse_positive_number

logger = logging.getLogger(__name__)

PLAN_MAX_TOKENS = 2500
PLAN_TEMPERATURE = 0.8

MISSING_MEASUREMENTS_MESSAGE = (
    "Please enter your height, current weight, and target weight to generate a plan."
)

PLAN_SYSTEM_PROMPT = (
    "You are a fitness coach. Always respond with valid JSON only. Be extremely concise. "
    "Use exact single numbers only - never use ranges. Keep all text very short and simple."
)

PLAN_PROMPT_TEMPLATE = """You are an expert fitness coach. Generate a personalized fitness plan.

User Profile:
- Name: {name}
- Age: {age}
- Gender: {gender}
- Height: {height} cm
- Current Weight: {current_weight} kg
- Target Weight: {target_weight} kg
- Weight Change Needed: {weight_delta} kg
- BMI: {bmi}
- Fitness Goal: {fitness_goal}
- Activity Level: {activity_level}
- Available Equipment: {equipment}

IMPORTANT INSTRUCTIONS:
1. Use EXACT numbers only (e.g., "5 min" NOT "5-7 minutes")
2. Keep ALL exercises in SHORT format
3. Each exercise should be: ExerciseName (sets×reps) or ExerciseName (duration)
4. Maximum 3-4 exercises per section

JSON format:
{{
  "predicted_time": "exact time (e.g., '12 weeks')",
  "plan": {{
    "warmUp": "Jumping Jacks (5 min), Arm Circles (2 min)",
    "strength": "Squats (3×12), Push-ups (3×10), Rows (3×12)",
    "cardio": "Running (20 min), Jump Rope (10 min)",
    "coolDown": "Static Stretching (5 min)"
  }}
}}

Keep it simple and concise. Use exact single numbers only."""


def require_measurements(profile: Profile) -> tuple[float, float, float]:
    """Return (height, current_weight, target_weight) or raise ValidationError."""
    values = {
        "height": parse_positive_number(profile.height),
        "current_weight": parse_positive_number(profile.current_weight),
        "target_weight": parse_positive_number(profile.target_weight),
    }
    missing = [name for name, value in values.items() if value is None]
    if missing:
        raise ValidationError(MISSING_MEASUREMENTS_MESSAGE, fields=missing)
    return values["height"], values["current_weight"], values["target_weight"]  # type: ignore[return-value]


def build_plan_prompt(profile: Profile, bmi: float) -> str:
    """Render the plan instruction for ``profile``.

    Raises:
        ValidationError: If a required measurement is missing.
    """
    _, current_weight, target_weight = require_measurements(profile)
    weight_delta = abs(target_weight - current_weight)
    return PLAN_PROMPT_TEMPLATE.format(
        name=profile.name,
        age=profile.age,
        gender=profile.gender.value,
        height=profile.height,
        current_weight=profile.current_weight,
        target_weight=profile.target_weight,
        weight_delta=format_number(weight_delta) or "0",
        bmi=f"{bmi:.1f}",
        fitness_goal=profile.fitness_goal.value,
        activity_level=profile.activity_level.value,
        equipment=profile.equipment.value,
    )


def parse_plan(content: str, generated_at: datetime) -> Plan:
    """Validate the model's JSON reply and stamp it with ``generated_at``.

    Raises:
        ParseError: If ``content`` is not a JSON object of the plan shape.
    """
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        raise ParseError(f"Response was not valid JSON: {e.msg}", content=content) from e

    if not isinstance(parsed, dict):
        raise ParseError("Response JSON was not an object", content=content)

    try:
        return Plan.model_validate({**parsed, "timestamp": generated_at.isoformat()})
    except PydanticValidationError as e:
        raise ParseError("Response did not match the plan format", content=content) from e


class PlanGenerator:
    """Builds, sends and validates plan requests."""

    def __init__(
        self,
        completions: CompletionClient,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._completions = completions
        self._clock = clock or (lambda: datetime.now(UTC))

    async def generate(self, profile: Profile, bmi: float | None = None) -> Plan:
        """Generate a fresh plan for ``profile``.

        Args:
            profile: The current profile snapshot.
            bmi: Precomputed BMI; derived from the profile when omitted.

        Returns:
            The validated, timestamped plan.

        Raises:
            ValidationError: Missing measurements; no request is made.
            RequestError: The completion endpoint kept failing.
            ParseError: The reply was not a usable plan.
        """
        prompt = build_plan_prompt(profile, profile.bmi if bmi is None else bmi)
        messages = [
            {"role": "system", "content": PLAN_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

        content = await self._completions.complete(
            messages,
            temperature=PLAN_TEMPERATURE,
            max_tokens=PLAN_MAX_TOKENS,
            json_mode=True,
        )
        plan = parse_plan(content, self._clock())
        logger.info(
            "Plan generated",
            extra={"predicted_time": plan.predicted_time, "model": self._completions.model},
        )
        return plan
