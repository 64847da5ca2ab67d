"""Pydantic models for the fitness profile and the generated plan."""

import math
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Gender(str, Enum):
    """Gender options offered by the profile form."""

    MALE = "Male"
    FEMALE = "Female"
    PREFER_NOT_TO_SAY = "Prefer not to say"


class FitnessGoal(str, Enum):
    """Primary training goal."""

    WEIGHT_LOSS = "Weight Loss"
    MUSCLE_GAIN = "Muscle Gain"
    STRENGTH = "Strength"
    ENDURANCE = "Endurance"


class ActivityLevel(str, Enum):
    """Self-reported activity level."""

    SEDENTARY = "Sedentary"
    MODERATE = "Moderate"
    ACTIVE = "Active"


class Equipment(str, Enum):
    """Equipment configurations the plan can be built around."""

    DUMBBELLS_BODYWEIGHT = "Dumbbells + Bodyweight"
    BODYWEIGHT = "Bodyweight"
    CABLE_MACHINE = "Cable Machine"
    FREE_WEIGHTS = "Free Weights"
    RESISTANCE_BANDS = "Resistance Bands"
    KETTLEBELLS = "Kettlebells"
    BARBELL = "Barbell"
    FULL_GYM = "Full Gym"
    HOME_EQUIPMENT = "Home Equipment"


def parse_positive_number(value: Any) -> float | None:
    """Parse editable text into a positive finite number, else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def calculate_bmi(weight_kg: Any, height_cm: Any) -> float:
    """BMI rounded to one decimal, or 0.0 when either input is unusable."""
    weight = parse_positive_number(weight_kg)
    height = parse_positive_number(height_cm)
    if weight is None or height is None:
        return 0.0
    height_m = height / 100
    return round(weight / (height_m * height_m), 1)


class Profile(BaseModel):
    """Editable profile as the UI holds it.

    Numeric fields are kept as text so partially typed values survive
    round-trips through the form; conversion to numbers happens at the
    store boundary.
    """

    model_config = ConfigDict(frozen=True)

    name: str = ""
    age: str = ""
    gender: Gender = Gender.MALE
    height: str = Field("", description="Height in cm")
    current_weight: str = Field("", description="Current weight in kg")
    target_weight: str = Field("", description="Target weight in kg")
    fitness_goal: FitnessGoal = FitnessGoal.WEIGHT_LOSS
    activity_level: ActivityLevel = ActivityLevel.MODERATE
    equipment: Equipment = Equipment.DUMBBELLS_BODYWEIGHT

    @field_validator("age", "height", "current_weight", "target_weight", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        """Accept numbers from callers but store the editable text."""
        if v is None:
            return ""
        return str(v)

    @property
    def bmi(self) -> float:
        """BMI derived from height and current weight; never stored."""
        return calculate_bmi(self.current_weight, self.height)

    def with_field(self, field: str, value: Any) -> "Profile":
        """Return a copy with one field replaced (validated)."""
        if field not in type(self).model_fields:
            raise ValueError(f"Unknown profile field: {field}")
        data = self.model_dump()
        data[field] = value
        return type(self).model_validate(data)


class PlanSections(BaseModel):
    """The four fixed workout sections of a plan."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    warm_up: str = Field("", alias="warmUp")
    strength: str = ""
    cardio: str = ""
    cool_down: str = Field("", alias="coolDown")

    @field_validator("warm_up", "strength", "cardio", "cool_down", mode="before")
    @classmethod
    def join_lists(cls, v: Any) -> str:
        """Models occasionally answer with a list of exercises."""
        if v is None:
            return ""
        if isinstance(v, list):
            return ", ".join(str(item) for item in v)
        return v


class Plan(BaseModel):
    """AI-generated workout plan. Replaced wholesale, never edited."""

    model_config = ConfigDict(frozen=True)

    predicted_time: str = ""
    plan: PlanSections = Field(default_factory=PlanSections)
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    @field_validator("predicted_time", mode="before")
    @classmethod
    def coerce_predicted_time(cls, v: Any) -> str:
        """Accept numbers (e.g. ``12``) as the predicted duration text."""
        if v is None:
            return ""
        return str(v)

    def to_record(self) -> dict[str, Any]:
        """JSON-serializable form stored in ``profiles.last_plan``."""
        return self.model_dump(mode="json", by_alias=True)


def format_number(value: Any) -> str:
    """Render a stored number as editable text ("" for missing, zero or NaN)."""
    number = parse_positive_number(value)
    if number is None:
        return ""
    if number.is_integer():
        return str(int(number))
    return f"{number:g}"
