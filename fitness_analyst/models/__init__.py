"""Models package for the fitness analyst core."""

from fitness_analyst.models.chat import ChatMessage, ChatRole
from fitness_analyst.models.profile import (
    ActivityLevel,
    Equipment,
    FitnessGoal,
    Gender,
    Plan,
    PlanSections,
    Profile,
    calculate_bmi,
    format_number,
    parse_positive_number,
)

__all__ = [
    "ActivityLevel",
    "ChatMessage",
    "ChatRole",
    "Equipment",
    "FitnessGoal",
    "Gender",
    "Plan",
    "PlanSections",
    "Profile",
    "calculate_bmi",
    "format_number",
    "parse_positive_number",
]
