"""
metropolis/economy/goals.py

Advisor goals and the check that decides when one is met.

A goal's life:
  issued:    built from a validated advisor reply, completed=False
  completed: flipped once by the store's tick, never flipped back
  claimed:   reward paid, goal cleared, a new one gets requested
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from metropolis.economy.simulation import CityStats
from metropolis.world.buildings import BuildingType
from metropolis.world.grid import Grid


class GoalTarget(str, Enum):
    MONEY = "money"
    POPULATION = "population"
    BUILDING_COUNT = "building_count"


class GoalResponse(BaseModel):
    """Exactly what the advisor is allowed to send back."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    description: str = Field(min_length=5, max_length=150)
    target_type: GoalTarget
    target_value: int = Field(gt=0)
    building_type: Optional[BuildingType] = None
    reward: int = Field(gt=0)

    @field_validator("target_value", "reward", mode="before")
    @classmethod
    def _json_number_only(cls, value):
        # Lax int would turn "100" into 100 and true into 1. 100.0 is still fine.
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("must be a JSON number")
        return value

    @model_validator(mode="before")
    @classmethod
    def _drop_unused_building_type(cls, data):
        # buildingType only means something for building_count goals.
        if isinstance(data, dict):
            target = data.get("targetType", data.get("target_type"))
            if target != GoalTarget.BUILDING_COUNT.value:
                data = {k: v for k, v in data.items() if k not in ("buildingType", "building_type")}
        return data

    @model_validator(mode="after")
    def _building_type_matches_target(self):
        if self.target_type == GoalTarget.BUILDING_COUNT:
            if self.building_type is None:
                raise ValueError("buildingType is required for building_count goals")
            if self.building_type == BuildingType.NONE:
                raise ValueError("buildingType must be a placeable building")
        return self


class Goal(GoalResponse):
    completed: bool = False

    @classmethod
    def from_response(cls, response: GoalResponse) -> "Goal":
        return cls(**response.model_dump(), completed=False)

    def mark_completed(self) -> "Goal":
        return self.model_copy(update={"completed": True})


def is_goal_met(grid: Grid, stats: CityStats, goal: Optional[Goal]) -> bool:
    """
    True if the goal's target is reached right now.

    Always False for a missing or already-completed goal. The store stops
    asking once a goal is done and waits for the claim instead.
    """
    if goal is None or goal.completed:
        return False

    if goal.target_type == GoalTarget.MONEY:
        return stats.money >= goal.target_value
    if goal.target_type == GoalTarget.POPULATION:
        return stats.population >= goal.target_value
    if goal.target_type == GoalTarget.BUILDING_COUNT and goal.building_type is not None:
        return grid.count(goal.building_type) >= goal.target_value
    return False
