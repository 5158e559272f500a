"""
metropolis/world/buildings.py

Static building table and economy constants. Loaded once, never mutated.

  BuildingType.None is the bulldozer: it marks an empty tile and is the
  demolish tool, never something you can place.
"""

import os
from dataclasses import dataclass
from enum import Enum

from dotenv import load_dotenv

load_dotenv()

GRID_SIZE = 15

INITIAL_MONEY = int(os.getenv("METROPOLIS_INITIAL_MONEY", "1000"))
DEMOLISH_COST = 5
MAX_POP_PER_RESIDENTIAL = 50
NO_HOUSING_DECAY = 5  # residents lost per day when there is no housing at all


class BuildingType(str, Enum):
    NONE = "None"
    ROAD = "Road"
    RESIDENTIAL = "Residential"
    COMMERCIAL = "Commercial"
    INDUSTRIAL = "Industrial"
    PARK = "Park"


@dataclass(frozen=True)
class BuildingConfig:
    type: BuildingType
    name: str
    description: str
    color: str
    cost: int
    pop_gen: int
    income_gen: int


BUILDINGS: dict[BuildingType, BuildingConfig] = {
    BuildingType.NONE: BuildingConfig(
        BuildingType.NONE, "Bulldoze", "Clear a tile", "#ef4444", cost=0, pop_gen=0, income_gen=0,
    ),
    BuildingType.ROAD: BuildingConfig(
        BuildingType.ROAD, "Road", "Connects buildings.", "#374151", cost=10, pop_gen=0, income_gen=0,
    ),
    BuildingType.RESIDENTIAL: BuildingConfig(
        BuildingType.RESIDENTIAL, "House", "+5 Pop/day", "#f87171", cost=100, pop_gen=5, income_gen=0,
    ),
    BuildingType.COMMERCIAL: BuildingConfig(
        BuildingType.COMMERCIAL, "Shop", "+$15/day", "#60a5fa", cost=200, pop_gen=0, income_gen=15,
    ),
    BuildingType.INDUSTRIAL: BuildingConfig(
        BuildingType.INDUSTRIAL, "Factory", "+$40/day", "#facc15", cost=400, pop_gen=0, income_gen=40,
    ),
    BuildingType.PARK: BuildingConfig(
        BuildingType.PARK, "Park", "Looks nice.", "#4ade80", cost=50, pop_gen=1, income_gen=0,
    ),
}

# Everything a goal can ask you to build.
PLACEABLE_TYPES: tuple[BuildingType, ...] = tuple(t for t in BuildingType if t is not BuildingType.NONE)


def cost_table() -> list[dict]:
    """Cost of every placeable building, part of the advisor's request context."""
    return [{"type": t.value, "cost": BUILDINGS[t].cost} for t in PLACEABLE_TYPES]
