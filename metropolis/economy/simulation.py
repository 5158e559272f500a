"""
metropolis/economy/simulation.py

One tick of the city economy. Pure and deterministic: same stats + same grid
always give the same next day.
"""

from pydantic import BaseModel, ConfigDict, Field

from metropolis.world.buildings import (
    BUILDINGS,
    INITIAL_MONEY,
    MAX_POP_PER_RESIDENTIAL,
    NO_HOUSING_DECAY,
    BuildingType,
)
from metropolis.world.grid import Grid


class CityStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    money: int
    population: int = Field(default=0, ge=0)
    day: int = Field(default=1, ge=1)


INITIAL_STATS = CityStats(money=INITIAL_MONEY, population=0, day=1)


def next_stats(stats: CityStats, grid: Grid) -> CityStats:
    """
    Advance the economy by one day.

    Income and growth are summed over every non-empty tile in a single pass.
    Population is capped by housing. If there is no housing at all, residents
    leave at NO_HOUSING_DECAY per day, and that rule replaces the growth/cap
    result entirely, even when parks are still contributing growth.
    """
    daily_income = 0
    daily_pop_growth = 0
    residential_count = 0

    for tile in grid.tiles():
        if tile.building_type == BuildingType.NONE:
            continue
        config = BUILDINGS[tile.building_type]
        daily_income += config.income_gen
        daily_pop_growth += config.pop_gen
        if tile.building_type == BuildingType.RESIDENTIAL:
            residential_count += 1

    max_pop = residential_count * MAX_POP_PER_RESIDENTIAL
    new_pop = min(stats.population + daily_pop_growth, max_pop)

    # No housing: people move away. Overrides the cap above.
    if residential_count == 0 and stats.population > 0:
        new_pop = max(0, stats.population - NO_HOUSING_DECAY)

    return CityStats(
        money=stats.money + daily_income,
        population=new_pop,
        day=stats.day + 1,
    )
