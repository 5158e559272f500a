"""
metropolis/city/traffic.py

Cars and pedestrians for the render layer.

No pathfinding. Every agent holds (cur, target, progress, speed) and each frame
just pushes progress forward. On arrival it picks the next target locally:

  Vehicles:    a random 4-connected road neighbour, never straight back the
                way it came if there is any other choice. A dead-end fragment
                with no road neighbours teleports the car's target to a random
                road tile so it can't get stranded.
  Pedestrians: any walkable tile (road, park, empty ground), anywhere on the
                map, with a little jitter so crowds don't stack on tile centres.

Agents are derived from the grid and never saved. When the set of tiles they
may use changes, the whole population is thrown away and respawned, so nobody
keeps walking on a tile that was just built over.

Reads the grid, never writes it. Runs off the frame driver, not the tick.
"""

import math
import random
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from metropolis.world.grid import Grid

MAX_VEHICLES = 30
MAX_PEDESTRIANS = 40
PEOPLE_PER_PEDESTRIAN = 5

VEHICLE_SPEED = (0.01, 0.03)        # progress per frame
PEDESTRIAN_SPEED = (0.004, 0.01)
LANE_OFFSET = 0.15                  # tiles to the side of the road centre line
PEDESTRIAN_JITTER = 0.3             # ± tiles around a tile centre
BOUNCE_HEIGHT = 0.05
BOUNCE_FREQUENCY = 8.0              # radians per second of elapsed time

CAR_COLORS = ["#ef4444", "#3b82f6", "#eab308", "#ffffff", "#1f2937"]

_NEIGHBOUR_STEPS = ((1, 0), (-1, 0), (0, 1), (0, -1))


@dataclass
class MovingAgent:
    cur_x: float
    cur_y: float
    target_x: float
    target_y: float
    progress: float
    speed: float
    from_x: float   # where the agent was before its last arrival
    from_y: float
    color: Optional[str] = None
    phase: float = 0.0


@dataclass(frozen=True)
class AgentPosition:
    kind: str
    x: float
    y: float
    height: float
    heading: float
    color: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "x": round(self.x, 3),
            "y": round(self.y, 3),
            "height": round(self.height, 3),
            "heading": round(self.heading, 3),
            "color": self.color,
        }


class _MovementSystem:
    """Shared spawn / step / regenerate machinery. Subclasses decide tiles, caps and targets."""

    kind = "agent"

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self.agents: list[MovingAgent] = []
        self._tiles: list[tuple[int, int]] = []
        self._tile_set: frozenset[tuple[int, int]] = frozenset()
        self._clock = 0.0

    # ── Public API ────────────────────────────────────────────────────────────

    def sync(self, grid: Grid, population: int = 0) -> bool:
        """
        Bring the agent array in line with the grid.
        Returns True if the agents were regenerated from scratch.
        """
        tiles = self._eligible_tiles(grid)
        tile_set = frozenset(tiles)
        desired = self.desired_count(len(tiles), population)

        if tile_set != self._tile_set:
            self._tiles = tiles
            self._tile_set = tile_set
            self.agents = [self._spawn() for _ in range(desired)]
            logger.debug(f"[Movement] {self.kind}: {len(tiles)} tiles, respawned {desired} agents")
            return True

        if desired < len(self.agents):
            del self.agents[desired:]
        while len(self.agents) < desired:
            self.agents.append(self._spawn())
        return False

    def desired_count(self, tile_count: int, population: int = 0) -> int:
        if tile_count < 2:
            return 0
        return min(tile_count, self._cap(population))

    def step(self, delta: float) -> list[AgentPosition]:
        """Advance every agent by one frame and return where to draw them."""
        self._clock += delta
        if len(self._tiles) < 2:
            return []

        positions = []
        for agent in self.agents:
            agent.progress += agent.speed
            if agent.progress >= 1:
                self._arrive(agent)
            positions.append(self._render(agent))
        return positions

    # ── Subclass hooks ────────────────────────────────────────────────────────

    def _eligible_tiles(self, grid: Grid) -> list[tuple[int, int]]:
        raise NotImplementedError

    def _cap(self, population: int) -> int:
        raise NotImplementedError

    def _spawn(self) -> MovingAgent:
        raise NotImplementedError

    def _next_target(self, agent: MovingAgent) -> tuple[float, float]:
        raise NotImplementedError

    def _render(self, agent: MovingAgent) -> AgentPosition:
        raise NotImplementedError

    # ── Internal ──────────────────────────────────────────────────────────────

    def _arrive(self, agent: MovingAgent) -> None:
        agent.from_x, agent.from_y = agent.cur_x, agent.cur_y
        agent.cur_x, agent.cur_y = agent.target_x, agent.target_y
        agent.progress = 0.0
        agent.target_x, agent.target_y = self._next_target(agent)

    def _random_tile(self) -> tuple[int, int]:
        return self._tiles[self._rng.randrange(len(self._tiles))]

    @staticmethod
    def _lerp(agent: MovingAgent) -> tuple[float, float]:
        t = agent.progress
        return (
            agent.cur_x + (agent.target_x - agent.cur_x) * t,
            agent.cur_y + (agent.target_y - agent.cur_y) * t,
        )


class TrafficSystem(_MovementSystem):
    """Cars, confined to road tiles."""

    kind = "vehicle"

    def _eligible_tiles(self, grid: Grid) -> list[tuple[int, int]]:
        return grid.road_tiles()

    def _cap(self, population: int) -> int:
        return MAX_VEHICLES

    def _spawn(self) -> MovingAgent:
        x, y = self._random_tile()
        agent = MovingAgent(
            cur_x=x, cur_y=y, target_x=x, target_y=y,
            progress=0.0,
            speed=self._rng.uniform(*VEHICLE_SPEED),
            from_x=x, from_y=y,
            color=self._rng.choice(CAR_COLORS),
        )
        agent.target_x, agent.target_y = self._next_target(agent)
        return agent

    def road_neighbours(self, x: int, y: int) -> list[tuple[int, int]]:
        return [
            (x + dx, y + dy)
            for dx, dy in _NEIGHBOUR_STEPS
            if (x + dx, y + dy) in self._tile_set
        ]

    def _next_target(self, agent: MovingAgent) -> tuple[float, float]:
        cur = (round(agent.cur_x), round(agent.cur_y))
        neighbours = self.road_neighbours(*cur)

        if not neighbours:
            # Isolated fragment: jump the target somewhere on the network.
            return self._random_tile()

        came_from = (round(agent.from_x), round(agent.from_y))
        if len(neighbours) > 1 and came_from in neighbours:
            neighbours.remove(came_from)
        return self._rng.choice(neighbours)

    def _render(self, agent: MovingAgent) -> AgentPosition:
        x, y = self._lerp(agent)
        dx = agent.target_x - agent.cur_x
        dy = agent.target_y - agent.cur_y
        length = math.hypot(dx, dy)
        heading = math.atan2(dy, dx)
        if length > 0:
            # Keep right: shift perpendicular to the direction of travel.
            x += -dy / length * LANE_OFFSET
            y += dx / length * LANE_OFFSET
        return AgentPosition(self.kind, x, y, 0.0, heading, agent.color)


class PedestrianSystem(_MovementSystem):
    """People, free to wander roads, parks and empty ground."""

    kind = "pedestrian"

    def _eligible_tiles(self, grid: Grid) -> list[tuple[int, int]]:
        return grid.walkable_tiles()

    def _cap(self, population: int) -> int:
        return min(MAX_PEDESTRIANS, max(0, population) // PEOPLE_PER_PEDESTRIAN)

    def _spawn(self) -> MovingAgent:
        x, y = self._jittered_tile()
        agent = MovingAgent(
            cur_x=x, cur_y=y, target_x=x, target_y=y,
            progress=0.0,
            speed=self._rng.uniform(*PEDESTRIAN_SPEED),
            from_x=x, from_y=y,
            phase=self._rng.uniform(0.0, 2 * math.pi),
        )
        agent.target_x, agent.target_y = self._next_target(agent)
        return agent

    def _jittered_tile(self) -> tuple[float, float]:
        x, y = self._random_tile()
        return (
            x + self._rng.uniform(-PEDESTRIAN_JITTER, PEDESTRIAN_JITTER),
            y + self._rng.uniform(-PEDESTRIAN_JITTER, PEDESTRIAN_JITTER),
        )

    def _next_target(self, agent: MovingAgent) -> tuple[float, float]:
        return self._jittered_tile()

    def _render(self, agent: MovingAgent) -> AgentPosition:
        x, y = self._lerp(agent)
        heading = math.atan2(agent.target_y - agent.cur_y, agent.target_x - agent.cur_x)
        height = BOUNCE_HEIGHT * abs(math.sin(BOUNCE_FREQUENCY * self._clock + agent.phase))
        return AgentPosition(self.kind, x, y, height, heading)


class CityMovement:
    """
    Both systems behind one frame-driver call.

    Usage:
        movement = CityMovement()
        movement.sync(state.grid, state.stats.population)   # after any store change
        frame = movement.step(delta)                         # once per frame
    """

    def __init__(self, rng: Optional[random.Random] = None):
        rng = rng or random.Random()
        self.traffic = TrafficSystem(rng)
        self.pedestrians = PedestrianSystem(rng)
        self.last_frame: dict[str, list[AgentPosition]] = {"vehicles": [], "pedestrians": []}

    def sync(self, grid: Grid, population: int = 0) -> None:
        self.traffic.sync(grid)
        self.pedestrians.sync(grid, population)

    def step(self, delta: float) -> dict[str, list[AgentPosition]]:
        self.last_frame = {
            "vehicles": self.traffic.step(delta),
            "pedestrians": self.pedestrians.step(delta),
        }
        return self.last_frame

    def snapshot(self) -> dict[str, list[dict]]:
        return {kind: [p.to_dict() for p in positions] for kind, positions in self.last_frame.items()}
