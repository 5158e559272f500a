"""
metropolis/world/grid.py

The city layout. A fixed N×N matrix of tiles, indexed grid[row][col] with
row = y and col = x. Every coordinate has exactly one tile, and a tile's
coordinates never change. Only what stands on it does.

Grids are copy-on-write: with_building() hands back a new Grid and leaves the
old one untouched. That is what lets the store swap state in one step, and
lets the frame driver keep reading a grid while a command builds the next one.
"""

from typing import Iterator, NamedTuple

from pydantic import BaseModel, ConfigDict, Field

from metropolis.world.buildings import BUILDINGS, DEMOLISH_COST, GRID_SIZE, BuildingType

WALKABLE_TYPES = frozenset({BuildingType.ROAD, BuildingType.PARK, BuildingType.NONE})


class Tile(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    x: int
    y: int
    building_type: BuildingType = Field(default=BuildingType.NONE, alias="buildingType")


class TileClass(NamedTuple):
    walkable: bool
    buildable: bool


class Grid:
    """Immutable snapshot of every tile in the city."""

    def __init__(self, rows):
        self._rows: tuple[tuple[Tile, ...], ...] = tuple(tuple(row) for row in rows)
        self.size = len(self._rows)

    @classmethod
    def empty(cls, size: int = GRID_SIZE) -> "Grid":
        return cls(
            [Tile(x=x, y=y) for x in range(size)]
            for y in range(size)
        )

    # ── Read ──────────────────────────────────────────────────────────────────

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.size and 0 <= y < self.size

    def tile(self, x: int, y: int) -> Tile:
        return self._rows[y][x]

    def rows(self) -> tuple[tuple[Tile, ...], ...]:
        return self._rows

    def tiles(self) -> Iterator[Tile]:
        for row in self._rows:
            yield from row

    def count(self, building_type: BuildingType) -> int:
        return sum(1 for t in self.tiles() if t.building_type == building_type)

    def counts(self) -> dict[str, int]:
        """Per-type tile counts, empty tiles included. Keys are the enum values."""
        result: dict[str, int] = {}
        for t in self.tiles():
            result[t.building_type.value] = result.get(t.building_type.value, 0) + 1
        return result

    def road_tiles(self) -> list[tuple[int, int]]:
        return [(t.x, t.y) for t in self.tiles() if t.building_type == BuildingType.ROAD]

    def walkable_tiles(self) -> list[tuple[int, int]]:
        return [(t.x, t.y) for t in self.tiles() if classify(t).walkable]

    # ── Write (copy-on-write) ─────────────────────────────────────────────────

    def with_building(self, x: int, y: int, building_type: BuildingType) -> "Grid":
        """Return a new grid with one tile changed. Untouched rows are shared."""
        rows = list(self._rows)
        row = list(rows[y])
        row[x] = row[x].model_copy(update={"building_type": building_type})
        rows[y] = tuple(row)
        return Grid(rows)

    # ── Snapshot ──────────────────────────────────────────────────────────────

    def to_rows(self) -> list[list[dict]]:
        return [
            [t.model_dump(mode="json", by_alias=True) for t in row]
            for row in self._rows
        ]

    @classmethod
    def from_rows(cls, rows, size: int = GRID_SIZE) -> "Grid":
        """
        Rebuild a grid from its snapshot form.
        Raises ValueError if the shape is wrong or a tile sits at the wrong
        coordinate. The caller decides whether to fall back to a fresh grid.
        """
        if not isinstance(rows, list) or len(rows) != size:
            raise ValueError(f"grid must have {size} rows")
        parsed = []
        for y, row in enumerate(rows):
            if not isinstance(row, list) or len(row) != size:
                raise ValueError(f"grid row {y} must have {size} tiles")
            parsed_row = []
            for x, raw in enumerate(row):
                tile = Tile.model_validate(raw)
                if tile.x != x or tile.y != y:
                    raise ValueError(f"tile at [{y}][{x}] claims ({tile.x}, {tile.y})")
                parsed_row.append(tile)
            parsed.append(parsed_row)
        return cls(parsed)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Grid):
            return NotImplemented
        return self._rows == other._rows

    def __repr__(self) -> str:
        built = sum(1 for t in self.tiles() if t.building_type != BuildingType.NONE)
        return f"<Grid {self.size}x{self.size} built={built}>"


# ── Queries ───────────────────────────────────────────────────────────────────

def can_afford(money: int, building_type: BuildingType) -> bool:
    """Demolition has its own flat price; everything else costs what the table says."""
    if building_type == BuildingType.NONE:
        return money >= DEMOLISH_COST
    return money >= BUILDINGS[building_type].cost


def classify(tile: Tile) -> TileClass:
    return TileClass(
        walkable=tile.building_type in WALKABLE_TYPES,
        buildable=tile.building_type == BuildingType.NONE,
    )


def can_preview(grid: Grid, x: int, y: int, tool: BuildingType) -> bool:
    """The ghost building under the cursor only shows over empty ground, never for the bulldozer."""
    if tool == BuildingType.NONE or not grid.in_bounds(x, y):
        return False
    return classify(grid.tile(x, y)).buildable
