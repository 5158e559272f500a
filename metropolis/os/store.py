"""
metropolis/os/store.py

CityStore — the only writer of city state.

Everything the player or the drivers can do to the city is a command on this
object. Each command builds a complete new CityState and swaps it in with one
assignment, then tells subscribers. Nobody ever sees half a command: the grid
change and the money deduction land together or not at all.

The store is passed around explicitly (drivers, dashboard, persistence all
receive it), there is no module-level instance.

Commands never raise for player input. Rejections come back as a
PlacementOutcome / bool, and the player hears about insufficient funds
through the news ticker and an error sound.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from metropolis.city.news import NewsItem, NewsType, append_news, make_news, MAX_NEWS_RETAINED
from metropolis.economy.goals import Goal, is_goal_met
from metropolis.economy.simulation import INITIAL_STATS, CityStats, next_stats
from metropolis.world.buildings import BUILDINGS, DEMOLISH_COST, BuildingType
from metropolis.world.grid import Grid, can_afford


class PlacementOutcome(str, Enum):
    BUILT = "built"
    DEMOLISHED = "demolished"
    IGNORED = "ignored"                    # occupied tile, empty tile under the bulldozer, game not started
    INSUFFICIENT_FUNDS = "insufficient_funds"
    PAUSED = "paused"
    OUT_OF_BOUNDS = "out_of_bounds"


class SoundCue(str, Enum):
    BUILD = "build"
    BULLDOZE = "bulldoze"
    ERROR = "error"
    SUCCESS = "success"


@dataclass(frozen=True)
class CityState:
    grid: Grid = field(default_factory=Grid.empty)
    stats: CityStats = INITIAL_STATS
    selected_tool: BuildingType = BuildingType.ROAD
    game_started: bool = False
    is_paused: bool = False
    ai_enabled: bool = True
    current_goal: Optional[Goal] = None
    is_generating_goal: bool = False
    news_feed: tuple[NewsItem, ...] = ()
    volume: float = 0.5
    epoch: int = 0  # bumped by reset(); advisor replies from an older epoch are dropped

    @property
    def is_running(self) -> bool:
        return self.game_started and not self.is_paused


Listener = Callable[[CityState], None]
SoundPlayer = Callable[[SoundCue], None]


class CityStore:

    def __init__(self, state: Optional[CityState] = None, on_sound: Optional[SoundPlayer] = None):
        self._state = state or CityState()
        self._listeners: list[Listener] = []
        self._on_sound = on_sound

    @property
    def state(self) -> CityState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ─── Placement ────────────────────────────────────────────────────────────

    def on_tile_click(self, x: int, y: int) -> PlacementOutcome:
        """Render-side entry point. Clicks before the game starts do nothing."""
        if not self._state.game_started:
            return PlacementOutcome.IGNORED
        return self.place_building(x, y)

    def place_building(self, x: int, y: int) -> PlacementOutcome:
        """
        Apply the selected tool to tile (x, y).

        Bulldozer on an empty tile and any building on an occupied tile are
        silent no-ops: no money moves, no news. Only a failed affordability
        check produces news.
        """
        state = self._state
        if state.is_paused:
            return PlacementOutcome.PAUSED
        if not state.grid.in_bounds(x, y):
            logger.debug(f"🚫 Click outside the map at ({x}, {y})")
            return PlacementOutcome.OUT_OF_BOUNDS

        tile = state.grid.tile(x, y)
        tool = state.selected_tool

        # ── Demolish ──────────────────────────────────────────────────────────
        if tool == BuildingType.NONE:
            if tile.building_type == BuildingType.NONE:
                return PlacementOutcome.IGNORED
            if not can_afford(state.stats.money, BuildingType.NONE):
                self._reject("Cannot afford demolition.")
                return PlacementOutcome.INSUFFICIENT_FUNDS

            self._commit(replace(
                state,
                grid=state.grid.with_building(x, y, BuildingType.NONE),
                stats=state.stats.model_copy(update={"money": state.stats.money - DEMOLISH_COST}),
            ))
            logger.debug(f"🚜 Demolished {tile.building_type.value} at ({x}, {y})")
            self._play(SoundCue.BULLDOZE)
            return PlacementOutcome.DEMOLISHED

        # ── Build ─────────────────────────────────────────────────────────────
        if tile.building_type != BuildingType.NONE:
            return PlacementOutcome.IGNORED

        config = BUILDINGS[tool]
        if not can_afford(state.stats.money, tool):
            self._reject(f"Insufficient funds for {config.name}.")
            return PlacementOutcome.INSUFFICIENT_FUNDS

        self._commit(replace(
            state,
            grid=state.grid.with_building(x, y, tool),
            stats=state.stats.model_copy(update={"money": state.stats.money - config.cost}),
        ))
        logger.debug(f"🏗️ Built {config.name} at ({x}, {y}) for ${config.cost}")
        self._play(SoundCue.BUILD)
        return PlacementOutcome.BUILT

    # ─── Simulation ───────────────────────────────────────────────────────────

    def tick(self) -> bool:
        """Advance one day. Returns False (and changes nothing) while paused."""
        state = self._state
        if state.is_paused:
            return False

        stats = next_stats(state.stats, state.grid)

        goal = state.current_goal
        if state.ai_enabled and goal is not None and not goal.completed:
            if is_goal_met(state.grid, stats, goal):
                goal = goal.mark_completed()
                logger.info(f"🎯 Goal met on day {stats.day}: {goal.description}")

        self._commit(replace(state, stats=stats, current_goal=goal))
        logger.debug(
            f"📅 Day {stats.day}: ${stats.money}, pop {stats.population}"
        )
        return True

    def claim_reward(self) -> bool:
        state = self._state
        goal = state.current_goal
        if goal is None or not goal.completed:
            return False

        news = make_news(f"Goal achieved! {goal.reward} collected.", NewsType.POSITIVE)
        self._commit(replace(
            state,
            stats=state.stats.model_copy(update={"money": state.stats.money + goal.reward}),
            current_goal=None,
            news_feed=append_news(state.news_feed, news),
        ))
        logger.info(f"💰 Reward claimed: +${goal.reward}")
        self._play(SoundCue.SUCCESS)
        return True

    def reset(self) -> None:
        """New game. Settings (AI toggle, volume) survive; everything else starts over."""
        state = self._state
        self._commit(CityState(
            ai_enabled=state.ai_enabled,
            volume=state.volume,
            epoch=state.epoch + 1,
        ))
        logger.info("🌅 City reset, fresh empty map")

    # ─── Session & settings ───────────────────────────────────────────────────

    def set_tool(self, tool: BuildingType) -> None:
        self._commit(replace(self._state, selected_tool=BuildingType(tool)))

    def start_game(self, ai_enabled: bool = True) -> None:
        self._commit(replace(self._state, game_started=True, is_paused=False, ai_enabled=ai_enabled))
        mode = "AI advisor" if ai_enabled else "sandbox"
        logger.info(f"🏙️ Game started ({mode} mode)")

    def toggle_pause(self) -> bool:
        paused = not self._state.is_paused
        self._commit(replace(self._state, is_paused=paused))
        logger.info("⏸️ Paused" if paused else "▶️ Resumed")
        return paused

    def set_ai_enabled(self, enabled: bool) -> None:
        self._commit(replace(self._state, ai_enabled=enabled))

    def set_volume(self, volume: float) -> None:
        self._commit(replace(self._state, volume=min(1.0, max(0.0, float(volume)))))

    def add_news(self, item: NewsItem) -> None:
        self._commit(replace(self._state, news_feed=append_news(self._state.news_feed, item)))

    # ─── Advisor intake ───────────────────────────────────────────────────────

    def begin_goal_generation(self) -> Optional[int]:
        """
        Claim the single goal-generation slot.
        Returns the current epoch, or None if a fetch is already in flight or
        a goal isn't wanted right now.
        """
        state = self._state
        if state.is_generating_goal or not state.ai_enabled or not state.is_running:
            return None
        if state.current_goal is not None:
            return None
        self._commit(replace(state, is_generating_goal=True))
        return state.epoch

    def finish_goal_generation(self, epoch: int, goal: Optional[Goal]) -> bool:
        """Release the slot and install the goal if the city still wants it."""
        state = self._state
        if epoch != state.epoch:
            logger.info("🗑️ Dropping advisor goal from before the reset")
            return False

        accept = (
            goal is not None
            and state.is_running
            and state.ai_enabled
            and state.current_goal is None
        )
        self._commit(replace(
            state,
            is_generating_goal=False,
            current_goal=goal if accept else state.current_goal,
        ))
        if accept:
            logger.info(f"📋 New goal: {goal.description} (reward ${goal.reward})")
        elif goal is not None:
            logger.info("🗑️ Advisor goal arrived while paused or disabled, ignored")
        return accept

    def accept_news(self, epoch: int, item: Optional[NewsItem]) -> bool:
        state = self._state
        if item is None or epoch != state.epoch or not state.is_running or not state.ai_enabled:
            return False
        self.add_news(item)
        return True

    # ─── Snapshot ─────────────────────────────────────────────────────────────

    def to_snapshot(self) -> dict:
        state = self._state
        return {
            "grid": state.grid.to_rows(),
            "stats": state.stats.model_dump(mode="json"),
            "aiEnabled": state.ai_enabled,
            "gameStarted": state.game_started,
            "currentGoal": (
                state.current_goal.model_dump(mode="json", by_alias=True)
                if state.current_goal else None
            ),
            "newsFeed": [n.model_dump(mode="json") for n in state.news_feed],
            "volume": state.volume,
        }

    @classmethod
    def from_snapshot(cls, doc, on_sound: Optional[SoundPlayer] = None) -> "CityStore":
        """
        Rebuild a store from a saved snapshot.

        Fails soft per field: anything missing or unreadable keeps its fresh
        default and gets a warning in the log. Unknown keys are ignored.
        """
        fresh = CityState()
        if not isinstance(doc, dict):
            logger.warning("⚠️ Snapshot is not an object, starting a fresh city")
            return cls(fresh, on_sound=on_sound)

        state = replace(
            fresh,
            grid=_restore(doc, "grid", Grid.from_rows, fresh.grid),
            stats=_restore(doc, "stats", CityStats.model_validate, fresh.stats),
            ai_enabled=_restore(doc, "aiEnabled", _parse_bool, fresh.ai_enabled),
            game_started=_restore(doc, "gameStarted", _parse_bool, fresh.game_started),
            current_goal=_restore(doc, "currentGoal", _parse_goal, fresh.current_goal),
            news_feed=_restore(doc, "newsFeed", _parse_news_feed, fresh.news_feed),
            volume=_restore(doc, "volume", _parse_volume, fresh.volume),
        )
        logger.info(f"🔄 Restored city: Day {state.stats.day}, ${state.stats.money}")
        return cls(state, on_sound=on_sound)

    # ─── Internal ─────────────────────────────────────────────────────────────

    def _commit(self, state: CityState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("❌ Store listener failed")

    def _reject(self, text: str) -> None:
        self.add_news(make_news(text, NewsType.NEGATIVE))
        logger.info(f"💸 {text}")
        self._play(SoundCue.ERROR)

    def _play(self, cue: SoundCue) -> None:
        if self._on_sound is not None:
            self._on_sound(cue)


# ─── Snapshot field parsers ───────────────────────────────────────────────────

def _restore(doc: dict, key: str, parse, default):
    if key not in doc:
        return default
    try:
        return parse(doc[key])
    except (ValueError, TypeError, PydanticValidationError) as e:
        logger.warning(f"⚠️ Snapshot field '{key}' unreadable ({e}). Using default.")
        return default


def _parse_bool(value) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"expected bool, got {type(value).__name__}")
    return value


def _parse_goal(value) -> Optional[Goal]:
    if value is None:
        return None
    return Goal.model_validate(value)


def _parse_news_feed(value) -> tuple[NewsItem, ...]:
    if not isinstance(value, list):
        raise TypeError("newsFeed must be a list")
    items = tuple(NewsItem.model_validate(v) for v in value)
    return items[-(MAX_NEWS_RETAINED + 1):]


def _parse_volume(value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError("volume must be a number")
    return min(1.0, max(0.0, float(value)))
