"""
tests/test_store.py

Tests for CityStore: placement, ticks, goals, reset, listeners, snapshots.
Run with: pytest tests/test_store.py -v
"""

from dataclasses import replace

import pytest

from metropolis.city.news import NewsType, make_news
from metropolis.economy.goals import Goal
from metropolis.economy.simulation import INITIAL_STATS, CityStats
from metropolis.os.store import CityState, CityStore, PlacementOutcome, SoundCue
from metropolis.world.buildings import BuildingType
from metropolis.world.grid import Grid


# ─── Helpers ─────────────────────────────────────────────────────────────────

def make_goal(**overrides) -> Goal:
    data = {
        "description": "Reach $2,000 in the treasury",
        "targetType": "money",
        "targetValue": 2000,
        "reward": 500,
    }
    data.update(overrides)
    return Goal.model_validate(data)


def make_store(money: int = 1000, started: bool = True, **state) -> tuple[CityStore, list]:
    """A store plus the list of sound cues it played."""
    sounds = []
    base = CityState(
        stats=CityStats(money=money, population=0, day=1),
        game_started=started,
    )
    store = CityStore(replace(base, **state), on_sound=sounds.append)
    return store, sounds


# ─── Placement ───────────────────────────────────────────────────────────────

class TestPlacement:

    def test_build_deducts_cost_and_places(self):
        store, sounds = make_store(money=1000)
        store.set_tool(BuildingType.RESIDENTIAL)

        outcome = store.place_building(2, 3)

        assert outcome == PlacementOutcome.BUILT
        assert store.state.grid.tile(2, 3).building_type == BuildingType.RESIDENTIAL
        assert store.state.stats.money == 900
        assert sounds == [SoundCue.BUILD]

    def test_build_on_occupied_tile_is_silent_noop(self):
        store, sounds = make_store(money=1000)
        store.set_tool(BuildingType.ROAD)
        store.place_building(0, 0)
        before = store.state

        assert store.place_building(0, 0) == PlacementOutcome.IGNORED
        assert store.state is before          # nothing committed at all
        assert sounds == [SoundCue.BUILD]

    def test_bulldozer_on_empty_tile_is_silent_noop(self):
        store, sounds = make_store(money=1000)
        store.set_tool(BuildingType.NONE)
        before = store.state

        assert store.place_building(5, 5) == PlacementOutcome.IGNORED
        assert store.state is before
        assert sounds == []

    def test_demolish_costs_five(self):
        store, sounds = make_store(money=1000)
        store.set_tool(BuildingType.PARK)
        store.place_building(1, 1)
        store.set_tool(BuildingType.NONE)

        assert store.place_building(1, 1) == PlacementOutcome.DEMOLISHED
        assert store.state.grid.tile(1, 1).building_type == BuildingType.NONE
        assert store.state.stats.money == 1000 - 50 - 5
        assert sounds == [SoundCue.BUILD, SoundCue.BULLDOZE]

    def test_insufficient_funds(self):
        store, sounds = make_store(money=350)
        store.set_tool(BuildingType.INDUSTRIAL)

        outcome = store.place_building(4, 4)

        assert outcome == PlacementOutcome.INSUFFICIENT_FUNDS
        assert store.state.grid.tile(4, 4).building_type == BuildingType.NONE
        assert store.state.stats.money == 350                 # untouched
        assert store.state.news_feed[-1].text == "Insufficient funds for Factory."
        assert store.state.news_feed[-1].type == NewsType.NEGATIVE
        assert sounds == [SoundCue.ERROR]

    def test_cannot_afford_demolition(self):
        store, sounds = make_store(money=4)
        store._state = replace(store.state, grid=store.state.grid.with_building(0, 0, BuildingType.ROAD))
        store.set_tool(BuildingType.NONE)

        assert store.place_building(0, 0) == PlacementOutcome.INSUFFICIENT_FUNDS
        assert store.state.grid.tile(0, 0).building_type == BuildingType.ROAD
        assert store.state.news_feed[-1].text == "Cannot afford demolition."

    def test_paused_blocks_placement(self):
        store, sounds = make_store(money=1000, is_paused=True)
        assert store.place_building(0, 0) == PlacementOutcome.PAUSED
        assert store.state.stats.money == 1000

    def test_out_of_bounds(self):
        store, _ = make_store(money=1000)
        before = store.state
        assert store.place_building(15, 0) == PlacementOutcome.OUT_OF_BOUNDS
        assert store.place_building(-1, 3) == PlacementOutcome.OUT_OF_BOUNDS
        assert store.state is before

    def test_clicks_ignored_before_start(self):
        store, _ = make_store(money=1000, started=False)
        assert store.on_tile_click(0, 0) == PlacementOutcome.IGNORED
        assert store.state.stats.money == 1000

    def test_money_never_negative(self):
        store, _ = make_store(money=120)
        store.set_tool(BuildingType.RESIDENTIAL)
        store.place_building(0, 0)
        store.place_building(1, 0)
        assert store.state.stats.money == 20
        assert store.state.grid.count(BuildingType.RESIDENTIAL) == 1


# ─── Tick & goals ────────────────────────────────────────────────────────────

class TestTick:

    def test_tick_advances_day(self):
        store, _ = make_store()
        assert store.tick() is True
        assert store.state.stats.day == 2

    def test_first_house_then_one_day(self):
        """1000 in the bank, one House, one tick: 900 money, 5 residents, day 2."""
        store, _ = make_store(money=1000)
        store.set_tool(BuildingType.RESIDENTIAL)

        assert store.on_tile_click(7, 7) == PlacementOutcome.BUILT
        store.tick()

        assert store.state.stats == CityStats(money=900, population=5, day=2)

    def test_tick_while_paused_changes_nothing(self):
        store, _ = make_store(is_paused=True)
        before = store.state
        assert store.tick() is False
        assert store.state is before

    def test_goal_completes_and_reward_is_claimed(self):
        """Money goal of 2000 with 2000 in the bank: tick, claim → 2500."""
        store, sounds = make_store(money=2000, current_goal=make_goal())

        store.tick()
        assert store.state.current_goal.completed is True
        assert store.state.stats.money == 2000

        assert store.claim_reward() is True
        assert store.state.stats.money == 2500
        assert store.state.current_goal is None
        assert store.state.news_feed[-1].text == "Goal achieved! 500 collected."
        assert store.state.news_feed[-1].type == NewsType.POSITIVE
        assert sounds == [SoundCue.SUCCESS]

    def test_claim_without_completed_goal_is_noop(self):
        store, _ = make_store(money=100, current_goal=make_goal())
        assert store.claim_reward() is False
        assert store.state.stats.money == 100
        assert store.state.current_goal is not None

    def test_goals_not_checked_in_sandbox(self):
        store, _ = make_store(money=5000, ai_enabled=False, current_goal=make_goal())
        store.tick()
        assert store.state.current_goal.completed is False

    def test_completed_goal_stays_completed(self):
        store, _ = make_store(money=2000, current_goal=make_goal())
        store.tick()
        store._state = replace(store.state, stats=CityStats(money=0, population=0, day=5))
        store.tick()
        assert store.state.current_goal.completed is True


# ─── Advisor intake ──────────────────────────────────────────────────────────

class TestAdvisorIntake:

    def test_only_one_generation_in_flight(self):
        store, _ = make_store()
        epoch = store.begin_goal_generation()
        assert epoch == 0
        assert store.state.is_generating_goal is True
        assert store.begin_goal_generation() is None

    def test_finish_installs_goal(self):
        store, _ = make_store()
        epoch = store.begin_goal_generation()
        assert store.finish_goal_generation(epoch, make_goal()) is True
        assert store.state.current_goal is not None
        assert store.state.is_generating_goal is False

    def test_finish_with_failure_releases_slot(self):
        store, _ = make_store()
        epoch = store.begin_goal_generation()
        assert store.finish_goal_generation(epoch, None) is False
        assert store.state.is_generating_goal is False
        assert store.begin_goal_generation() == epoch

    def test_goal_from_before_reset_is_dropped(self):
        store, _ = make_store()
        epoch = store.begin_goal_generation()
        store.reset()
        store.start_game(True)

        assert store.finish_goal_generation(epoch, make_goal()) is False
        assert store.state.current_goal is None

    def test_goal_arriving_while_paused_is_dropped(self):
        store, _ = make_store()
        epoch = store.begin_goal_generation()
        store.toggle_pause()
        assert store.finish_goal_generation(epoch, make_goal()) is False
        assert store.state.current_goal is None
        assert store.state.is_generating_goal is False

    def test_no_generation_when_disabled_or_paused(self):
        store, _ = make_store(ai_enabled=False)
        assert store.begin_goal_generation() is None
        store, _ = make_store(is_paused=True)
        assert store.begin_goal_generation() is None
        store, _ = make_store(started=False)
        assert store.begin_goal_generation() is None

    def test_accept_news(self):
        store, _ = make_store()
        item = make_news("Local cat elected dogcatcher", NewsType.NEUTRAL)
        assert store.accept_news(store.state.epoch, item) is True
        assert store.state.news_feed[-1] == item
        assert store.accept_news(store.state.epoch + 1, item) is False
        assert store.accept_news(store.state.epoch, None) is False


# ─── Session, reset & listeners ──────────────────────────────────────────────

class TestSession:

    def test_reset_keeps_settings_and_bumps_epoch(self):
        store, _ = make_store(money=5, ai_enabled=False, volume=0.8)
        store.set_tool(BuildingType.PARK)
        store.add_news(make_news("Something happened"))

        store.reset()
        state = store.state

        assert state.grid == Grid.empty()
        assert state.stats == INITIAL_STATS
        assert state.game_started is False
        assert state.news_feed == ()
        assert state.selected_tool == BuildingType.ROAD
        assert state.ai_enabled is False
        assert state.volume == 0.8
        assert state.epoch == 1

    def test_toggle_pause(self):
        store, _ = make_store()
        assert store.toggle_pause() is True
        assert store.state.is_running is False
        assert store.toggle_pause() is False
        assert store.state.is_running is True

    def test_turning_ai_off_mid_game(self):
        store, _ = make_store()
        epoch = store.begin_goal_generation()
        store.set_ai_enabled(False)
        assert store.finish_goal_generation(epoch, make_goal()) is False
        assert store.state.current_goal is None
        assert store.state.ai_enabled is False

    def test_volume_is_clamped(self):
        store, _ = make_store()
        store.set_volume(3)
        assert store.state.volume == 1.0
        store.set_volume(-1)
        assert store.state.volume == 0.0

    def test_listeners_see_every_commit(self):
        store, _ = make_store()
        seen = []
        unsubscribe = store.subscribe(lambda s: seen.append(s.stats.day))

        store.tick()
        store.tick()
        unsubscribe()
        store.tick()

        assert seen == [2, 3]

    def test_failing_listener_does_not_break_commit(self):
        store, _ = make_store()
        seen = []

        def broken(_state):
            raise RuntimeError("boom")

        store.subscribe(broken)
        store.subscribe(lambda s: seen.append(s.stats.day))
        store.tick()

        assert store.state.stats.day == 2
        assert seen == [2]


# ─── Snapshots ───────────────────────────────────────────────────────────────

class TestSnapshot:

    def test_round_trip(self):
        store, _ = make_store(money=2000, current_goal=make_goal(), volume=0.3)
        store.set_tool(BuildingType.ROAD)
        store.place_building(0, 0)
        store.add_news(make_news("Road opens to fanfare", NewsType.POSITIVE))

        restored = CityStore.from_snapshot(store.to_snapshot())

        assert restored.state.grid == store.state.grid
        assert restored.state.stats == store.state.stats
        assert restored.state.current_goal == store.state.current_goal
        assert restored.state.news_feed == store.state.news_feed
        assert restored.state.volume == 0.3
        assert restored.state.game_started is True

    def test_snapshot_keys(self):
        store, _ = make_store()
        assert set(store.to_snapshot()) == {
            "grid", "stats", "aiEnabled", "gameStarted", "currentGoal", "newsFeed", "volume",
        }

    def test_corrupt_grid_keeps_valid_stats(self):
        store, _ = make_store(money=777)
        doc = store.to_snapshot()
        doc["grid"] = [[{"x": 0}]]

        restored = CityStore.from_snapshot(doc)

        assert restored.state.grid == Grid.empty()
        assert restored.state.stats.money == 777

    def test_missing_and_unknown_keys(self):
        restored = CityStore.from_snapshot({"volume": 0.9, "somethingElse": 42})
        assert restored.state.volume == 0.9
        assert restored.state.stats == INITIAL_STATS
        assert restored.state.ai_enabled is True

    def test_not_an_object(self):
        restored = CityStore.from_snapshot(["nope"])
        assert restored.state == CityState()

    def test_bad_goal_and_feed_fall_back(self):
        restored = CityStore.from_snapshot({
            "currentGoal": {"description": "x"},
            "newsFeed": "not a list",
            "aiEnabled": "yes",
        })
        assert restored.state.current_goal is None
        assert restored.state.news_feed == ()
        assert restored.state.ai_enabled is True
