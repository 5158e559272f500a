"""
metropolis/os/loop.py

GameLoop — the periodic drivers around the store.

  TICK    every TICK_RATE_MS, store.tick(). Exists only while the game is
          started and unpaused; torn down on pause/reset, rebuilt on resume.
  GOALS   every 15s, ask the advisor for a goal if there isn't one. Also fires
          immediately when a running AI game has no goal.
  NEWS    every 10s, a 15% chance of a generated headline.
  FRAME   ~30 fps, steps cars and pedestrians. Runs even while paused so the
          city doesn't freeze visually; never writes to the store.

Everything runs on one asyncio loop. The only slow work, the LLM calls, is pushed
to a worker thread, and its result is handed back to the store, which decides
whether it still applies (same epoch, still running, still wanted).
Only one goal request can be in flight at a time; the store holds that flag.
"""

import asyncio
import os
import random
from typing import Optional

from dotenv import load_dotenv
from loguru import logger

from metropolis.agents.advisor import CityAdvisor
from metropolis.city.traffic import CityMovement
from metropolis.os.store import CityState, CityStore

load_dotenv()

TICK_RATE_MS = int(os.getenv("METROPOLIS_TICK_RATE_MS", "2000"))
FRAME_RATE = int(os.getenv("METROPOLIS_FRAME_RATE", "30"))
GOAL_RETRY_SECONDS = 15.0
NEWS_INTERVAL_SECONDS = 10.0
NEWS_CHANCE = 0.15


class GameLoop:

    def __init__(
        self,
        store: CityStore,
        advisor: Optional[CityAdvisor] = None,
        movement: Optional[CityMovement] = None,
        tick_interval: float = TICK_RATE_MS / 1000,
        goal_interval: float = GOAL_RETRY_SECONDS,
        news_interval: float = NEWS_INTERVAL_SECONDS,
        news_chance: float = NEWS_CHANCE,
        frame_rate: int = FRAME_RATE,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.advisor = advisor
        self.movement = movement
        self.tick_interval = tick_interval
        self.goal_interval = goal_interval
        self.news_interval = news_interval
        self.news_chance = news_chance
        self.frame_rate = frame_rate
        self._rng = rng or random.Random()

        self._running = False
        self._unsubscribe = None
        self._session_tasks: list[asyncio.Task] = []   # tick + advisor timers
        self._frame_task: Optional[asyncio.Task] = None
        self._goal_fetch: Optional[asyncio.Task] = None
        self._goal_key: tuple[int, bool] = (-1, False)

    @property
    def ticking(self) -> bool:
        return bool(self._session_tasks)

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        self._running = True
        self._goal_key = (-1, False)
        self._unsubscribe = self.store.subscribe(self._on_change)
        if self.movement is not None:
            self._frame_task = asyncio.create_task(self._frame_driver())
        self._on_change(self.store.state)
        logger.info("⏱️ Game loop started")

    async def stop(self) -> None:
        self._running = False
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

        tasks = list(self._session_tasks)
        self._session_tasks = []
        for task in (self._frame_task, self._goal_fetch):
            if task is not None:
                tasks.append(task)
        self._frame_task = None
        self._goal_fetch = None

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("⏹️ Game loop stopped")

    # ─── Store changes ────────────────────────────────────────────────────────

    def _on_change(self, state: CityState) -> None:
        if self.movement is not None:
            self.movement.sync(state.grid, state.stats.population)
        if not self._running:
            return

        if state.is_running and not self._session_tasks:
            self._session_tasks = [
                asyncio.create_task(self._tick_driver()),
                asyncio.create_task(self._goal_driver()),
                asyncio.create_task(self._news_driver()),
            ]
            logger.debug("⏱️ Tick driver up")
        elif not state.is_running and self._session_tasks:
            for task in self._session_tasks:
                task.cancel()
            self._session_tasks = []
            logger.debug("⏱️ Tick driver down")

        # Ask right away only when the game starts wanting a goal. A failed fetch
        # leaves this key unchanged, so retries wait for the goal driver.
        wants_goal = state.is_running and state.ai_enabled and state.current_goal is None
        key = (state.epoch, wants_goal)
        if key != self._goal_key:
            self._goal_key = key
            if wants_goal:
                # Deferred: we are inside a store notification and must not commit from here.
                asyncio.get_running_loop().call_soon(lambda: self._on_goal_timer(self.store.state))

    # ─── Advisor ──────────────────────────────────────────────────────────────

    def request_goal(self) -> Optional[asyncio.Task]:
        """Start a goal fetch unless one is already running. Returns the task, or None."""
        if self.advisor is None:
            return None
        epoch = self.store.begin_goal_generation()
        if epoch is None:
            return None
        self._goal_fetch = asyncio.create_task(self._fetch_goal(epoch, self.store.state))
        return self._goal_fetch

    async def _fetch_goal(self, epoch: int, state: CityState) -> None:
        goal = None
        try:
            goal = await asyncio.to_thread(self.advisor.generate_goal, state.stats, state.grid)
        finally:
            # Always release the in-flight slot, even when cancelled.
            self.store.finish_goal_generation(epoch, goal)

    async def fetch_news(self, state: CityState) -> bool:
        if self.advisor is None or not state.is_running or not state.ai_enabled:
            return False
        item = await asyncio.to_thread(self.advisor.generate_news, state.stats)
        return self.store.accept_news(state.epoch, item)

    # ─── Drivers ──────────────────────────────────────────────────────────────

    async def _tick_driver(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            self.store.tick()

    async def _goal_driver(self) -> None:
        while True:
            await asyncio.sleep(self.goal_interval)
            self._on_goal_timer(self.store.state)

    def _on_goal_timer(self, state: CityState) -> None:
        if not self._running:
            return
        if state.current_goal is None and not state.is_generating_goal:
            self.request_goal()

    async def _news_driver(self) -> None:
        while True:
            await asyncio.sleep(self.news_interval)
            if self._rng.random() > self.news_chance:
                continue
            await self.fetch_news(self.store.state)

    async def _frame_driver(self) -> None:
        loop = asyncio.get_running_loop()
        last = loop.time()
        while True:
            await asyncio.sleep(1 / self.frame_rate)
            now = loop.time()
            self.movement.step(now - last)
            last = now
