"""
metropolis/memory/persistence.py

Saves and loads the city as one flat JSON snapshot.

  {grid, stats, aiEnabled, gameStarted, currentGoal, newsFeed, volume}

Set env var: METROPOLIS_SAVE_PATH=/path/to/save.json
Wire it up with attach(store) and the city is saved after every command.
"""

import json
import os
from pathlib import Path
from typing import Callable, Optional

from dotenv import load_dotenv
from loguru import logger

from metropolis.os.store import CityState, CityStore, SoundPlayer

load_dotenv()

SAVE_PATH = os.getenv("METROPOLIS_SAVE_PATH", "sky_metropolis_save.json")


class CityPersistence:

    def __init__(self, path: str | Path = SAVE_PATH):
        self.path = Path(path)

    def save(self, store: CityStore) -> None:
        """Write the snapshot atomically: temp file first, then rename over the old save."""
        snapshot = store.to_snapshot()
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(snapshot), encoding="utf-8")
        os.replace(tmp, self.path)
        logger.debug(f"💾 City saved: Day {snapshot['stats']['day']}")

    def load(self) -> Optional[dict]:
        """Returns the raw snapshot, or None if there is no readable save."""
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:  # ValueError covers bad JSON and bad UTF-8
            logger.warning(f"⚠️ Save file {self.path} unreadable ({e}). Starting fresh.")
            return None

    def load_store(self, on_sound: Optional[SoundPlayer] = None) -> CityStore:
        """Load the saved city, or a fresh one. Never raises for a bad save."""
        saved = self.load()
        if saved is None:
            logger.info("🌌 No save found, new city")
            return CityStore(on_sound=on_sound)
        return CityStore.from_snapshot(saved, on_sound=on_sound)

    def attach(self, store: CityStore) -> Callable[[], None]:
        """Save after every store change. Returns the unsubscribe handle."""

        def _on_change(_state: CityState):
            self.save(store)

        return store.subscribe(_on_change)

    def clear(self) -> None:
        """Delete the save. Used by the full-reset recovery path."""
        if self.path.exists():
            self.path.unlink()
            logger.info(f"🧹 Deleted save {self.path}")
