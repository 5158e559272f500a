"""
main.py — Entry point for Sky Metropolis.

Two ways to run the city:
    - Headless: the tick driver runs for N days and prints a status table
      after every day. Useful for watching the economy and the advisor.
    - Dashboard: the same loop behind the fastapi render/HUD backend.

Requirements:
    - OPENAI_API_KEY in .env (or ANTHROPIC_API_KEY / GROQ_API_KEY, see
      METROPOLIS_ADVISOR_MODEL). Without a key the advisor just stays quiet.

Run:
    python main.py --days 30
    python main.py --days 30 --sandbox
    python main.py --serve --port 8000
"""

import argparse
import asyncio

from dotenv import load_dotenv
load_dotenv()

from loguru import logger
from rich.console import Console
from rich.table import Table

from metropolis.agents.advisor import CityAdvisor
from metropolis.city.traffic import CityMovement
from metropolis.memory.persistence import CityPersistence
from metropolis.os.loop import GameLoop
from metropolis.os.store import CityState, SoundCue

console = Console()


def play_sound(cue: SoundCue) -> None:
    logger.debug(f"🔊 {cue.value}")


def print_status(state: CityState) -> None:
    stats = state.stats
    table = Table(title=f" Sky Metropolis, Day {stats.day}")
    table.add_column("Treasury")
    table.add_column("Population")
    table.add_column("Goal")
    table.add_column("Latest headline")

    goal = state.current_goal
    if goal is None:
        goal_str = "…" if state.is_generating_goal else "-"
    else:
        goal_str = f"{goal.description} (${goal.reward})"
        if goal.completed:
            goal_str += " ✅"
    money_str = f"${stats.money:,}"
    if stats.money < 50:
        money_str += " ⚠️"
    headline = state.news_feed[-1].text if state.news_feed else ""

    table.add_row(money_str, str(stats.population), goal_str, headline)
    console.print(table)


async def run_headless(days: int, ai_enabled: bool, persistence: CityPersistence) -> None:
    store = persistence.load_store(on_sound=play_sound)
    persistence.attach(store)
    loop = GameLoop(store, advisor=CityAdvisor())

    finished = asyncio.Event()
    target_day = store.state.stats.day + days

    last_day = store.state.stats.day

    def on_change(state: CityState):
        nonlocal last_day
        if state.stats.day != last_day:
            last_day = state.stats.day
            print_status(state)
            # Claim as soon as a goal is met, so the headless city keeps getting new ones.
            if state.current_goal is not None and state.current_goal.completed:
                asyncio.get_running_loop().call_soon(store.claim_reward)
        if state.stats.day >= target_day:
            finished.set()

    store.subscribe(on_change)

    console.print(f"\n🚀 [bold]Sky Metropolis is running. {days} days.[/bold]\n")
    await loop.start()
    store.start_game(ai_enabled)
    try:
        await finished.wait()
    finally:
        await loop.stop()
    console.print(f"🏁 [bold]Done.[/bold] Saved to {persistence.path}")


def serve(host: str, port: int, persistence: CityPersistence) -> None:
    import uvicorn
    from metropolis.dashboard.server import create_app

    store = persistence.load_store(on_sound=play_sound)
    persistence.attach(store)
    movement = CityMovement()
    game_loop = GameLoop(store, advisor=CityAdvisor(), movement=movement)
    app = create_app(store, game_loop=game_loop, movement=movement, persistence=persistence)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sky Metropolis city builder")
    parser.add_argument("--days", type=int, default=30, help="days to simulate headless")
    parser.add_argument("--sandbox", action="store_true", help="play without the AI advisor")
    parser.add_argument("--serve", action="store_true", help="run the dashboard backend")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--fresh", action="store_true", help="delete the save before starting")
    args = parser.parse_args()

    persistence = CityPersistence()
    if args.fresh:
        persistence.clear()

    if args.serve:
        serve(args.host, args.port, persistence)
    else:
        asyncio.run(run_headless(args.days, not args.sandbox, persistence))
