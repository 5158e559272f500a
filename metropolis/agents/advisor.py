"""
CityAdvisor — the mayor's AI advisor.

Two jobs:
  GOALS: look at the city and suggest one achievable objective with a reward.
  NEWS:  the occasional witty headline for the ticker.

The advisor is allowed to be wrong, slow, or offline. Whatever comes back is
parsed and validated against a strict schema; anything that doesn't fit is
logged and dropped, and the game simply carries on without a goal or headline.
The player never sees an advisor error.

Model routing (METROPOLIS_ADVISOR_MODEL):
- gpt4o  → OpenAI GPT-4o (default)
- claude → Anthropic Claude Sonnet
- llama  → Llama 3 via Groq (OpenAI-compatible), falls back to GPT-4o without a key
"""

import json
import os
from functools import lru_cache
from typing import Callable, Optional, Type, TypeVar

from anthropic import Anthropic
from dotenv import load_dotenv
from loguru import logger
from openai import OpenAI
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from metropolis.city.news import NewsItem, NewsType, make_news_id
from metropolis.economy.goals import Goal, GoalResponse
from metropolis.economy.simulation import CityStats
from metropolis.errors import AIServiceError, ValidationError
from metropolis.world.buildings import cost_table
from metropolis.world.grid import Grid

load_dotenv()

ADVISOR_MODEL = os.getenv("METROPOLIS_ADVISOR_MODEL", "gpt4o")
OPENAI_MODEL = os.getenv("METROPOLIS_OPENAI_MODEL", "gpt-4o")
CLAUDE_MODEL = os.getenv("METROPOLIS_CLAUDE_MODEL", "claude-sonnet-4-20250514")
GROQ_API_KEY = os.getenv("GROQ_API_KEY", "")
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")

GOAL_TEMPERATURE = 0.7
NEWS_TEMPERATURE = 1.0

T = TypeVar("T", bound=BaseModel)

# (system, prompt, temperature) -> raw reply text
Completion = Callable[[str, str, float], str]


class NewsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str = Field(min_length=5, max_length=100, strict=True)
    type: NewsType


# ─── LLM clients ─────────────────────────────────────────────────────────────
# Built on first use so importing this module never needs an API key.

@lru_cache(maxsize=None)
def _openai_client() -> OpenAI:
    return OpenAI(api_key=os.getenv("OPENAI_API_KEY"))


@lru_cache(maxsize=None)
def _anthropic_client() -> Anthropic:
    return Anthropic(api_key=os.getenv("ANTHROPIC_API_KEY"))


@lru_cache(maxsize=None)
def _groq_client() -> OpenAI:
    return OpenAI(api_key=GROQ_API_KEY or "no-key", base_url="https://api.groq.com/openai/v1")


# ─── Prompts ─────────────────────────────────────────────────────────────────

ADVISOR_SYSTEM = """You are the AI advisor to the mayor of Sky Metropolis, a small city on a 15x15 grid.
You are practical and a little playful. You always answer with a single JSON object and nothing else."""

GOAL_INSTRUCTIONS = """Generate a strategic, achievable goal for the city mayor.
Make the target slightly higher than the current values so it is a challenge.
Respond with a JSON object only:
{
    "description": "5-150 characters",
    "targetType": "population | money | building_count",
    "targetValue": positive integer,
    "buildingType": "Residential | Commercial | Industrial | Park | Road (only for building_count)",
    "reward": positive integer
}"""

NEWS_INSTRUCTIONS = """Generate a short, witty news headline about the city.
Respond with a JSON object only:
{"text": "5-100 characters", "type": "positive | negative | neutral"}"""


# ─── The Advisor ─────────────────────────────────────────────────────────────

class CityAdvisor:

    def __init__(self, model_type: str = ADVISOR_MODEL, complete: Optional[Completion] = None):
        self.model_type = model_type
        self._complete = complete

    def generate_goal(self, stats: CityStats, grid: Grid) -> Optional[Goal]:
        """Ask for a goal. Returns None on any failure."""
        try:
            text = self._ask(self._goal_prompt(stats, grid), GOAL_TEMPERATURE)
            response = self._validate(GoalResponse, text, "goal")
        except ValidationError as e:
            logger.warning(f"⚠️ Advisor goal rejected: {e.message} {e.context}")
            return None
        except AIServiceError as e:
            logger.error(f"❌ Advisor goal request failed: {e.message}")
            return None
        logger.info(f"🧠 Advisor suggests: {response.description}")
        return Goal.from_response(response)

    def generate_news(self, stats: CityStats) -> Optional[NewsItem]:
        """Ask for a headline. Returns None on any failure."""
        prompt = (
            f"City Stats - Pop: {stats.population}, Money: {stats.money}, Day: {stats.day}.\n"
            f"{NEWS_INSTRUCTIONS}"
        )
        try:
            text = self._ask(prompt, NEWS_TEMPERATURE)
            response = self._validate(NewsResponse, text, "news")
        except ValidationError as e:
            logger.warning(f"⚠️ Advisor headline rejected: {e.message} {e.context}")
            return None
        except AIServiceError as e:
            logger.error(f"❌ Advisor news request failed: {e.message}")
            return None
        return NewsItem(id=make_news_id(), text=response.text, type=response.type)

    # ─── Helpers ──────────────────────────────────────────────────────────────

    def _goal_prompt(self, stats: CityStats, grid: Grid) -> str:
        return f"""
Context:
- Day: {stats.day}
- Treasury: ${stats.money}
- Population: {stats.population}
- Building Counts: {json.dumps(grid.counts())}
- Building Costs: {json.dumps(cost_table())}

{GOAL_INSTRUCTIONS}
""".strip()

    def _ask(self, prompt: str, temperature: float) -> str:
        try:
            if self._complete is not None:
                text = self._complete(ADVISOR_SYSTEM, prompt, temperature)
            elif self.model_type == "claude":
                text = self._ask_claude(prompt, temperature)
            elif self.model_type == "llama":
                text = self._ask_llama(prompt, temperature)
            else:
                text = self._ask_gpt4o(prompt, temperature)
        except Exception as e:
            raise AIServiceError(f"{type(e).__name__}: {e}", {"model": self.model_type}) from e

        if not text or not text.strip():
            raise AIServiceError("advisor returned an empty reply", {"model": self.model_type})
        return text

    def _ask_gpt4o(self, prompt: str, temperature: float) -> str:
        response = _openai_client().chat.completions.create(
            model=OPENAI_MODEL,
            max_tokens=300,
            temperature=temperature,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": ADVISOR_SYSTEM},
                {"role": "user", "content": prompt},
            ],
        )
        return response.choices[0].message.content

    def _ask_claude(self, prompt: str, temperature: float) -> str:
        response = _anthropic_client().messages.create(
            model=CLAUDE_MODEL,
            max_tokens=300,
            temperature=temperature,
            system=ADVISOR_SYSTEM,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.content[0].text

    def _ask_llama(self, prompt: str, temperature: float) -> str:
        if not GROQ_API_KEY:
            logger.warning("⚡ No GROQ_API_KEY set. Falling back to GPT-4o for the advisor.")
            return self._ask_gpt4o(prompt, temperature)
        response = _groq_client().chat.completions.create(
            model=GROQ_MODEL,
            max_tokens=300,
            temperature=temperature,
            messages=[
                {"role": "system", "content": ADVISOR_SYSTEM},
                {"role": "user", "content": prompt},
            ],
        )
        return response.choices[0].message.content

    @staticmethod
    def _parse_response(text: str):
        text = text.strip()
        if text.startswith("```"):
            text = text.split("```")[1]
            if text.startswith("json"):
                text = text[4:]
        try:
            return json.loads(text.strip())
        except json.JSONDecodeError as e:
            raise ValidationError("advisor reply is not valid JSON", {"error": str(e)}) from e

    def _validate(self, model: Type[T], text: str, what: str) -> T:
        data = self._parse_response(text)
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"advisor returned an invalid {what} structure",
                {"errors": e.errors(include_url=False)},
            ) from e
