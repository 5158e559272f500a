"""
metropolis/city/news.py

The city news ticker. Headlines come from two places: the store itself
("Insufficient funds for Shop.", "Goal achieved!") and the advisor's witty
generated headlines. The feed only ever holds the last few.
"""

import random
import string
import time
from enum import Enum

from pydantic import BaseModel, ConfigDict

MAX_NEWS_RETAINED = 12  # kept from the old feed; the incoming item makes 13


class NewsType(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class NewsItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    type: NewsType = NewsType.NEUTRAL


def make_news_id(rng: random.Random | None = None) -> str:
    """Millisecond timestamp plus a short random suffix, unique enough for a ticker."""
    rng = rng or random
    suffix = "".join(rng.choice(string.ascii_lowercase + string.digits) for _ in range(5))
    return f"{int(time.time() * 1000)}{suffix}"


def make_news(text: str, news_type: NewsType = NewsType.NEUTRAL) -> NewsItem:
    return NewsItem(id=make_news_id(), text=text, type=news_type)


def append_news(feed: tuple[NewsItem, ...], item: NewsItem) -> tuple[NewsItem, ...]:
    """Ring-buffer append: keep the newest MAX_NEWS_RETAINED, then add the new one."""
    return tuple(feed[-MAX_NEWS_RETAINED:]) + (item,)
