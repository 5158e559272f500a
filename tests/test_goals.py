"""
tests/test_goals.py

Tests for the goal and news schemas the advisor has to satisfy,
and for the news ring buffer.
Run with: pytest tests/test_goals.py -v
"""

import pytest
from pydantic import ValidationError

from metropolis.agents.advisor import NewsResponse
from metropolis.city.news import NewsItem, NewsType, append_news, make_news, make_news_id
from metropolis.economy.goals import Goal, GoalResponse, GoalTarget
from metropolis.world.buildings import BuildingType


# ─── GoalResponse ────────────────────────────────────────────────────────────

def test_valid_building_count_goal():
    goal = GoalResponse.model_validate({
        "description": "Build three parks",
        "targetType": "building_count",
        "targetValue": 3,
        "buildingType": "Park",
        "reward": 250,
    })
    assert goal.target_type == GoalTarget.BUILDING_COUNT
    assert goal.building_type == BuildingType.PARK


def test_building_count_requires_building_type():
    with pytest.raises(ValidationError):
        GoalResponse.model_validate({
            "description": "Build some stuff",
            "targetType": "building_count",
            "targetValue": 3,
            "reward": 250,
        })


def test_building_count_rejects_bulldozer():
    with pytest.raises(ValidationError):
        GoalResponse.model_validate({
            "description": "Build nothing",
            "targetType": "building_count",
            "targetValue": 3,
            "buildingType": "None",
            "reward": 250,
        })


def test_building_type_dropped_for_other_targets():
    goal = GoalResponse.model_validate({
        "description": "Reach 100 residents",
        "targetType": "population",
        "targetValue": 100,
        "buildingType": "Residential",
        "reward": 300,
    })
    assert goal.building_type is None


@pytest.mark.parametrize("field,value", [
    ("description", "Tiny"),           # under 5 chars
    ("description", "x" * 151),
    ("targetValue", 0),
    ("reward", -10),
    ("targetType", "happiness"),
    ("targetValue", "100"),           # numeric string
    ("targetValue", True),
    ("reward", "500"),
    ("reward", False),
    ("targetValue", 2.5),
])
def test_goal_rejects_out_of_contract_values(field, value):
    data = {
        "description": "Earn more money",
        "targetType": "money",
        "targetValue": 2000,
        "reward": 500,
    }
    data[field] = value
    with pytest.raises(ValidationError):
        GoalResponse.model_validate(data)


def test_goal_snapshot_uses_camel_case():
    goal = Goal.model_validate({
        "description": "Earn more money",
        "targetType": "money",
        "targetValue": 2000,
        "reward": 500,
    })
    dumped = goal.model_dump(mode="json", by_alias=True)
    assert dumped["targetType"] == "money"
    assert dumped["targetValue"] == 2000
    assert dumped["completed"] is False
    assert Goal.model_validate(dumped) == goal


def test_mark_completed_returns_new_goal():
    goal = Goal.model_validate({
        "description": "Earn more money",
        "targetType": "money",
        "targetValue": 2000,
        "reward": 500,
    })
    done = goal.mark_completed()
    assert done.completed is True
    assert goal.completed is False


# ─── News ────────────────────────────────────────────────────────────────────

def test_news_response_limits():
    assert NewsResponse.model_validate({"text": "Mayor cuts ribbon", "type": "positive"})
    with pytest.raises(ValidationError):
        NewsResponse.model_validate({"text": "Hi", "type": "positive"})
    with pytest.raises(ValidationError):
        NewsResponse.model_validate({"text": "Something happened", "type": "spicy"})
    with pytest.raises(ValidationError):
        NewsResponse.model_validate({"text": 1234567, "type": "neutral"})


def test_news_ids_are_distinct():
    ids = {make_news_id() for _ in range(50)}
    assert len(ids) == 50


def test_news_feed_keeps_thirteen():
    feed: tuple[NewsItem, ...] = ()
    for i in range(30):
        feed = append_news(feed, make_news(f"Headline number {i}", NewsType.NEUTRAL))
        assert len(feed) <= 13
    assert len(feed) == 13
    assert feed[-1].text == "Headline number 29"
    assert feed[0].text == "Headline number 17"


def test_integral_float_is_accepted():
    goal = GoalResponse.model_validate({
        "description": "Earn more money",
        "targetType": "money",
        "targetValue": 2000.0,
        "reward": 500,
    })
    assert goal.target_value == 2000
