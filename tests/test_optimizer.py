from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Budget, Category, Expense, SavingsGoal, User
from optimizer import (
    BudgetOptimizer,
    analyze_budget_variances,
    calculate_trend,
    classify_trend,
    detect_seasonal_trends,
    generate_recommendations,
    goal_months_remaining,
    identify_patterns,
)
from scope import load_scope_context


def test_calculate_trend_is_least_squares_slope():
    assert calculate_trend([100, 200, 300]) == pytest.approx(100)
    assert calculate_trend([300, 200, 100]) == pytest.approx(-100)
    assert calculate_trend([50]) == 0.0
    assert calculate_trend([]) == 0.0


def test_classify_trend_thresholds():
    assert classify_trend(0.11) == "increasing"
    assert classify_trend(0.1) == "stable"
    assert classify_trend(-0.1) == "stable"
    assert classify_trend(-0.5) == "decreasing"


def test_identify_patterns_orders_months_and_skips_bad_amounts():
    rows = [
        {"category": "Food", "month": "2025-03", "amount": 300.0},
        {"category": "Food", "month": "2025-01", "amount": 100.0},
        {"category": "Food", "month": "2025-02", "amount": 200.0},
        {"category": "Fun", "month": "2025-01", "amount": float("nan")},
        {"category": "Fun", "month": "2025-02", "amount": None},
    ]
    patterns = identify_patterns(rows)

    assert set(patterns) == {"Food"}
    food = patterns["Food"]
    assert [d["month"] for d in food["data"]] == ["2025-01", "2025-02", "2025-03"]
    assert food["trend"] == "increasing"
    assert food["trend_strength"] == pytest.approx(100)
    assert food["enhanced_trend"]["data_points"] == 3


def test_detect_seasonal_trends_relative_to_overall_mean():
    rows = [
        {"category": "Food", "month": "2024-01", "amount": 100.0},
        {"category": "Food", "month": "2025-02", "amount": 300.0},
    ]
    assert detect_seasonal_trends(rows) == {1: pytest.approx(0.5), 2: pytest.approx(1.5)}
    assert detect_seasonal_trends([]) == {}


def test_budget_variances_cover_zero_budget():
    expenses = [
        {"category": "Food", "month": "2025-06", "amount": 150.0},
        {"category": "Fun", "month": "2025-06", "amount": 20.0},
    ]
    budgets = [
        {"category": "Food", "month": "2025-06", "budget_amount": 100.0},
        {"category": "Fun", "month": "2025-06", "budget_amount": 0.0},
        {"category": "Travel", "month": "2025-06", "budget_amount": 0.0},
    ]
    variances = {v["name"]: v for v in analyze_budget_variances(expenses, budgets)}

    assert variances["Food"]["variance"] == pytest.approx(0.5)
    assert variances["Food"]["suggested_reduction"] == pytest.approx(50)
    assert variances["Food"]["overage_percentage"] == pytest.approx(50)
    assert variances["Fun"]["variance"] == 1.0
    assert variances["Travel"]["variance"] == 0.0


def test_recommendations_in_priority_order():
    variances = [
        {
            "name": "Food",
            "month": "2025-06",
            "budget_amount": 100.0,
            "actual_amount": 150.0,
            "variance": 0.5,
            "overage_percentage": 50.0,
            "suggested_reduction": 50.0,
            "unused_amount": 0.0,
        },
        {
            "name": "Food",
            "month": "2025-05",
            "budget_amount": 100.0,
            "actual_amount": 140.0,
            "variance": 0.4,
            "overage_percentage": 40.0,
            "suggested_reduction": 40.0,
            "unused_amount": 0.0,
        },
        {
            "name": "Fun",
            "month": "2025-06",
            "budget_amount": 200.0,
            "actual_amount": 80.0,
            "variance": -0.6,
            "overage_percentage": 0.0,
            "suggested_reduction": 0.0,
            "unused_amount": 120.0,
        },
    ]
    patterns = {
        "Utilities": {"trend": "increasing", "trend_strength": 25.0},
        "Fun": {"trend": "decreasing", "trend_strength": 40.0},
    }
    goals = [
        SavingsGoal(
            id=1,
            goal_name="Vacation",
            target_amount_cents=120000,
            current_amount_cents=0,
            target_date=None,
        ),
        SavingsGoal(
            id=2,
            goal_name="Car",
            target_amount_cents=500000,
            current_amount_cents=0,
            target_date=None,
        ),
    ]

    tips = generate_recommendations(patterns, variances, goals, date(2025, 6, 15))

    assert [t["type"] for t in tips] == [
        "reduction",
        "reallocation",
        "seasonal",
        "goal_based",
    ]
    reduction, reallocation, seasonal, goal = tips
    assert reduction["category"] == "Food"
    assert reduction["impact_amount"] == 50.0
    assert reallocation["impact_amount"] == 120.0
    assert "from Fun to Food" in reallocation["description"]
    assert seasonal["category"] == "Utilities"
    assert seasonal["impact_amount"] == 50.0
    assert goal["goal_id"] == 1
    assert goal["impact_amount"] == pytest.approx(200.0)


def test_goal_months_remaining_is_at_least_one():
    today = date(2025, 6, 15)
    past = SavingsGoal(target_amount_cents=100, current_amount_cents=0, target_date=date(2025, 6, 1))
    later = SavingsGoal(target_amount_cents=100, current_amount_cents=0, target_date=date(2025, 9, 20))
    assert goal_months_remaining(past, today) == 1
    assert goal_months_remaining(later, today) == 4


def test_budget_optimizer_respects_scope():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = User(name="Alice", email="alice@example.com")
        bob = User(name="Bob", email="bob@example.com")
        session.add_all([alice, bob])
        session.flush()
        alice.partner_id, bob.partner_id = bob.id, alice.id
        food = Category(name="Food")
        session.add(food)
        session.flush()

        session.add_all(
            [
                Expense(
                    date=date(2025, 5, 10),
                    amount_cents=15000,
                    category_id=food.id,
                    paid_by_user_id=alice.id,
                    split_type="50/50",
                ),
                Expense(
                    date=date(2025, 6, 10),
                    amount_cents=90000,
                    category_id=food.id,
                    paid_by_user_id=alice.id,
                    split_type="personal",
                ),
                Budget(category_id=food.id, year=2025, month=5, amount_cents=10000),
                SavingsGoal(
                    user_id=bob.id,
                    goal_name="Bike",
                    target_amount_cents=60000,
                    current_amount_cents=0,
                ),
            ]
        )
        session.commit()

        today = date(2025, 6, 20)
        ours = BudgetOptimizer(
            session, load_scope_context(session, alice.id, "ours"), today
        ).analyze_spending_patterns()
        assert [d["month"] for d in ours["patterns"]["Food"]["data"]] == ["2025-05"]
        assert [t["type"] for t in ours["recommendations"]] == ["reduction", "goal_based"]

        mine = BudgetOptimizer(
            session, load_scope_context(session, alice.id, "mine"), today
        ).analyze_spending_patterns()
        assert len(mine["patterns"]["Food"]["data"]) == 2
        assert all(t["type"] != "goal_based" for t in mine["recommendations"])
