from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from models import Category, Expense, Income, SavingsContribution, SavingsGoal, User
from periods import Period
from schemas import ContributionIn, SavingsGoalIn
from services import SavingsService


def _setup(session: Session) -> tuple[User, SavingsGoal]:
    user = User(name="Alice", email="alice@example.com")
    session.add(user)
    session.flush()
    goal = SavingsGoal(
        user_id=user.id,
        goal_name="Emergency fund",
        target_amount_cents=10000,
        current_amount_cents=4000,
    )
    session.add(goal)
    session.commit()
    return user, goal


def test_contribution_is_clamped_to_remaining_amount():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, goal = _setup(session)
        result = SavingsService(session, user.id).add_contribution(
            goal.id, ContributionIn(amount=80, date=date(2025, 6, 1))
        )

        assert result["capped"] is True
        assert result["remaining_before"] == 6000
        assert result["contribution"].amount_cents == 6000
        assert result["goal"].current_amount_cents == 10000


def test_contribution_to_fully_funded_goal_is_rejected():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, goal = _setup(session)
        service = SavingsService(session, user.id)
        service.add_contribution(goal.id, ContributionIn(amount=60))

        with pytest.raises(ValueError, match="fully funded"):
            service.add_contribution(goal.id, ContributionIn(amount=1))
        count = session.scalar(select(func.count(SavingsContribution.id)))
        assert count == 1


def test_uncapped_contribution_and_delete_restores_total():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, goal = _setup(session)
        service = SavingsService(session, user.id)
        result = service.add_contribution(goal.id, ContributionIn(amount=25.5, note="bonus"))
        assert result["capped"] is False
        assert result["goal"].current_amount_cents == 6550

        goal_after = service.delete_contribution(result["contribution"].id)
        assert goal_after.current_amount_cents == 4000
        assert service.list_contributions(goal.id) == []


def test_delete_contribution_floors_at_zero():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, goal = _setup(session)
        service = SavingsService(session, user.id)
        result = service.add_contribution(goal.id, ContributionIn(amount=50))
        # Target lowered below the running total clamps it.
        service.update_goal(
            goal.id, SavingsGoalIn(goal_name="Emergency fund", target_amount=30)
        )
        goal_after = service.delete_contribution(result["contribution"].id)
        assert goal_after.current_amount_cents == 0


def test_contribution_rejects_unknown_fields():
    with pytest.raises(ValueError):
        ContributionIn(amount=10, goal_id=3)


def test_goals_of_other_users_are_not_found():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, goal = _setup(session)
        stranger = User(name="Eve", email="eve@example.com")
        session.add(stranger)
        session.commit()

        with pytest.raises(ValueError, match="not found"):
            SavingsService(session, stranger.id).add_contribution(
                goal.id, ContributionIn(amount=10)
            )


def test_savings_rate_per_income_month():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = User(name="Alice", email="alice@example.com")
        category = Category(name="Food")
        session.add_all([user, category])
        session.flush()
        session.add_all(
            [
                Income(user_id=user.id, date=date(2025, 5, 25), amount_cents=3000000),
                Income(user_id=user.id, date=date(2025, 6, 25), amount_cents=2000000),
                Expense(
                    date=date(2025, 5, 3),
                    amount_cents=1500000,
                    category_id=category.id,
                    paid_by_user_id=user.id,
                    split_type="50/50",
                ),
            ]
        )
        session.commit()

        rates = SavingsService(session, user.id).savings_rate(
            Period("custom", date(2025, 5, 1), date(2025, 6, 30))
        )

        assert rates == [
            {"month": "2025-05", "income": 30000.0, "expenses": 15000.0, "savings_rate": 50.0},
            {"month": "2025-06", "income": 20000.0, "expenses": 0.0, "savings_rate": 100.0},
        ]
