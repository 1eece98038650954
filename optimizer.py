"""Spending analysis behind the budget optimization tips.

The pure functions below work on plain rows in currency units:

* expense history: ``{"category": str, "month": "YYYY-MM", "amount": float}``
* budget history: ``{"category": str, "month": "YYYY-MM", "budget_amount": float}``

``BudgetOptimizer`` loads those rows for a scope and runs the analysis.
"""

from __future__ import annotations

import logging
import math
from datetime import date
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from models import Budget, Category, Expense, SavingsGoal, Scope
from money import cents_to_amount, format_currency
from periods import add_months, local_today, months_between
from scope import ScopeContext, expense_scope_filter

logger = logging.getLogger(__name__)

INCREASING_SLOPE = 0.1
DECREASING_SLOPE = -0.1
OVERSPENDING_VARIANCE = 0.2
UNDERUTILIZED_VARIANCE = -0.3
SEASONAL_TREND_STRENGTH = 0.3
DEFAULT_GOAL_HORIZON_MONTHS = 6
HISTORY_MONTHS = 12

REDUCTION_CONFIDENCE = 0.8
REALLOCATION_CONFIDENCE = 0.7
SEASONAL_CONFIDENCE = 0.6
GOAL_CONFIDENCE = 0.9


def _finite_positive(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def calculate_trend(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    xs = range(n)
    sum_x = sum(xs)
    sum_y = sum(values)
    sum_xy = sum(x * y for x, y in zip(xs, values))
    sum_xx = sum(x * x for x in xs)
    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def classify_trend(slope: float) -> str:
    if slope > INCREASING_SLOPE:
        return "increasing"
    if slope < DECREASING_SLOPE:
        return "decreasing"
    return "stable"


def enhanced_trend_strength(amounts: Sequence[float], slope: float) -> dict[str, object]:
    if len(amounts) < 2:
        return {
            "category": "insufficient_data",
            "normalized_strength": 0,
            "percentage_change": 0,
            "monthly_change": 0,
            "volatility": 0,
            "confidence": 0,
            "description": "Not enough data to calculate trend",
        }

    average = sum(amounts) / len(amounts)
    first, last = amounts[0], amounts[-1]
    percentage_change = (last - first) / first * 100 if first > 0 else 0.0
    monthly_change = abs(slope)
    volatility = math.sqrt(sum((a - average) ** 2 for a in amounts) / len(amounts))
    normalized = monthly_change / average * 100 if average > 0 else 0.0

    consistency = min(len(amounts) / 6, 1)
    strength = min(normalized / 10, 1)
    steadiness = max(0.0, 1 - volatility / average) if average > 0 else 0.0
    confidence = (consistency + strength + steadiness) / 3

    if normalized < 2:
        category, description = "minimal", "Very small change, spending is relatively stable"
    elif normalized < 5:
        category, description = "weak", "Small change, minor trend detected"
    elif normalized < 15:
        category, description = "moderate", "Noticeable change, clear trend present"
    elif normalized < 30:
        category, description = "strong", "Significant change, strong trend detected"
    else:
        category, description = (
            "very_strong",
            "Major change, very strong trend - requires attention",
        )

    return {
        "category": category,
        "normalized_strength": round(normalized, 1),
        "percentage_change": round(percentage_change, 1),
        "monthly_change": round(monthly_change, 2),
        "volatility": round(volatility, 2),
        "confidence": round(confidence * 100),
        "description": description,
        "data_points": len(amounts),
        "average": round(average, 2),
    }


def identify_patterns(expenses: Iterable[dict]) -> dict[str, dict[str, object]]:
    by_category: dict[str, list[dict[str, object]]] = {}
    for row in expenses:
        amount = _finite_positive(row.get("amount"))
        if amount is None:
            continue
        by_category.setdefault(row["category"], []).append(
            {"month": row["month"], "amount": amount}
        )

    patterns: dict[str, dict[str, object]] = {}
    for category, data in by_category.items():
        data.sort(key=lambda item: item["month"])
        amounts = [item["amount"] for item in data]
        slope = calculate_trend(amounts)
        patterns[category] = {
            "data": data,
            "trend": classify_trend(slope),
            "trend_strength": abs(slope),
            "slope": slope,
            "enhanced_trend": enhanced_trend_strength(amounts, slope),
        }
    return patterns


def detect_seasonal_trends(expenses: Iterable[dict]) -> dict[int, float]:
    """Mean spend per calendar month divided by the overall mean."""
    by_month: dict[int, list[float]] = {}
    for row in expenses:
        amount = _finite_positive(row.get("amount"))
        if amount is None:
            continue
        month = int(str(row["month"]).split("-")[1])
        by_month.setdefault(month, []).append(amount)

    everything = [a for amounts in by_month.values() for a in amounts]
    if not everything:
        return {}
    overall = sum(everything) / len(everything)
    return {
        month: (sum(amounts) / len(amounts)) / overall
        for month, amounts in sorted(by_month.items())
    }


def analyze_budget_variances(
    expenses: Iterable[dict], budgets: Iterable[dict]
) -> list[dict[str, object]]:
    actual_by_key: dict[tuple[str, str], float] = {}
    for row in expenses:
        amount = _finite_positive(row.get("amount"))
        if amount is None:
            continue
        key = (row["category"], row["month"])
        actual_by_key[key] = actual_by_key.get(key, 0.0) + amount

    variances: list[dict[str, object]] = []
    for row in budgets:
        raw_budget = row.get("budget_amount")
        budget = _finite_positive(raw_budget) or 0.0
        actual = actual_by_key.get((row["category"], row["month"]), 0.0)
        if budget > 0:
            variance = (actual - budget) / budget
        elif actual > 0:
            variance = 1.0
        else:
            variance = 0.0
        variances.append(
            {
                "name": row["category"],
                "month": row["month"],
                "budget_amount": budget,
                "actual_amount": actual,
                "variance": variance,
                "overage_percentage": max(0.0, variance * 100),
                "suggested_reduction": max(0.0, actual - budget),
                "unused_amount": max(0.0, budget - actual),
            }
        )
    return variances


def goal_months_remaining(goal: SavingsGoal, today: date) -> int:
    if goal.target_date is None:
        return DEFAULT_GOAL_HORIZON_MONTHS
    months = months_between(today, goal.target_date)
    if goal.target_date.day >= today.day:
        months += 1
    return max(months, 1)


def goal_shortfall(goal: SavingsGoal, today: date) -> tuple[float, int]:
    """Monthly amount still needed to reach ``goal`` on time, and the months left."""
    target = cents_to_amount(goal.target_amount_cents or 0)
    current = cents_to_amount(goal.current_amount_cents or 0)
    months = goal_months_remaining(goal, today)
    remaining = target - current
    if remaining <= 0:
        return 0.0, months
    return remaining / months, months


def generate_recommendations(
    patterns: dict[str, dict[str, object]],
    budget_variances: Sequence[dict[str, object]],
    savings_goals: Sequence[SavingsGoal],
    today: Optional[date] = None,
) -> list[dict[str, object]]:
    today = today or local_today()
    recommendations: list[dict[str, object]] = []

    overspending: list[dict[str, object]] = []
    seen: set[str] = set()
    for variance in budget_variances:
        if variance["variance"] > OVERSPENDING_VARIANCE and variance["name"] not in seen:
            seen.add(variance["name"])
            overspending.append(variance)

    for item in overspending:
        reduction = round(item["suggested_reduction"], 2)
        recommendations.append(
            {
                "type": "reduction",
                "category": item["name"],
                "title": f"Reduce {item['name']} spending",
                "description": (
                    f"You're spending {item['overage_percentage']:.0f}% over budget "
                    f"in {item['name']}. Consider reducing by {format_currency(reduction)}."
                ),
                "impact_amount": reduction,
                "confidence_score": REDUCTION_CONFIDENCE,
            }
        )

    underutilized = [
        v for v in budget_variances if v["variance"] < UNDERUTILIZED_VARIANCE
    ]
    if underutilized and overspending:
        source = min(underutilized, key=lambda v: v["variance"])
        target = overspending[0]
        unused = round(source["unused_amount"], 2)
        recommendations.append(
            {
                "type": "reallocation",
                "category": target["name"],
                "title": "Reallocate unused budget",
                "description": (
                    f"Move {format_currency(unused)} from {source['name']} "
                    f"to {target['name']}"
                ),
                "impact_amount": unused,
                "confidence_score": REALLOCATION_CONFIDENCE,
            }
        )

    for category, pattern in patterns.items():
        if pattern["trend"] != "increasing":
            continue
        if pattern["trend_strength"] <= SEASONAL_TREND_STRENGTH:
            continue
        monthly_change = round(pattern["trend_strength"], 2)
        recommendations.append(
            {
                "type": "seasonal",
                "category": category,
                "title": f"Prepare for {category} seasonal increase",
                "description": (
                    f"{category} spending has been rising by about "
                    f"{format_currency(monthly_change)} per month. Consider planning "
                    f"for higher expenses in this category."
                ),
                "impact_amount": round(monthly_change * 2, 2),
                "confidence_score": SEASONAL_CONFIDENCE,
            }
        )

    for goal in savings_goals:
        monthly, months = goal_shortfall(goal, today)
        if monthly <= 0:
            continue
        months_label = "month" if months == 1 else "months"
        recommendations.append(
            {
                "type": "goal_based",
                "category": None,
                "goal_id": goal.id,
                "title": f"Keep {goal.goal_name} on track",
                "description": (
                    f"Set aside around {format_currency(monthly)} each month for "
                    f"{months} {months_label} to reach {goal.goal_name}."
                ),
                "impact_amount": round(monthly, 2),
                "confidence_score": GOAL_CONFIDENCE,
            }
        )
        break

    return recommendations


def analyze(
    expense_history: Sequence[dict],
    budget_history: Sequence[dict],
    savings_goals: Sequence[SavingsGoal],
    today: Optional[date] = None,
) -> dict[str, object]:
    patterns = identify_patterns(expense_history)
    seasonal_trends = detect_seasonal_trends(expense_history)
    budget_variances = analyze_budget_variances(expense_history, budget_history)
    return {
        "patterns": patterns,
        "seasonal_trends": seasonal_trends,
        "budget_variances": budget_variances,
        "recommendations": generate_recommendations(
            patterns, budget_variances, savings_goals, today
        ),
    }


class BudgetOptimizer:
    def __init__(
        self, session: Session, context: ScopeContext, today: Optional[date] = None
    ) -> None:
        self.session = session
        self.context = context
        self.today = today or local_today()

    def _history_start(self, months: int) -> date:
        return add_months(self.today.replace(day=1), -(months - 1))

    def expense_history(self, months: int = HISTORY_MONTHS) -> list[dict[str, object]]:
        month_key = func.strftime("%Y-%m", Expense.date).label("month")
        stmt = (
            select(
                Category.name.label("category"),
                month_key,
                func.sum(Expense.amount_cents).label("amount_cents"),
            )
            .join(Category, Expense.category_id == Category.id)
            .where(
                Expense.date >= self._history_start(months),
                Expense.date <= self.today,
                *expense_scope_filter(self.context),
            )
            .group_by(Category.name, month_key)
            .order_by(month_key.desc())
        )
        return [
            {
                "category": row.category,
                "month": row.month,
                "amount": cents_to_amount(int(row.amount_cents or 0)),
            }
            for row in self.session.execute(stmt)
        ]

    def budget_history(self, months: int = HISTORY_MONTHS) -> list[dict[str, object]]:
        start = self._history_start(months)
        first_key = start.year * 100 + start.month
        last_key = self.today.year * 100 + self.today.month
        period_key = Budget.year * 100 + Budget.month
        stmt = (
            select(
                Category.name.label("category"),
                Budget.year,
                Budget.month,
                Budget.amount_cents,
            )
            .join(Category, Budget.category_id == Category.id)
            .where(period_key.between(first_key, last_key))
            .order_by(Budget.year.desc(), Budget.month.desc())
        )
        return [
            {
                "category": row.category,
                "month": f"{row.year:04d}-{row.month:02d}",
                "budget_amount": cents_to_amount(row.amount_cents),
            }
            for row in self.session.execute(stmt)
        ]

    def savings_goals(self) -> list[SavingsGoal]:
        if self.context.scope == Scope.ours.value:
            owner_ids = self.context.couple_ids
        else:
            owner_ids = (self.context.viewer_id,)
        stmt = (
            select(SavingsGoal)
            .where(
                SavingsGoal.user_id.in_(owner_ids),
                or_(
                    SavingsGoal.target_date.is_(None),
                    SavingsGoal.target_date > self.today,
                ),
            )
            .order_by(SavingsGoal.is_pinned.desc(), SavingsGoal.created_at.desc())
        )
        return list(self.session.scalars(stmt).all())

    def analyze_spending_patterns(self) -> dict[str, object]:
        expenses = self.expense_history()
        budgets = self.budget_history()
        goals = self.savings_goals()
        logger.info(
            f"optimizer_analyze: scope={self.context.scope} "
            f"expense_rows={len(expenses)} budget_rows={len(budgets)} goals={len(goals)}"
        )
        return analyze(expenses, budgets, goals, self.today)
