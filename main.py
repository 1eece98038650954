import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from sqlalchemy.orm import Session

from auth import bearer_token, issue_token, read_token
from config import get_settings
from database import SessionLocal, init_schema
from models import (
    Budget,
    BudgetOptimizationTip,
    Category,
    Expense,
    Income,
    RecurringExpense,
    SavingsContribution,
    SavingsGoal,
    User,
)
from money import cents_to_amount
from periods import Period, parse_date_range, resolve_period
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    CategoryIn,
    ContributionIn,
    ExpenseIn,
    GenerateIn,
    IncomeIn,
    PartnerLinkIn,
    RecurringExpenseIn,
    SavingsGoalIn,
    UserIn,
)
from services import (
    AnalyticsService,
    BudgetService,
    CategoryService,
    ExpenseService,
    IncomeService,
    OptimizationService,
    PartnerLinkConflict,
    RecurringExpenseService,
    SavingsService,
    SummaryService,
    UserService,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Couples Budget")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_schema()
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def current_user_id(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> int:
    token = bearer_token(authorization)
    user_id = read_token(token) if token else None
    if user_id is None or db.get(User, user_id) is None:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


def service_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, PartnerLinkConflict):
        return HTTPException(status_code=409, detail=str(exc))
    if "not found" in str(exc).lower():
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def date_range(start_date: str, end_date: str) -> Period:
    try:
        return parse_date_range(start_date, end_date)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def user_out(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "partner_id": user.partner_id,
        "color": user.color,
    }


def category_out(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "icon": category.icon,
        "color": category.color,
    }


def expense_out(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "date": expense.date.isoformat(),
        "amount": cents_to_amount(expense.amount_cents),
        "description": expense.description,
        "category_id": expense.category_id,
        "category": expense.category.name if expense.category else None,
        "paid_by_user_id": expense.paid_by_user_id,
        "paid_by": expense.paid_by.name if expense.paid_by else None,
        "split_type": expense.split_type,
        "split_ratio_user1": expense.split_ratio_user1,
        "split_ratio_user2": expense.split_ratio_user2,
        "recurring_expense_id": expense.recurring_expense_id,
    }


def recurring_out(template: RecurringExpense) -> dict[str, object]:
    return {
        "id": template.id,
        "description": template.description,
        "default_amount": cents_to_amount(template.default_amount_cents),
        "category_id": template.category_id,
        "paid_by_user_id": template.paid_by_user_id,
        "split_type": template.split_type,
        "split_ratio_user1": template.split_ratio_user1,
        "split_ratio_user2": template.split_ratio_user2,
        "is_active": template.is_active,
        "updated_at": template.updated_at.isoformat() if template.updated_at else None,
    }


def budget_out(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "category_id": budget.category_id,
        "category": budget.category.name if budget.category else None,
        "year": budget.year,
        "month": budget.month,
        "amount": cents_to_amount(budget.amount_cents),
    }


def income_out(income: Income) -> dict[str, object]:
    return {
        "id": income.id,
        "date": income.date.isoformat(),
        "amount": cents_to_amount(income.amount_cents),
        "source": income.source,
    }


def goal_out(goal: SavingsGoal) -> dict[str, object]:
    return {
        "id": goal.id,
        "goal_name": goal.goal_name,
        "target_amount": cents_to_amount(goal.target_amount_cents),
        "current_amount": cents_to_amount(goal.current_amount_cents),
        "target_date": goal.target_date.isoformat() if goal.target_date else None,
        "category": goal.category,
        "is_pinned": goal.is_pinned,
    }


def contribution_out(contribution: SavingsContribution) -> dict[str, object]:
    return {
        "id": contribution.id,
        "goal_id": contribution.goal_id,
        "user_id": contribution.user_id,
        "amount": cents_to_amount(contribution.amount_cents),
        "date": contribution.date.isoformat(),
        "note": contribution.note,
    }


def tip_out(tip: BudgetOptimizationTip) -> dict[str, object]:
    return {
        "id": tip.id,
        "scope": tip.scope,
        "tip_type": tip.tip_type,
        "category": tip.category,
        "title": tip.title,
        "description": tip.description,
        "impact_amount": cents_to_amount(tip.impact_amount_cents)
        if tip.impact_amount_cents is not None
        else None,
        "confidence_score": tip.confidence_score,
        "created_at": tip.created_at.isoformat(),
        "expires_at": tip.expires_at.isoformat() if tip.expires_at else None,
    }


@app.post("/api/users", status_code=201)
def create_user(payload: UserIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).create(payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    logger.info(f"user_created: user_id={user.id}")
    return {"user": user_out(user), "token": issue_token(user.id)}


@app.get("/api/users/me")
def read_me(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return user_out(UserService(db).get(user_id))


@app.post("/api/couple/link")
def link_partner(
    payload: PartnerLinkIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        user, partner = UserService(db).link_partner(user_id, payload.partner_email)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {"user": user_out(user), "partner": user_out(partner)}


@app.post("/api/couple/unlink")
def unlink_partner(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    try:
        UserService(db).unlink_partner(user_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {"status": "unlinked"}


@app.get("/api/couple/summary")
def couple_summary(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return UserService(db).couple_summary(user_id)


@app.get("/api/categories")
def list_categories(db: Session = Depends(get_db), _: int = Depends(current_user_id)):
    return [category_out(c) for c in CategoryService(db).list_all()]


@app.post("/api/categories", status_code=201)
def create_category(
    payload: CategoryIn,
    db: Session = Depends(get_db),
    _: int = Depends(current_user_id),
):
    try:
        category = CategoryService(db).create(payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return category_out(category)


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryIn,
    db: Session = Depends(get_db),
    _: int = Depends(current_user_id),
):
    try:
        category = CategoryService(db).update(category_id, payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return category_out(category)


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    _: int = Depends(current_user_id),
):
    try:
        CategoryService(db).delete(category_id)
    except ValueError as exc:
        raise service_error(exc) from exc


@app.get("/api/expenses")
def list_expenses(
    scope: Optional[str] = None,
    period: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        date_filter = resolve_period(period, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    service = ExpenseService(db, user_id)
    context = service.context(scope)
    return {
        "scope": context.scope,
        "items": [expense_out(e) for e in service.list(context, date_filter)],
    }


@app.get("/api/expenses/recent")
def recent_expenses(
    scope: Optional[str] = None,
    limit: int = Query(default=5, ge=1, le=50),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = ExpenseService(db, user_id)
    context = service.context(scope)
    return [expense_out(e) for e in service.recent(context, limit)]


@app.get("/api/expenses/{expense_id}")
def read_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        expense = ExpenseService(db, user_id).get(expense_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return expense_out(expense)


@app.post("/api/expenses", status_code=201)
def create_expense(
    payload: ExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        expense = ExpenseService(db, user_id).create(payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return expense_out(expense)


@app.put("/api/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        expense = ExpenseService(db, user_id).update(expense_id, payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return expense_out(expense)


@app.delete("/api/expenses/{expense_id}", status_code=204)
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        ExpenseService(db, user_id).delete(expense_id)
    except ValueError as exc:
        raise service_error(exc) from exc


@app.get("/api/recurring-expenses")
def list_recurring(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return [recurring_out(t) for t in RecurringExpenseService(db, user_id).list_active()]


@app.post("/api/recurring-expenses", status_code=201)
def create_recurring(
    payload: RecurringExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        template = RecurringExpenseService(db, user_id).create(payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return recurring_out(template)


@app.post("/api/recurring-expenses/generate")
def generate_recurring(
    payload: GenerateIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        result = RecurringExpenseService(db, user_id).generate(payload.year, payload.month)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {
        "year": result.year,
        "month": result.month,
        "generated_count": result.generated_count,
        "inserted": result.inserted,
        "regenerated": result.regenerated,
        "unchanged": result.unchanged,
        "generated_amount": cents_to_amount(result.generated_amount_cents),
    }


@app.get("/api/recurring-expenses/{template_id}")
def read_recurring(
    template_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        template = RecurringExpenseService(db, user_id).get(template_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return recurring_out(template)


@app.put("/api/recurring-expenses/{template_id}")
def update_recurring(
    template_id: int,
    payload: RecurringExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        template = RecurringExpenseService(db, user_id).update(template_id, payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return recurring_out(template)


@app.delete("/api/recurring-expenses/{template_id}", status_code=204)
def deactivate_recurring(
    template_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        RecurringExpenseService(db, user_id).deactivate(template_id)
    except ValueError as exc:
        raise service_error(exc) from exc


@app.get("/api/budgets")
def list_budgets(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=1970, le=3000),
    db: Session = Depends(get_db),
    _: int = Depends(current_user_id),
):
    return [budget_out(b) for b in BudgetService(db).list_for_month(year, month)]


@app.post("/api/budgets")
def upsert_budget(
    payload: BudgetIn,
    db: Session = Depends(get_db),
    _: int = Depends(current_user_id),
):
    try:
        budget = BudgetService(db).upsert(payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return budget_out(budget)


@app.get("/api/incomes")
def list_incomes(
    period: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        date_filter = resolve_period(period, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [income_out(i) for i in IncomeService(db, user_id).list(date_filter)]


@app.post("/api/incomes", status_code=201)
def create_income(
    payload: IncomeIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return income_out(IncomeService(db, user_id).create(payload))


@app.delete("/api/incomes/{income_id}", status_code=204)
def delete_income(
    income_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        IncomeService(db, user_id).delete(income_id)
    except ValueError as exc:
        raise service_error(exc) from exc


@app.get("/api/savings/goals")
def list_goals(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return [goal_out(g) for g in SavingsService(db, user_id).list_goals()]


@app.post("/api/savings/goals", status_code=201)
def create_goal(
    payload: SavingsGoalIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return goal_out(SavingsService(db, user_id).create_goal(payload))


@app.put("/api/savings/goals/{goal_id}")
def update_goal(
    goal_id: int,
    payload: SavingsGoalIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        goal = SavingsService(db, user_id).update_goal(goal_id, payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return goal_out(goal)


@app.delete("/api/savings/goals/{goal_id}", status_code=204)
def delete_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        SavingsService(db, user_id).delete_goal(goal_id)
    except ValueError as exc:
        raise service_error(exc) from exc


@app.get("/api/savings/goals/{goal_id}/contributions")
def list_contributions(
    goal_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        contributions = SavingsService(db, user_id).list_contributions(goal_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return [contribution_out(c) for c in contributions]


@app.post("/api/savings/goals/{goal_id}/contributions", status_code=201)
def add_contribution(
    goal_id: int,
    payload: ContributionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        result = SavingsService(db, user_id).add_contribution(goal_id, payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {
        "goal": goal_out(result["goal"]),
        "contribution": contribution_out(result["contribution"]),
        "capped": result["capped"],
        "remaining_before": cents_to_amount(result["remaining_before"]),
    }


@app.delete("/api/savings/contributions/{contribution_id}")
def delete_contribution(
    contribution_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        goal = SavingsService(db, user_id).delete_contribution(contribution_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {"goal": goal_out(goal)}


@app.get("/api/savings/rate/{start_date}/{end_date}")
def savings_rate(
    start_date: str,
    end_date: str,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = date_range(start_date, end_date)
    return SavingsService(db, user_id).savings_rate(period)


@app.get("/api/summary/monthly/{year}/{month}")
def monthly_summary(
    year: int,
    month: int,
    scope: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        summary = SummaryService(db, user_id).monthly_summary(year, month, scope)
    except ValueError as exc:
        raise service_error(exc) from exc
    summary["expenses"] = [expense_out(e) for e in summary["expenses"]]
    return summary


@app.get("/api/summary/settle")
def settle(
    month: int = Query(...),
    year: int = Query(...),
    scope: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return SummaryService(db, user_id).settle(year, month, scope)
    except ValueError as exc:
        raise service_error(exc) from exc


@app.get("/api/analytics/trends/{start_date}/{end_date}")
def analytics_trends(
    start_date: str,
    end_date: str,
    scope: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = date_range(start_date, end_date)
    context = ExpenseService(db, user_id).context(scope)
    return AnalyticsService(db, context).trends(period)


@app.get("/api/analytics/category-trends/{start_date}/{end_date}")
def analytics_category_trends(
    start_date: str,
    end_date: str,
    scope: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = date_range(start_date, end_date)
    context = ExpenseService(db, user_id).context(scope)
    return AnalyticsService(db, context).category_trends(period)


@app.get("/api/analytics/income-expenses/{start_date}/{end_date}")
def analytics_income_expenses(
    start_date: str,
    end_date: str,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = date_range(start_date, end_date)
    context = ExpenseService(db, user_id).context()
    return AnalyticsService(db, context).income_expenses(period)


@app.get("/api/analytics/savings-analysis/{start_date}/{end_date}")
def analytics_savings_analysis(
    start_date: str,
    end_date: str,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = date_range(start_date, end_date)
    context = ExpenseService(db, user_id).context()
    return AnalyticsService(db, context).savings_analysis(period)


@app.get("/api/optimization/analyze")
def optimization_analyze(
    scope: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return OptimizationService(db, user_id).analyze(scope)


@app.get("/api/optimization/tips")
def optimization_tips(
    scope: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return [tip_out(t) for t in OptimizationService(db, user_id).active_tips(scope)]


@app.post("/api/optimization/tips/{tip_id}/dismiss")
def dismiss_tip(
    tip_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        OptimizationService(db, user_id).dismiss(tip_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {"status": "dismissed"}
