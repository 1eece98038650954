from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.orm import Session, joinedload

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
from money import amount_to_cents, cents_to_amount, format_fixed, parse_amount
from optimizer import BudgetOptimizer
from periods import Period, local_today, month_end, month_start
from recurrence import GenerationResult, RecurringGenerator
from schemas import (
    BudgetIn,
    CategoryIn,
    ContributionIn,
    ExpenseIn,
    IncomeIn,
    RecurringExpenseIn,
    SavingsGoalIn,
    UserIn,
)
from scope import (
    ScopeContext,
    expense_scope_filter,
    is_personal_split,
    load_partner,
    load_scope_context,
)
from settlement import (
    LINK_PARTNER_MESSAGE,
    build_settlement_payload,
    compute_balances,
)

logger = logging.getLogger(__name__)

TIP_LIFETIME = timedelta(days=30)
MIN_ANALYSIS_MONTHS = 2


class PartnerLinkConflict(ValueError):
    pass


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise ValueError("User not found")
        return user

    def create(self, data: UserIn) -> User:
        email = data.email.strip().lower()
        existing = self.session.scalar(select(User).where(User.email == email))
        if existing:
            raise ValueError("Email already registered")
        user = User(name=data.name.strip(), email=email, color=data.color)
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def partner_of(self, user: User) -> Optional[User]:
        return load_partner(self.session, user)

    def link_partner(self, user_id: int, partner_email: str) -> tuple[User, User]:
        user = self.get(user_id)
        candidate = self.session.scalar(
            select(User).where(User.email == partner_email.strip().lower())
        )
        if not candidate:
            raise ValueError("Partner account not found")
        if candidate.id == user.id:
            raise ValueError("Cannot link to your own account")
        if user.partner_id and user.partner_id != candidate.id:
            raise PartnerLinkConflict("You are already linked to another partner")
        if candidate.partner_id and candidate.partner_id != user.id:
            raise PartnerLinkConflict(
                "Partner account is already linked to someone else"
            )

        user.partner_id = candidate.id
        candidate.partner_id = user.id
        self.session.commit()
        logger.info(f"partner_link: user_id={user.id} partner_id={candidate.id}")
        return user, candidate

    def unlink_partner(self, user_id: int) -> None:
        user = self.get(user_id)
        if not user.partner_id:
            raise ValueError("No partner linked")
        partner = self.session.get(User, user.partner_id)
        if partner is not None and partner.partner_id == user.id:
            partner.partner_id = None
        user.partner_id = None
        self.session.commit()
        logger.info(f"partner_unlink: user_id={user.id}")

    def couple_summary(self, user_id: int) -> dict[str, object]:
        user = self.get(user_id)
        partner = self.partner_of(user)
        if user.partner_id and partner is None:
            user.partner_id = None
            self.session.commit()

        payer_ids = [user.id] + ([partner.id] if partner else [])
        rows = self.session.execute(
            select(Expense.amount_cents, Expense.paid_by_user_id, Expense.split_type)
            .where(Expense.paid_by_user_id.in_(payer_ids))
        ).all()

        ours = mine = theirs = 0
        for amount_cents, payer_id, split_type in rows:
            if payer_id == user.id:
                mine += amount_cents
            if partner and payer_id == partner.id:
                theirs += amount_cents
            if not is_personal_split(split_type):
                ours += amount_cents

        def person(u: User) -> dict[str, object]:
            return {"id": u.id, "name": u.name, "email": u.email, "color": u.color}

        return {
            "couple": {
                "connected": partner is not None,
                "user": person(user),
                "partner": person(partner) if partner else None,
            },
            "totals": {
                "ours": cents_to_amount(ours),
                "mine": cents_to_amount(mine),
                "partner": cents_to_amount(theirs),
            },
        }


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        return list(self.session.scalars(select(Category).order_by(Category.name)).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise ValueError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        exists = self.session.scalar(
            select(Category).where(func.lower(Category.name) == name.lower())
        )
        if exists:
            raise ValueError("Category with this name already exists")
        category = Category(name=name, icon=data.icon, color=data.color)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        name = data.name.strip()
        clash = self.session.scalar(
            select(Category).where(
                func.lower(Category.name) == name.lower(), Category.id != category_id
            )
        )
        if clash:
            raise ValueError("Category with this name already exists")
        category.name = name
        category.icon = data.icon
        category.color = data.color
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        in_use = self.session.scalar(
            select(Expense.id).where(Expense.category_id == category_id).limit(1)
        )
        if in_use is not None:
            raise ValueError("Cannot delete a category that is being used by expenses")
        referenced = self.session.scalar(
            select(RecurringExpense.id).where(RecurringExpense.category_id == category_id).limit(1)
        ) or self.session.scalar(
            select(Budget.id).where(Budget.category_id == category_id).limit(1)
        )
        if referenced is not None:
            raise ValueError(
                "Cannot delete a category that is being used by recurring expenses or budgets"
            )
        self.session.delete(category)
        self.session.commit()
        logger.info(f"category_delete: category_id={category_id}")


class _CoupleService:
    """Base for services acting on behalf of one user and their linked partner."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def context(self, requested_scope: object = None) -> ScopeContext:
        return load_scope_context(self.session, self.user_id, requested_scope)

    def couple_ids(self) -> tuple[int, ...]:
        return self.context().couple_ids

    def _check_payer(self, paid_by_user_id: int) -> None:
        if paid_by_user_id not in self.couple_ids():
            raise ValueError("Payer must be you or your partner")

    def _check_category(self, category_id: int) -> None:
        if not self.session.get(Category, category_id):
            raise ValueError("Category not found")


class ExpenseService(_CoupleService):
    def _base_query(self):
        return select(Expense).options(
            joinedload(Expense.category), joinedload(Expense.paid_by)
        )

    def list(
        self,
        context: ScopeContext,
        period: Optional[Period] = None,
        *,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        stmt = self._base_query().where(*expense_scope_filter(context))
        if period is not None:
            stmt = stmt.where(Expense.date.between(period.start, period.end))
        stmt = stmt.order_by(Expense.date.desc(), Expense.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).unique().all())

    def recent(self, context: ScopeContext, limit: int = 5) -> list[Expense]:
        return self.list(context, limit=limit)

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalars(
            self._base_query().where(Expense.id == expense_id)
        ).first()
        if not expense or expense.paid_by_user_id not in self.couple_ids():
            raise ValueError("Expense not found")
        return expense

    def create(self, data: ExpenseIn) -> Expense:
        self._check_category(data.category_id)
        self._check_payer(data.paid_by_user_id)
        today = local_today()
        expense = Expense(
            date=data.date or today,
            amount_cents=parse_amount(data.amount),
            description=data.description,
            category_id=data.category_id,
            paid_by_user_id=data.paid_by_user_id,
            split_type=data.split_type.value,
            split_ratio_user1=data.split_ratio_user1,
            split_ratio_user2=data.split_ratio_user2,
        )
        self.session.add(expense)
        self.session.commit()
        return self.get(expense.id)

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        if data.category_id != expense.category_id:
            self._check_category(data.category_id)
        self._check_payer(data.paid_by_user_id)
        expense.date = data.date or expense.date
        expense.amount_cents = parse_amount(data.amount)
        expense.description = data.description
        expense.category_id = data.category_id
        expense.paid_by_user_id = data.paid_by_user_id
        expense.split_type = data.split_type.value
        expense.split_ratio_user1 = data.split_ratio_user1
        expense.split_ratio_user2 = data.split_ratio_user2
        self.session.commit()
        self.session.expire(expense)
        return self.get(expense_id)

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()


class RecurringExpenseService(_CoupleService):
    def list_active(self) -> list[RecurringExpense]:
        stmt = (
            select(RecurringExpense)
            .options(joinedload(RecurringExpense.category))
            .where(
                RecurringExpense.is_active.is_(True),
                RecurringExpense.paid_by_user_id.in_(self.couple_ids()),
            )
            .order_by(RecurringExpense.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, template_id: int) -> RecurringExpense:
        template = self.session.get(RecurringExpense, template_id)
        if not template or template.paid_by_user_id not in self.couple_ids():
            raise ValueError("Recurring expense not found")
        return template

    def create(self, data: RecurringExpenseIn) -> RecurringExpense:
        self._check_category(data.category_id)
        self._check_payer(data.paid_by_user_id)
        template = RecurringExpense(
            description=data.description,
            default_amount_cents=parse_amount(data.default_amount),
            category_id=data.category_id,
            paid_by_user_id=data.paid_by_user_id,
            split_type=data.split_type.value,
            split_ratio_user1=data.split_ratio_user1,
            split_ratio_user2=data.split_ratio_user2,
            is_active=True,
        )
        self.session.add(template)
        self.session.commit()
        self.session.refresh(template)
        return template

    def update(self, template_id: int, data: RecurringExpenseIn) -> RecurringExpense:
        template = self.get(template_id)
        if not template.is_active:
            raise ValueError("Recurring expense not found")
        if data.category_id != template.category_id:
            self._check_category(data.category_id)
        self._check_payer(data.paid_by_user_id)
        template.description = data.description
        template.default_amount_cents = parse_amount(data.default_amount)
        template.category_id = data.category_id
        template.paid_by_user_id = data.paid_by_user_id
        template.split_type = data.split_type.value
        template.split_ratio_user1 = data.split_ratio_user1
        template.split_ratio_user2 = data.split_ratio_user2
        self.session.commit()
        self.session.refresh(template)
        return template

    def deactivate(self, template_id: int) -> None:
        template = self.get(template_id)
        template.is_active = False
        self.session.commit()

    def generate(self, year: int, month: int) -> GenerationResult:
        generator = RecurringGenerator(self.session)
        try:
            result = generator.generate(year, month, templates=self.list_active())
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"recurring_generate: user_id={self.user_id} year={year} month={month} "
            f"inserted={result.inserted} regenerated={result.regenerated}"
        )
        return result


class BudgetService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_month(self, year: int, month: int) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.year == year, Budget.month == month)
            .order_by(Budget.category_id)
        )
        return list(self.session.scalars(stmt).all())

    def upsert(self, data: BudgetIn) -> Budget:
        if not self.session.get(Category, data.category_id):
            raise ValueError("Category not found")
        amount_cents = parse_amount(data.amount)
        existing = self.session.scalar(
            select(Budget).where(
                Budget.category_id == data.category_id,
                Budget.year == data.year,
                Budget.month == data.month,
            )
        )
        if existing:
            existing.amount_cents = amount_cents
            self.session.commit()
            self.session.refresh(existing)
            return existing

        budget = Budget(
            category_id=data.category_id,
            year=data.year,
            month=data.month,
            amount_cents=amount_cents,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget


class IncomeService(_CoupleService):
    def list(self, period: Optional[Period] = None) -> list[Income]:
        stmt = select(Income).where(Income.user_id == self.user_id)
        if period is not None:
            stmt = stmt.where(Income.date.between(period.start, period.end))
        return list(self.session.scalars(stmt.order_by(Income.date.desc())).all())

    def create(self, data: IncomeIn) -> Income:
        income = Income(
            user_id=self.user_id,
            date=data.date,
            amount_cents=parse_amount(data.amount),
            source=data.source,
        )
        self.session.add(income)
        self.session.commit()
        self.session.refresh(income)
        return income

    def delete(self, income_id: int) -> None:
        income = self.session.get(Income, income_id)
        if not income or income.user_id != self.user_id:
            raise ValueError("Income entry not found")
        self.session.delete(income)
        self.session.commit()


class SavingsService(_CoupleService):
    def list_goals(self) -> list[SavingsGoal]:
        stmt = (
            select(SavingsGoal)
            .where(SavingsGoal.user_id == self.user_id)
            .order_by(SavingsGoal.is_pinned.desc(), SavingsGoal.created_at.desc())
        )
        return list(self.session.scalars(stmt).all())

    def get_goal(self, goal_id: int) -> SavingsGoal:
        goal = self.session.get(SavingsGoal, goal_id)
        if not goal or goal.user_id not in self.couple_ids():
            raise ValueError("Savings goal not found")
        return goal

    def create_goal(self, data: SavingsGoalIn) -> SavingsGoal:
        goal = SavingsGoal(
            user_id=self.user_id,
            goal_name=data.goal_name,
            target_amount_cents=parse_amount(data.target_amount),
            current_amount_cents=0,
            target_date=data.target_date,
            category=data.category,
            is_pinned=data.is_pinned,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def update_goal(self, goal_id: int, data: SavingsGoalIn) -> SavingsGoal:
        goal = self.get_goal(goal_id)
        goal.goal_name = data.goal_name
        goal.target_amount_cents = parse_amount(data.target_amount)
        goal.current_amount_cents = min(
            goal.current_amount_cents, goal.target_amount_cents
        )
        goal.target_date = data.target_date
        goal.category = data.category
        goal.is_pinned = data.is_pinned
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete_goal(self, goal_id: int) -> None:
        goal = self.get_goal(goal_id)
        self.session.delete(goal)
        self.session.commit()

    def list_contributions(self, goal_id: int) -> list[SavingsContribution]:
        goal = self.get_goal(goal_id)
        stmt = (
            select(SavingsContribution)
            .where(SavingsContribution.goal_id == goal.id)
            .order_by(SavingsContribution.date.desc(), SavingsContribution.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def add_contribution(self, goal_id: int, data: ContributionIn) -> dict[str, object]:
        """Record a contribution, clamped to what the goal still needs.

        The contribution row and the goal's running total change in one
        transaction.
        """
        goal = self.get_goal(goal_id)
        requested = parse_amount(data.amount)
        remaining_before = goal.target_amount_cents - goal.current_amount_cents
        if remaining_before <= 0:
            raise ValueError("Savings goal is already fully funded")
        applied = min(requested, remaining_before)
        capped = applied < requested

        contribution = SavingsContribution(
            goal_id=goal.id,
            user_id=self.user_id,
            amount_cents=applied,
            date=data.date or local_today(),
            note=data.note,
        )
        try:
            self.session.add(contribution)
            result = self.session.execute(
                update(SavingsGoal)
                .where(
                    SavingsGoal.id == goal.id,
                    SavingsGoal.current_amount_cents + applied
                    <= SavingsGoal.target_amount_cents,
                )
                .values(current_amount_cents=SavingsGoal.current_amount_cents + applied)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValueError("Savings goal changed, please retry")
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(goal)
        self.session.refresh(contribution)
        if capped:
            logger.info(
                f"savings_contribution: goal_id={goal.id} requested_cents={requested} "
                f"applied_cents={applied} capped=true"
            )
        return {
            "goal": goal,
            "contribution": contribution,
            "capped": capped,
            "remaining_before": remaining_before,
        }

    def delete_contribution(self, contribution_id: int) -> SavingsGoal:
        contribution = self.session.get(SavingsContribution, contribution_id)
        if not contribution:
            raise ValueError("Contribution not found")
        goal = self.get_goal(contribution.goal_id)
        amount = contribution.amount_cents
        try:
            self.session.delete(contribution)
            self.session.execute(
                update(SavingsGoal)
                .where(SavingsGoal.id == goal.id)
                .values(
                    current_amount_cents=case(
                        (
                            SavingsGoal.current_amount_cents > amount,
                            SavingsGoal.current_amount_cents - amount,
                        ),
                        else_=0,
                    )
                )
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(goal)
        return goal

    def savings_rate(self, period: Period) -> list[dict[str, object]]:
        month_key = func.strftime("%Y-%m", Income.date).label("month")
        incomes = self.session.execute(
            select(month_key, func.sum(Income.amount_cents).label("total"))
            .where(
                Income.user_id == self.user_id,
                Income.date.between(period.start, period.end),
            )
            .group_by(month_key)
            .order_by(month_key)
        ).all()

        expense_month = func.strftime("%Y-%m", Expense.date).label("month")
        expenses = {
            row.month: int(row.total or 0)
            for row in self.session.execute(
                select(expense_month, func.sum(Expense.amount_cents).label("total"))
                .where(
                    Expense.paid_by_user_id == self.user_id,
                    Expense.date.between(period.start, period.end),
                )
                .group_by(expense_month)
            )
        }

        data: list[dict[str, object]] = []
        for row in incomes:
            income = int(row.total or 0)
            spent = expenses.get(row.month, 0)
            rate = (income - spent) / income * 100 if income > 0 else 0.0
            data.append(
                {
                    "month": row.month,
                    "income": cents_to_amount(income),
                    "expenses": cents_to_amount(spent),
                    "savings_rate": round(rate, 2),
                }
            )
        return data


class SummaryService(_CoupleService):
    def _generate(self, year: int, month: int) -> None:
        RecurringExpenseService(self.session, self.user_id).generate(year, month)

    def _names(self, context: ScopeContext) -> dict[int, str]:
        users = self.session.scalars(
            select(User).where(User.id.in_(context.couple_ids))
        ).all()
        return {u.id: u.name for u in users}

    def _month_expenses(
        self, year: int, month: int, payer_ids: tuple[int, ...]
    ) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(
                Expense.date.between(month_start(year, month), month_end(year, month)),
                Expense.paid_by_user_id.in_(payer_ids),
            )
            .order_by(Expense.date, Expense.id)
        )
        return list(self.session.scalars(stmt).all())

    def settle(self, year: int, month: int, requested_scope: object) -> dict[str, object]:
        context = self.context(requested_scope)
        self._generate(year, month)
        names = self._names(context)

        if not context.has_partner:
            return {
                "scope": context.scope,
                "year": year,
                "month": month,
                "total_shared_expenses": "0.00",
                "user": None,
                "partner": None,
                "settlement": {
                    "amount": "0.00",
                    "creditor": None,
                    "debtor": None,
                    "message": LINK_PARTNER_MESSAGE,
                },
            }

        expenses = self._month_expenses(year, month, context.couple_ids)
        balances = compute_balances(
            expenses, context.current_user_id, context.partner_id
        )

        def person(user_id: int) -> dict[str, object]:
            totals = balances.totals[user_id]
            return {
                "id": user_id,
                "name": names.get(user_id),
                "paid": format_fixed(totals.paid),
                "share": format_fixed(totals.share),
            }

        return {
            "scope": context.scope,
            "year": year,
            "month": month,
            "total_shared_expenses": format_fixed(balances.total_shared_expenses),
            "user": person(context.current_user_id),
            "partner": person(context.partner_id),
            "settlement": build_settlement_payload(balances, context, names),
        }

    def monthly_summary(
        self, year: int, month: int, requested_scope: object
    ) -> dict[str, object]:
        context = self.context(requested_scope)
        self._generate(year, month)
        names = self._names(context)

        visible = self.session.scalars(
            select(Expense)
            .options(joinedload(Expense.category))
            .where(
                Expense.date.between(month_start(year, month), month_end(year, month)),
                *expense_scope_filter(context),
            )
            .order_by(Expense.date, Expense.id)
        ).all()

        category_totals: dict[str, int] = {}
        payments: dict[int, int] = {uid: 0 for uid in context.couple_ids}
        for expense in visible:
            name = expense.category.name if expense.category else "Uncategorized"
            category_totals[name] = category_totals.get(name, 0) + expense.amount_cents
            if expense.paid_by_user_id in payments:
                payments[expense.paid_by_user_id] += expense.amount_cents

        if context.has_partner:
            couple_expenses = self._month_expenses(year, month, context.couple_ids)
            balances = compute_balances(
                couple_expenses, context.current_user_id, context.partner_id
            )
            balance_rows = {
                uid: {
                    "paid": round(t.paid, 2),
                    "share": round(t.share, 2),
                    "balance": round(t.balance, 2),
                }
                for uid, t in balances.totals.items()
            }
            settlement = build_settlement_payload(balances, context, names)
        else:
            balance_rows = {}
            settlement = {
                "amount": "0.00",
                "creditor": None,
                "debtor": None,
                "message": LINK_PARTNER_MESSAGE,
            }

        return {
            "scope": context.scope,
            "year": year,
            "month": month,
            "expenses": visible,
            "total_expenses": cents_to_amount(sum(e.amount_cents for e in visible)),
            "category_totals": {
                name: cents_to_amount(total) for name, total in category_totals.items()
            },
            "user_payments": {
                uid: cents_to_amount(total) for uid, total in payments.items()
            },
            "balances": balance_rows,
            "settlement": settlement,
        }


class AnalyticsService:
    def __init__(self, session: Session, context: ScopeContext) -> None:
        self.session = session
        self.context = context

    def _monthly_totals(self, start: date, end: date) -> list[dict[str, object]]:
        month_key = func.strftime("%Y-%m", Expense.date).label("month")
        stmt = (
            select(
                month_key,
                func.sum(Expense.amount_cents).label("total"),
                func.count(Expense.id).label("count"),
            )
            .where(Expense.date.between(start, end), *expense_scope_filter(self.context))
            .group_by(month_key)
            .order_by(month_key)
        )
        return [
            {
                "month": row.month,
                "total_cents": int(row.total or 0),
                "count": int(row.count or 0),
            }
            for row in self.session.execute(stmt)
        ]

    def _budget_totals(self, start: date, end: date) -> dict[str, int]:
        period_key = Budget.year * 100 + Budget.month
        stmt = (
            select(Budget.year, Budget.month, func.sum(Budget.amount_cents).label("total"))
            .where(
                period_key.between(
                    start.year * 100 + start.month, end.year * 100 + end.month
                )
            )
            .group_by(Budget.year, Budget.month)
        )
        return {
            f"{row.year:04d}-{row.month:02d}": int(row.total or 0)
            for row in self.session.execute(stmt)
        }

    def trends(self, period: Period) -> dict[str, object]:
        monthly = self._monthly_totals(period.start, period.end)
        budgets = self._budget_totals(period.start, period.end)

        previous_start = _shift_year(period.start, -1)
        previous_end = _shift_year(period.end, -1)
        previous = self._monthly_totals(previous_start, previous_end)

        current_total = sum(m["total_cents"] for m in monthly)
        previous_total = sum(m["total_cents"] for m in previous)
        trend_percentage = (
            (current_total - previous_total) / previous_total * 100
            if previous_total > 0
            else 0.0
        )
        average_monthly = current_total / len(monthly) if monthly else 0

        return {
            "scope": self.context.scope,
            "monthly_totals": [
                {
                    "month": m["month"],
                    "total_spending": cents_to_amount(m["total_cents"]),
                    "expense_count": m["count"],
                    "avg_expense": cents_to_amount(m["total_cents"] // m["count"])
                    if m["count"]
                    else 0.0,
                    "total_budget": cents_to_amount(budgets.get(m["month"], 0)),
                }
                for m in monthly
            ],
            "summary": {
                "current_period_total": cents_to_amount(current_total),
                "previous_period_total": cents_to_amount(previous_total),
                "trend_percentage": round(trend_percentage, 2),
                "avg_monthly_spending": round(cents_to_amount(average_monthly), 2),
            },
        }

    def category_trends(self, period: Period) -> list[dict[str, object]]:
        month_key = func.strftime("%Y-%m", Expense.date).label("month")
        stmt = (
            select(
                Category.id.label("category_id"),
                Category.name.label("category"),
                month_key,
                func.sum(Expense.amount_cents).label("total"),
            )
            .join(Category, Expense.category_id == Category.id)
            .where(
                Expense.date.between(period.start, period.end),
                *expense_scope_filter(self.context),
            )
            .group_by(Category.id, Category.name, month_key)
            .order_by(month_key, Category.name)
        )
        rows = self.session.execute(stmt).all()

        period_key = Budget.year * 100 + Budget.month
        budget_rows = self.session.execute(
            select(Budget.category_id, Budget.year, Budget.month, Budget.amount_cents).where(
                period_key.between(
                    period.start.year * 100 + period.start.month,
                    period.end.year * 100 + period.end.month,
                )
            )
        ).all()
        budgets = {
            (r.category_id, f"{r.year:04d}-{r.month:02d}"): r.amount_cents
            for r in budget_rows
        }

        return [
            {
                "category_id": row.category_id,
                "category": row.category,
                "month": row.month,
                "total_spending": cents_to_amount(int(row.total or 0)),
                "budget": cents_to_amount(budgets[(row.category_id, row.month)])
                if (row.category_id, row.month) in budgets
                else None,
            }
            for row in rows
        ]

    def income_expenses(self, period: Period) -> dict[str, object]:
        """Monthly income against what the viewer paid, with a savings-rate trend."""
        months = _income_expense_months(self.session, self.context.current_user_id, period)
        total_income = sum(m["income_cents"] for m in months)
        total_expenses = sum(m["expenses_cents"] for m in months)
        rates = [m["savings_rate"] for m in months]
        average_rate = sum(rates) / len(rates) if rates else 0.0
        trend = _rate_trend(rates)
        return {
            "monthly_data": [
                {
                    "month": m["month"],
                    "income": cents_to_amount(m["income_cents"]),
                    "expenses": cents_to_amount(m["expenses_cents"]),
                    "savings_rate": m["savings_rate"],
                }
                for m in months
            ],
            "summary": {
                "total_income": cents_to_amount(total_income),
                "total_expenses": cents_to_amount(total_expenses),
                "total_surplus": cents_to_amount(total_income - total_expenses),
                "avg_savings_rate": round(average_rate, 2),
                "savings_trend": round(trend, 2),
                "savings_trend_direction": _trend_direction(trend),
                "month_count": len(months),
            },
        }

    def savings_analysis(self, period: Period) -> dict[str, object]:
        user_id = self.context.current_user_id
        income_entries = self.session.scalar(
            select(func.count(Income.id)).where(
                Income.user_id == user_id,
                Income.date.between(period.start, period.end),
            )
        ) or 0
        expense_entries = self.session.scalar(
            select(func.count(Expense.id)).where(
                Expense.paid_by_user_id == user_id,
                Expense.date.between(period.start, period.end),
            )
        ) or 0
        goals = [
            {
                "id": goal.id,
                "goal_name": goal.goal_name,
                "target_amount": cents_to_amount(goal.target_amount_cents),
                "current_amount": cents_to_amount(goal.current_amount_cents),
                "progress_percentage": round(
                    goal.current_amount_cents / goal.target_amount_cents * 100, 2
                ),
                "target_date": goal.target_date.isoformat() if goal.target_date else None,
            }
            for goal in self.session.scalars(
                select(SavingsGoal)
                .where(SavingsGoal.user_id == user_id)
                .order_by(SavingsGoal.id)
            )
        ]
        availability: dict[str, object] = {
            "has_income": income_entries > 0,
            "has_expenses": expense_entries > 0,
            "income_entries": income_entries,
            "expense_entries": expense_entries,
            "required_for_meaningful_analysis": MIN_ANALYSIS_MONTHS,
        }

        if not income_entries or not expense_entries:
            if not income_entries and not expense_entries:
                message = "Add income and expense entries to see meaningful savings analysis"
            elif not income_entries:
                message = (
                    f"You have {expense_entries} expense entries but no income entries. "
                    "Add income entries to calculate your savings rate."
                )
            else:
                message = (
                    f"You have {income_entries} income entries but no expense entries. "
                    "Add expense entries to calculate your savings rate."
                )
            availability["message"] = message
            return {
                "monthly_data": [],
                "savings_goals": goals,
                "summary": {
                    "total_income": 0.0,
                    "total_expenses": 0.0,
                    "total_savings": 0.0,
                    "average_savings_rate": 0.0,
                    "savings_rate_trend": 0.0,
                    "trend_direction": "no-data",
                    "month_count": 0,
                },
                "data_availability": availability,
            }

        months = _income_expense_months(self.session, user_id, period)
        monthly_data = [
            {
                "month": m["month"],
                "income": cents_to_amount(m["income_cents"]),
                "expenses": cents_to_amount(m["expenses_cents"]),
                "savings": cents_to_amount(m["income_cents"] - m["expenses_cents"]),
                "savings_rate": m["savings_rate"],
            }
            for m in months
        ]
        total_income = sum(m["income_cents"] for m in months)
        total_expenses = sum(m["expenses_cents"] for m in months)
        rates = [m["savings_rate"] for m in months]
        summary: dict[str, object] = {
            "total_income": cents_to_amount(total_income),
            "total_expenses": cents_to_amount(total_expenses),
            "total_savings": cents_to_amount(total_income - total_expenses),
            "month_count": len(months),
        }

        if len(months) < MIN_ANALYSIS_MONTHS:
            summary.update(
                average_savings_rate=rates[0] if rates else 0.0,
                savings_rate_trend=0.0,
                trend_direction="insufficient-data",
            )
            availability["months_with_data"] = len(months)
            availability["message"] = (
                f"You have data for {len(months)} month(s). Add more income and expense "
                "entries across multiple months to see trends and meaningful analysis."
            )
            return {
                "monthly_data": monthly_data,
                "savings_goals": goals,
                "summary": summary,
                "data_availability": availability,
            }

        trend = _rate_trend(rates)
        summary.update(
            average_savings_rate=round(sum(rates) / len(rates), 2),
            savings_rate_trend=round(trend, 2),
            trend_direction=_trend_direction(trend),
        )
        return {"monthly_data": monthly_data, "savings_goals": goals, "summary": summary}


def _income_expense_months(
    session: Session, user_id: int, period: Period
) -> list[dict[str, object]]:
    """Per-month income and expenses paid by one user, over the union of months."""
    income_month = func.strftime("%Y-%m", Income.date).label("month")
    incomes = {
        row.month: int(row.total or 0)
        for row in session.execute(
            select(income_month, func.sum(Income.amount_cents).label("total"))
            .where(Income.user_id == user_id, Income.date.between(period.start, period.end))
            .group_by(income_month)
        )
    }
    expense_month = func.strftime("%Y-%m", Expense.date).label("month")
    expenses = {
        row.month: int(row.total or 0)
        for row in session.execute(
            select(expense_month, func.sum(Expense.amount_cents).label("total"))
            .where(
                Expense.paid_by_user_id == user_id,
                Expense.date.between(period.start, period.end),
            )
            .group_by(expense_month)
        )
    }

    months: list[dict[str, object]] = []
    for month in sorted(set(incomes) | set(expenses)):
        income = incomes.get(month, 0)
        spent = expenses.get(month, 0)
        rate = (income - spent) / income * 100 if income > 0 else 0.0
        months.append(
            {
                "month": month,
                "income_cents": income,
                "expenses_cents": spent,
                "savings_rate": round(rate, 2),
            }
        )
    return months


def _rate_trend(rates: list[float]) -> float:
    # last three months against everything before them
    recent = rates[-3:]
    earlier = rates[:-3]
    recent_avg = sum(recent) / len(recent) if recent else 0.0
    earlier_avg = sum(earlier) / len(earlier) if earlier else 0.0
    if earlier_avg <= 0:
        return 0.0
    return (recent_avg - earlier_avg) / earlier_avg * 100


def _trend_direction(trend: float) -> str:
    if trend > 0:
        return "improving"
    if trend < 0:
        return "declining"
    return "stable"


def _shift_year(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        return d.replace(year=d.year + years, day=28)


class OptimizationService(_CoupleService):
    def analyze(
        self, requested_scope: object, today: Optional[date] = None
    ) -> dict[str, object]:
        context = self.context(requested_scope)
        analysis = BudgetOptimizer(self.session, context, today).analyze_spending_patterns()
        self._store_tips(context.scope, analysis["recommendations"])
        return analysis

    def _store_tips(self, scope: str, recommendations: list[dict[str, object]]) -> None:
        now = datetime.utcnow()
        try:
            self.session.execute(
                delete(BudgetOptimizationTip).where(
                    BudgetOptimizationTip.user_id == self.user_id,
                    BudgetOptimizationTip.scope == scope,
                    BudgetOptimizationTip.is_dismissed.is_(False),
                )
            )
            for tip in recommendations:
                impact = tip.get("impact_amount")
                self.session.add(
                    BudgetOptimizationTip(
                        user_id=self.user_id,
                        scope=scope,
                        tip_type=tip["type"],
                        category=tip.get("category"),
                        title=tip["title"],
                        description=tip["description"],
                        impact_amount_cents=amount_to_cents(impact)
                        if impact is not None
                        else None,
                        confidence_score=tip.get("confidence_score") or 0.5,
                        created_at=now,
                        expires_at=now + TIP_LIFETIME,
                    )
                )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def active_tips(self, requested_scope: object) -> list[BudgetOptimizationTip]:
        context = self.context(requested_scope)
        now = datetime.utcnow()
        stmt = (
            select(BudgetOptimizationTip)
            .where(
                BudgetOptimizationTip.user_id == self.user_id,
                BudgetOptimizationTip.scope == context.scope,
                BudgetOptimizationTip.is_dismissed.is_(False),
                or_(
                    BudgetOptimizationTip.expires_at.is_(None),
                    BudgetOptimizationTip.expires_at > now,
                ),
            )
            .order_by(
                BudgetOptimizationTip.confidence_score.desc(),
                BudgetOptimizationTip.created_at.desc(),
                BudgetOptimizationTip.id,
            )
        )
        return list(self.session.scalars(stmt).all())

    def dismiss(self, tip_id: int) -> None:
        tip = self.session.get(BudgetOptimizationTip, tip_id)
        if not tip or tip.user_id != self.user_id:
            raise ValueError("Tip not found")
        tip.is_dismissed = True
        self.session.commit()
