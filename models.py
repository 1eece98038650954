from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class SplitType(str, Enum):
    equal = "50/50"
    custom = "custom"
    personal = "personal"
    bill = "bill"


class Scope(str, Enum):
    ours = "ours"
    mine = "mine"
    partner = "partner"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    partner_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    color: Mapped[Optional[str]] = mapped_column(String(9))


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    icon: Mapped[Optional[str]] = mapped_column(String(50))
    color: Mapped[Optional[str]] = mapped_column(String(9))

    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="category"
    )


class RecurringExpense(Base, TimestampMixin):
    __tablename__ = "recurring_expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[Optional[str]] = mapped_column(String(200))
    default_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    paid_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False
    )
    split_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SplitType.equal.value
    )
    split_ratio_user1: Mapped[Optional[float]] = mapped_column(Float)
    split_ratio_user2: Mapped[Optional[float]] = mapped_column(Float)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    category: Mapped["Category"] = relationship("Category")
    paid_by: Mapped["User"] = relationship("User")

    __table_args__ = (
        CheckConstraint(
            "default_amount_cents >= 0", name="ck_recurring_amount_positive"
        ),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(200))
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    paid_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False
    )
    split_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SplitType.equal.value
    )
    split_ratio_user1: Mapped[Optional[float]] = mapped_column(Float)
    split_ratio_user2: Mapped[Optional[float]] = mapped_column(Float)
    recurring_expense_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_expenses.id")
    )
    recurring_template_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime
    )

    category: Mapped["Category"] = relationship(
        "Category", back_populates="expenses"
    )
    paid_by: Mapped["User"] = relationship("User")
    recurring_expense: Mapped[Optional["RecurringExpense"]] = relationship(
        "RecurringExpense"
    )

    __table_args__ = (
        UniqueConstraint(
            "recurring_expense_id",
            "date",
            name="uq_expense_recurring_month",
        ),
        Index("ix_expenses_date", "date"),
        Index("ix_expenses_payer_date", "paid_by_user_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        UniqueConstraint(
            "category_id", "month", "year", name="uq_budget_category_month"
        ),
        CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
        Index("ix_budget_month", "year", "month"),
    )


class Income(Base, TimestampMixin):
    __tablename__ = "incomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[Optional[str]] = mapped_column(String(120))

    __table_args__ = (
        Index("ix_incomes_user_date", "user_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_incomes_amount_positive"),
    )


class SavingsGoal(Base, TimestampMixin):
    __tablename__ = "savings_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    goal_name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_amount_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    target_date: Mapped[Optional[date]] = mapped_column(Date)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    contributions: Mapped[list["SavingsContribution"]] = relationship(
        "SavingsContribution",
        back_populates="goal",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("target_amount_cents > 0", name="ck_goal_target_positive"),
        CheckConstraint(
            "current_amount_cents >= 0", name="ck_goal_current_non_negative"
        ),
    )


class SavingsContribution(Base):
    __tablename__ = "savings_contributions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    goal_id: Mapped[int] = mapped_column(
        ForeignKey("savings_goals.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    goal: Mapped["SavingsGoal"] = relationship(
        "SavingsGoal", back_populates="contributions"
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_contribution_amount_positive"),
    )


class BudgetOptimizationTip(Base):
    __tablename__ = "budget_optimization_tips"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    scope: Mapped[str] = mapped_column(
        String(10), nullable=False, default=Scope.ours.value
    )
    tip_type: Mapped[str] = mapped_column(String(30), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    impact_amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    is_dismissed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_tips_user_scope_dismissed", "user_id", "scope", "is_dismissed"),
    )
