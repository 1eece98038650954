import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Sequence

from sqlalchemy import delete, insert, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Expense, RecurringExpense
from periods import month_start

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    year: int
    month: int
    inserted: int = 0
    regenerated: int = 0
    unchanged: int = 0
    generated_amount_cents: int = 0

    @property
    def generated_count(self) -> int:
        return self.inserted + self.regenerated


def _stamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.replace(tzinfo=None).isoformat()


class RecurringGenerator:
    """Materializes one expense per active template and calendar month.

    The pair (template id, first of month) identifies a generated expense.
    Re-running for a month is a no-op unless the template changed since the
    expense was written, in which case the stale row is replaced.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def active_templates(self) -> list[RecurringExpense]:
        stmt = (
            select(RecurringExpense)
            .where(RecurringExpense.is_active.is_(True))
            .order_by(RecurringExpense.id)
        )
        return list(self.session.scalars(stmt).all())

    def generate(
        self,
        year: int,
        month: int,
        templates: Optional[Sequence[RecurringExpense]] = None,
    ) -> GenerationResult:
        if not 1 <= month <= 12:
            raise ValueError("Invalid year or month (month must be 1-12)")
        target = month_start(year, month)
        if templates is None:
            templates = self.active_templates()

        result = GenerationResult(year=year, month=month)
        for template in templates:
            if not template.is_active:
                continue
            existing = self._existing_expense(template.id, target)
            if existing is None:
                if self._insert_occurrence(template, target):
                    result.inserted += 1
                    result.generated_amount_cents += template.default_amount_cents
                    logger.info(
                        f"recurring_generate: template_id={template.id} "
                        f"date={target.isoformat()} action=inserted"
                    )
                else:
                    result.unchanged += 1
                    logger.warning(
                        f"recurring_generate: template_id={template.id} "
                        f"date={target.isoformat()} action=duplicate_skipped"
                    )
                continue

            if _stamp(existing.recurring_template_updated_at) != _stamp(
                template.updated_at
            ):
                if self._replace_occurrence(existing, template, target):
                    result.regenerated += 1
                    result.generated_amount_cents += template.default_amount_cents
                    logger.info(
                        f"recurring_generate: template_id={template.id} "
                        f"date={target.isoformat()} action=regenerated"
                    )
                else:
                    result.unchanged += 1
                    logger.warning(
                        f"recurring_generate: template_id={template.id} "
                        f"date={target.isoformat()} action=duplicate_skipped"
                    )
            else:
                result.unchanged += 1
                logger.debug(
                    f"recurring_generate: template_id={template.id} "
                    f"date={target.isoformat()} action=unchanged"
                )
        return result

    def _existing_expense(self, template_id: int, target: date) -> Optional[Expense]:
        stmt = (
            select(Expense)
            .where(
                Expense.recurring_expense_id == template_id,
                Expense.date == target,
            )
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    @staticmethod
    def _expense_values(template: RecurringExpense, target: date) -> dict[str, object]:
        now = datetime.utcnow()
        return {
            "date": target,
            "amount_cents": template.default_amount_cents,
            "description": template.description,
            "category_id": template.category_id,
            "paid_by_user_id": template.paid_by_user_id,
            "split_type": template.split_type,
            "split_ratio_user1": template.split_ratio_user1,
            "split_ratio_user2": template.split_ratio_user2,
            "recurring_expense_id": template.id,
            "recurring_template_updated_at": template.updated_at,
            "created_at": now,
            "updated_at": now,
        }

    def _supports_on_conflict(self) -> bool:
        return self.session.get_bind().dialect.name == "sqlite"

    def _replace_occurrence(
        self, existing: Expense, template: RecurringExpense, target: date
    ) -> bool:
        """Swap a stale generated expense for a fresh one.

        A concurrent writer may have replaced the row already; the delete then
        matches nothing and the insert is skipped, so this returns False.
        """
        stale = delete(Expense).where(
            Expense.id == existing.id,
            Expense.recurring_template_updated_at == existing.recurring_template_updated_at,
        )
        if self._supports_on_conflict():
            self.session.execute(stale)
            return self._insert_occurrence(template, target)

        try:
            with self.session.begin_nested():
                self.session.execute(stale)
                replaced = self._insert_occurrence(template, target)
        except IntegrityError:
            return False
        return replaced

    def _insert_occurrence(self, template: RecurringExpense, target: date) -> bool:
        """Insert-or-ignore on (template, month). Returns False when the row already existed."""
        values = self._expense_values(template, target)
        table = Expense.__table__
        if self._supports_on_conflict():
            stmt = (
                sqlite_insert(table)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["recurring_expense_id", "date"])
            )
            result = self.session.execute(stmt)
            return (result.rowcount or 0) > 0

        try:
            with self.session.begin_nested():
                self.session.execute(insert(table).values(**values))
        except IntegrityError:
            return False
        return True
