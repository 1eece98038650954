from dataclasses import dataclass
from typing import Optional

from sqlalchemy import ColumnElement, false, func, or_
from sqlalchemy.orm import Session

from models import Expense, Scope, User

PERSONAL_SPLIT_TYPES = ("personal", "personal_only")


@dataclass(frozen=True)
class ScopeContext:
    """Who a view is about and which expenses it may count.

    ``payer_ids`` and ``shared_only`` form the filter applied to expense
    queries; ``viewer_id`` is the person whose balance the view reports.
    """

    requested_scope: str
    scope: str
    current_user_id: int
    partner_id: Optional[int]
    viewer_id: int
    counterpart_id: Optional[int]
    payer_ids: tuple[int, ...]
    shared_only: bool

    @property
    def has_partner(self) -> bool:
        return self.partner_id is not None

    @property
    def couple_ids(self) -> tuple[int, ...]:
        if self.partner_id is None:
            return (self.current_user_id,)
        return (self.current_user_id, self.partner_id)


def sanitize_scope(candidate: object) -> str:
    if not candidate or not isinstance(candidate, str):
        return Scope.ours.value
    normalized = candidate.strip().lower()
    if normalized in {s.value for s in Scope}:
        return normalized
    return Scope.ours.value


def is_personal_split(split_type: Optional[str]) -> bool:
    if not split_type:
        return False
    return str(split_type).lower() in PERSONAL_SPLIT_TYPES


def resolve_scope(
    current_user: User, partner: Optional[User], requested_scope: object
) -> ScopeContext:
    sanitized = sanitize_scope(requested_scope)
    partner_id = partner.id if partner is not None else None
    has_partner = partner_id is not None

    scope = sanitized
    if scope == Scope.partner.value and not has_partner:
        scope = Scope.mine.value

    if scope == Scope.ours.value:
        payer_ids = (current_user.id, partner_id) if has_partner else (current_user.id,)
        shared_only = True
    elif scope == Scope.mine.value:
        payer_ids = (current_user.id,)
        shared_only = False
    else:
        payer_ids = (partner_id,)
        shared_only = False

    viewer_id = current_user.id
    counterpart_id = partner_id
    if scope == Scope.partner.value:
        viewer_id, counterpart_id = partner_id, current_user.id

    return ScopeContext(
        requested_scope=sanitized,
        scope=scope,
        current_user_id=current_user.id,
        partner_id=partner_id,
        viewer_id=viewer_id,
        counterpart_id=counterpart_id,
        payer_ids=payer_ids,
        shared_only=shared_only,
    )


def load_partner(session: Session, user: User) -> Optional[User]:
    if not user.partner_id:
        return None
    partner = session.get(User, user.partner_id)
    if partner is None or partner.partner_id != user.id:
        return None
    return partner


def load_scope_context(
    session: Session, user_id: int, requested_scope: object
) -> ScopeContext:
    user = session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")
    return resolve_scope(user, load_partner(session, user), requested_scope)


def expense_scope_filter(context: ScopeContext) -> list[ColumnElement[bool]]:
    """WHERE clauses selecting the expenses visible under ``context``."""
    if not context.payer_ids:
        return [false()]
    clauses: list[ColumnElement[bool]] = [
        Expense.paid_by_user_id.in_(context.payer_ids)
    ]
    if context.shared_only:
        clauses.append(
            or_(
                Expense.split_type.is_(None),
                func.lower(Expense.split_type).not_in(PERSONAL_SPLIT_TYPES),
            )
        )
    return clauses
