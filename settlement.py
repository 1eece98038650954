import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Protocol

from config import get_settings
from models import Scope, SplitType
from scope import ScopeContext, is_personal_split

SETTLED_EPSILON = 0.005
EVEN_SPLIT = (0.5, 0.5)
RATIO_SPLIT_TYPES = (SplitType.custom.value, SplitType.bill.value)

LINK_PARTNER_MESSAGE = "Link a partner to calculate settlements."
SETTLED_MESSAGE = "All settled up!"


class SplittableExpense(Protocol):
    amount_cents: int
    paid_by_user_id: int
    split_type: Optional[str]
    split_ratio_user1: Optional[float]
    split_ratio_user2: Optional[float]


@dataclass
class UserTotals:
    paid: float = 0.0
    share: float = 0.0

    @property
    def balance(self) -> float:
        return self.paid - self.share


@dataclass
class Balances:
    totals: dict[int, UserTotals] = field(default_factory=dict)
    total_shared_expenses: float = 0.0

    def balance_for(self, user_id: int) -> float:
        totals = self.totals.get(user_id)
        return totals.balance if totals else 0.0


def _percentage(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0 or number > 100:
        return None
    return number


def split_ratios(
    split_type: Optional[str], ratio_user1: object, ratio_user2: object
) -> tuple[float, float]:
    """Return the (user1, user2) cost shares of a non-personal expense, summing to 1."""
    normalized = str(split_type).lower() if split_type else ""
    if normalized not in RATIO_SPLIT_TYPES:
        return EVEN_SPLIT

    first = _percentage(ratio_user1)
    second = _percentage(ratio_user2)
    if first is not None and second is not None:
        total = first + second
        if total <= 0:
            return EVEN_SPLIT
        return first / total, second / total
    if first is not None:
        return first / 100, 1 - first / 100
    if second is not None:
        return 1 - second / 100, second / 100
    return EVEN_SPLIT


def _amount(expense: SplittableExpense) -> Optional[float]:
    raw = getattr(expense, "amount_cents", None)
    if raw is None or isinstance(raw, bool):
        return None
    try:
        amount = float(raw) / 100
    except (TypeError, ValueError):
        return None
    if not math.isfinite(amount) or amount <= 0:
        return None
    return amount


def compute_balances(
    expenses: Iterable[SplittableExpense],
    current_user_id: int,
    partner_id: Optional[int],
) -> Balances:
    """Accumulate what each partner paid and owes across shared expenses.

    Ratio ``split_ratio_user1`` belongs to the partner with the lower user id.
    Personal expenses and non-positive amounts are left out entirely.
    """
    balances = Balances()
    balances.totals[current_user_id] = UserTotals()
    if partner_id is None:
        user1, user2 = current_user_id, None
    else:
        balances.totals[partner_id] = UserTotals()
        user1, user2 = sorted((current_user_id, partner_id))

    for expense in expenses:
        if is_personal_split(expense.split_type):
            continue
        amount = _amount(expense)
        if amount is None:
            continue

        ratio1, ratio2 = split_ratios(
            expense.split_type, expense.split_ratio_user1, expense.split_ratio_user2
        )
        if user2 is None:
            balances.totals[user1].share += amount
        else:
            balances.totals[user1].share += amount * ratio1
            balances.totals[user2].share += amount * ratio2

        payer = balances.totals.get(expense.paid_by_user_id)
        if payer is not None:
            payer.paid += amount
        balances.total_shared_expenses += amount

    return balances


def _settlement(
    amount: str, creditor: Optional[str], debtor: Optional[str], message: str
) -> dict[str, Optional[str]]:
    return {
        "amount": amount,
        "creditor": creditor,
        "debtor": debtor,
        "message": message,
    }


def build_settlement_payload(
    balances: Balances, context: ScopeContext, names: Mapping[int, str]
) -> dict[str, Optional[str]]:
    if not context.has_partner or context.counterpart_id is None:
        return _settlement("0.00", None, None, LINK_PARTNER_MESSAGE)

    viewer_id = context.viewer_id
    counterpart_id = context.counterpart_id
    balance = balances.balance_for(viewer_id)
    if not math.isfinite(balance) or abs(balance) < SETTLED_EPSILON:
        return _settlement("0.00", None, None, SETTLED_MESSAGE)

    if balance > 0:
        creditor_id, debtor_id = viewer_id, counterpart_id
    else:
        creditor_id, debtor_id = counterpart_id, viewer_id
    creditor = names.get(creditor_id) or f"User {creditor_id}"
    debtor = names.get(debtor_id) or f"User {debtor_id}"
    amount = f"{abs(balance):.2f}"
    currency = get_settings().currency

    if context.scope == Scope.mine.value:
        if debtor_id == viewer_id:
            message = f"You owe {creditor} {amount} {currency}"
        else:
            message = f"{debtor} owes you {amount} {currency}"
    elif context.scope == Scope.partner.value:
        viewer = names.get(viewer_id) or f"User {viewer_id}"
        if debtor_id == viewer_id:
            message = f"{viewer} owes {creditor} {amount} {currency}"
        else:
            message = f"{viewer} is owed {amount} {currency} by {debtor}"
    else:
        message = f"{debtor} owes {creditor} {amount} {currency}"

    return _settlement(amount, creditor, debtor, message)
