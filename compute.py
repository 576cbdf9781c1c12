import logging
from typing import Dict, Iterable, List, Optional
from decimal import Decimal, ROUND_HALF_UP

from models import Expense, Member, Settlement, Transfer

logger = logging.getLogger(__name__)

EPSILON = Decimal("0.01")
ZERO = Decimal("0")


class LedgerError(Exception):
    """Base class for errors raised by the balance engine."""


class DataIntegrityError(LedgerError):
    """An expense or settlement is internally inconsistent."""


class CurrencyMismatchError(LedgerError):
    """Events handed to the engine are not all in one currency."""


def to_dec(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))

def round2(d: Decimal) -> Decimal:
    return d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

def check_currency(expenses: Iterable[Expense], settlements: Iterable[Settlement]) -> Optional[str]:
    """
    Returns the single currency code carried by the events, or None if none carry one.
    Events without a code are taken to be in the group currency.
    Raises CurrencyMismatchError if two different codes are present.
    """
    seen = None
    for ev in list(expenses) + list(settlements):
        if ev.currency is None:
            continue
        if seen is None:
            seen = ev.currency
        elif ev.currency != seen:
            raise CurrencyMismatchError(f"Cannot mix {seen} and {ev.currency} in one balance computation.")
    return seen

def validate_expense(expense: Expense, epsilon: Decimal = EPSILON) -> Decimal:
    """
    Checks one expense and returns the residual (amount - sum of shares).
    The residual is at most epsilon in magnitude.
    """
    amount = to_dec(expense.amount)
    if amount < 0:
        raise DataIntegrityError(f"Expense amount must not be negative, got {amount}.")
    if not expense.shares:
        raise DataIntegrityError("Expense has no participants.")
    seen = set()
    total = ZERO
    for share in expense.shares:
        if share.member in seen:
            raise DataIntegrityError(f"Participant {share.member} appears twice in one expense.")
        seen.add(share.member)
        s = to_dec(share.amount)
        if s < 0:
            raise DataIntegrityError(f"Share for {share.member} must not be negative, got {s}.")
        total += s
    residual = amount - total
    if abs(residual) > epsilon:
        raise DataIntegrityError(f"Sum of shares ({total}) != expense amount ({amount}).")
    return residual

def validate_settlement(settlement: Settlement) -> None:
    if settlement.from_member == settlement.to_member:
        raise DataIntegrityError(f"Settlement from {settlement.from_member} to themselves.")
    if to_dec(settlement.amount) <= 0:
        raise DataIntegrityError(f"Settlement amount must be positive, got {settlement.amount}.")

def compute_balances(
    expenses: Iterable[Expense],
    settlements: Iterable[Settlement] = (),
    members: Iterable[Member] = (),
    epsilon: Decimal = EPSILON,
) -> Dict[Member, Decimal]:
    """
    Net balance per member from the full set of expenses and settlements.
    Positive means the member is owed money; negative means they owe.

    The payer is credited with the expense amount and every participant is
    debited with their share. A residual within epsilon between the amount
    and the shares is charged to the payer, so the balances always sum to zero.
    A settlement credits the member who paid and debits the one who received.

    Pure function: nothing is read or written outside the arguments.
    """
    expenses = list(expenses)
    settlements = list(settlements)
    check_currency(expenses, settlements)

    net: Dict[Member, Decimal] = {m: ZERO for m in members}
    for e in expenses:
        residual = validate_expense(e, epsilon)
        net[e.payer] = net.get(e.payer, ZERO) + to_dec(e.amount) - residual
        for share in e.shares:
            net[share.member] = net.get(share.member, ZERO) - to_dec(share.amount)

    for s in settlements:
        validate_settlement(s)
        amt = to_dec(s.amount)
        net[s.from_member] = net.get(s.from_member, ZERO) + amt
        net[s.to_member] = net.get(s.to_member, ZERO) - amt

    logger.debug("Computed %d balances from %d expenses and %d settlements",
                 len(net), len(expenses), len(settlements))
    return net

def suggest_settlements(balances: Dict[Member, Decimal], epsilon: Decimal = EPSILON) -> List[Transfer]:
    """
    Given net map (member->net), produce transfers that bring every balance
    within epsilon of zero, using a greedy largest-debtor to largest-creditor match.

    Not a minimum-transfer solver: it yields at most |debtors| + |creditors| - 1
    transfers. Equal magnitudes are broken by Member order so output is deterministic.
    """
    creditors = {m: to_dec(v) for m, v in balances.items() if to_dec(v) > epsilon}
    debtors = {m: -to_dec(v) for m, v in balances.items() if to_dec(v) < -epsilon}

    # largest first; ties go to the lower member
    def pick(side: Dict[Member, Decimal]) -> Member:
        return min(side, key=lambda m: (-side[m], m))

    transfers = []
    while creditors and debtors:
        d = pick(debtors)
        c = pick(creditors)
        amount = min(debtors[d], creditors[c])
        transfers.append(Transfer(from_member=d, to_member=c, amount=amount))
        debtors[d] -= amount
        creditors[c] -= amount
        # a leftover within epsilon is a rounding crumb, not a debt
        if debtors[d] <= epsilon:
            del debtors[d]
        if creditors[c] <= epsilon:
            del creditors[c]

    logger.debug("Suggested %d transfers for %d members", len(transfers), len(balances))
    return transfers

def apply_transfers(transfers: Iterable[Transfer], currency: Optional[str] = None) -> List[Settlement]:
    """Turns suggested transfers into settlement events, e.g. for a settle-up preview."""
    return [Settlement(t.from_member, t.to_member, t.amount, currency) for t in transfers]
