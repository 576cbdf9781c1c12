"""
Share policies: turn "how was this split" into the per-participant owed
amounts the balance engine consumes. The engine never re-derives these.
"""
import logging
from typing import Dict, List, Sequence, Tuple
from decimal import Decimal, ROUND_DOWN

from compute import EPSILON, ZERO, round2, to_dec
from models import Member, Share

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

def equal_shares(total_amount, members: Sequence[Member]) -> List[Share]:
    """
    Split equally: every share is floored to the cent and the leftover cents
    go one each to the first members, so the shares sum to the total exactly.
    """
    if not members:
        raise ValueError("No members to split among.")
    if len(set(members)) != len(members):
        raise ValueError("A member appears twice in the split.")
    total = round2(to_dec(total_amount))
    n = len(members)
    base = (total / n).quantize(CENT, rounding=ROUND_DOWN)
    leftover_cents = int((total - base * n) / CENT)
    return [
        Share(m, base + (CENT if i < leftover_cents else ZERO))
        for i, m in enumerate(members)
    ]

def exact_shares(total_amount, pairs: Sequence[Tuple[Member, object]]) -> List[Share]:
    """
    pairs: (member, owed_amount) as entered by the user.
    Amounts must be positive, members distinct, and the sum within a cent of the total.
    """
    if not pairs:
        raise ValueError("No members to split among.")
    total = to_dec(total_amount)
    shares = []
    seen = set()
    ssum = ZERO
    for member, amt in pairs:
        a = round2(to_dec(amt))
        if a <= 0:
            raise ValueError(f"Share for {member} must be positive.")
        if member in seen:
            raise ValueError(f"{member} appears twice in the split.")
        seen.add(member)
        shares.append(Share(member, a))
        ssum += a
    if abs(ssum - total) > EPSILON:
        raise ValueError(f"Sum of shares ({ssum}) != total ({total}).")
    return shares

def receipt_shares(
    items: Sequence[Tuple[object, Sequence[Member]]],
    participants: Sequence[Member],
    payer: Member,
    subtotal,
    tax,
    tip,
    total,
) -> List[Share]:
    """
    items: (item_price, claimers) per receipt line. An unclaimed line is split
    among all participants.

    1. Each line is divided evenly among its claimers.
    2. A gap between the line prices and the printed subtotal is spread in
       proportion to each participant's share so far.
    3. Tax and tip are added in proportion to each base share.
    4. Shares are rounded to the cent; the payer takes whatever remainder is
       needed for the shares to add up to the receipt total.
    Participants left with nothing are omitted.
    """
    if not participants:
        raise ValueError("No participants found.")
    subtotal = to_dec(subtotal)
    extra = to_dec(tax) + to_dec(tip)
    total = round2(to_dec(total))

    raw: Dict[Member, Decimal] = {p: ZERO for p in participants}
    items_sum = ZERO
    for price, claimers in items:
        price = to_dec(price)
        items_sum += price
        among = list(claimers) or list(participants)
        for m in among:
            if m not in raw:
                raise ValueError(f"{m} claimed an item but is not a participant.")
            raw[m] += price / len(among)

    gap = subtotal - items_sum
    base_total = sum(raw.values(), ZERO)
    if abs(gap) > EPSILON and base_total > 0:
        raw = {m: v + gap * v / base_total for m, v in raw.items()}

    multiplier = extra / subtotal if subtotal > 0 else ZERO
    raw = {m: v + v * multiplier for m, v in raw.items()}

    # payer last so they absorb the rounding remainder
    with_share = [m for m in participants if raw[m] > Decimal("0.001") and m != payer]
    shares = []
    running = ZERO
    for m in with_share:
        amt = round2(raw[m])
        shares.append(Share(m, amt))
        running += amt
    remainder = total - running
    payer_takes = payer in raw and raw[payer] > Decimal("0.001")
    adjustment = remainder - round2(raw[payer]) if payer_takes else remainder
    if abs(adjustment) > EPSILON:
        logger.warning("Receipt total %s is %s off the itemised shares; absorbed by %s",
                       total, adjustment, payer if payer_takes else "the last participant")
    if payer_takes:
        shares.append(Share(payer, remainder))
    elif remainder != 0:
        # payer took nothing; keep the total exact on the last share
        if not shares:
            raise ValueError("Receipt has a total but no claimed amounts.")
        last = shares.pop()
        shares.append(Share(last.member, last.amount + remainder))
    return shares
