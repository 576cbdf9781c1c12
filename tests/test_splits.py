"""
Share policies: equal, exact and receipt splits all hand the engine shares
that add up to the expense amount.
"""
from decimal import Decimal

import pytest

from compute import compute_balances
from models import Expense, Member
from splits import equal_shares, exact_shares, receipt_shares

A = Member("user", 1)
B = Member("user", 2)
C = Member("user", 3)
P = Member("placeholder", 7)


def _amounts(shares):
    return {s.member: s.amount for s in shares}


# ── equal ──────────────────────────────────────────────────────────────────

def test_equal_split_even():
    assert _amounts(equal_shares(Decimal("30"), [A, B, C])) == {
        A: Decimal("10.00"), B: Decimal("10.00"), C: Decimal("10.00"),
    }


def test_equal_split_leftover_cents_go_to_first_members():
    shares = _amounts(equal_shares(Decimal("10.00"), [A, B, C]))
    assert shares == {A: Decimal("3.34"), B: Decimal("3.33"), C: Decimal("3.33")}

    shares = _amounts(equal_shares("0.05", [A, B, C]))
    assert shares == {A: Decimal("0.02"), B: Decimal("0.02"), C: Decimal("0.01")}


def test_equal_split_requires_members():
    with pytest.raises(ValueError):
        equal_shares(Decimal("10"), [])


def test_equal_split_rejects_duplicates():
    with pytest.raises(ValueError):
        equal_shares(Decimal("10"), [A, A])


# ── exact ──────────────────────────────────────────────────────────────────

def test_exact_split_accepts_matching_sum():
    shares = exact_shares(Decimal("100"), [(A, "60"), (B, "25"), (P, "15")])
    assert sum(s.amount for s in shares) == Decimal("100")


def test_exact_split_rejects_mismatch():
    with pytest.raises(ValueError):
        exact_shares(Decimal("30"), [(A, "10"), (B, "10")])


def test_exact_split_rejects_non_positive():
    with pytest.raises(ValueError):
        exact_shares(Decimal("10"), [(A, "10"), (B, "0")])


# ── receipt ────────────────────────────────────────────────────────────────

def test_receipt_claimed_and_unclaimed_items():
    items = [
        (Decimal("12.00"), [A]),        # A's main
        (Decimal("8.00"), [B, C]),      # shared starter
        (Decimal("6.00"), []),          # unclaimed, split three ways
    ]
    shares = _amounts(receipt_shares(items, [A, B, C], A, "26.00", "0", "0", "26.00"))
    assert shares == {B: Decimal("6.00"), C: Decimal("6.00"), A: Decimal("14.00")}


def test_receipt_tax_and_tip_are_proportional():
    items = [(Decimal("30.00"), [A]), (Decimal("10.00"), [B])]
    shares = _amounts(receipt_shares(items, [A, B], A, "40.00", "4.00", "6.00", "50.00"))
    assert shares == {B: Decimal("12.50"), A: Decimal("37.50")}


def test_receipt_subtotal_gap_is_spread():
    # printed subtotal is 2.00 more than the item lines
    items = [(Decimal("15.00"), [A]), (Decimal("3.00"), [B])]
    shares = _amounts(receipt_shares(items, [A, B], B, "20.00", "0", "0", "20.00"))
    assert shares[A] == Decimal("16.67")
    assert shares[B] == Decimal("3.33")


def test_receipt_payer_absorbs_rounding():
    items = [(Decimal("10.00"), [])]
    shares = receipt_shares(items, [A, B, C], C, "10.00", "1.00", "0", "11.00")
    assert shares[-1].member == C
    assert sum(s.amount for s in shares) == Decimal("11.00")
    compute_balances([Expense(C, Decimal("11.00"), tuple(shares))])


def test_receipt_skips_participants_without_items():
    items = [(Decimal("5.00"), [A])]
    shares = receipt_shares(items, [A, B], A, "5.00", "0", "0", "5.00")
    assert [s.member for s in shares] == [A]


def test_receipt_rejects_claim_by_outsider():
    with pytest.raises(ValueError):
        receipt_shares([(Decimal("5.00"), [P])], [A, B], A, "5.00", "0", "0", "5.00")


def test_receipt_total_gap_is_logged(caplog):
    items = [(Decimal("50.00"), [B])]
    with caplog.at_level("WARNING", logger="splits"):
        shares = receipt_shares(items, [A, B], A, "50.00", "0", "0", "100.00")
    assert _amounts(shares) == {B: Decimal("100.00")}
    assert "off the itemised shares" in caplog.text


def test_receipt_without_gap_logs_nothing(caplog):
    items = [(Decimal("30.00"), [A]), (Decimal("10.00"), [B])]
    with caplog.at_level("WARNING", logger="splits"):
        receipt_shares(items, [A, B], A, "40.00", "4.00", "6.00", "50.00")
    assert caplog.text == ""
