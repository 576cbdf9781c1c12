"""
Persistence of expenses: a record and its shares are written together or not at all.
"""
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from main import save_expense
from models import Expense, ExpenseRecord, ExpenseShare, Group, Member, Share


def test_failed_share_insert_leaves_no_expense(engine):
    with Session(engine) as session:
        group = Group(name="Trip")
        session.add(group)
        session.commit()
        session.refresh(group)
        group_id = group.id

        # member_id is NOT NULL, so the share row cannot be written
        broken = Expense(Member("user", 1), Decimal("10.00"), (Share(Member("user", None), Decimal("10.00")),))
        with pytest.raises(IntegrityError):
            save_expense(session, group_id, broken, "Broken")
        session.rollback()

    with Session(engine) as session:
        assert session.exec(select(ExpenseRecord).where(ExpenseRecord.group_id == group_id)).all() == []
        assert session.exec(select(ExpenseShare)).all() == []


def test_expense_and_shares_saved_together(engine):
    with Session(engine) as session:
        group = Group(name="Trip")
        session.add(group)
        session.commit()
        session.refresh(group)

        a, b = Member("user", 1), Member("user", 2)
        record = save_expense(session, group.id, Expense(a, Decimal("9.00"), (Share(a, Decimal("4.50")), Share(b, Decimal("4.50")))), "Lunch")
        shares = session.exec(select(ExpenseShare).where(ExpenseShare.expense_id == record.id)).all()
        assert sorted(s.member_id for s in shares) == [1, 2]
