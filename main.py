import logging
from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session, select, SQLModel, create_engine
from typing import Dict, List, Optional, Tuple
from datetime import datetime
from decimal import Decimal

import config
from models import (
    USER, PLACEHOLDER, MEMBER_KINDS,
    Member, Share, Expense, Settlement,
    User, UserBase, Group, GroupMember, PlaceholderUser,
    ExpenseRecord, ExpenseShare, SettlementRecord,
)
from compute import (
    DataIntegrityError, CurrencyMismatchError, ZERO,
    compute_balances, suggest_settlements, validate_settlement, round2,
)
from currency import SUPPORTED_CURRENCIES, format_amount
from splits import equal_shares, exact_shares, receipt_shares

logger = logging.getLogger(__name__)

connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(config.DATABASE_URL, echo=config.SQL_ECHO, connect_args=connect_args)

app = FastAPI(title="FairShare Ledger API")

def create_db_and_tables():
    SQLModel.metadata.create_all(engine)

@app.on_event("startup")
def on_startup():
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    create_db_and_tables()

def get_session():
    with Session(engine) as session:
        yield session

# ========== Error mapping ==========
@app.exception_handler(DataIntegrityError)
async def data_integrity_handler(request: Request, exc: DataIntegrityError):
    logger.warning("Rejected inconsistent ledger data on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=422, content={"detail": str(exc)})

@app.exception_handler(CurrencyMismatchError)
async def currency_mismatch_handler(request: Request, exc: CurrencyMismatchError):
    logger.warning("Rejected mixed currencies on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})

# ========== Request bodies ==========
from pydantic import BaseModel

class MemberRef(BaseModel):
    kind: str = USER
    id: int

class ShareIn(BaseModel):
    member: MemberRef
    share_amount: Decimal

class ExpenseIn(BaseModel):
    description: str
    amount: Decimal
    payer: MemberRef
    currency: Optional[str] = None
    category: Optional[str] = None
    date: Optional[datetime] = None
    split: str = "equal"  # "equal" or "exact"
    split_among: List[MemberRef] = []  # equal split; empty -> whole group
    shares: List[ShareIn] = []  # exact split

class SettlementIn(BaseModel):
    from_member: MemberRef
    to_member: MemberRef
    amount: Decimal
    currency: Optional[str] = None

class ReceiptItemIn(BaseModel):
    name: str
    price: Decimal
    claimed_by: List[MemberRef] = []

class ReceiptIn(BaseModel):
    payer: MemberRef
    merchant_name: Optional[str] = None
    receipt_date: Optional[datetime] = None
    participants: List[MemberRef] = []  # empty -> whole group
    items: List[ReceiptItemIn]
    subtotal: Decimal
    tax_amount: Decimal = Decimal("0")
    tip_amount: Decimal = Decimal("0")
    total_amount: Decimal

class GroupIn(BaseModel):
    name: str
    description: Optional[str] = None
    currency: Optional[str] = None

class GroupUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    currency: Optional[str] = None

class PaymentInfoIn(BaseModel):
    payment_info: Optional[str] = None

class MemberIn(BaseModel):
    user_id: int

class PlaceholderIn(BaseModel):
    name: str

class ClaimIn(BaseModel):
    user_id: int

# ========== Lookups ==========
def get_group_or_404(session: Session, group_id: int) -> Group:
    group = session.get(Group, group_id)
    if group is None:
        raise HTTPException(status_code=404, detail=f"Group {group_id} not found.")
    return group

def is_group_user(session: Session, group_id: int, user_id: int) -> bool:
    row = session.exec(
        select(GroupMember).where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
    ).first()
    return row is not None

def group_members(session: Session, group_id: int) -> List[Member]:
    """Users in the group plus unclaimed placeholders, in Member order."""
    user_ids = session.exec(select(GroupMember.user_id).where(GroupMember.group_id == group_id)).all()
    placeholders = session.exec(
        select(PlaceholderUser).where(PlaceholderUser.group_id == group_id, PlaceholderUser.claimed_by == None)  # noqa: E711
    ).all()
    members = [Member(USER, uid) for uid in user_ids] + [Member(PLACEHOLDER, p.id) for p in placeholders]
    return sorted(members)

def claimed_placeholders(session: Session, group_id: int) -> Dict[Member, Member]:
    """placeholder member -> the user who claimed it"""
    rows = session.exec(
        select(PlaceholderUser).where(PlaceholderUser.group_id == group_id, PlaceholderUser.claimed_by != None)  # noqa: E711
    ).all()
    return {Member(PLACEHOLDER, p.id): Member(USER, p.claimed_by) for p in rows}

def member_directory(session: Session, group_id: int) -> Dict[Member, dict]:
    out = {}
    users = session.exec(
        select(User).join(GroupMember, GroupMember.user_id == User.id).where(GroupMember.group_id == group_id)
    ).all()
    for u in users:
        out[Member(USER, u.id)] = {"name": u.name, "payment_info": u.payment_info}
    for p in session.exec(select(PlaceholderUser).where(PlaceholderUser.group_id == group_id)).all():
        out[Member(PLACEHOLDER, p.id)] = {"name": p.name, "payment_info": None}
    return out

def resolve_member(session: Session, group_id: int, ref: MemberRef) -> Member:
    """Checks that ref names an active member of the group; 400 otherwise."""
    if ref.kind not in MEMBER_KINDS:
        raise HTTPException(status_code=400, detail=f"Unknown member kind '{ref.kind}'.")
    if ref.kind == USER:
        if not is_group_user(session, group_id, ref.id):
            raise HTTPException(status_code=400, detail=f"User {ref.id} is not a member of this group.")
    else:
        p = session.get(PlaceholderUser, ref.id)
        if p is None or p.group_id != group_id:
            raise HTTPException(status_code=400, detail=f"Placeholder user {ref.id} not found in this group.")
        if p.claimed_by is not None:
            raise HTTPException(status_code=400, detail=f"Placeholder user {ref.id} was claimed by user {p.claimed_by}.")
    return Member(ref.kind, ref.id)

def check_currency_code(group: Group, currency: Optional[str]) -> None:
    if currency is not None and currency.upper() != group.currency:
        raise CurrencyMismatchError(f"Group {group.id} uses {group.currency}, got {currency.upper()}.")

def member_out(m: Member, directory: Dict[Member, dict]) -> dict:
    info = directory.get(m, {})
    return {"kind": m.kind, "id": m.id, "name": info.get("name"), "payment_info": info.get("payment_info")}

def member_has_events(session: Session, group_id: int, m: Member) -> bool:
    """True if m paid, shared in, sent or received anything in the group."""
    paid = session.exec(select(ExpenseRecord.id).where(
        ExpenseRecord.group_id == group_id, ExpenseRecord.payer_kind == m.kind, ExpenseRecord.payer_id == m.id)).first()
    shared = session.exec(select(ExpenseShare.id).join(ExpenseRecord, ExpenseShare.expense_id == ExpenseRecord.id).where(
        ExpenseRecord.group_id == group_id, ExpenseShare.member_kind == m.kind, ExpenseShare.member_id == m.id)).first()
    sent = session.exec(select(SettlementRecord.id).where(
        SettlementRecord.group_id == group_id, SettlementRecord.from_kind == m.kind, SettlementRecord.from_id == m.id)).first()
    received = session.exec(select(SettlementRecord.id).where(
        SettlementRecord.group_id == group_id, SettlementRecord.to_kind == m.kind, SettlementRecord.to_id == m.id)).first()
    return any(x is not None for x in (paid, shared, sent, received))

def group_has_events(session: Session, group_id: int) -> bool:
    expense = session.exec(select(ExpenseRecord.id).where(ExpenseRecord.group_id == group_id)).first()
    settlement = session.exec(select(SettlementRecord.id).where(SettlementRecord.group_id == group_id)).first()
    return expense is not None or settlement is not None

# ========== Event loading ==========
def load_events(session: Session, group: Group) -> Tuple[List[Expense], List[Settlement]]:
    """
    Reads every expense and settlement of a group as engine events.
    Claimed placeholders are folded into the user who claimed them.
    """
    claimed = claimed_placeholders(session, group.id)

    def norm(kind: str, id_: int) -> Member:
        m = Member(kind, id_)
        return claimed.get(m, m)

    records = session.exec(
        select(ExpenseRecord).where(ExpenseRecord.group_id == group.id).order_by(ExpenseRecord.id)
    ).all()
    shares_by_expense: Dict[int, Dict[Member, Decimal]] = {}
    if records:
        rows = session.exec(
            select(ExpenseShare).where(ExpenseShare.expense_id.in_([r.id for r in records])).order_by(ExpenseShare.id)
        ).all()
        for s in rows:
            per = shares_by_expense.setdefault(s.expense_id, {})
            m = norm(s.member_kind, s.member_id)
            per[m] = per.get(m, ZERO) + s.share_amount

    expenses = [
        Expense(
            payer=norm(r.payer_kind, r.payer_id),
            amount=r.amount,
            shares=tuple(Share(m, a) for m, a in shares_by_expense.get(r.id, {}).items()),
            currency=group.currency,
        )
        for r in records
    ]
    settlements = []
    for r in session.exec(
        select(SettlementRecord).where(SettlementRecord.group_id == group.id).order_by(SettlementRecord.id)
    ).all():
        from_m, to_m = norm(r.from_kind, r.from_id), norm(r.to_kind, r.to_id)
        if from_m == to_m:
            # became a self-payment once a placeholder was claimed; it nets out
            continue
        settlements.append(Settlement(from_m, to_m, r.amount, group.currency))
    return expenses, settlements

def build_expense(session: Session, group: Group, payload: ExpenseIn) -> Expense:
    check_currency_code(group, payload.currency)
    amount = round2(payload.amount)
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be at least one cent.")
    payer = resolve_member(session, group.id, payload.payer)
    try:
        if payload.split == "equal":
            among = [resolve_member(session, group.id, r) for r in payload.split_among]
            shares = equal_shares(amount, among or group_members(session, group.id))
        elif payload.split == "exact":
            pairs = [(resolve_member(session, group.id, s.member), s.share_amount) for s in payload.shares]
            shares = exact_shares(amount, pairs)
        else:
            raise HTTPException(status_code=400, detail=f"Unknown split type '{payload.split}'.")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return Expense(payer=payer, amount=amount, shares=tuple(shares), currency=group.currency)

def save_expense(session: Session, group_id: int, exp: Expense, description: str,
                 category: Optional[str] = None, date: Optional[datetime] = None,
                 record: Optional[ExpenseRecord] = None) -> ExpenseRecord:
    # engine check before anything is written
    compute_balances([exp])
    if record is None:
        record = ExpenseRecord(group_id=group_id, payer_id=exp.payer.id, amount=exp.amount, description=description)
    record.payer_kind = exp.payer.kind
    record.payer_id = exp.payer.id
    record.amount = exp.amount
    record.description = description
    record.category = category
    if date is not None:
        record.date = date
    session.add(record)
    # flush for record.id; record and shares land in one commit
    session.flush()
    for sh in exp.shares:
        session.add(ExpenseShare(expense_id=record.id, member_kind=sh.member.kind,
                                 member_id=sh.member.id, share_amount=sh.amount))
    session.commit()
    session.refresh(record)
    return record

def expense_out(record: ExpenseRecord, shares: List[ExpenseShare]) -> dict:
    return {
        "id": record.id,
        "description": record.description,
        "category": record.category,
        "date": record.date.isoformat() if record.date else None,
        "amount": str(record.amount),
        "payer": {"kind": record.payer_kind, "id": record.payer_id},
        "shares": [{"kind": s.member_kind, "id": s.member_id, "share_amount": str(s.share_amount)} for s in shares],
    }

# ========== User endpoints ==========
@app.post("/users", response_model=User)
def create_user(payload: UserBase, session: Session = Depends(get_session)):
    u = User.model_validate(payload)
    session.add(u)
    session.commit()
    session.refresh(u)
    logger.info("Created user %s", u.id)
    return u

@app.get("/users", response_model=List[User])
def list_users(session: Session = Depends(get_session)):
    return session.exec(select(User)).all()

@app.get("/users/{user_id}/payment-info")
def get_payment_info(user_id: int, session: Session = Depends(get_session)):
    u = session.get(User, user_id)
    if u is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found.")
    return {"payment_info": u.payment_info}

@app.put("/users/{user_id}/payment-info")
def update_payment_info(user_id: int, payload: PaymentInfoIn, session: Session = Depends(get_session)):
    u = session.get(User, user_id)
    if u is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found.")
    u.payment_info = (payload.payment_info or "").strip() or None
    session.add(u)
    session.commit()
    logger.info("Updated payment info for user %s", user_id)
    return {"payment_info": u.payment_info}

# ========== Group endpoints ==========
@app.post("/groups", response_model=Group, status_code=201)
def create_group(payload: GroupIn, session: Session = Depends(get_session)):
    currency = (payload.currency or config.DEFAULT_CURRENCY).upper()
    if currency not in SUPPORTED_CURRENCIES:
        raise HTTPException(status_code=400, detail=f"Unsupported currency '{currency}'.")
    g = Group(name=payload.name, description=payload.description, currency=currency)
    session.add(g)
    session.commit()
    session.refresh(g)
    logger.info("Created group %s (%s)", g.id, g.currency)
    return g

@app.get("/groups", response_model=List[Group])
def list_groups(session: Session = Depends(get_session)):
    return session.exec(select(Group)).all()

@app.get("/groups/{group_id}", response_model=Group)
def get_group(group_id: int, session: Session = Depends(get_session)):
    return get_group_or_404(session, group_id)

@app.patch("/groups/{group_id}", response_model=Group)
def update_group(group_id: int, payload: GroupUpdate, session: Session = Depends(get_session)):
    group = get_group_or_404(session, group_id)
    if payload.name is not None:
        name = payload.name.strip()
        if not name:
            raise HTTPException(status_code=400, detail="Group name is required.")
        group.name = name
    if payload.description is not None:
        group.description = payload.description.strip() or None
    if payload.currency is not None:
        currency = payload.currency.upper()
        if currency not in SUPPORTED_CURRENCIES:
            raise HTTPException(status_code=400, detail=f"Unsupported currency '{currency}'.")
        # recorded amounts are in the old currency
        if currency != group.currency and group_has_events(session, group_id):
            raise HTTPException(status_code=409,
                                detail="Cannot change currency of a group with expenses or settlements.")
        group.currency = currency
    session.add(group)
    session.commit()
    session.refresh(group)
    logger.info("Updated group %s", group_id)
    return group

# ========== Member endpoints ==========
@app.post("/groups/{group_id}/members")
def add_member(group_id: int, payload: MemberIn, session: Session = Depends(get_session)):
    get_group_or_404(session, group_id)
    if session.get(User, payload.user_id) is None:
        raise HTTPException(status_code=404, detail=f"User {payload.user_id} not found.")
    if is_group_user(session, group_id, payload.user_id):
        return {"status": "already_joined"}
    session.add(GroupMember(group_id=group_id, user_id=payload.user_id))
    session.commit()
    logger.info("User %s joined group %s", payload.user_id, group_id)
    return {"status": "joined"}

@app.get("/groups/{group_id}/members")
def list_members(group_id: int, session: Session = Depends(get_session)):
    get_group_or_404(session, group_id)
    directory = member_directory(session, group_id)
    return [member_out(m, directory) for m in group_members(session, group_id)]

@app.delete("/groups/{group_id}/members/{user_id}")
def remove_member(group_id: int, user_id: int, session: Session = Depends(get_session)):
    get_group_or_404(session, group_id)
    row = session.exec(
        select(GroupMember).where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
    ).first()
    if row is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} is not a member of this group.")
    claimed = [p for p, u in claimed_placeholders(session, group_id).items() if u.id == user_id]
    if any(member_has_events(session, group_id, m) for m in [Member(USER, user_id)] + claimed):
        raise HTTPException(status_code=409,
                            detail=f"User {user_id} has expenses or settlements in this group.")
    session.delete(row)
    session.commit()
    logger.info("User %s removed from group %s", user_id, group_id)
    return {"status": "removed"}

# ========== Placeholder endpoints ==========
@app.post("/groups/{group_id}/placeholders", response_model=PlaceholderUser, status_code=201)
def create_placeholder(group_id: int, payload: PlaceholderIn, session: Session = Depends(get_session)):
    get_group_or_404(session, group_id)
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Placeholder name is required.")
    p = PlaceholderUser(group_id=group_id, name=name)
    session.add(p)
    session.commit()
    session.refresh(p)
    logger.info("Created placeholder %s in group %s", p.id, group_id)
    return p

@app.get("/groups/{group_id}/placeholders", response_model=List[PlaceholderUser])
def list_placeholders(group_id: int, session: Session = Depends(get_session)):
    get_group_or_404(session, group_id)
    return session.exec(select(PlaceholderUser).where(PlaceholderUser.group_id == group_id)).all()

@app.delete("/groups/{group_id}/placeholders/{placeholder_id}")
def delete_placeholder(group_id: int, placeholder_id: int, session: Session = Depends(get_session)):
    get_group_or_404(session, group_id)
    p = session.get(PlaceholderUser, placeholder_id)
    if p is None or p.group_id != group_id:
        raise HTTPException(status_code=404, detail=f"Placeholder user {placeholder_id} not found in this group.")
    if p.claimed_by is not None:
        raise HTTPException(status_code=400, detail="Cannot delete claimed placeholder users.")
    if member_has_events(session, group_id, Member(PLACEHOLDER, placeholder_id)):
        raise HTTPException(status_code=400,
                            detail="Cannot delete placeholder user with associated expenses or settlements.")
    session.delete(p)
    session.commit()
    logger.info("Deleted placeholder %s from group %s", placeholder_id, group_id)
    return {"status": "deleted"}

@app.post("/groups/{group_id}/placeholders/{placeholder_id}/claim", response_model=PlaceholderUser)
def claim_placeholder(group_id: int, placeholder_id: int, payload: ClaimIn, session: Session = Depends(get_session)):
    get_group_or_404(session, group_id)
    p = session.get(PlaceholderUser, placeholder_id)
    if p is None or p.group_id != group_id:
        raise HTTPException(status_code=404, detail=f"Placeholder user {placeholder_id} not found in this group.")
    if p.claimed_by is not None:
        raise HTTPException(status_code=409, detail=f"Placeholder user {placeholder_id} is already claimed.")
    if not is_group_user(session, group_id, payload.user_id):
        raise HTTPException(status_code=400, detail=f"User {payload.user_id} is not a member of this group.")
    p.claimed_by = payload.user_id
    p.claimed_at = datetime.utcnow()
    session.add(p)
    session.commit()
    session.refresh(p)
    logger.info("Placeholder %s claimed by user %s", placeholder_id, payload.user_id)
    return p

# ========== Expense endpoints ==========
@app.post("/groups/{group_id}/expenses", status_code=201)
def create_expense(group_id: int, payload: ExpenseIn, session: Session = Depends(get_session)):
    group = get_group_or_404(session, group_id)
    exp = build_expense(session, group, payload)
    record = save_expense(session, group_id, exp, payload.description, payload.category, payload.date)
    logger.info("Added expense %s (%s) to group %s", record.id, record.amount, group_id)
    return {"id": record.id}

@app.get("/groups/{group_id}/expenses")
def list_expenses(group_id: int, session: Session = Depends(get_session)):
    get_group_or_404(session, group_id)
    records = session.exec(
        select(ExpenseRecord).where(ExpenseRecord.group_id == group_id).order_by(ExpenseRecord.date.desc())
    ).all()
    results = []
    for r in records:
        shares = session.exec(select(ExpenseShare).where(ExpenseShare.expense_id == r.id)).all()
        results.append(expense_out(r, shares))
    return results

def get_expense_or_404(session: Session, group_id: int, expense_id: int) -> ExpenseRecord:
    record = session.get(ExpenseRecord, expense_id)
    if record is None or record.group_id != group_id:
        raise HTTPException(status_code=404, detail=f"Expense {expense_id} not found.")
    return record

def delete_shares(session: Session, expense_id: int) -> None:
    for s in session.exec(select(ExpenseShare).where(ExpenseShare.expense_id == expense_id)).all():
        session.delete(s)

@app.put("/groups/{group_id}/expenses/{expense_id}")
def update_expense(group_id: int, expense_id: int, payload: ExpenseIn, session: Session = Depends(get_session)):
    group = get_group_or_404(session, group_id)
    record = get_expense_or_404(session, group_id, expense_id)
    exp = build_expense(session, group, payload)
    delete_shares(session, expense_id)
    save_expense(session, group_id, exp, payload.description, payload.category, payload.date, record=record)
    logger.info("Edited expense %s in group %s", expense_id, group_id)
    return {"id": expense_id}

@app.delete("/groups/{group_id}/expenses/{expense_id}")
def delete_expense(group_id: int, expense_id: int, session: Session = Depends(get_session)):
    get_group_or_404(session, group_id)
    record = get_expense_or_404(session, group_id, expense_id)
    delete_shares(session, expense_id)
    session.delete(record)
    session.commit()
    logger.info("Deleted expense %s from group %s", expense_id, group_id)
    return {"status": "deleted"}

# ========== Receipt split ==========
@app.post("/groups/{group_id}/receipts", status_code=201)
def create_expense_from_receipt(group_id: int, payload: ReceiptIn, session: Session = Depends(get_session)):
    group = get_group_or_404(session, group_id)
    total = round2(payload.total_amount)
    if total <= 0:
        raise HTTPException(status_code=400, detail="Receipt total must be at least one cent.")
    payer = resolve_member(session, group_id, payload.payer)
    participants = [resolve_member(session, group_id, r) for r in payload.participants] \
        or group_members(session, group_id)
    items = [(i.price, [resolve_member(session, group_id, c) for c in i.claimed_by]) for i in payload.items]
    try:
        shares = receipt_shares(items, participants, payer, payload.subtotal,
                                payload.tax_amount, payload.tip_amount, total)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    exp = Expense(payer=payer, amount=total, shares=tuple(shares), currency=group.currency)
    when = payload.receipt_date or datetime.utcnow()
    description = f"{payload.merchant_name or 'Receipt'} ({when.strftime('%d %b')})"
    record = save_expense(session, group_id, exp, description, date=payload.receipt_date)
    logger.info("Added receipt expense %s (%d items) to group %s", record.id, len(payload.items), group_id)
    return {"id": record.id, "shares": [{"kind": s.member.kind, "id": s.member.id, "share_amount": str(s.amount)}
                                         for s in shares]}

# ========== Settlement endpoints ==========
@app.post("/groups/{group_id}/settlements", status_code=201)
def record_settlement(group_id: int, payload: SettlementIn, session: Session = Depends(get_session)):
    group = get_group_or_404(session, group_id)
    check_currency_code(group, payload.currency)
    from_m = resolve_member(session, group_id, payload.from_member)
    to_m = resolve_member(session, group_id, payload.to_member)
    amount = round2(payload.amount)
    validate_settlement(Settlement(from_m, to_m, amount))
    rec = SettlementRecord(group_id=group_id, from_kind=from_m.kind, from_id=from_m.id,
                           to_kind=to_m.kind, to_id=to_m.id, amount=amount)
    session.add(rec)
    session.commit()
    session.refresh(rec)
    logger.info("Recorded settlement %s: %s -> %s %s", rec.id, from_m, to_m, rec.amount)
    return {"id": rec.id}

@app.get("/groups/{group_id}/settlements")
def list_settlements(group_id: int, session: Session = Depends(get_session)):
    get_group_or_404(session, group_id)
    rows = session.exec(select(SettlementRecord).where(SettlementRecord.group_id == group_id)).all()
    return [
        {
            "id": r.id,
            "from": {"kind": r.from_kind, "id": r.from_id},
            "to": {"kind": r.to_kind, "id": r.to_id},
            "amount": str(r.amount),
            "paid_at": r.paid_at.isoformat(),
        }
        for r in rows
    ]

# ========== Balance endpoints ==========
def balance_report(group: Group, members: List[Member], expenses: List[Expense],
                   settlements: List[Settlement], directory: Dict[Member, dict]) -> dict:
    net = compute_balances(expenses, settlements, members)
    paid = {m: ZERO for m in net}
    owed = {m: ZERO for m in net}
    for e in expenses:
        paid[e.payer] += e.amount
        for s in e.shares:
            owed[s.member] += s.amount

    balances = [
        {
            "member": member_out(m, directory),
            "total_paid": str(round2(paid[m])),
            "total_owed": str(round2(owed[m])),
            "net_balance": str(round2(net[m])),
            "display": format_amount(abs(net[m]), group.currency),
        }
        for m in sorted(net)
    ]
    total_expenses = sum((e.amount for e in expenses), ZERO)
    users = sum(1 for m in members if m.kind == USER)
    placeholders = len(members) - users
    average = round2(total_expenses / len(members)) if members else ZERO
    return {
        "group_id": group.id,
        "currency": group.currency,
        "balances": balances,
        "settlements": settlements_out(suggest_settlements(net), group, directory),
        "totals": {
            "total_expenses": str(round2(total_expenses)),
            "total_members": users,
            "total_placeholders": placeholders,
            "total_participants": len(members),
            "average_per_member": str(average),
        },
    }

def settlements_out(transfers, group: Group, directory: Dict[Member, dict]) -> List[dict]:
    return [
        {
            "from": member_out(t.from_member, directory),
            "to": member_out(t.to_member, directory),
            "amount": str(round2(t.amount)),
            "display": format_amount(t.amount, group.currency),
        }
        for t in transfers
    ]

@app.get("/groups/{group_id}/balances")
def group_balances(group_id: int, session: Session = Depends(get_session)):
    group = get_group_or_404(session, group_id)
    expenses, settlements = load_events(session, group)
    return balance_report(group, group_members(session, group_id), expenses, settlements,
                          member_directory(session, group_id))

@app.get("/groups/{group_id}/settlements/suggested")
def suggested_settlements(group_id: int, session: Session = Depends(get_session)):
    group = get_group_or_404(session, group_id)
    expenses, settlements = load_events(session, group)
    net = compute_balances(expenses, settlements, group_members(session, group_id))
    return {"settlements": settlements_out(suggest_settlements(net), group, member_directory(session, group_id))}

@app.post("/groups/{group_id}/balances/preview")
def preview_balances(group_id: int, payload: ExpenseIn, session: Session = Depends(get_session)):
    """Balances as they would be with one more expense. Nothing is written."""
    group = get_group_or_404(session, group_id)
    expenses, settlements = load_events(session, group)
    extra = build_expense(session, group, payload)
    return balance_report(group, group_members(session, group_id), expenses + [extra], settlements,
                          member_directory(session, group_id))
