from dataclasses import dataclass
from typing import Optional, Tuple
from sqlmodel import SQLModel, Field
from datetime import datetime
from decimal import Decimal

USER = "user"
PLACEHOLDER = "placeholder"
MEMBER_KINDS = (USER, PLACEHOLDER)

# ============== Engine inputs / outputs ==============
@dataclass(frozen=True, order=True)
class Member:
    kind: str  # "user" or "placeholder"
    id: int

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"

@dataclass(frozen=True)
class Share:
    member: Member
    amount: Decimal

@dataclass(frozen=True)
class Expense:
    payer: Member
    amount: Decimal
    shares: Tuple[Share, ...]
    currency: Optional[str] = None  # None -> group currency

@dataclass(frozen=True)
class Settlement:
    from_member: Member
    to_member: Member
    amount: Decimal
    currency: Optional[str] = None

@dataclass(frozen=True)
class Transfer:
    from_member: Member
    to_member: Member
    amount: Decimal

# ============== Users ==============
class UserBase(SQLModel):
    name: str
    email: Optional[str] = None
    payment_info: Optional[str] = None

class User(UserBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

# ============== Groups ==============
class GroupBase(SQLModel):
    name: str
    description: Optional[str] = None
    currency: str = "GBP"  # USD, GBP, EUR or OTHER

class Group(GroupBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

class GroupMember(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="group.id", index=True)
    user_id: int = Field(foreign_key="user.id")
    joined_at: datetime = Field(default_factory=datetime.utcnow)

# ============== Placeholders (members without an account) ==============
class PlaceholderUser(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="group.id", index=True)
    name: str
    claimed_by: Optional[int] = Field(default=None, foreign_key="user.id")
    claimed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

# ============== Expenses ==============
class ExpenseRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="group.id", index=True)
    payer_kind: str = USER
    payer_id: int
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    description: str
    category: Optional[str] = None
    date: datetime = Field(default_factory=datetime.utcnow)
    created_at: datetime = Field(default_factory=datetime.utcnow)

class ExpenseShare(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    expense_id: int = Field(foreign_key="expenserecord.id", index=True)
    member_kind: str = USER
    member_id: int
    share_amount: Decimal = Field(max_digits=12, decimal_places=2)

# ============== Settlements (payments made outside the app) ==============
class SettlementRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="group.id", index=True)
    from_kind: str = USER
    from_id: int
    to_kind: str = USER
    to_id: int
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    paid_at: datetime = Field(default_factory=datetime.utcnow)
