from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

from models import Account, Budget, BudgetPeriod, Transaction, TransactionType, User

# Decimal on the way in, JSON number on the way out.
Money = Annotated[
    Decimal, PlainSerializer(float, return_type=float, when_used="json")
]


# Input bounds; both stay inside a signed 64-bit INTEGER column.
MAX_AMOUNT = Decimal("99999999999.99")
MAX_ID = 2**63 - 1


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TransactionIn(CamelModel):
    account_id: int = Field(..., gt=0, le=MAX_ID)
    category_id: int = Field(..., gt=0, le=MAX_ID)
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    type: TransactionType
    date: Optional[datetime] = None
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("date")
    @classmethod
    def normalize_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class TransactionOut(CamelModel):
    id: int
    user_id: int
    account_id: int
    category_id: int
    amount: Money
    type: TransactionType
    date: datetime
    description: Optional[str]

    @classmethod
    def from_record(cls, txn: Transaction) -> "TransactionOut":
        return cls(
            id=txn.id,
            user_id=txn.user_id,
            account_id=txn.account_id,
            category_id=txn.category_id,
            amount=cents_to_decimal(txn.amount_cents),
            type=txn.type,
            date=txn.date,
            description=txn.description,
        )


class UserIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(
        ..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$"
    )
    password: str = Field(..., min_length=8, max_length=72)


class UserOut(CamelModel):
    id: int
    name: str
    email: str

    @classmethod
    def from_record(cls, user: User) -> "UserOut":
        return cls(id=user.id, name=user.name, email=user.email)


class AccountIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: str = Field(..., min_length=1, max_length=50)
    balance: Decimal = Field(
        default=Decimal("0"), ge=-MAX_AMOUNT, le=MAX_AMOUNT, allow_inf_nan=False
    )


class AccountUpdate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: str = Field(..., min_length=1, max_length=50)
    balance: Optional[Decimal] = Field(
        default=None, ge=-MAX_AMOUNT, le=MAX_AMOUNT, allow_inf_nan=False
    )


class AccountOut(CamelModel):
    id: int
    user_id: int
    name: str
    type: str
    balance: Money

    @classmethod
    def from_record(cls, account: Account) -> "AccountOut":
        return cls(
            id=account.id,
            user_id=account.user_id,
            name=account.name,
            type=account.type,
            balance=cents_to_decimal(account.balance_cents),
        )


class BalanceReportOut(CamelModel):
    account_id: int
    balance: Money
    expected_balance: Money
    drift: Money


class CategoryIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType


class CategoryOut(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType


class BudgetIn(CamelModel):
    category_id: int = Field(..., gt=0, le=MAX_ID)
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    period: BudgetPeriod = BudgetPeriod.monthly


class BudgetOut(CamelModel):
    id: int
    user_id: int
    category_id: int
    amount: Money
    period: BudgetPeriod

    @classmethod
    def from_record(cls, budget: Budget) -> "BudgetOut":
        return cls(
            id=budget.id,
            user_id=budget.user_id,
            category_id=budget.category_id,
            amount=cents_to_decimal(budget.amount_cents),
            period=budget.period,
        )
