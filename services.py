from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import bcrypt
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from errors import (
    BookkeepingError,
    Conflict,
    CreationError,
    DeletionError,
    InvalidTransactionData,
    NotFound,
    RetrievalError,
)
from models import Account, Budget, Category, Transaction, TransactionType, User
from schemas import (
    AccountIn,
    AccountUpdate,
    BudgetIn,
    CategoryIn,
    TransactionIn,
    UserIn,
)
from validation import to_cents

logger = logging.getLogger(__name__)


def signed_effect(txn_type: TransactionType | str, amount_cents: int) -> int:
    """Balance effect of a transaction: +amount for income, -amount for expense."""
    if txn_type == TransactionType.income:
        return amount_cents
    if txn_type == TransactionType.expense:
        return -amount_cents
    raise InvalidTransactionData(f"Unknown transaction type: {txn_type!r}")


def hash_password(password: str) -> str:
    # bcrypt only looks at the first 72 bytes.
    secret = password.encode("utf-8")[:72]
    return bcrypt.hashpw(secret, bcrypt.gensalt()).decode("utf-8")


class TransactionService:
    """Transaction records and the account balances they drive.

    Every mutating call is one unit of work: the transaction row and the
    account balance are committed together, and any failure rolls both back.

    ``update_policy`` selects how an update moves the balance:

    ``inverse_of_new``
        Overwrite the record, then apply the inverse of the *new* effect to
        the current balance of the new account. The previous amount, type and
        account are not consulted. This matches balances written by earlier
        versions of the service.
    ``reverse_and_reapply``
        Reverse the stored effect on the old account, then apply the new
        effect on the new account.
    """

    def __init__(
        self,
        session: Session,
        user_id: int,
        update_policy: Optional[str] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.update_policy = update_policy or get_settings().update_policy

    def list_all(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.id == transaction_id,
                Transaction.user_id == self.user_id,
            )
        )
        if not txn:
            raise NotFound("Transaction")
        return txn

    def _locked_account(self, account_id: int) -> Account:
        # Row lock where the backend supports it; SQLite ignores FOR UPDATE.
        # populate_existing makes the read reflect the committed balance.
        account = self.session.scalar(
            select(Account)
            .where(Account.id == account_id, Account.user_id == self.user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if not account:
            raise NotFound("Account")
        return account

    def create(self, data: TransactionIn) -> Transaction:
        amount_cents = to_cents(data.amount)
        delta = signed_effect(data.type, amount_cents)
        txn = Transaction(
            user_id=self.user_id,
            account_id=data.account_id,
            category_id=data.category_id,
            amount_cents=amount_cents,
            type=data.type,
            date=data.date or datetime.utcnow(),
            description=data.description,
        )
        try:
            self.session.add(txn)
            self.session.flush()
            # Relative update: concurrent creates on one account commute.
            result = self.session.execute(
                update(Account)
                .where(
                    Account.id == data.account_id,
                    Account.user_id == self.user_id,
                )
                .values(balance_cents=Account.balance_cents + delta)
            )
            if result.rowcount != 1:
                raise CreationError(
                    "Unable to create a new transaction: "
                    f"account {data.account_id} not found"
                )
            self.session.commit()
        except BookkeepingError:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.warning(
                f"transaction_create_failed: user_id={self.user_id} error={exc}"
            )
            raise CreationError() from exc
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: id={txn.id} account_id={txn.account_id} "
            f"delta_cents={delta}"
        )
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        amount_cents = to_cents(data.amount)
        signed_effect(data.type, amount_cents)
        try:
            if self.update_policy == "reverse_and_reapply":
                old_account = self._locked_account(txn.account_id)
                old_effect = signed_effect(txn.type, txn.amount_cents)
                old_account.balance_cents -= old_effect

            txn.account_id = data.account_id
            txn.category_id = data.category_id
            txn.amount_cents = amount_cents
            txn.type = data.type
            txn.date = data.date or txn.date
            txn.description = data.description
            self.session.flush()

            account = self._locked_account(txn.account_id)
            effect = signed_effect(txn.type, txn.amount_cents)
            if self.update_policy == "reverse_and_reapply":
                account.balance_cents += effect
            else:
                account.balance_cents -= effect
            self.session.commit()
        except BookkeepingError:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.warning(
                f"transaction_update_failed: id={transaction_id} error={exc}"
            )
            raise RetrievalError("Unable to update the transaction") from exc
        self.session.refresh(txn)
        logger.info(
            f"transaction_updated: id={txn.id} account_id={txn.account_id} "
            f"policy={self.update_policy} balance_cents={account.balance_cents}"
        )
        return txn

    def delete(self, transaction_id: int) -> Transaction:
        txn = self.get(transaction_id)
        try:
            account = self._locked_account(txn.account_id)
            effect = signed_effect(txn.type, txn.amount_cents)
            account.balance_cents -= effect
            self.session.flush()
            self.session.delete(txn)
            self.session.commit()
        except BookkeepingError:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.warning(
                f"transaction_delete_failed: id={transaction_id} error={exc}"
            )
            raise DeletionError("Unable to delete the transaction") from exc
        logger.info(
            f"transaction_deleted: id={transaction_id} account_id={account.id} "
            f"delta_cents={-effect}"
        )
        return txn


@dataclass
class BalanceReport:
    account_id: int
    balance_cents: int
    expected_cents: int

    @property
    def drift_cents(self) -> int:
        return self.balance_cents - self.expected_cents


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name, Account.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFound("Account")
        return account

    def net_effect_cents(self, account_id: int) -> int:
        signed = case(
            (Transaction.type == TransactionType.income, Transaction.amount_cents),
            else_=-Transaction.amount_cents,
        )
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(signed), 0)).where(
                    Transaction.account_id == account_id
                )
            ).scalar_one()
            or 0
        )

    def create(self, data: AccountIn) -> Account:
        if not self.session.get(User, self.user_id):
            raise NotFound("User")
        cents = to_cents(data.balance)
        account = Account(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type.strip(),
            opening_balance_cents=cents,
            balance_cents=cents,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        account = self.get(account_id)
        account.name = data.name.strip()
        account.type = data.type.strip()
        cents = to_cents(data.balance) if data.balance is not None else None
        if cents is not None and cents != account.balance_cents:
            # Explicit reset: move the opening value so existing transactions
            # still add up to the new balance.
            account.opening_balance_cents = cents - self.net_effect_cents(account.id)
            account.balance_cents = cents
            logger.info(f"account_balance_reset: id={account.id} balance_cents={cents}")
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> Account:
        account = self.get(account_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.account_id == account.id
            )
        )
        if in_use:
            raise Conflict("Account still has transactions")
        self.session.delete(account)
        self.session.commit()
        return account

    def balance_report(self, account_id: int) -> BalanceReport:
        account = self.get(account_id)
        expected = account.opening_balance_cents + self.net_effect_cents(account.id)
        report = BalanceReport(
            account_id=account.id,
            balance_cents=account.balance_cents,
            expected_cents=expected,
        )
        if report.drift_cents:
            logger.warning(
                f"balance_drift: account_id={account.id} "
                f"drift_cents={report.drift_cents}"
            )
        return report


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[User]:
        return self.session.scalars(select(User).order_by(User.id)).all()

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User")
        return user

    def _ensure_email_free(self, email: str, user_id: Optional[int] = None) -> None:
        existing = self.session.scalar(
            select(User).where(func.lower(User.email) == email.lower())
        )
        if existing and existing.id != user_id:
            raise Conflict("A user with this email already exists")

    def create(self, data: UserIn) -> User:
        email = data.email.strip()
        self._ensure_email_free(email)
        user = User(
            name=data.name.strip(),
            email=email,
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_created: id={user.id}")
        return user

    def update(self, user_id: int, data: UserIn) -> User:
        user = self.get(user_id)
        email = data.email.strip()
        self._ensure_email_free(email, user.id)
        user.name = data.name.strip()
        user.email = email
        user.password_hash = hash_password(data.password)
        self.session.commit()
        self.session.refresh(user)
        return user

    def delete(self, user_id: int) -> User:
        user = self.get(user_id)
        for model in (Account, Transaction, Budget):
            owned = self.session.scalar(
                select(func.count(model.id)).where(model.user_id == user.id)
            )
            if owned:
                raise Conflict(f"User still owns {model.__tablename__}")
        self.session.delete(user)
        self.session.commit()
        return user


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        stmt = select(Category).order_by(Category.type, Category.name)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFound("Category")
        return category

    def create(self, data: CategoryIn) -> Category:
        category = Category(name=data.name.strip(), type=data.type)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        category.name = data.name.strip()
        category.type = data.type
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> Category:
        category = self.get(category_id)
        for model in (Transaction, Budget):
            in_use = self.session.scalar(
                select(func.count(model.id)).where(model.category_id == category.id)
            )
            if in_use:
                raise Conflict(f"Category is still used by {model.__tablename__}")
        self.session.delete(category)
        self.session.commit()
        return category


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.period, Budget.category_id, Budget.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFound("Budget")
        return budget

    def _check_references(self, data: BudgetIn) -> None:
        if not self.session.get(User, self.user_id):
            raise NotFound("User")
        if not self.session.get(Category, data.category_id):
            raise NotFound("Category")

    def create(self, data: BudgetIn) -> Budget:
        self._check_references(data)
        budget = Budget(
            user_id=self.user_id,
            category_id=data.category_id,
            amount_cents=to_cents(data.amount),
            period=data.period,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetIn) -> Budget:
        budget = self.get(budget_id)
        self._check_references(data)
        budget.category_id = data.category_id
        budget.amount_cents = to_cents(data.amount)
        budget.period = data.period
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> Budget:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()
        return budget
