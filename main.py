import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import Depends, FastAPI, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import configure_logging, get_settings
from database import get_db
from errors import BookkeepingError, RetrievalError
from schemas import (
    AccountIn,
    AccountOut,
    AccountUpdate,
    BalanceReportOut,
    BudgetIn,
    BudgetOut,
    CategoryIn,
    CategoryOut,
    TransactionOut,
    UserIn,
    UserOut,
    cents_to_decimal,
)
from services import (
    AccountService,
    BudgetService,
    CategoryService,
    TransactionService,
    UserService,
)
from validation import decode_body, parse_id, parse_record, parse_transaction

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Bookkeeping")


def _load_app_version() -> str:
    try:
        import tomllib
    except ImportError:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"


APP_VERSION = _load_app_version()


@app.on_event("startup")
def startup_event():
    settings = get_settings()
    logger.info(
        f"startup: version={APP_VERSION} update_policy={settings.update_policy}"
    )


@contextmanager
def service_errors(action: str) -> Iterator[None]:
    """Translate service errors into HTTP errors carrying ``kind`` and ``message``."""
    try:
        yield
    except BookkeepingError as exc:
        raise HTTPException(
            status_code=exc.status_code, detail=exc.as_detail()
        ) from exc
    except SQLAlchemyError as exc:
        logger.exception(f"{action}_failed")
        err = RetrievalError()
        raise HTTPException(
            status_code=err.status_code, detail=err.as_detail()
        ) from exc


def user_id_from_path(raw: str) -> int:
    return parse_id(raw, "Invalid user ID")


@app.get("/")
def index():
    return {"status": "ok", "version": APP_VERSION}


# Users


@app.get("/user", response_model=list[UserOut])
def list_users(db: Session = Depends(get_db)):
    with service_errors("list_users"):
        users = UserService(db).list_all()
    return [UserOut.from_record(u) for u in users]


@app.post("/user", response_model=UserOut)
async def create_user(request: Request, db: Session = Depends(get_db)):
    with service_errors("create_user"):
        data = parse_record(UserIn, decode_body(await request.body()))
        user = UserService(db).create(data)
    return UserOut.from_record(user)


@app.get("/user/{user_id}", response_model=UserOut)
def get_user(user_id: str, db: Session = Depends(get_db)):
    with service_errors("get_user"):
        user = UserService(db).get(user_id_from_path(user_id))
    return UserOut.from_record(user)


@app.put("/user/{user_id}", response_model=UserOut)
async def update_user(user_id: str, request: Request, db: Session = Depends(get_db)):
    with service_errors("update_user"):
        uid = user_id_from_path(user_id)
        data = parse_record(UserIn, decode_body(await request.body()))
        user = UserService(db).update(uid, data)
    return UserOut.from_record(user)


@app.delete("/user/{user_id}", response_model=UserOut)
def delete_user(user_id: str, db: Session = Depends(get_db)):
    with service_errors("delete_user"):
        user = UserService(db).delete(user_id_from_path(user_id))
    return UserOut.from_record(user)


# Accounts


@app.get("/user/{user_id}/account", response_model=list[AccountOut])
def list_accounts(user_id: str, db: Session = Depends(get_db)):
    with service_errors("list_accounts"):
        accounts = AccountService(db, user_id_from_path(user_id)).list_all()
    return [AccountOut.from_record(a) for a in accounts]


@app.post("/user/{user_id}/account", response_model=AccountOut)
async def create_account(user_id: str, request: Request, db: Session = Depends(get_db)):
    with service_errors("create_account"):
        uid = user_id_from_path(user_id)
        data = parse_record(AccountIn, decode_body(await request.body()))
        account = AccountService(db, uid).create(data)
    return AccountOut.from_record(account)


@app.get("/user/{user_id}/account/{account_id}", response_model=AccountOut)
def get_account(user_id: str, account_id: str, db: Session = Depends(get_db)):
    with service_errors("get_account"):
        uid = user_id_from_path(user_id)
        aid = parse_id(account_id, "Invalid account ID")
        account = AccountService(db, uid).get(aid)
    return AccountOut.from_record(account)


@app.put("/user/{user_id}/account/{account_id}", response_model=AccountOut)
async def update_account(
    user_id: str, account_id: str, request: Request, db: Session = Depends(get_db)
):
    with service_errors("update_account"):
        uid = user_id_from_path(user_id)
        aid = parse_id(account_id, "Invalid account ID")
        data = parse_record(AccountUpdate, decode_body(await request.body()))
        account = AccountService(db, uid).update(aid, data)
    return AccountOut.from_record(account)


@app.delete("/user/{user_id}/account/{account_id}", response_model=AccountOut)
def delete_account(user_id: str, account_id: str, db: Session = Depends(get_db)):
    with service_errors("delete_account"):
        uid = user_id_from_path(user_id)
        aid = parse_id(account_id, "Invalid account ID")
        account = AccountService(db, uid).delete(aid)
    return AccountOut.from_record(account)


@app.get(
    "/user/{user_id}/account/{account_id}/reconcile",
    response_model=BalanceReportOut,
)
def reconcile_account(user_id: str, account_id: str, db: Session = Depends(get_db)):
    with service_errors("reconcile_account"):
        uid = user_id_from_path(user_id)
        aid = parse_id(account_id, "Invalid account ID")
        report = AccountService(db, uid).balance_report(aid)
    return BalanceReportOut(
        account_id=report.account_id,
        balance=cents_to_decimal(report.balance_cents),
        expected_balance=cents_to_decimal(report.expected_cents),
        drift=cents_to_decimal(report.drift_cents),
    )


# Categories


@app.get("/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    with service_errors("list_categories"):
        categories = CategoryService(db).list_all()
    return [CategoryOut.model_validate(c) for c in categories]


@app.post("/categories", response_model=CategoryOut)
async def create_category(request: Request, db: Session = Depends(get_db)):
    with service_errors("create_category"):
        data = parse_record(CategoryIn, decode_body(await request.body()))
        category = CategoryService(db).create(data)
    return CategoryOut.model_validate(category)


@app.get("/categories/{category_id}", response_model=CategoryOut)
def get_category(category_id: str, db: Session = Depends(get_db)):
    with service_errors("get_category"):
        cid = parse_id(category_id, "Invalid category ID")
        category = CategoryService(db).get(cid)
    return CategoryOut.model_validate(category)


@app.put("/categories/{category_id}", response_model=CategoryOut)
async def update_category(
    category_id: str, request: Request, db: Session = Depends(get_db)
):
    with service_errors("update_category"):
        cid = parse_id(category_id, "Invalid category ID")
        data = parse_record(CategoryIn, decode_body(await request.body()))
        category = CategoryService(db).update(cid, data)
    return CategoryOut.model_validate(category)


@app.delete("/categories/{category_id}", response_model=CategoryOut)
def delete_category(category_id: str, db: Session = Depends(get_db)):
    with service_errors("delete_category"):
        cid = parse_id(category_id, "Invalid category ID")
        category = CategoryService(db).delete(cid)
    return CategoryOut.model_validate(category)


# Transactions


@app.get("/user/{user_id}/transactions", response_model=list[TransactionOut])
def list_transactions(user_id: str, db: Session = Depends(get_db)):
    with service_errors("list_transactions"):
        txns = TransactionService(db, user_id_from_path(user_id)).list_all()
    return [TransactionOut.from_record(t) for t in txns]


@app.post("/user/{user_id}/transactions", response_model=TransactionOut)
async def create_transaction(
    user_id: str, request: Request, db: Session = Depends(get_db)
):
    with service_errors("create_transaction"):
        uid = user_id_from_path(user_id)
        data = parse_transaction(decode_body(await request.body()))
        txn = TransactionService(db, uid).create(data)
    return TransactionOut.from_record(txn)


@app.get(
    "/user/{user_id}/transactions/{transaction_id}", response_model=TransactionOut
)
def get_transaction(user_id: str, transaction_id: str, db: Session = Depends(get_db)):
    with service_errors("get_transaction"):
        uid = user_id_from_path(user_id)
        tid = parse_id(transaction_id, "Invalid transaction ID")
        txn = TransactionService(db, uid).get(tid)
    return TransactionOut.from_record(txn)


@app.put(
    "/user/{user_id}/transactions/{transaction_id}", response_model=TransactionOut
)
async def update_transaction(
    user_id: str, transaction_id: str, request: Request, db: Session = Depends(get_db)
):
    with service_errors("update_transaction"):
        uid = user_id_from_path(user_id)
        tid = parse_id(transaction_id, "Invalid transaction ID")
        data = parse_transaction(decode_body(await request.body()))
        txn = TransactionService(db, uid).update(tid, data)
    return TransactionOut.from_record(txn)


@app.delete(
    "/user/{user_id}/transactions/{transaction_id}", response_model=TransactionOut
)
def delete_transaction(
    user_id: str, transaction_id: str, db: Session = Depends(get_db)
):
    with service_errors("delete_transaction"):
        uid = user_id_from_path(user_id)
        tid = parse_id(transaction_id, "Invalid transaction ID")
        txn = TransactionService(db, uid).delete(tid)
    return TransactionOut.from_record(txn)


# Budgets


@app.get("/user/{user_id}/budget", response_model=list[BudgetOut])
def list_budgets(user_id: str, db: Session = Depends(get_db)):
    with service_errors("list_budgets"):
        budgets = BudgetService(db, user_id_from_path(user_id)).list_all()
    return [BudgetOut.from_record(b) for b in budgets]


@app.post("/user/{user_id}/budget", response_model=BudgetOut)
async def create_budget(user_id: str, request: Request, db: Session = Depends(get_db)):
    with service_errors("create_budget"):
        uid = user_id_from_path(user_id)
        data = parse_record(BudgetIn, decode_body(await request.body()))
        budget = BudgetService(db, uid).create(data)
    return BudgetOut.from_record(budget)


@app.get("/user/{user_id}/budget/{budget_id}", response_model=BudgetOut)
def get_budget(user_id: str, budget_id: str, db: Session = Depends(get_db)):
    with service_errors("get_budget"):
        uid = user_id_from_path(user_id)
        bid = parse_id(budget_id, "Invalid budget ID")
        budget = BudgetService(db, uid).get(bid)
    return BudgetOut.from_record(budget)


@app.put("/user/{user_id}/budget/{budget_id}", response_model=BudgetOut)
async def update_budget(
    user_id: str, budget_id: str, request: Request, db: Session = Depends(get_db)
):
    with service_errors("update_budget"):
        uid = user_id_from_path(user_id)
        bid = parse_id(budget_id, "Invalid budget ID")
        data = parse_record(BudgetIn, decode_body(await request.body()))
        budget = BudgetService(db, uid).update(bid, data)
    return BudgetOut.from_record(budget)


@app.delete("/user/{user_id}/budget/{budget_id}", response_model=BudgetOut)
def delete_budget(user_id: str, budget_id: str, db: Session = Depends(get_db)):
    with service_errors("delete_budget"):
        uid = user_id_from_path(user_id)
        bid = parse_id(budget_id, "Invalid budget ID")
        budget = BudgetService(db, uid).delete(bid)
    return BudgetOut.from_record(budget)


def main():
    import uvicorn

    settings = get_settings()
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
