from datetime import datetime
from decimal import Decimal

import pytest

from errors import (
    InvalidId,
    InvalidRecordData,
    InvalidRequestBody,
    InvalidTransactionData,
)
from models import TransactionType
from schemas import BudgetIn
from validation import decode_body, parse_id, parse_record, parse_transaction, to_cents


def valid_payload(**overrides) -> dict:
    data = {
        "accountId": 26,
        "categoryId": 2,
        "amount": 100.0,
        "type": "income",
        "date": "2025-01-01T10:00:00.000Z",
        "description": "Test Transaction",
    }
    data.update(overrides)
    return data


def test_parse_id_accepts_numeric_segments() -> None:
    assert parse_id("26") == 26
    assert parse_id(" 7 ") == 7


def test_parse_id_rejects_non_numeric() -> None:
    with pytest.raises(InvalidId) as excinfo:
        parse_id("invalid", "Invalid transaction ID")
    assert excinfo.value.message == "Invalid transaction ID"
    assert excinfo.value.status_code == 400


@pytest.mark.parametrize(
    "raw", ["-1", "0", "1_000", "+5", "1.0", "", "99999999999999999999999"]
)
def test_parse_id_rejects_out_of_range_and_non_digit_ids(raw) -> None:
    with pytest.raises(InvalidId):
        parse_id(raw)


def test_parse_id_accepts_largest_storable_id() -> None:
    assert parse_id(str(2**63 - 1)) == 2**63 - 1


def test_decode_body_rejects_malformed_json() -> None:
    with pytest.raises(InvalidRequestBody):
        decode_body(b"{not json")
    with pytest.raises(InvalidRequestBody):
        decode_body(b"[1, 2]")
    with pytest.raises(InvalidRequestBody):
        decode_body(b"\xff\xfe")
    assert decode_body(b'{"a": 1}') == {"a": 1}


def test_parse_transaction_reads_camel_case_payload() -> None:
    data = parse_transaction(valid_payload())

    assert data.account_id == 26
    assert data.category_id == 2
    assert data.amount == Decimal("100.0")
    assert data.type == TransactionType.income
    assert data.date == datetime(2025, 1, 1, 10, 0)
    assert data.description == "Test Transaction"


def test_parse_transaction_allows_missing_date_and_numeric_strings() -> None:
    payload = valid_payload(amount="42.50")
    del payload["date"]
    del payload["description"]

    data = parse_transaction(payload)

    assert data.amount == Decimal("42.50")
    assert data.date is None
    assert data.description is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"accountId": None},
        {"accountId": 0},
        {"categoryId": None},
        {"categoryId": 0},
        {"amount": "abc"},
        {"amount": "NaN"},
        {"amount": None},
        {"amount": -5},
        {"amount": "1e30"},
        {"amount": "100000000000"},
        {"accountId": 2**63},
        {"type": "transfer"},
        {"type": "Income"},
        {"type": None},
        {"date": "yesterday"},
    ],
)
def test_parse_transaction_rejects_invalid_data(overrides) -> None:
    with pytest.raises(InvalidTransactionData):
        parse_transaction(valid_payload(**overrides))


def test_parse_transaction_rejects_missing_account() -> None:
    payload = valid_payload()
    del payload["accountId"]
    with pytest.raises(InvalidTransactionData) as excinfo:
        parse_transaction(payload)
    assert "accountId" in excinfo.value.message


def test_parse_record_uses_record_error() -> None:
    with pytest.raises(InvalidRecordData):
        parse_record(BudgetIn, {"categoryId": 2, "amount": -1})
    with pytest.raises(InvalidRecordData):
        parse_record(BudgetIn, {"categoryId": 2, "amount": "1e30"})


def test_to_cents_rounds_half_up() -> None:
    assert to_cents(Decimal("100")) == 10_000
    assert to_cents(Decimal("0.1")) == 10
    assert to_cents(Decimal("100.005")) == 10_001
    assert to_cents(Decimal("19.994")) == 1_999
