import json
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from errors import (
    BookkeepingError,
    InvalidId,
    InvalidRecordData,
    InvalidRequestBody,
    InvalidTransactionData,
)
from schemas import MAX_ID, TransactionIn

ModelT = TypeVar("ModelT", bound=BaseModel)

_ID_PATTERN = re.compile(r"[0-9]+")

def parse_id(raw: str, message: str = "Invalid ID") -> int:
    """Parse a path segment as an integer id, before any storage call."""
    text = str(raw).strip()
    if not _ID_PATTERN.fullmatch(text):
        raise InvalidId(message)
    value = int(text)
    if not 1 <= value <= MAX_ID:
        raise InvalidId(message)
    return value


def decode_body(raw: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as exc:
        raise InvalidRequestBody() from exc
    if not isinstance(payload, dict):
        raise InvalidRequestBody("Request body must be a JSON object")
    return payload


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    location = ".".join(str(part) for part in err.get("loc", ()))
    return f"{location}: {err['msg']}" if location else err["msg"]


def parse_record(
    schema: type[ModelT],
    payload: dict[str, Any],
    error_cls: type[BookkeepingError] = InvalidRecordData,
) -> ModelT:
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise error_cls(f"{error_cls.default_message} ({_first_error(exc)})") from exc


def parse_transaction(payload: dict[str, Any]) -> TransactionIn:
    """Validate a transaction payload.

    ``accountId`` and ``categoryId`` must be positive integers, ``amount`` a
    finite non-negative number and ``type`` exactly ``income`` or ``expense``.
    """
    return parse_record(TransactionIn, payload, InvalidTransactionData)


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
