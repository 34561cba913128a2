"""Error taxonomy shared by the validation layer, the services and the routes.

Every error carries a machine-readable ``kind`` and the HTTP status the routes
answer with. Client errors are raised before anything is written.
"""


class BookkeepingError(Exception):
    kind = "ServerError"
    status_code = 500
    default_message = "Unexpected server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_detail(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class InvalidId(BookkeepingError):
    kind = "InvalidId"
    status_code = 400
    default_message = "Invalid ID"


class InvalidRequestBody(BookkeepingError):
    kind = "InvalidRequestBody"
    status_code = 400
    default_message = "Invalid request body"


class InvalidTransactionData(BookkeepingError):
    kind = "InvalidTransactionData"
    status_code = 400
    default_message = "Invalid transaction data"


class InvalidRecordData(BookkeepingError):
    kind = "InvalidRecordData"
    status_code = 400
    default_message = "Invalid record data"


class NotFound(BookkeepingError):
    kind = "NotFound"
    status_code = 404

    def __init__(self, entity: str, message: str | None = None) -> None:
        self.entity = entity
        super().__init__(message or f"{entity} not found")


class Conflict(BookkeepingError):
    kind = "Conflict"
    status_code = 409
    default_message = "Record already exists"


class CreationError(BookkeepingError):
    kind = "CreationError"
    status_code = 500
    default_message = "Unable to create a new transaction"


class DeletionError(BookkeepingError):
    kind = "DeletionError"
    status_code = 500
    default_message = "Unable to delete the record"


class RetrievalError(BookkeepingError):
    kind = "RetrievalError"
    status_code = 500
    default_message = "Error retrieving data"
