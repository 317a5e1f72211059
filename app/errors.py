"""
Exception bertipe untuk modul stock opname.

Setiap kelas punya ``code`` (stabil, aman untuk API) dan ``status_code``
(dipakai blueprint JSON saat mengubah exception menjadi response).

    StockOpnameError
    +-- ValidationError
    |   +-- DuplicateItemError
    +-- StateError
    |   +-- ConcurrencyConflictError
    +-- NotFoundError
    +-- PersistenceError
"""


class StockOpnameError(Exception):
    code = "STOCK_OPNAME_ERROR"
    status_code = 500

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {"success": False, "code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(StockOpnameError):
    code = "VALIDATION_ERROR"
    status_code = 400


class DuplicateItemError(ValidationError):
    code = "DUPLICATE_ITEM"


class StateError(StockOpnameError):
    code = "INVALID_STATE"
    status_code = 409


class ConcurrencyConflictError(StateError):
    """Transisi status kalah balapan dengan transisi lain pada sesi yang sama."""

    code = "CONCURRENCY_CONFLICT"


class NotFoundError(StockOpnameError):
    code = "NOT_FOUND"
    status_code = 404


class PersistenceError(StockOpnameError):
    code = "PERSISTENCE_ERROR"
    status_code = 500
