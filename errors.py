"""Domain errors raised by the loan/inventory engine.

Each error carries a machine-readable ``kind``; the HTTP layer picks the
status code. Any of them aborts the enclosing transaction.
"""


class LoanError(Exception):
    kind = "LoanError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class NotFound(LoanError):
    kind = "NotFound"


class LoanNotOpen(LoanError):
    kind = "LoanNotOpen"


class ReservationConflict(LoanError):
    kind = "ReservationConflict"


class ItemAlreadyLoaned(ReservationConflict):
    kind = "ItemAlreadyLoaned"


class InsufficientStock(ReservationConflict):
    kind = "InsufficientStock"


class EmptyLoan(LoanError):
    kind = "EmptyLoan"


class MissingSignature(LoanError):
    kind = "MissingSignature"


class AlreadyClosed(LoanError):
    kind = "AlreadyClosed"


class CannotDeleteSignedLoan(LoanError):
    kind = "CannotDeleteSignedLoan"


class ValidationError(LoanError):
    kind = "ValidationError"
