from typing import Optional


class LedgerError(Exception):
    """Base for every failure the ledger core reports to its callers.

    ``kind`` names the failure class in a transport-neutral way and ``field``
    points at the offending input, so an outer layer can render a specific
    message without parsing the text.
    """

    kind = "LedgerError"

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict[str, Optional[str]]:
        return {"kind": self.kind, "field": self.field, "message": self.message}


class RejectedMutation(LedgerError, ValueError):
    kind = "RejectedMutation"


class InvalidReference(RejectedMutation):
    kind = "InvalidReference"


class InvalidAmount(RejectedMutation):
    kind = "InvalidAmount"


class InvalidDate(RejectedMutation):
    kind = "InvalidDate"


class InvalidPeriod(RejectedMutation):
    kind = "InvalidPeriod"


class InvalidCategoryType(RejectedMutation):
    kind = "InvalidCategoryType"


class LastAccount(RejectedMutation):
    kind = "LastAccount"


class AccountInUse(RejectedMutation):
    kind = "AccountInUse"


class CategoryInUse(RejectedMutation):
    kind = "CategoryInUse"


class AlreadyOnboarded(RejectedMutation):
    kind = "AlreadyOnboarded"


class StorageFailure(LedgerError):
    kind = "StorageFailure"


class Unauthorized(LedgerError):
    kind = "Unauthorized"
