from typing import Dict, Mapping, Optional


class LedgerError(Exception):
    """Base class for every failure a store operation can report."""


class ValidationError(LedgerError):
    """Local input failure; never reaches the network."""

    def __init__(self, field: str, message: str, errors: Optional[Mapping[str, str]] = None):
        self.field = field
        self.message = message
        self.errors: Dict[str, str] = dict(errors) if errors else {field: message}
        super().__init__(f"{field}: {message}")

    @classmethod
    def from_errors(cls, errors: Mapping[str, str]) -> "ValidationError":
        field, message = next(iter(errors.items()))
        return cls(field, message, errors)


class DuplicateCategoryError(LedgerError):
    def __init__(self, category):
        self.category = category
        name = getattr(category, "value", category)
        super().__init__(f"An active budget already exists for {name}")


class NetworkError(LedgerError):
    def __init__(self, cause):
        self.cause = cause
        super().__init__(f"Network failure: {cause}")


class AuthExpiredError(LedgerError):
    def __init__(self, message: str = "Credentials were rejected"):
        super().__init__(message)


class NotFoundError(LedgerError):
    def __init__(self, id: str):
        self.id = id
        super().__init__(f"Resource {id} not found")


class DecodeError(LedgerError):
    """Server record the client cannot represent."""

    def __init__(self, kind: str, record_id, reason: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"Cannot read {kind} {record_id}: {reason}")
