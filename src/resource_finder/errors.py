"""Error taxonomy shared by the submission, image and import components."""

from __future__ import annotations

from collections.abc import Sequence

DUPLICATE_ENTRY_MESSAGE = "That entry already exists for the selected tier, type, and biome."


class CatalogError(Exception):
    """Base class for every user-facing failure raised by the core."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(CatalogError):
    """Malformed or out-of-range input; carries one reason string per problem."""

    def __init__(self, reasons: str | Sequence[str]) -> None:
        if isinstance(reasons, str):
            reasons = [reasons]
        self.reasons: list[str] = list(reasons)
        super().__init__("; ".join(self.reasons))


class DuplicateError(CatalogError):
    """Exact-key collision, whether found by a lookup or by the unique constraint."""

    def __init__(self, message: str = DUPLICATE_ENTRY_MESSAGE) -> None:
        super().__init__(message)


class ModerationError(CatalogError):
    """A prohibited term was found in submitted text."""

    def __init__(self, term: str) -> None:
        self.term = term
        super().__init__(f"Prohibited term detected: {term}")


class StorageFault(CatalogError):
    """Persistence or filesystem failure while processing one operation."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class NotFoundError(CatalogError):
    """Referenced entry, pending image or report does not exist."""


__all__ = [
    "DUPLICATE_ENTRY_MESSAGE",
    "CatalogError",
    "DuplicateError",
    "ModerationError",
    "NotFoundError",
    "StorageFault",
    "ValidationError",
]
