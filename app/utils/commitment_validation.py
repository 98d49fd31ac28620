"""Commitment errors and validation rules."""

MIN_DISCOUNT_PERCENTAGE = 0
MAX_DISCOUNT_PERCENTAGE = 6

# Customer ids are unsigned 32-bit integers
MAX_CUSTOMER_ID = 2**32 - 1


class CommitmentError(Exception):
    """Base class for commitment and purchase ledger errors."""
    pass


class CommitmentValidationError(CommitmentError):
    """Caller supplied a value outside the allowed range."""
    pass


class DuplicateError(CommitmentError):
    """Purchase or customer id is already present."""
    pass


class NotFoundError(CommitmentError):
    """Unknown customer, commitment or purchase id."""
    pass


class StateConflictError(CommitmentError):
    """Operation targets a commitment that is not the active one."""
    pass


def validate_discount_percentage(discount_percentage: int) -> None:
    """
    Validate a commitment discount tier.

    Rules:
    - discount_percentage must be between 0 and 6 inclusive
    """
    if not MIN_DISCOUNT_PERCENTAGE <= discount_percentage <= MAX_DISCOUNT_PERCENTAGE:
        raise CommitmentValidationError(
            f"Discount percentage must be between {MIN_DISCOUNT_PERCENTAGE} and "
            f"{MAX_DISCOUNT_PERCENTAGE}, got {discount_percentage}"
        )

