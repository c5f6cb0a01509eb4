"""
Domain-specific exception hierarchy for the parking ledger.

Every error carries a stable ``code`` so callers can match on the kind
without inspecting message text, and a message that is safe to show to
the person at the terminal.
"""

from decimal import Decimal


class ParkLedgerError(Exception):
    """Base class for all application-level errors."""

    code = "error"
    default_message = "Unexpected parking ledger error."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class ParseError(ParkLedgerError):
    """Raised when a clock string is not in ``H:MM AM|PM`` form."""

    code = "parse-error"
    default_message = "Time must look like '9:30 AM'."


class SlotNotFoundError(ParkLedgerError):
    """Raised when no slot matches the requested number or id."""

    code = "slot-not-found"
    default_message = "Parking slot not found."


class SlotAlreadyOccupiedError(ParkLedgerError):
    """Raised when registering into a slot that already holds a vehicle."""

    code = "slot-occupied"
    default_message = "Parking slot is already occupied."


class SlotNotOccupiedError(ParkLedgerError):
    """Raised when settling or releasing a slot that is already free."""

    code = "slot-not-occupied"
    default_message = "Parking slot is not occupied."


class SlotAlreadyExistsError(ParkLedgerError):
    code = "slot-exists"
    default_message = "A parking slot with this number already exists."


class InsufficientBalanceError(ParkLedgerError):
    """Raised when the payer cannot cover the parking fee."""

    code = "insufficient-balance"
    default_message = "Insufficient balance to pay the parking fee."

    def __init__(
        self,
        message: str | None = None,
        *,
        balance: Decimal | None = None,
        fee: Decimal | None = None,
    ):
        super().__init__(message)
        self.balance = balance
        self.fee = fee


class AccountNotFoundError(ParkLedgerError):
    code = "account-not-found"
    default_message = (
        "No user found with this email address. "
        "Please make sure the user has an account."
    )


class PermissionDeniedError(ParkLedgerError):
    code = "permission-denied"
    default_message = "This action requires administrator rights."


class NotSlotOwnerError(PermissionDeniedError):
    """Raised when someone other than the recorded owner tries to pay."""

    code = "not-slot-owner"
    default_message = "You can only pay for your own parking sessions."


class InvalidAmountError(ParkLedgerError):
    code = "invalid-amount"
    default_message = "Please enter a valid amount."


class ImageNotFoundError(ParkLedgerError):
    code = "image-not-found"
    default_message = "Stored image not found."


class BackendUnavailableError(ParkLedgerError):
    """Raised when the hosted backend cannot be reached or answers with an error."""

    code = "backend-unavailable"
    default_message = "Service is currently unavailable. Please try again later."


class AuthenticationError(ParkLedgerError):
    """Raised when sign-in or token handling fails."""

    code = "authentication-failed"
    default_message = "Authentication failed."
