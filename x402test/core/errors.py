# x402test/core/errors.py
"""
Exception hierarchy for x402test.

Every failure a caller may want to branch on has its own class. Verification
failures are not exceptions: they are returned as VerificationResult values.
"""
from typing import Optional

from pydantic import ValidationError


class X402Error(Exception):
    """Base class for all x402test errors."""


class SchemaError(X402Error):
    """Malformed wire data (challenge body, X-PAYMENT or X-PAYMENT-RESPONSE)."""

    def __init__(self, message: str, validation_error: Optional[ValidationError] = None):
        self.validation_error = validation_error
        if validation_error is not None:
            message = f"{message}\n{format_validation_errors(validation_error)}"
        super().__init__(message)


class BudgetError(X402Error):
    """The client's payment ceiling is below the amount the server requires."""

    def __init__(self, required: int, ceiling: int):
        self.required = required
        self.ceiling = ceiling
        super().__init__(
            f"Client max amount {ceiling} is less than server required amount {required}"
        )


class PaymentConstructionError(X402Error):
    """Signing or broadcasting the transfer failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        if cause is not None:
            message = f"{message}\nCaused by: {cause}"
        super().__init__(message)


class AssertionFailure(X402Error):
    """A caller-declared expectation did not hold for the final response."""


class TransportError(X402Error):
    """Connectivity failure or timeout talking to an HTTP server or the ledger."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class ReplayLedgerError(X402Error):
    """The persisted replay ledger could not be read or written."""


class ConfigurationError(X402Error):
    """Required configuration (recipient, asset, ...) is missing or invalid."""


def format_validation_errors(err: ValidationError) -> str:
    """Render pydantic validation errors one field per line."""
    lines = []
    for issue in err.errors():
        path = ".".join(str(part) for part in issue.get("loc", ())) or "root"
        lines.append(f"  - {path}: {issue.get('msg')}")
    return "\n".join(lines)
