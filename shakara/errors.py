"""Error taxonomy for the checkout pipeline.

Each error carries the HTTP status the server answers with, so routes can
raise and let the exception handlers shape the response.
"""


class CheckoutError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(CheckoutError):
    """Malformed customer, cart or discount input."""

    status_code = 400


class AuthenticationError(CheckoutError):
    """Webhook signature missing or wrong."""

    status_code = 401


class VerificationFailure(CheckoutError):
    """The gateway says the payment did not succeed."""

    status_code = 402


class NotFoundError(CheckoutError):
    status_code = 404


class ConflictError(CheckoutError):
    """Amount mismatch, tx_ref collision, inventory exhausted."""

    status_code = 409


class TransientError(CheckoutError):
    """Network or storage failure; the caller is expected to retry."""

    status_code = 503
