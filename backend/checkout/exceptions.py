"""
Checkout Exception Hierarchy

Error codes for every stage of the payment workflow.
All errors use the checkout: prefix.
"""
from typing import Optional, Dict, Any


class CheckoutError(Exception):
    """
    Base exception for all checkout workflow errors.

    Subclasses pick the HTTP status the API layer responds with.
    """

    status_code: int = 400

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


class CardValidationError(CheckoutError):
    """
    Card form input could not be normalized.

    Examples:
    - Card number has no digits
    - Expiry is not in MM/YY format
    - Expiry month outside 1-12
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("checkout:card:invalid", message, details)


class TransactionNotFoundError(CheckoutError):
    """
    No transaction is registered under the presented reference.

    Example:
    - Reference expired, never created, or mistyped by the browser
    """

    def __init__(self, reference: str):
        super().__init__(
            "checkout:transaction:not_found",
            "Invalid reference",
            {"reference": reference}
        )
        self.reference = reference


class WorkflowStateError(CheckoutError):
    """
    Transaction is not in a state that allows the requested stage.

    Examples:
    - Completion requested before authentication finished
    - Challenge callback for a transaction that was never challenged
    - Completion requested twice for the same reference
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("checkout:transaction:invalid_state", message, details)


class MerchantDataError(CheckoutError):
    """
    Merchant data posted back by the issuer could not be decoded.

    Examples:
    - Unknown format version
    - Signature mismatch
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("checkout:merchant_data:invalid", message, details)


class GatewayError(CheckoutError):
    """
    Payment gateway returned a non-success response.

    The gateway body is kept for logging but not echoed to the browser.
    """

    status_code = 502

    def __init__(self, operation: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(
            "checkout:gateway:error",
            f"Could not {operation}",
            {"operation": operation, "gateway_status": status_code}
        )
        self.operation = operation
        self.gateway_status = status_code
        self.body = body
