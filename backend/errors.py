"""
Error Taxonomy
==============
Every failure the reconciliation pipeline can raise.

Components raise these; only the FastAPI boundary (api/server.py) turns them
into `{ok: false, error}` responses. Each class carries the HTTP status the
boundary should use and whether the outside trigger (client retry, gateway
redelivery) may usefully try again.
"""

from typing import Optional


class ReconciliationError(Exception):
    """Base class for all pipeline errors"""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# =============================================================================
# CONFIGURATION
# =============================================================================

class ConfigurationError(ReconciliationError):
    """Missing or invalid deployment configuration. Fatal, ops-fixable."""


# =============================================================================
# ORDER CREATION (client-caused)
# =============================================================================

class InvalidOrderError(ReconciliationError, ValueError):
    """Order request rejected before reaching the gateway"""

    status_code = 400


class InvalidAmountError(InvalidOrderError):
    """Amount below the gateway minimum"""


class IntentTooLargeError(InvalidOrderError):
    """Booking intent does not fit in the order's notes"""


# =============================================================================
# GATEWAY
# =============================================================================

class GatewayError(ReconciliationError):
    """Network failure or non-2xx response from the payment gateway"""

    retryable = True

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        description: Optional[str] = None,
    ):
        super().__init__(message)
        self.http_status = http_status
        self.description = description
        # A rejected request (bad id, bad auth) will not succeed on redelivery
        if http_status is not None and 400 <= http_status < 500 and http_status != 429:
            self.retryable = False


class GatewayTimeoutError(GatewayError):
    status_code = 504


class SignatureVerificationError(ReconciliationError):
    """HMAC signature did not match"""

    status_code = 401


class MalformedWebhookError(ReconciliationError):
    """Authenticated webhook body is not a JSON event object"""


# =============================================================================
# MATERIALIZATION
# =============================================================================

class PaymentNotSuccessfulError(ReconciliationError):
    """Gateway reports the payment as neither captured nor authorized"""

    status_code = 400

    def __init__(self, status: str):
        super().__init__(f"Payment not successful. Status: {status}")
        self.status = status


class PaymentOrderMismatchError(ReconciliationError):
    """The payment was made against a different order than the one supplied"""

    status_code = 400

    def __init__(self, payment_id: str, order_id: str, actual_order_id: str):
        super().__init__(
            f"Payment {payment_id} belongs to order {actual_order_id}, not {order_id}"
        )
        self.actual_order_id = actual_order_id


class MissingBookingDataError(ReconciliationError):
    """The order carries no decodable booking intent. Never retried."""


class MaterializationTimeoutError(ReconciliationError):
    status_code = 504
    retryable = True


# =============================================================================
# STORAGE
# =============================================================================

class StoreError(ReconciliationError):
    """Datastore failure, surfaced with the driver's message"""

    retryable = True


class DuplicateCustomerError(StoreError):
    """Phone uniqueness violated on insert (lost a creation race)"""

    def __init__(self, phone: str):
        super().__init__(f"Customer with phone {phone} already exists")
        self.phone = phone


class DuplicatePaymentError(StoreError):
    """A booking group for this payment was committed concurrently"""

    def __init__(self, payment_txn_id: str):
        super().__init__(f"Bookings for payment {payment_txn_id} already exist")
        self.payment_txn_id = payment_txn_id
