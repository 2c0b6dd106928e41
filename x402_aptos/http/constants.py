"""HTTP constants for x402 Aptos payments."""

PAYMENT_HEADER = "X-Payment"
PAYMENT_RESPONSE_HEADER = "X-Payment-Response"

PAYMENT_REQUIRED_STATUS = 402
DEFAULT_RETRY_AFTER_SECONDS = 5

PAYMENT_REQUIRED_MESSAGE = "Payment required"
PAYMENT_REJECTED_MESSAGE = "Payment rejected"
INTERNAL_ERROR_MESSAGE = "Internal server error in payment processing"

DEFAULT_FACILITATOR_URL = "http://localhost:3001"
# Long enough to cover ledger confirmation on the facilitator side.
DEFAULT_FACILITATOR_TIMEOUT_SECONDS = 45.0
