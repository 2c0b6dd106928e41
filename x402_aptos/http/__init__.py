"""HTTP layer: header codecs, facilitator client and service, client wrappers."""

from .constants import (
    DEFAULT_FACILITATOR_URL,
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
)
from .facilitator_client import FacilitatorConfig, HTTPFacilitatorClient
from .utils import (
    decode_payment_header,
    decode_receipt_header,
    encode_payment_header,
    encode_receipt_header,
    parse_payment_required,
)

__all__ = [
    "PAYMENT_HEADER",
    "PAYMENT_RESPONSE_HEADER",
    "DEFAULT_FACILITATOR_URL",
    "FacilitatorConfig",
    "HTTPFacilitatorClient",
    "encode_payment_header",
    "decode_payment_header",
    "encode_receipt_header",
    "decode_receipt_header",
    "parse_payment_required",
]
