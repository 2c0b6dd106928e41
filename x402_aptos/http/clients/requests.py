"""requests library wrapper with automatic x402 payment handling.

Provides HTTPAdapter and convenience functions for sync requests.Session.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any

import requests
from requests.adapters import HTTPAdapter

from ...interfaces import PaymentSigner
from ...schemas import now_ms
from ..constants import PAYMENT_HEADER, PAYMENT_REQUIRED_STATUS
from ..utils import encode_payment_header, parse_payment_required
from .httpx import check_challenge, ensure_balance, rejection_error

# ============================================================================
# HTTP Adapter Implementation
# ============================================================================


class PaymentHTTPAdapter(HTTPAdapter):
    """HTTP adapter that handles 402 Payment Required responses.

    Subclasses requests.HTTPAdapter to intercept 402 responses, sign a
    proof, and retry once with the X-Payment header.

    Note: Requires a synchronous signer.
    """

    def __init__(
        self,
        signer: PaymentSigner,
        max_amount: int | None = None,
        get_balance: Callable[[str, str], int] | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize payment adapter.

        Args:
            signer: Synchronous PaymentSigner.
            max_amount: Optional ceiling on a single payment, minor units.
            get_balance: Optional ``(address, asset) -> balance`` lookup. When
                set, the signer's balance is checked before signing.
            **kwargs: Additional arguments for HTTPAdapter.
        """
        super().__init__(**kwargs)
        self._signer = signer
        self._max_amount = max_amount
        self._get_balance = get_balance

    def send(
        self,
        request: requests.PreparedRequest,
        **kwargs: Any,
    ) -> requests.Response:
        """Send request with automatic 402 payment handling.

        Args:
            request: The prepared request.
            **kwargs: Additional send arguments.

        Returns:
            Response (original or retried with payment).

        Raises:
            PaymentError: If the challenge is unusable or the payment is refused.
        """
        response = super().send(request, **kwargs)

        # Not a 402, return as-is
        if response.status_code != PAYMENT_REQUIRED_STATUS:
            return response

        challenge = parse_payment_required(response.content).payment
        check_challenge(challenge, self._max_amount, now_ms())
        if self._get_balance is not None:
            ensure_balance(self._get_balance(self._signer.address, challenge.token), challenge)

        proof = self._signer.sign(challenge)
        if inspect.isawaitable(proof):
            raise TypeError("PaymentHTTPAdapter requires a synchronous signer")
        if proof.challenge is None:
            proof = proof.model_copy(update={"challenge": challenge})

        retry_request = request.copy()
        retry_request.headers[PAYMENT_HEADER] = encode_payment_header(proof)
        retry = super().send(retry_request, **kwargs)

        if retry.status_code == PAYMENT_REQUIRED_STATUS:
            raise rejection_error(retry, retry.content)
        return retry


# ============================================================================
# Wrapper Functions
# ============================================================================


def wrap_requests_with_payment(
    session: requests.Session,
    signer: PaymentSigner,
    **adapter_kwargs: Any,
) -> requests.Session:
    """Wrap a requests Session with automatic 402 payment handling.

    Mounts a payment-aware adapter for both HTTP and HTTPS.

    Args:
        session: requests Session to wrap.
        signer: Synchronous PaymentSigner.
        **adapter_kwargs: Additional arguments for the adapter.

    Returns:
        The same session with payment adapter mounted.
    """
    adapter = PaymentHTTPAdapter(signer, **adapter_kwargs)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session
