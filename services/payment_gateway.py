"""
Hosted-checkout payment client

Initiation returns a redirect target for the browser; the gateway later sends
the user back to the callback endpoint with a reference, which is verified
here before the session is marked paid. Everything that has to survive the
redirect lives in the SessionStore.
"""

import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

import requests

from config.settings import settings
from core.exceptions import (
    CircuitBreakerOpenException,
    GatewayInitException,
    GatewayVerifyException,
    StorageUnavailableException,
)
from core.logging import logger, log_structured
from services.circuit_breaker import payment_breaker, with_circuit_breaker
from services.usage_ledger import UsageLedger

PENDING_PAYMENT_KEY = "pending_payment"

VERIFY_FAILED_MESSAGE = "Payment verification failed."


class PaymentState(str, Enum):
    IDLE = "idle"
    INITIATING = "initiating"
    AWAITING_REDIRECT_RETURN = "awaiting_redirect_return"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    FAILED = "failed"


@dataclass(frozen=True)
class PaymentSession:
    reference: Optional[str]
    amount_minor_units: int
    status: str = "pending"


@dataclass(frozen=True)
class RedirectTarget:
    """Where the browser should go to complete checkout"""
    url: str
    reference: Optional[str] = None


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    redirect_url: str
    reference: Optional[str] = None
    message: Optional[str] = None


@with_circuit_breaker(payment_breaker)
def _post_json(url: str, payload: Dict[str, Any], timeout: float) -> requests.Response:
    response = requests.post(url, json=payload, timeout=timeout)
    if response.status_code >= 500:
        # Server-side failures count against the breaker
        response.raise_for_status()
    return response


@with_circuit_breaker(payment_breaker)
def _get(url: str, timeout: float) -> requests.Response:
    response = requests.get(url, timeout=timeout)
    if response.status_code >= 500:
        response.raise_for_status()
    return response


def _json_body(response: requests.Response) -> Optional[Dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


class PaymentGatewayClient:
    """
    Payment round-trip for one session

    Args:
        ledger: Usage ledger of the session being charged
        base_url: Payment backend base URL
        app_url: Canonical app URL the callback always redirects to
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        ledger: UsageLedger,
        base_url: Optional[str] = None,
        app_url: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.ledger = ledger
        self.base_url = (base_url or settings.PAYMENT_API_BASE_URL).rstrip("/")
        self.app_url = app_url or settings.CANONICAL_APP_URL
        self.timeout = timeout if timeout is not None else settings.PAYMENT_TIMEOUT_SECONDS
        self.state = PaymentState.IDLE

    @property
    def store(self):
        return self.ledger.store

    # ========== Initiation ==========

    def initiate_charge(self, amount_minor_units: int, payer_email: str) -> RedirectTarget:
        """
        Create a hosted checkout session

        Args:
            amount_minor_units: Amount in whole KES, must be positive
            payer_email: Email the gateway sends the receipt to

        Returns:
            RedirectTarget with the gateway's authorization URL

        Raises:
            GatewayInitException: If the checkout session could not be created
        """
        if amount_minor_units <= 0:
            raise ValueError("amount_minor_units must be positive")
        if not payer_email or "@" not in payer_email:
            raise GatewayInitException("A valid email address is required to start payment.")

        self.state = PaymentState.INITIATING
        url = f"{self.base_url}/api/pay"

        try:
            response = _post_json(
                url,
                {"email": payer_email, "amount": amount_minor_units},
                self.timeout
            )
        except CircuitBreakerOpenException:
            self.state = PaymentState.FAILED
            raise
        except requests.RequestException as e:
            self.state = PaymentState.FAILED
            logger.error(f"❌ Payment initiation request failed: {e}")
            raise GatewayInitException() from e

        body = _json_body(response)
        data = body.get("data") if body else None
        authorization_url = data.get("authorization_url") if isinstance(data, dict) else None

        if not response.ok or body is None or not body.get("status") or not authorization_url:
            self.state = PaymentState.FAILED
            logger.error(
                f"❌ Payment initiation rejected: HTTP {response.status_code}, "
                f"status={body.get('status') if body else None}"
            )
            raise GatewayInitException()

        reference = data.get("reference")
        try:
            self._save_pending(PaymentSession(reference=reference, amount_minor_units=amount_minor_units))
        except StorageUnavailableException as e:
            # Without the marker the return could never be verified
            self.state = PaymentState.FAILED
            logger.error(f"❌ Could not store pending payment marker: {e}")
            raise GatewayInitException() from e
        self.state = PaymentState.AWAITING_REDIRECT_RETURN

        log_structured("payment_initiated", {
            "session_id": self.store.session_id[:8],
            "amount": amount_minor_units,
            "reference": reference
        })
        return RedirectTarget(url=authorization_url, reference=reference)

    def _save_pending(self, payment: PaymentSession) -> None:
        marker = json.dumps({
            "reference": payment.reference,
            "amount": payment.amount_minor_units,
            "created_at": time.time()
        })
        self.store.session.set(PENDING_PAYMENT_KEY, marker)

    def pending_payment(self) -> Optional[PaymentSession]:
        """Rehydrate the pending marker written before the redirect"""
        try:
            raw = self.store.session.get(PENDING_PAYMENT_KEY)
        except StorageUnavailableException:
            return None
        if not raw:
            return None
        try:
            marker = json.loads(raw)
            return PaymentSession(
                reference=marker.get("reference"),
                amount_minor_units=int(marker["amount"]),
            )
        except (ValueError, KeyError, TypeError):
            return None

    # ========== Verification ==========

    def verify_payment(self, reference: str) -> Dict[str, Any]:
        """
        Ask the payment backend whether a reference was paid

        Returns:
            The verified transaction data

        Raises:
            GatewayVerifyException: If the payment is not confirmed as successful
        """
        url = f"{self.base_url}/verify/{quote(reference, safe='')}"
        try:
            response = _get(url, self.timeout)
        except CircuitBreakerOpenException as e:
            raise GatewayVerifyException(e.message) from e
        except requests.RequestException as e:
            raise GatewayVerifyException(f"{VERIFY_FAILED_MESSAGE} ({type(e).__name__})") from e

        body = _json_body(response)
        data = body.get("data") if body else None
        if not isinstance(data, dict) or data.get("status") != "success":
            raise GatewayVerifyException()

        echoed = data.get("reference")
        if echoed is not None and echoed != reference:
            raise GatewayVerifyException("Payment reference mismatch.")
        return data

    def handle_return_from_gateway(self, reference: Optional[str]) -> VerificationResult:
        """
        Verify the reference the gateway returned with and redirect home

        The user is always sent back to the app: on success the session is
        marked paid before the one-shot just-paid flag is set; on any failure
        an alert message is attached and nothing is marked paid.

        Only a session that started a checkout can be marked paid, and when
        the backend returned a reference at initiation it must be the one
        coming back from the gateway.
        """
        reference = (reference or "").strip()
        if not reference:
            self.state = PaymentState.IDLE
            return VerificationResult(verified=False, redirect_url=self.app_url)

        self.state = PaymentState.VERIFYING
        try:
            self._check_pending(reference)
            self.verify_payment(reference)
            self.ledger.mark_paid(reference)
        except (GatewayVerifyException, StorageUnavailableException) as e:
            self.state = PaymentState.FAILED
            log_structured("payment_verification_failed", {
                "session_id": self.store.session_id[:8],
                "reference": reference,
                "reason": e.message
            })
            return VerificationResult(
                verified=False,
                redirect_url=self._redirect_url(payment="failed", message=VERIFY_FAILED_MESSAGE),
                reference=reference,
                message=VERIFY_FAILED_MESSAGE,
            )

        try:
            self.ledger.set_just_paid()
        except StorageUnavailableException as e:
            # The paid flag is already written; only the one-shot notice is lost
            logger.warning(f"⚠️ Payment verified but just-paid flag not stored: {e}")

        self._clear_pending()
        self.state = PaymentState.VERIFIED
        log_structured("payment_verified", {
            "session_id": self.store.session_id[:8],
            "reference": reference
        })
        return VerificationResult(
            verified=True,
            redirect_url=self._redirect_url(payment="success"),
            reference=reference,
        )

    def _check_pending(self, reference: str) -> None:
        pending = self.pending_payment()
        if pending is None:
            raise GatewayVerifyException("No checkout was started for this session.")
        if pending.reference and pending.reference != reference:
            raise GatewayVerifyException("Payment reference does not match the pending checkout.")

    def _clear_pending(self) -> None:
        try:
            self.store.session.delete(PENDING_PAYMENT_KEY)
        except StorageUnavailableException as e:
            logger.warning(f"⚠️ Could not clear pending payment marker: {e}")

    def _redirect_url(self, **params: str) -> str:
        separator = "&" if "?" in self.app_url else "?"
        return f"{self.app_url}{separator}{urlencode(params)}"
