"""Polar.sh checkout integration (session create, details lookup, webhook verification)"""

import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import requests

from config.settings import settings
from core.exceptions import (
    CheckoutException,
    InvalidWebhookSignatureException,
    PaymentServiceNotConfiguredException,
)
from core.logging import logger, log_structured

REQUEST_TIMEOUT = 10

# Order lifecycle events we log; anything else is acknowledged as unhandled
HANDLED_WEBHOOK_EVENTS = (
    "checkout.created",
    "checkout.updated",
    "order.created",
    "order.paid",
    "order.refunded",
    "subscription.created",
    "subscription.updated",
    "subscription.canceled",
)


@dataclass
class CheckoutSession:
    id: str
    url: str


@dataclass
class CheckoutDetails:
    email: Optional[str]
    status: str


@dataclass
class PaymentCallback:
    """Result of the checkout redirect query string"""

    status: str  # "success" or "cancel"
    checkout_id: Optional[str] = None


def parse_payment_callback(checkout: Optional[str], checkout_id: Optional[str] = None) -> Optional[PaymentCallback]:
    """
    Interpret `?checkout=success&checkout_id=...` / `?checkout=cancel`

    A success without an id gets a synthetic `checkout_<ms>` id so the
    processed-marker still has a key.
    """
    if checkout == "success":
        return PaymentCallback(
            status="success",
            checkout_id=checkout_id or f"checkout_{int(time.time() * 1000)}"
        )
    if checkout == "cancel":
        return PaymentCallback(status="cancel")
    return None


class CheckoutService:
    """
    Thin REST client for Polar.sh

    Features:
    - Sandbox switch by token prefix (polar_est_) or POLAR_ENV=sandbox
    - Checkout details with custom/standard endpoint fallback
    - HMAC-SHA256 webhook signature verification
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        product_id: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        self.access_token = (access_token if access_token is not None else settings.POLAR_ACCESS_TOKEN or "").strip()
        self.product_id = (product_id if product_id is not None else settings.POLAR_PRODUCT_ID or "").strip()
        self.http = session or requests.Session()

    @property
    def api_base(self) -> str:
        if self.access_token.startswith("polar_est_") or settings.POLAR_ENV == "sandbox":
            return "https://sandbox-api.polar.sh/v1"
        return "https://api.polar.sh/v1"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def create_checkout_session(self, success_url: str, cancel_url: str, email: Optional[str] = None) -> CheckoutSession:
        """
        Create a hosted checkout for the single premium product

        Raises:
            PaymentServiceNotConfiguredException: Token or product id missing
            CheckoutException: Missing URLs, provider error or network failure
        """
        if not self.access_token or not self.product_id:
            logger.error("❌ Missing Polar.sh configuration")
            raise PaymentServiceNotConfiguredException()

        if not success_url or not cancel_url:
            raise CheckoutException("Success and cancel URLs are required", status_code=400)

        body: Dict[str, Any] = {
            "products": [self.product_id],
            "success_url": success_url,
            "metadata": {
                "source": "hairdirector_web",
                "timestamp": datetime.utcnow().isoformat(),
            },
        }
        if email:
            body["customer_email"] = email

        url = f"{self.api_base}/checkouts/"
        logger.info(f"💳 Using Polar API: {url} (Token prefix: {self.access_token[:10]}...)")

        try:
            response = self.http.post(url, json=body, headers=self._headers(), timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            logger.error(f"❌ Checkout creation error: {str(e)}")
            raise CheckoutException(details=str(e))

        if not response.ok:
            logger.error(f"❌ Polar.sh API Error: {response.text}")
            raise CheckoutException(
                "Failed to create checkout session",
                status_code=response.status_code,
                details=response.text
            )

        data = response.json()
        log_structured("checkout_created", {"checkout_id": data.get("id")})
        return CheckoutSession(id=data["id"], url=data["url"])

    def get_checkout_details(self, checkout_id: str) -> CheckoutDetails:
        """
        Look up the purchaser email of a checkout

        Tries /checkouts/custom/{id} first, then /checkouts/{id}.

        Raises:
            PaymentServiceNotConfiguredException: Token missing
            CheckoutException: Missing id or both lookups failed
        """
        if not self.access_token:
            logger.error("❌ Missing Polar.sh configuration")
            raise PaymentServiceNotConfiguredException()
        if not checkout_id:
            raise CheckoutException("Checkout ID is required", status_code=400)

        response = None
        for path in (f"/checkouts/custom/{checkout_id}", f"/checkouts/{checkout_id}"):
            try:
                response = self.http.get(f"{self.api_base}{path}", headers=self._headers(), timeout=REQUEST_TIMEOUT)
            except requests.RequestException as e:
                logger.error(f"❌ Checkout details fetch error: {str(e)}")
                raise CheckoutException("Failed to fetch checkout details", details=str(e))
            if response.ok:
                break
        else:
            raise CheckoutException(
                "Failed to fetch checkout details",
                status_code=response.status_code,
                details=response.text
            )

        data = response.json()
        email = (
            data.get("customer_email")
            or (data.get("customer") or {}).get("email")
            or (data.get("user") or {}).get("email")
        )
        return CheckoutDetails(email=email, status=data.get("status") or "unknown")


def verify_webhook_signature(payload: bytes, signature: str, secret: str) -> bool:
    """HMAC-SHA256 hex digest of the raw body, compared in constant time"""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def handle_webhook_event(payload: bytes, signature: str, secret: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify and log one Polar webhook delivery

    Verification runs when both a secret is configured and a signature was sent.

    Returns:
        {"received": True, "type": event_type}

    Raises:
        InvalidWebhookSignatureException: Signature does not match
        ValueError: Body is not valid JSON
    """
    secret = secret if secret is not None else settings.POLAR_WEBHOOK_SECRET
    if secret and signature and not verify_webhook_signature(payload, signature, secret):
        logger.error("❌ Invalid webhook signature")
        raise InvalidWebhookSignatureException()

    event = json.loads(payload)
    if not isinstance(event, dict):
        raise ValueError("Webhook payload must be a JSON object")
    event_type = event.get("type", "")
    data = event.get("data") or {}

    if event_type in HANDLED_WEBHOOK_EVENTS:
        logger.info(f"[Polar] {event_type}: {data.get('id')}, status: {data.get('status')}")
        log_structured("polar_webhook", {
            "type": event_type,
            "id": data.get("id"),
            "status": data.get("status"),
            "customer_email": data.get("customer_email"),
        })
    else:
        logger.info(f"[Polar] Unhandled event type: {event_type}")

    return {"received": True, "type": event_type}


# Singleton instance
_checkout_service: Optional[CheckoutService] = None


def get_checkout_service() -> CheckoutService:
    """Get or create the checkout service singleton"""
    global _checkout_service
    if _checkout_service is None:
        _checkout_service = CheckoutService()
    return _checkout_service
