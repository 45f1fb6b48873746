"""Single-use premium entitlement stored in the client's durable store"""

from datetime import datetime
from typing import Optional

from pydantic import ValidationError

from core.exceptions import StorageQuotaExceededException
from core.kv_store import KeyValueStore
from core.logging import logger, log_structured
from storage.backend import PREMIUM_KEY
from storage.models import PremiumStatus


class PremiumEntitlementGate:
    """
    UNSET -> GRANTED -> UNSET entitlement for exactly one analysis attempt

    The record is written after a checkout-success callback and removed after
    every analysis attempt, whether it succeeded or failed. A failed attempt
    is compensated by the refund path, not by keeping the entitlement.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def get_status(self) -> PremiumStatus:
        raw = self.store.get_item(PREMIUM_KEY)
        if not raw:
            return PremiumStatus(is_premium=False)
        try:
            status = PremiumStatus.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Failed to get premium status: {e.error_count()} errors")
            return PremiumStatus(is_premium=False)
        # Presence of the record is the entitlement
        return status.model_copy(update={"is_premium": True})

    def is_granted(self) -> bool:
        return self.get_status().is_premium

    def grant(self, email: Optional[str] = None, checkout_id: Optional[str] = None) -> PremiumStatus:
        status = PremiumStatus(
            is_premium=True,
            purchase_date=datetime.utcnow(),
            email=email,
            checkout_id=checkout_id,
        )
        try:
            self.store.set_item(PREMIUM_KEY, status.model_dump_json(by_alias=True))
        except StorageQuotaExceededException as e:
            logger.error(f"Failed to save premium status: {e.message}")
        log_structured("premium_granted", {"checkout_id": checkout_id, "has_email": bool(email)})
        return status

    def update_email(self, email: str) -> None:
        """Backfill the purchaser email without touching the grant"""
        if not self.is_granted():
            return
        status = self.get_status().model_copy(update={"email": email})
        try:
            self.store.set_item(PREMIUM_KEY, status.model_dump_json(by_alias=True))
        except StorageQuotaExceededException as e:
            logger.error(f"Failed to update premium email: {e.message}")

    def consume(self) -> None:
        """Spend the entitlement (idempotent)"""
        self.store.remove_item(PREMIUM_KEY)
        log_structured("premium_consumed", {})


def refund_available(status_at_attempt: PremiumStatus) -> bool:
    """A failed attempt offers a refund when it was paid for and the order id is known"""
    return status_at_attempt.is_premium and bool(status_at_attempt.checkout_id)
