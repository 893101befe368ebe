"""Free-tier usage and payment status tracking"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from core.exceptions import StorageUnavailableException
from core.logging import logger, log_structured
from core.session_store import SessionStore


# Durable keys
FREE_UPLOADS_KEY = "free_uploads_consumed"
PAID_KEY = "paid"
PAYMENT_REFERENCE_KEY = "payment_reference"

# Session-scoped keys
JUST_PAID_KEY = "just_paid"


@dataclass(frozen=True)
class UsageState:
    """Snapshot of a session's usage"""
    free_uploads_consumed: int
    free_upload_limit: int
    can_consume_free_upload: bool
    is_paid: bool
    paid_at: Optional[str] = None


class UsageLedger:
    """
    Tracks free-tier consumption and payment status for one session

    Reads fail closed: when storage is unavailable the session has no free
    quota and is not paid. Writes raise StorageUnavailableException so the
    caller can decide how to surface the failure.
    """

    def __init__(self, store: SessionStore, free_limit: int = 1):
        self.store = store
        self.free_limit = free_limit

    def _consumed(self) -> int:
        raw = self.store.durable.get(FREE_UPLOADS_KEY)
        if raw is None:
            return 0
        value = int(raw)
        if value < 0:
            raise ValueError(f"negative usage counter: {value}")
        return value

    def can_consume_free_upload(self) -> bool:
        try:
            return self._consumed() < self.free_limit
        except (StorageUnavailableException, ValueError) as e:
            logger.error(f"❌ Usage counter unreadable, denying free upload: {e}")
            return False

    def is_paid(self) -> bool:
        try:
            return bool(self.store.durable.get(PAID_KEY))
        except StorageUnavailableException as e:
            logger.error(f"❌ Paid flag unreadable, treating session as unpaid: {e}")
            return False

    def record_successful_analysis(self) -> int:
        """
        Increment the free-upload counter

        Not idempotent: the caller invokes it exactly once per successful analysis.

        Returns:
            The new counter value
        """
        try:
            current = self._consumed()
        except ValueError:
            current = 0
        new_value = current + 1
        self.store.durable.set(FREE_UPLOADS_KEY, str(new_value))
        log_structured("usage_recorded", {
            "session_id": self.store.session_id[:8],
            "free_uploads_consumed": new_value
        })
        return new_value

    def mark_paid(self, reference: Optional[str] = None) -> None:
        """Set the durable paid flag; only called after verified payment"""
        paid_at = datetime.now(timezone.utc).isoformat()
        self.store.durable.set(PAID_KEY, paid_at)
        if reference:
            self.store.durable.set(PAYMENT_REFERENCE_KEY, reference)
        logger.info(f"✅ Session {self.store.session_id[:8]} marked as paid")

    def set_just_paid(self) -> None:
        self.store.session.set(JUST_PAID_KEY, "true")

    def consume_just_paid_flag(self) -> bool:
        """Read and clear the one-shot post-payment signal"""
        try:
            return self.store.session.pop(JUST_PAID_KEY) == "true"
        except StorageUnavailableException as e:
            logger.error(f"❌ Just-paid flag unreadable: {e}")
            return False

    def snapshot(self) -> UsageState:
        try:
            consumed = self._consumed()
        except (StorageUnavailableException, ValueError):
            consumed = self.free_limit
        try:
            paid_at = self.store.durable.get(PAID_KEY)
        except StorageUnavailableException:
            paid_at = None
        return UsageState(
            free_uploads_consumed=consumed,
            free_upload_limit=self.free_limit,
            can_consume_free_upload=consumed < self.free_limit,
            is_paid=bool(paid_at),
            paid_at=paid_at or None,
        )
