"""Tests for UsageLedger"""

import pytest
from unittest.mock import Mock

from core.exceptions import StorageUnavailableException
from core.session_store import SessionStore
from services.usage_ledger import (
    FREE_UPLOADS_KEY,
    JUST_PAID_KEY,
    PAID_KEY,
    PAYMENT_REFERENCE_KEY,
    UsageLedger,
)


def _broken_store() -> SessionStore:
    scope = Mock()
    scope.get.side_effect = StorageUnavailableException()
    scope.set.side_effect = StorageUnavailableException()
    scope.pop.side_effect = StorageUnavailableException()
    return SessionStore("broken-session", durable=scope, session=scope)


class TestFreeQuota:

    def test_fresh_session_can_consume(self, ledger):
        assert ledger.can_consume_free_upload() is True

    def test_successful_analysis_exhausts_single_free_upload(self, ledger):
        assert ledger.record_successful_analysis() == 1
        assert ledger.can_consume_free_upload() is False

    def test_counter_increments_by_one_per_call(self, ledger, store):
        ledger.record_successful_analysis()
        ledger.record_successful_analysis()
        assert store.durable.get(FREE_UPLOADS_KEY) == "2"

    def test_larger_free_limit(self, store):
        ledger = UsageLedger(store, free_limit=3)
        ledger.record_successful_analysis()
        ledger.record_successful_analysis()
        assert ledger.can_consume_free_upload() is True
        ledger.record_successful_analysis()
        assert ledger.can_consume_free_upload() is False

    def test_corrupt_counter_denies_quota(self, ledger, store):
        store.durable.set(FREE_UPLOADS_KEY, "not-a-number")
        assert ledger.can_consume_free_upload() is False

    def test_negative_counter_denies_quota(self, ledger, store):
        store.durable.set(FREE_UPLOADS_KEY, "-4")
        assert ledger.can_consume_free_upload() is False


class TestPaidFlag:

    def test_unpaid_by_default(self, ledger):
        assert ledger.is_paid() is False

    def test_mark_paid_sets_flag_and_reference(self, ledger, store):
        ledger.mark_paid("ref_123")
        assert ledger.is_paid() is True
        assert store.durable.get(PAYMENT_REFERENCE_KEY) == "ref_123"
        assert store.durable.get(PAID_KEY)

    def test_paid_survives_quota_exhaustion(self, ledger):
        ledger.record_successful_analysis()
        ledger.mark_paid("ref_123")
        assert ledger.can_consume_free_upload() is False
        assert ledger.is_paid() is True


class TestJustPaid:

    def test_consume_returns_true_then_false(self, ledger):
        ledger.set_just_paid()
        assert ledger.consume_just_paid_flag() is True
        assert ledger.consume_just_paid_flag() is False

    def test_consume_without_flag(self, ledger):
        assert ledger.consume_just_paid_flag() is False

    def test_flag_is_session_scoped(self, ledger, store):
        ledger.set_just_paid()
        assert store.session.get(JUST_PAID_KEY) == "true"
        assert store.durable.get(JUST_PAID_KEY) is None


class TestStorageFailure:

    def test_reads_fail_closed(self):
        ledger = UsageLedger(_broken_store())
        assert ledger.can_consume_free_upload() is False
        assert ledger.is_paid() is False
        assert ledger.consume_just_paid_flag() is False

    def test_writes_raise(self):
        ledger = UsageLedger(_broken_store())
        with pytest.raises(StorageUnavailableException):
            ledger.mark_paid("ref")
        with pytest.raises(StorageUnavailableException):
            ledger.set_just_paid()

    def test_snapshot_reports_no_quota(self):
        state = UsageLedger(_broken_store()).snapshot()
        assert state.can_consume_free_upload is False
        assert state.is_paid is False


def test_snapshot(ledger):
    ledger.record_successful_analysis()
    ledger.mark_paid("ref_1")
    state = ledger.snapshot()
    assert state.free_uploads_consumed == 1
    assert state.free_upload_limit == 1
    assert state.can_consume_free_upload is False
    assert state.is_paid is True
    assert state.paid_at is not None
