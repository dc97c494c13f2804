# Overview: Pytest coverage for the wallet ledger.

import pytest

from storefront.errors import InsufficientBalanceError, ValidationError
from storefront.models import AuditEvent, WalletLedgerEntry
from storefront.services import wallet_service
from storefront.services.wallet_service import ENTRY_ORDER_PAYMENT, ENTRY_REFUND, credit, debit


class TestWalletLedger:
    def test_new_user_has_zero_balance(self, db_session, shopper):
        assert wallet_service.get_balance(shopper.id) == 0

    def test_balance_is_sum_of_entries(self, db_session, shopper):
        credit(shopper.id, 10_000, entry_type=ENTRY_REFUND, idempotency_key="refund:1")
        credit(shopper.id, 2_500, entry_type=ENTRY_REFUND, idempotency_key="refund:2")
        debit(shopper.id, 4_000, entry_type=ENTRY_ORDER_PAYMENT, idempotency_key="payment:1")
        db_session.commit()

        assert wallet_service.get_balance(shopper.id) == 8_500
        amounts = [e.amount_cents for e in wallet_service.list_entries(shopper.id)]
        assert amounts == [-4_000, 2_500, 10_000]

    def test_credit_is_idempotent(self, db_session, shopper):
        first = credit(shopper.id, 10_000, entry_type=ENTRY_REFUND, idempotency_key="refund:1")
        second = credit(shopper.id, 10_000, entry_type=ENTRY_REFUND, idempotency_key="refund:1")
        db_session.commit()

        assert first.id == second.id
        assert wallet_service.get_balance(shopper.id) == 10_000

    def test_debit_never_goes_negative(self, db_session, shopper):
        credit(shopper.id, 5_000, entry_type=ENTRY_REFUND, idempotency_key="refund:1")
        db_session.commit()

        with pytest.raises(InsufficientBalanceError) as exc:
            debit(shopper.id, 5_001, entry_type=ENTRY_ORDER_PAYMENT, idempotency_key="payment:1")
        db_session.rollback()

        assert exc.value.details == {"balance_cents": 5_000, "required_cents": 5_001}
        assert wallet_service.get_balance(shopper.id) == 5_000
        assert db_session.query(WalletLedgerEntry).count() == 1

    def test_amounts_must_be_positive(self, db_session, shopper):
        with pytest.raises(ValidationError):
            credit(shopper.id, 0, entry_type=ENTRY_REFUND, idempotency_key="refund:1")
        with pytest.raises(ValidationError):
            debit(shopper.id, -5, entry_type=ENTRY_ORDER_PAYMENT, idempotency_key="payment:1")

    def test_wrong_entry_type_rejected(self, db_session, shopper):
        with pytest.raises(ValueError):
            credit(shopper.id, 100, entry_type=ENTRY_ORDER_PAYMENT, idempotency_key="x")

    def test_entries_are_audited(self, db_session, shopper):
        credit(shopper.id, 100, entry_type=ENTRY_REFUND, idempotency_key="refund:1")
        db_session.commit()
        assert db_session.query(AuditEvent).filter_by(event_category="wallet").count() == 1


class TestAdminAdjust:
    def test_positive_and_negative_adjustments(self, db_session, shopper):
        wallet_service.admin_adjust(shopper.id, 10_000, idempotency_key="adjust:1", description="Goodwill")
        wallet_service.admin_adjust(shopper.id, -3_000, idempotency_key="adjust:2")

        assert wallet_service.get_balance(shopper.id) == 7_000

    def test_replayed_adjustment_applies_once(self, db_session, shopper):
        wallet_service.admin_adjust(shopper.id, 10_000, idempotency_key="adjust:1")
        wallet_service.admin_adjust(shopper.id, 10_000, idempotency_key="adjust:1")

        assert wallet_service.get_balance(shopper.id) == 10_000

    def test_zero_rejected(self, db_session, shopper):
        with pytest.raises(ValidationError):
            wallet_service.admin_adjust(shopper.id, 0, idempotency_key="adjust:1")

    def test_negative_adjustment_cannot_overdraw(self, db_session, shopper):
        with pytest.raises(InsufficientBalanceError):
            wallet_service.admin_adjust(shopper.id, -1, idempotency_key="adjust:1")
        assert wallet_service.get_balance(shopper.id) == 0
