from datetime import timedelta
from decimal import Decimal

from evidence_orders.models import OrderStatus, PaymentPhase, PaymentStatus
from evidence_orders.services import (
    audit_service,
    delivery_service,
    payment_service,
)
from tests.helpers import (
    BUYER,
    SELLER,
    START,
    locked_quote,
    ok,
    order_status,
    upload,
)


def _advance_payment(quote):
    return payment_service.get_order_payments(quote.order_id)[0]


class TestPaymentRequests:

    def test_amount_must_be_positive(self, app):
        quote = locked_quote('COD')
        result = payment_service.create_payment_request(
            quote.order_id, quote.id, 'FULL', 0)
        assert result.error == 'Payment amount must be positive'

    def test_unknown_phase(self, app):
        quote = locked_quote('COD')
        result = payment_service.create_payment_request(
            quote.order_id, quote.id, 'DEPOSIT', 10)
        assert result.error_kind == 'validation'

    def test_one_active_request_per_phase(self, app):
        quote = locked_quote('SPLIT_50_50')
        result = payment_service.create_payment_request(
            quote.order_id, quote.id, 'ADVANCE', 100)
        assert result.error_kind == 'conflict'
        assert len(payment_service.get_order_payments(quote.order_id)) == 1

    def test_upfront_request_moves_order_to_advance_pending(self, app):
        quote = locked_quote('COD')

        payment = ok(payment_service.create_payment_request(
            quote.order_id, quote.id, PaymentPhase.FULL, '1025.00',
            method='BANK_TRANSFER'))

        assert payment.status == PaymentStatus.PENDING
        assert payment.payer_id == BUYER
        assert payment.receiver_id == SELLER
        assert order_status(quote.order_id) == OrderStatus.ADVANCE_PENDING

    def test_balance_request_leaves_order_alone(self, app):
        quote = locked_quote('SPLIT_50_50')
        ok(payment_service.create_payment_request(
            quote.order_id, quote.id, 'BALANCE', quote.balance_amount))
        assert order_status(quote.order_id) == OrderStatus.AGREEMENT_LOCKED

    def test_due_window_accepts_numeric_strings(self, app):
        quote = locked_quote('COD')
        payment = ok(payment_service.create_payment_request(
            quote.order_id, quote.id, 'BALANCE', 1025, due_in_hours='12'))
        assert payment.due_at == START + timedelta(hours=12)

    def test_non_numeric_due_window(self, app):
        quote = locked_quote('COD')
        result = payment_service.create_payment_request(
            quote.order_id, quote.id, 'BALANCE', 1025,
            due_in_hours='tomorrow')
        assert result.error == 'Payment window must be a number'
        assert payment_service.get_order_payments(quote.order_id) == []

    def test_request_needs_locked_quote(self, app):
        from tests.helpers import sent_quote
        quote = sent_quote('COD')
        result = payment_service.create_payment_request(
            quote.order_id, quote.id, 'FULL', 10)
        assert result.error_kind == 'conflict'


class TestProofAndVerification:

    def test_submit_and_verify(self, app):
        quote = locked_quote('SPLIT_50_50')
        payment = _advance_payment(quote)
        proof = upload(quote.order_id)

        payment = ok(payment_service.submit_payment_proof(
            payment.id, proof.id, 'UTR998877'))
        assert payment.status == PaymentStatus.PROOF_SUBMITTED
        assert payment.proof_evidence_id == proof.id
        assert order_status(quote.order_id) \
            == OrderStatus.PAYMENT_PROOF_SUBMITTED

        payment = ok(payment_service.verify_payment(
            payment.id, SELLER, notes='Seen in bank app'))
        assert payment.status == PaymentStatus.VERIFIED
        assert payment.verified_by == SELLER
        assert payment.verified_at is not None
        assert order_status(quote.order_id) == OrderStatus.PAYMENT_VERIFIED

    def test_verify_needs_proof(self, app):
        quote = locked_quote('SPLIT_50_50')
        result = payment_service.verify_payment(
            _advance_payment(quote).id, SELLER)
        assert result.error == 'Payment proof not yet submitted'

    def test_proof_from_another_order_is_refused(self, app):
        quote = locked_quote('SPLIT_50_50')
        other = locked_quote('COD')
        foreign = upload(other.order_id)

        result = payment_service.submit_payment_proof(
            _advance_payment(quote).id, foreign.id)

        assert result.error == 'Evidence does not belong to this order'
        assert _advance_payment(quote).status == PaymentStatus.PENDING

    def test_rejection_allows_resubmission(self, app):
        quote = locked_quote('SPLIT_50_50')
        payment = _advance_payment(quote)
        ok(payment_service.submit_payment_proof(
            payment.id, upload(quote.order_id).id))

        rejected = ok(payment_service.reject_payment(
            payment.id, 'Amount does not match'))
        assert rejected.status == PaymentStatus.REJECTED
        assert rejected.rejection_reason == 'Amount does not match'
        assert order_status(quote.order_id) \
            == OrderStatus.PAYMENT_PROOF_SUBMITTED

        resubmitted = ok(payment_service.submit_payment_proof(
            payment.id, upload(quote.order_id).id))
        assert resubmitted.status == PaymentStatus.PROOF_SUBMITTED
        assert resubmitted.rejection_reason is None

    def test_rejection_needs_reason(self, app):
        quote = locked_quote('SPLIT_50_50')
        payment = _advance_payment(quote)
        ok(payment_service.submit_payment_proof(
            payment.id, upload(quote.order_id).id))
        result = payment_service.reject_payment(payment.id, '  ')
        assert result.error_kind == 'validation'

    def test_pending_payment_cannot_be_rejected(self, app):
        quote = locked_quote('SPLIT_50_50')
        result = payment_service.reject_payment(
            _advance_payment(quote).id, 'No proof')
        assert result.error_kind == 'conflict'

    def test_verified_payment_is_final(self, app):
        quote = locked_quote('SPLIT_50_50')
        payment = _advance_payment(quote)
        ok(payment_service.submit_payment_proof(
            payment.id, upload(quote.order_id).id))
        ok(payment_service.verify_payment(payment.id, SELLER))

        result = payment_service.submit_payment_proof(
            payment.id, upload(quote.order_id).id)

        assert result.error == 'Payment is not in pending state'

    def test_verification_is_audited(self, app):
        quote = locked_quote('SPLIT_50_50')
        payment = _advance_payment(quote)
        ok(payment_service.submit_payment_proof(
            payment.id, upload(quote.order_id).id))
        ok(payment_service.verify_payment(payment.id, SELLER))
        assert audit_service.count_actions(
            quote.order_id, 'PAYMENT_VERIFIED') == 1

    def test_balance_verified_before_advance(self, app):
        quote = locked_quote('SPLIT_50_50')
        advance = _advance_payment(quote)
        balance = ok(payment_service.create_payment_request(
            quote.order_id, quote.id, 'BALANCE', quote.balance_amount))

        ok(payment_service.submit_payment_proof(
            balance.id, upload(quote.order_id).id, 'UTR-BAL'))
        assert order_status(quote.order_id) \
            == OrderStatus.PAYMENT_PROOF_SUBMITTED
        ok(payment_service.verify_payment(balance.id, SELLER))

        # The order reports PAYMENT_VERIFIED while the advance is unpaid.
        assert order_status(quote.order_id) == OrderStatus.PAYMENT_VERIFIED
        assert advance.status == PaymentStatus.PENDING
        result = delivery_service.generate_delivery_otp(quote.order_id)
        assert result.error == 'Advance payment must be verified before delivery'

        ok(payment_service.submit_payment_proof(
            advance.id, upload(quote.order_id).id, 'UTR-ADV'))
        ok(payment_service.verify_payment(advance.id, SELLER))
        assert order_status(quote.order_id) == OrderStatus.PAYMENT_VERIFIED
        ok(delivery_service.generate_delivery_otp(quote.order_id))


class TestExpiry:

    def test_overdue_upfront_payment_expires_order(self, app, clock):
        quote = locked_quote('COD')
        ok(payment_service.create_payment_request(
            quote.order_id, quote.id, 'FULL', 1025))
        clock.advance(hours=25)

        assert ok(payment_service.expire_overdue_payments()) == 1

        payment = payment_service.get_order_payments(quote.order_id)[0]
        assert payment.status == PaymentStatus.EXPIRED
        assert payment.expired_at is not None
        assert order_status(quote.order_id) == OrderStatus.EXPIRED
        assert ok(payment_service.expire_overdue_payments()) == 0

    def test_submitted_proof_does_not_expire(self, app, clock):
        quote = locked_quote('SPLIT_50_50')
        payment = _advance_payment(quote)
        ok(payment_service.submit_payment_proof(
            payment.id, upload(quote.order_id).id))
        clock.advance(days=3)

        assert ok(payment_service.expire_overdue_payments()) == 0

    def test_auto_request_expiry_keeps_locked_order(self, app, clock):
        quote = locked_quote('SPLIT_50_50')
        clock.advance(hours=25)

        assert ok(payment_service.expire_overdue_payments()) == 1
        assert order_status(quote.order_id) == OrderStatus.AGREEMENT_LOCKED


def test_queries(app):
    quote = locked_quote('SPLIT_50_50')
    payment = _advance_payment(quote)

    assert [p.id for p in payment_service.get_pending_payments_for_buyer(
        BUYER)] == [payment.id]
    assert payment_service.get_payments_awaiting_verification(SELLER) == []

    ok(payment_service.submit_payment_proof(
        payment.id, upload(quote.order_id).id))

    assert payment_service.get_pending_payments_for_buyer(BUYER) == []
    awaiting = payment_service.get_payments_awaiting_verification(SELLER)
    assert [p.id for p in awaiting] == [payment.id]
    assert awaiting[0].amount == Decimal('512.50')
