from decimal import Decimal

from evidence_orders.models import DisputeStatus, OrderStatus
from evidence_orders.services import dispute_service
from tests.helpers import (
    ADMIN,
    BUYER,
    SELLER,
    STRANGER,
    delivered_quote,
    locked_quote,
    ok,
    order_status,
    upload,
)


def _raise(order_id, by=BUYER, role='BUYER', **kwargs):
    return dispute_service.raise_dispute(
        order_id,
        by,
        role,
        kwargs.pop('reason', 'QUALITY_ISSUE'),
        kwargs.pop('description', 'Half the crate was spoiled'),
        **kwargs)


class TestRaise:

    def test_dispute_on_delivered_order(self, app):
        quote = delivered_quote()
        photo = upload(quote.order_id)

        dispute = ok(_raise(
            quote.order_id, claimed_amount='300', evidence_ids=[photo.id]))

        assert dispute.status == DisputeStatus.OPEN
        assert dispute.against_user_id == SELLER
        assert dispute.claimed_amount == Decimal('300')
        assert dispute.get_evidence_ids() == [photo.id]
        assert order_status(quote.order_id) == OrderStatus.DISPUTE

    def test_seller_can_raise_against_buyer(self, app):
        quote = locked_quote('COD')
        dispute = ok(_raise(
            quote.order_id, by=SELLER, role='SELLER',
            reason='BUYER_UNRESPONSIVE'))
        assert dispute.against_user_id == BUYER

    def test_outsider_cannot_raise(self, app):
        quote = delivered_quote()
        result = _raise(quote.order_id, by=STRANGER)
        assert result.error_kind == 'validation'
        assert order_status(quote.order_id) == OrderStatus.DELIVERED

    def test_role_must_match_party(self, app):
        quote = delivered_quote()
        result = _raise(quote.order_id, by=BUYER, role='SELLER')
        assert result.error_kind == 'validation'

    def test_admin_cannot_raise(self, app):
        quote = delivered_quote()
        result = _raise(quote.order_id, by=ADMIN, role='ADMIN')
        assert result.error_kind == 'validation'

    def test_one_active_dispute_per_order(self, app):
        quote = delivered_quote()
        ok(_raise(quote.order_id))
        result = _raise(quote.order_id, by=SELLER, role='SELLER')
        assert result.error_kind == 'conflict'

    def test_terminal_order_cannot_be_disputed(self, app):
        from evidence_orders.services import delivery_service
        quote = delivered_quote()
        ok(delivery_service.mark_balance_collected(quote.order_id))
        result = _raise(quote.order_id)
        assert result.error_kind == 'conflict'

    def test_unknown_reason(self, app):
        quote = delivered_quote()
        result = _raise(quote.order_id, reason='BORED')
        assert result.error_kind == 'validation'


class TestResolve:

    def test_refund_completes_order(self, app):
        quote = delivered_quote()
        dispute = ok(_raise(quote.order_id))

        resolved = ok(dispute_service.resolve_dispute(
            dispute.id, ADMIN, 'refund', notes='Seller agreed',
            refund_amount=250))

        assert resolved.status == DisputeStatus.RESOLVED_COMPLETED
        assert resolved.resolution_type == 'REFUND'
        assert resolved.refund_amount == Decimal('250')
        assert order_status(quote.order_id) == OrderStatus.COMPLETED

    def test_mutual_cancel_cancels_order(self, app):
        quote = locked_quote('COD')
        dispute = ok(_raise(quote.order_id))

        resolved = ok(dispute_service.resolve_dispute(
            dispute.id, ADMIN, 'MUTUAL_CANCEL'))

        assert resolved.status == DisputeStatus.RESOLVED_CANCELLED
        assert order_status(quote.order_id) == OrderStatus.CANCELLED

    def test_second_resolution_fails(self, app):
        quote = delivered_quote()
        dispute = ok(_raise(quote.order_id))
        ok(dispute_service.resolve_dispute(dispute.id, ADMIN, 'REFUND'))

        result = dispute_service.resolve_dispute(
            dispute.id, ADMIN, 'MUTUAL_CANCEL')

        assert result.error == 'Dispute is already resolved'
        assert order_status(quote.order_id) == OrderStatus.COMPLETED

    def test_resolving_escalated_dispute(self, app):
        quote = delivered_quote()
        dispute = ok(_raise(quote.order_id))
        ok(dispute_service.escalate_dispute(dispute.id, 'No reply'))
        ok(dispute_service.resolve_dispute(dispute.id, ADMIN, 'REPLACEMENT'))
        assert order_status(quote.order_id) == OrderStatus.COMPLETED


class TestEscalation:

    def test_manual_escalation(self, app):
        quote = delivered_quote()
        dispute = ok(_raise(quote.order_id))

        escalated = ok(dispute_service.escalate_dispute(
            dispute.id, 'Seller not answering', BUYER, 'BUYER'))

        assert escalated.status == DisputeStatus.ESCALATED
        assert escalated.escalation_reason == 'Seller not answering'
        assert order_status(quote.order_id) == OrderStatus.ESCALATED

        again = dispute_service.escalate_dispute(dispute.id, 'Still nothing')
        assert again.error == 'Dispute is already escalated'

    def test_stale_dispute_is_auto_escalated(self, app, clock):
        quote = delivered_quote()
        dispute = ok(_raise(quote.order_id))
        clock.advance(days=3, minutes=1)

        assert ok(dispute_service.auto_escalate_stale_disputes()) == 1

        dispute = dispute_service.get_order_disputes(quote.order_id)[0]
        assert dispute.status == DisputeStatus.ESCALATED
        assert dispute.escalation_reason == (
            'Auto-escalated after 3 days without resolution.')
        assert order_status(quote.order_id) == OrderStatus.ESCALATED
        assert ok(dispute_service.auto_escalate_stale_disputes()) == 0

    def test_fresh_dispute_is_left_alone(self, app, clock):
        quote = delivered_quote()
        ok(_raise(quote.order_id))
        clock.advance(days=2)
        assert ok(dispute_service.auto_escalate_stale_disputes()) == 0

    def test_response_restarts_the_window(self, app, clock):
        quote = delivered_quote()
        dispute = ok(_raise(quote.order_id))
        clock.advance(days=2)
        ok(dispute_service.add_dispute_response(
            dispute.id, SELLER, 'SELLER', 'Sending photos of packing'))
        clock.advance(days=1, minutes=1)

        assert ok(dispute_service.auto_escalate_stale_disputes()) == 0

        clock.advance(days=2)
        assert ok(dispute_service.auto_escalate_stale_disputes()) == 1

    def test_under_review_still_escalates(self, app, clock):
        quote = delivered_quote()
        dispute = ok(_raise(quote.order_id))
        reviewed = ok(dispute_service.mark_under_review(dispute.id, ADMIN))
        assert reviewed.status == DisputeStatus.UNDER_REVIEW
        assert reviewed.reviewed_by == ADMIN

        clock.advance(days=4)
        assert ok(dispute_service.auto_escalate_stale_disputes()) == 1


def test_responses_are_counted(app, clock):
    quote = delivered_quote()
    dispute = ok(_raise(quote.order_id))
    clock.advance(hours=1)

    dispute = ok(dispute_service.add_dispute_response(
        dispute.id, ADMIN, 'ADMIN', 'Please share the invoice'))

    assert dispute.response_count == 1
    assert dispute.last_response_at == clock.now()


def test_outsider_cannot_respond(app):
    quote = delivered_quote()
    dispute = ok(_raise(quote.order_id))
    result = dispute_service.add_dispute_response(
        dispute.id, STRANGER, 'BUYER', 'Hello')
    assert result.error_kind == 'validation'


def test_active_dispute_queries(app):
    quote = delivered_quote()
    dispute = ok(_raise(quote.order_id))

    assert [d.id for d in dispute_service.get_user_active_disputes(BUYER)] \
        == [dispute.id]
    assert [d.id for d in dispute_service.get_user_active_disputes(SELLER)] \
        == [dispute.id]

    ok(dispute_service.resolve_dispute(dispute.id, ADMIN, 'REFUND'))
    assert dispute_service.get_user_active_disputes(BUYER) == []
