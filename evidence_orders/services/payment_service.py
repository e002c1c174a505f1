from datetime import timedelta
from itertools import groupby
from operator import attrgetter

from flask import current_app

from evidence_orders.errors import (
    NotFoundError,
    OrderWorkflowError,
    StateConflictError,
    ValidationError,
    service_operation,
)
from evidence_orders.extensions import db
from evidence_orders.models import (
    ActorRole,
    OrderEvidence,
    OrderPayment,
    OrderQuote,
    OrderStatus,
    PaymentMethod,
    PaymentPhase,
    PaymentStatus,
    QuoteStatus,
    new_id,
)
from evidence_orders.services import audit_service
from evidence_orders.services.clock import utcnow
from evidence_orders.services.locking import (
    load_order_for_update,
    order_transaction,
)
from evidence_orders.services.state_machine import (
    PAYMENT_STAGE_STATUSES,
    apply_transition,
    is_terminal,
)
from evidence_orders.utils import (
    parse_enum,
    to_decimal,
    to_hours,
    to_money,
)
import logging

logger = logging.getLogger(__name__)

ACTIVE_PAYMENT_STATUSES = (
    PaymentStatus.PENDING,
    PaymentStatus.PROOF_SUBMITTED,
)
UPFRONT_PHASES = (PaymentPhase.ADVANCE, PaymentPhase.FULL)


def _load_payment(payment_id):
    payment = OrderPayment.query.filter_by(
        id=payment_id).populate_existing().first()
    if payment is None:
        raise NotFoundError('Payment not found')
    return payment


def _validated_amount(amount):
    amount = to_decimal(amount, 'amount')
    if amount <= 0:
        raise ValidationError('Payment amount must be positive')
    return to_money(amount)


def create_payment_record(
        order,
        quote,
        phase,
        amount,
        method,
        due_in_hours,
        performed_by='SYSTEM',
        performed_by_role=ActorRole.SYSTEM,
        advance_order=True):
    """Append a payment request to the ledger inside the caller's lock.

    With ``advance_order`` an upfront request (ADVANCE or FULL) also moves
    the order to ADVANCE_PENDING.
    """
    phase = parse_enum(PaymentPhase, phase, 'payment phase')
    method = parse_enum(PaymentMethod, method, 'payment method')
    amount = _validated_amount(amount)
    if is_terminal(order.status):
        raise StateConflictError(
            f'Cannot request payment for a {order.status.value} order')
    if quote.order_id != order.id:
        raise ValidationError('Quote does not belong to this order')
    if quote.status != QuoteStatus.LOCKED:
        raise StateConflictError(
            'Payment can only be requested against a locked quote')

    active = OrderPayment.query.filter(
        OrderPayment.order_id == order.id,
        OrderPayment.phase == phase,
        OrderPayment.status.in_(ACTIVE_PAYMENT_STATUSES),
    ).first()
    if active is not None:
        raise StateConflictError(
            f'An active {phase.value} payment already exists for this order')

    now = utcnow()
    payment = OrderPayment(
        id=new_id(),
        order_id=order.id,
        quote_id=quote.id,
        payer_id=order.buyer_id,
        receiver_id=order.seller_id,
        phase=phase,
        amount=amount,
        method=method,
        status=PaymentStatus.PENDING,
        due_at=now + timedelta(hours=due_in_hours),
        created_at=now,
        updated_at=now,
    )
    db.session.add(payment)
    audit_service.record_action(
        order_id=order.id,
        action='PAYMENT_REQUESTED',
        performed_by=performed_by,
        performed_by_role=performed_by_role,
        description=f'{phase.value} payment of {amount} requested',
        to_state=PaymentStatus.PENDING,
        payload={
            'payment_id': payment.id,
            'phase': phase.value,
            'amount': str(amount),
            'method': method.value,
        },
    )
    if (advance_order and phase in UPFRONT_PHASES
            and order.status != OrderStatus.ADVANCE_PENDING):
        apply_transition(
            order,
            OrderStatus.ADVANCE_PENDING,
            performed_by,
            performed_by_role,
            f'Awaiting {phase.value.lower()} payment of {amount}',
        )
    return payment


@service_operation
def create_payment_request(
        order_id,
        quote_id,
        phase,
        amount,
        method=None,
        due_in_hours=None,
        requested_by='SYSTEM',
        role=ActorRole.SYSTEM):
    phase = parse_enum(PaymentPhase, phase, 'payment phase')
    method = parse_enum(
        PaymentMethod,
        method or current_app.config['DEFAULT_PAYMENT_METHOD'],
        'payment method')
    _validated_amount(amount)
    if due_in_hours is None:
        due_in_hours = current_app.config['PAYMENT_DUE_HOURS']
    due_in_hours = to_hours(due_in_hours, 'Payment window')

    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        quote = OrderQuote.query.get(quote_id)
        if quote is None:
            raise NotFoundError('Quote not found')
        payment = create_payment_record(
            order,
            quote,
            phase,
            amount,
            method,
            due_in_hours,
            performed_by=requested_by,
            performed_by_role=role,
        )
    return payment


@service_operation
def submit_payment_proof(payment_id, evidence_id, transaction_ref=None):
    if not evidence_id:
        raise ValidationError('Payment proof evidence is required')
    order_id = _load_payment(payment_id).order_id
    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        payment = _load_payment(payment_id)
        if payment.status not in (
                PaymentStatus.PENDING, PaymentStatus.REJECTED):
            raise StateConflictError('Payment is not in pending state')
        evidence = OrderEvidence.query.get(evidence_id)
        if evidence is None:
            raise NotFoundError('Evidence not found')
        if evidence.order_id != payment.order_id:
            raise ValidationError('Evidence does not belong to this order')

        previous_status = payment.status
        payment.status = PaymentStatus.PROOF_SUBMITTED
        payment.proof_evidence_id = evidence.id
        payment.transaction_ref = transaction_ref
        payment.rejection_reason = None
        payment.rejected_at = None
        payment.updated_at = utcnow()

        audit_service.record_action(
            order_id=order.id,
            action='PAYMENT_PROOF_SUBMITTED',
            performed_by=payment.payer_id,
            performed_by_role=ActorRole.BUYER,
            description=(
                f'Proof submitted for {payment.phase.value} payment'
            ),
            from_state=previous_status,
            to_state=PaymentStatus.PROOF_SUBMITTED,
            payload={
                'payment_id': payment.id,
                'transaction_ref': transaction_ref,
            },
            evidence_id=evidence.id,
        )
        if (order.status in PAYMENT_STAGE_STATUSES
                and order.status != OrderStatus.PAYMENT_PROOF_SUBMITTED):
            apply_transition(
                order,
                OrderStatus.PAYMENT_PROOF_SUBMITTED,
                payment.payer_id,
                ActorRole.BUYER,
                f'{payment.phase.value} payment proof submitted',
            )
    return payment


@service_operation
def verify_payment(payment_id, verified_by, notes=None):
    order_id = _load_payment(payment_id).order_id
    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        payment = _load_payment(payment_id)
        if payment.status != PaymentStatus.PROOF_SUBMITTED:
            raise StateConflictError('Payment proof not yet submitted')

        now = utcnow()
        payment.status = PaymentStatus.VERIFIED
        payment.verified_by = verified_by
        payment.verified_at = now
        payment.verification_notes = notes
        payment.updated_at = now

        audit_service.record_action(
            order_id=order.id,
            action='PAYMENT_VERIFIED',
            performed_by=verified_by,
            performed_by_role=ActorRole.SELLER,
            description=(
                f'{payment.phase.value} payment of {payment.amount} verified'
            ),
            from_state=PaymentStatus.PROOF_SUBMITTED,
            to_state=PaymentStatus.VERIFIED,
            payload={'payment_id': payment.id, 'notes': notes},
            evidence_id=payment.proof_evidence_id,
        )
        if order.status == OrderStatus.PAYMENT_PROOF_SUBMITTED:
            apply_transition(
                order,
                OrderStatus.PAYMENT_VERIFIED,
                verified_by,
                ActorRole.SELLER,
                f'{payment.phase.value} payment verified',
            )
    return payment


@service_operation
def reject_payment(payment_id, reason, rejected_by=None):
    if not reason or not str(reason).strip():
        raise ValidationError('Rejection reason is required')
    order_id = _load_payment(payment_id).order_id
    with order_transaction(order_id):
        load_order_for_update(order_id)
        payment = _load_payment(payment_id)
        if payment.status != PaymentStatus.PROOF_SUBMITTED:
            raise StateConflictError('Only submitted proofs can be rejected')

        now = utcnow()
        payment.status = PaymentStatus.REJECTED
        payment.rejection_reason = str(reason).strip()
        payment.rejected_at = now
        payment.updated_at = now

        audit_service.record_action(
            order_id=order_id,
            action='PAYMENT_REJECTED',
            performed_by=rejected_by or payment.receiver_id,
            performed_by_role=ActorRole.SELLER,
            description=f'Payment proof rejected: {payment.rejection_reason}',
            from_state=PaymentStatus.PROOF_SUBMITTED,
            to_state=PaymentStatus.REJECTED,
            payload={'payment_id': payment.id},
            evidence_id=payment.proof_evidence_id,
        )
    return payment


def _expire_order_payments(order_id, payment_ids, now):
    expired = 0
    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        payments = OrderPayment.query.filter(
            OrderPayment.id.in_(payment_ids)).populate_existing().all()
        upfront_expired = False
        for payment in payments:
            if payment.status != PaymentStatus.PENDING:
                continue
            if payment.due_at >= now:
                continue
            payment.status = PaymentStatus.EXPIRED
            payment.expired_at = now
            payment.updated_at = now
            expired += 1
            upfront_expired |= payment.phase in UPFRONT_PHASES
            audit_service.record_action(
                order_id=order_id,
                action='PAYMENT_EXPIRED',
                performed_by='SYSTEM',
                performed_by_role=ActorRole.SYSTEM,
                description=(
                    f'{payment.phase.value} payment of {payment.amount} '
                    f'expired unpaid'
                ),
                from_state=PaymentStatus.PENDING,
                to_state=PaymentStatus.EXPIRED,
                payload={'payment_id': payment.id},
            )
        if upfront_expired and order.status == OrderStatus.ADVANCE_PENDING:
            still_active = OrderPayment.query.filter(
                OrderPayment.order_id == order_id,
                OrderPayment.phase.in_(UPFRONT_PHASES),
                OrderPayment.status.in_(ACTIVE_PAYMENT_STATUSES),
            ).count()
            if not still_active:
                apply_transition(
                    order,
                    OrderStatus.EXPIRED,
                    'SYSTEM',
                    ActorRole.SYSTEM,
                    'Advance payment window elapsed',
                )
    return expired


@service_operation
def expire_overdue_payments(now=None):
    now = now or utcnow()
    overdue = OrderPayment.query.filter(
        OrderPayment.status == PaymentStatus.PENDING,
        OrderPayment.due_at < now,
    ).order_by(OrderPayment.order_id).all()

    expired = 0
    for order_id, rows in groupby(overdue, key=attrgetter('order_id')):
        payment_ids = [p.id for p in rows]
        try:
            expired += _expire_order_payments(order_id, payment_ids, now)
        except OrderWorkflowError as e:
            logger.warning(
                "Payment expiry skipped order %s: %s", order_id, e.message)
    if expired:
        logger.info("Expired %d payment request(s)", expired)
    return expired


def get_order_payments(order_id):
    return OrderPayment.query.filter_by(
        order_id=order_id
    ).order_by(OrderPayment.created_at.asc()).all()


def get_payments_awaiting_verification(seller_id):
    return OrderPayment.query.filter_by(
        receiver_id=seller_id,
        status=PaymentStatus.PROOF_SUBMITTED,
    ).order_by(OrderPayment.updated_at.desc()).all()


def get_pending_payments_for_buyer(buyer_id):
    return OrderPayment.query.filter_by(
        payer_id=buyer_id,
        status=PaymentStatus.PENDING,
    ).order_by(OrderPayment.due_at.asc()).all()
