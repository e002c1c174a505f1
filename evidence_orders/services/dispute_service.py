from datetime import timedelta

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
    DisputeReason,
    DisputeStatus,
    OrderDispute,
    OrderStatus,
    new_id,
)
from evidence_orders.services import audit_service
from evidence_orders.services.clock import utcnow
from evidence_orders.services.evidence_service import get_evidence_for_order
from evidence_orders.services.locking import (
    load_order_for_update,
    order_transaction,
)
from evidence_orders.services.state_machine import apply_transition, is_terminal
from evidence_orders.utils import parse_enum, to_decimal, to_money
from sqlalchemy import or_
import logging

logger = logging.getLogger(__name__)

ACTIVE_DISPUTE_STATUSES = (
    DisputeStatus.OPEN,
    DisputeStatus.UNDER_REVIEW,
    DisputeStatus.ESCALATED,
)
ESCALATABLE_STATUSES = (DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW)

MUTUAL_CANCEL = 'MUTUAL_CANCEL'


def auto_escalation_reason(days):
    return f'Auto-escalated after {days} days without resolution.'


def _load_dispute(dispute_id):
    dispute = OrderDispute.query.filter_by(
        id=dispute_id).populate_existing().first()
    if dispute is None:
        raise NotFoundError('Dispute not found')
    return dispute


def _ensure_active(dispute):
    if dispute.is_resolved:
        raise StateConflictError('Dispute is already resolved')


def _checked_evidence_ids(order_id, evidence_ids):
    ids = [e for e in (evidence_ids or []) if e]
    for evidence_id in ids:
        get_evidence_for_order(order_id, evidence_id)
    return ids


def _optional_amount(value, field):
    if value is None:
        return None
    value = to_decimal(value, field)
    if value < 0:
        raise ValidationError(f'{field} cannot be negative')
    return to_money(value)


@service_operation
def raise_dispute(
        order_id,
        raised_by,
        role,
        reason,
        description,
        requested_resolution=None,
        claimed_amount=None,
        evidence_ids=None):
    role = parse_enum(ActorRole, role, 'role')
    if role not in (ActorRole.BUYER, ActorRole.SELLER):
        raise ValidationError(
            'Disputes can only be raised by the buyer or the seller')
    reason = parse_enum(DisputeReason, reason, 'dispute reason')
    if not description or not str(description).strip():
        raise ValidationError('Dispute description is required')
    claimed_amount = _optional_amount(claimed_amount, 'claimed_amount')

    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        if order.party_role(raised_by) != role:
            raise ValidationError(
                'Only a party to the order can raise a dispute')
        if is_terminal(order.status):
            raise StateConflictError(
                f'Cannot raise a dispute on a {order.status.value} order')
        active = OrderDispute.query.filter(
            OrderDispute.order_id == order_id,
            OrderDispute.status.in_(ACTIVE_DISPUTE_STATUSES),
        ).first()
        if active is not None:
            raise StateConflictError(
                'An open dispute already exists for this order')
        evidence_ids = _checked_evidence_ids(order_id, evidence_ids)

        now = utcnow()
        dispute = OrderDispute(
            id=new_id(),
            order_id=order.id,
            raised_by=raised_by,
            raised_by_role=role.value,
            against_user_id=(
                order.seller_id if role == ActorRole.BUYER
                else order.buyer_id
            ),
            reason=reason,
            description=str(description).strip(),
            requested_resolution=requested_resolution,
            claimed_amount=claimed_amount,
            status=DisputeStatus.OPEN,
            created_at=now,
            updated_at=now,
        )
        dispute.set_evidence_ids(evidence_ids)
        db.session.add(dispute)

        audit_service.record_action(
            order_id=order.id,
            action='DISPUTE_RAISED',
            performed_by=raised_by,
            performed_by_role=role,
            description=f'Dispute raised: {reason.value}',
            to_state=DisputeStatus.OPEN,
            payload={
                'dispute_id': dispute.id,
                'claimed_amount': (
                    str(claimed_amount) if claimed_amount is not None
                    else None
                ),
                'evidence_ids': evidence_ids,
            },
        )
        apply_transition(
            order,
            OrderStatus.DISPUTE,
            raised_by,
            role,
            f'Dispute raised: {reason.value}',
        )
    return dispute


@service_operation
def add_dispute_response(
        dispute_id,
        responder_id,
        role,
        message,
        evidence_ids=None):
    role = parse_enum(ActorRole, role, 'role')
    if not message or not str(message).strip():
        raise ValidationError('Response message is required')
    order_id = _load_dispute(dispute_id).order_id

    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        dispute = _load_dispute(dispute_id)
        _ensure_active(dispute)
        if role != ActorRole.ADMIN and order.party_role(responder_id) != role:
            raise ValidationError(
                'Only the parties or an admin can respond to a dispute')
        evidence_ids = _checked_evidence_ids(order_id, evidence_ids)

        now = utcnow()
        dispute.response_count += 1
        dispute.last_response_at = now
        dispute.updated_at = now
        if evidence_ids:
            dispute.set_evidence_ids(
                dispute.get_evidence_ids() + evidence_ids)

        audit_service.record_action(
            order_id=order_id,
            action='DISPUTE_RESPONSE',
            performed_by=responder_id,
            performed_by_role=role,
            description=str(message).strip(),
            payload={
                'dispute_id': dispute.id,
                'evidence_ids': evidence_ids,
            },
        )
    return dispute


@service_operation
def mark_under_review(dispute_id, reviewer_id):
    order_id = _load_dispute(dispute_id).order_id
    with order_transaction(order_id):
        load_order_for_update(order_id)
        dispute = _load_dispute(dispute_id)
        _ensure_active(dispute)
        if dispute.status != DisputeStatus.OPEN:
            raise StateConflictError(
                f'Dispute is already {dispute.status.value}')

        now = utcnow()
        dispute.status = DisputeStatus.UNDER_REVIEW
        dispute.reviewed_by = reviewer_id
        dispute.updated_at = now
        audit_service.record_action(
            order_id=order_id,
            action='DISPUTE_UNDER_REVIEW',
            performed_by=reviewer_id,
            performed_by_role=ActorRole.ADMIN,
            description='Dispute taken under review',
            from_state=DisputeStatus.OPEN,
            to_state=DisputeStatus.UNDER_REVIEW,
            payload={'dispute_id': dispute.id},
        )
    return dispute


def _escalate(dispute, order, reason, escalated_by, role):
    now = utcnow()
    previous_status = dispute.status
    dispute.status = DisputeStatus.ESCALATED
    dispute.escalated_at = now
    dispute.escalation_reason = reason
    dispute.updated_at = now

    audit_service.record_action(
        order_id=order.id,
        action='DISPUTE_ESCALATED',
        performed_by=escalated_by,
        performed_by_role=role,
        description=reason,
        from_state=previous_status,
        to_state=DisputeStatus.ESCALATED,
        payload={'dispute_id': dispute.id},
    )
    apply_transition(
        order,
        OrderStatus.ESCALATED,
        escalated_by,
        role,
        reason,
    )


@service_operation
def escalate_dispute(
        dispute_id,
        reason,
        escalated_by='SYSTEM',
        role=ActorRole.SYSTEM):
    if not reason or not str(reason).strip():
        raise ValidationError('Escalation reason is required')
    role = parse_enum(ActorRole, role, 'role')
    order_id = _load_dispute(dispute_id).order_id

    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        dispute = _load_dispute(dispute_id)
        _ensure_active(dispute)
        if dispute.status == DisputeStatus.ESCALATED:
            raise StateConflictError('Dispute is already escalated')
        _escalate(dispute, order, str(reason).strip(), escalated_by, role)
    return dispute


def _auto_escalate(dispute_id, order_id, cutoff, reason):
    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        dispute = _load_dispute(dispute_id)
        # Re-checked under the lock; a response may have just arrived.
        if dispute.status not in ESCALATABLE_STATUSES:
            return False
        if dispute.last_activity_at > cutoff:
            return False
        _escalate(dispute, order, reason, 'SYSTEM', ActorRole.SYSTEM)
    return True


@service_operation
def auto_escalate_stale_disputes(now=None):
    now = now or utcnow()
    days = current_app.config['DISPUTE_AUTO_ESCALATE_DAYS']
    cutoff = now - timedelta(days=days)
    reason = auto_escalation_reason(days)

    candidates = OrderDispute.query.filter(
        OrderDispute.status.in_(ESCALATABLE_STATUSES),
        OrderDispute.created_at <= cutoff,
    ).all()
    stale = [
        (d.id, d.order_id) for d in candidates
        if d.last_activity_at <= cutoff
    ]

    escalated = 0
    for dispute_id, order_id in stale:
        try:
            if _auto_escalate(dispute_id, order_id, cutoff, reason):
                escalated += 1
        except OrderWorkflowError as e:
            logger.warning(
                "Auto-escalation skipped dispute %s: %s",
                dispute_id,
                e.message)
    if escalated:
        logger.info("Auto-escalated %d dispute(s)", escalated)
    return escalated


@service_operation
def resolve_dispute(
        dispute_id,
        resolved_by,
        resolution_type,
        notes=None,
        refund_amount=None):
    if not resolution_type or not str(resolution_type).strip():
        raise ValidationError('Resolution type is required')
    resolution_type = str(resolution_type).strip().upper()
    refund_amount = _optional_amount(refund_amount, 'refund_amount')
    order_id = _load_dispute(dispute_id).order_id

    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        dispute = _load_dispute(dispute_id)
        _ensure_active(dispute)

        if resolution_type == MUTUAL_CANCEL:
            final_status = OrderStatus.CANCELLED
            dispute_status = DisputeStatus.RESOLVED_CANCELLED
        else:
            final_status = OrderStatus.COMPLETED
            dispute_status = DisputeStatus.RESOLVED_COMPLETED

        now = utcnow()
        previous_status = dispute.status
        dispute.status = dispute_status
        dispute.resolution_type = resolution_type
        dispute.resolution_notes = notes
        dispute.resolved_by = resolved_by
        dispute.resolved_at = now
        dispute.refund_amount = refund_amount
        dispute.updated_at = now

        audit_service.record_action(
            order_id=order.id,
            action='DISPUTE_RESOLVED',
            performed_by=resolved_by,
            performed_by_role=ActorRole.ADMIN,
            description=f'Dispute resolved: {resolution_type}',
            from_state=previous_status,
            to_state=dispute_status,
            payload={
                'dispute_id': dispute.id,
                'refund_amount': (
                    str(refund_amount) if refund_amount is not None
                    else None
                ),
                'notes': notes,
            },
        )
        apply_transition(
            order,
            final_status,
            resolved_by,
            ActorRole.ADMIN,
            f'Dispute resolved: {resolution_type}',
        )
    return dispute


def get_user_active_disputes(user_id):
    return OrderDispute.query.filter(
        or_(
            OrderDispute.raised_by == user_id,
            OrderDispute.against_user_id == user_id,
        ),
        OrderDispute.status.in_(ACTIVE_DISPUTE_STATUSES),
    ).order_by(OrderDispute.created_at.desc()).all()


def get_order_disputes(order_id):
    return OrderDispute.query.filter_by(
        order_id=order_id
    ).order_by(OrderDispute.created_at.asc()).all()
