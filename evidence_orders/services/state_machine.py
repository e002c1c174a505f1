"""Order status graph.

The legality table below is the single place that decides which status an
order may move to next. Components never assign ``Order.status`` directly;
they call :func:`apply_transition`, which validates against the table and
writes the matching audit entry in the same transaction.
"""
from evidence_orders.errors import (
    StateConflictError,
    ValidationError,
    service_operation,
)
from evidence_orders.models import OrderStatus
from evidence_orders.services import audit_service
from evidence_orders.services.clock import utcnow
from evidence_orders.services.locking import (
    load_order_for_update,
    order_transaction,
)
import logging

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({
    OrderStatus.COMPLETED,
    OrderStatus.CANCELLED,
    OrderStatus.EXPIRED,
})

# Statuses in which proof submission / verification still drives the order.
PAYMENT_STAGE_STATUSES = frozenset({
    OrderStatus.AGREEMENT_LOCKED,
    OrderStatus.ADVANCE_PENDING,
    OrderStatus.PAYMENT_PROOF_SUBMITTED,
})

DISPUTE_TRACK_STATUSES = frozenset({
    OrderStatus.DISPUTE,
    OrderStatus.ESCALATED,
})

_BASE_TRANSITIONS = {
    OrderStatus.ENQUIRY: {
        OrderStatus.QUOTE_SENT,
        OrderStatus.CANCELLED,
        OrderStatus.EXPIRED,
    },
    OrderStatus.QUOTE_SENT: {
        OrderStatus.AGREEMENT_LOCKED,
        OrderStatus.CANCELLED,
        OrderStatus.EXPIRED,
    },
    OrderStatus.AGREEMENT_LOCKED: {
        OrderStatus.ADVANCE_PENDING,
        OrderStatus.PAYMENT_PROOF_SUBMITTED,
        # COD / buyer pickup go straight to handover.
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.ADVANCE_PENDING: {
        OrderStatus.PAYMENT_PROOF_SUBMITTED,
        OrderStatus.CANCELLED,
        OrderStatus.EXPIRED,
    },
    OrderStatus.PAYMENT_PROOF_SUBMITTED: {
        OrderStatus.PAYMENT_VERIFIED,
        # New request after a rejected proof.
        OrderStatus.ADVANCE_PENDING,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PAYMENT_VERIFIED: {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.DELIVERED: {
        OrderStatus.COMPLETED,
    },
    OrderStatus.DISPUTE: {
        OrderStatus.ESCALATED,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.ESCALATED: {
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.EXPIRED: set(),
}


def _build_transitions():
    table = {}
    for status, targets in _BASE_TRANSITIONS.items():
        allowed = set(targets)
        if status not in TERMINAL_STATUSES | DISPUTE_TRACK_STATUSES:
            # The dispute track is reachable from every live status.
            allowed |= DISPUTE_TRACK_STATUSES
        table[status] = frozenset(allowed)
    return table


ALLOWED_TRANSITIONS = _build_transitions()


def parse_status(value):
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus[str(value).strip().upper()]
    except KeyError:
        raise ValidationError(f'Unknown order status {value}')


def is_terminal(status) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current, new) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition_graph():
    """The full graph as ``{status: [next statuses]}`` (values sorted)."""
    return {
        status.value: sorted(t.value for t in targets)
        for status, targets in ALLOWED_TRANSITIONS.items()
    }


def apply_transition(
        order,
        new_status,
        performed_by,
        performed_by_role,
        notes=None,
        payload=None):
    current = order.status
    if not can_transition(current, new_status):
        raise StateConflictError(
            f'Invalid transition from {current.value} to {new_status.value}'
        )

    order.status = new_status
    order.updated_at = utcnow()
    order.dirty = True

    audit_service.record_action(
        order_id=order.id,
        action='STATE_CHANGE',
        from_state=current,
        to_state=new_status,
        performed_by=performed_by,
        performed_by_role=performed_by_role,
        description=notes or f'Status changed to {new_status.value}',
        payload=payload,
    )
    logger.debug(
        "Order %s %s -> %s by %s",
        order.id,
        current.value,
        new_status.value,
        performed_by,
    )
    return order


@service_operation
def transition_order_state(
        order_id,
        new_status,
        performed_by,
        role,
        notes=None):
    new_status = parse_status(new_status)
    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        apply_transition(order, new_status, performed_by, role, notes)
    return order
