from evidence_orders.extensions import db
from evidence_orders.models import OrderAuditLog
from evidence_orders.services.clock import utcnow
from sqlalchemy import event
from sqlalchemy.orm import Session
import logging
import json

logger = logging.getLogger(__name__)
major_logger = logging.getLogger('major_events')
if not major_logger.handlers:
    handler = logging.FileHandler('major_events.log')
    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s')
    handler.setFormatter(formatter)
    major_logger.addHandler(handler)
    major_logger.setLevel(logging.INFO)
    major_logger.propagate = False

MAJOR_ACTION_PREFIXES = (
    'STATE_CHANGE',
    'ENQUIRY_',
    'QUOTE_',
    'PAYMENT_',
    'DELIVERY_',
    'DISPUTE_',
)

_PENDING_KEY = 'pending_audit_lines'


def _should_log_major(action: str) -> bool:
    if not action:
        return False
    return action.startswith(MAJOR_ACTION_PREFIXES)


def _enum_value(value):
    return getattr(value, 'value', value)


def record_action(
        order_id,
        action,
        performed_by,
        performed_by_role,
        description,
        from_state=None,
        to_state=None,
        payload=None,
        evidence_id=None):
    """Append one audit entry to the current transaction.

    Nothing is committed here: the entry is written together with the
    state change it describes, or not at all.
    """
    entry = OrderAuditLog(
        order_id=order_id,
        action=action,
        from_state=_enum_value(from_state),
        to_state=_enum_value(to_state),
        performed_by=performed_by or 'SYSTEM',
        performed_by_role=_enum_value(performed_by_role) or 'SYSTEM',
        description=description,
        evidence_id=evidence_id,
        created_at=utcnow(),
    )
    if payload:
        entry.set_payload(payload)
    db.session.add(entry)

    payload_brief = None
    try:
        if payload is not None:
            payload_brief = json.dumps(
                payload, ensure_ascii=False, default=str, separators=(
                    ',', ':'))
            if len(payload_brief) > 600:
                payload_brief = payload_brief[:600] + '...'
    except (TypeError, ValueError):
        payload_brief = None

    db.session.info.setdefault(_PENDING_KEY, []).append((
        entry.action,
        entry.performed_by_role,
        entry.performed_by,
        order_id,
        entry.from_state,
        entry.to_state,
        payload_brief,
    ))
    return entry


@event.listens_for(Session, 'after_commit')
def _emit_committed_audit_lines(session):
    lines = session.info.pop(_PENDING_KEY, None)
    if not lines:
        return
    for (action, role, actor, order_id,
         from_state, to_state, payload_brief) in lines:
        logger.info(
            "AUDIT action=%s actor_role=%s actor_id=%s order_id=%s "
            "from=%s to=%s payload=%s",
            action,
            role,
            actor,
            order_id,
            from_state,
            to_state,
            payload_brief,
        )
        if _should_log_major(action):
            major_logger.info(
                "action=%s actor_role=%s actor_id=%s order_id=%s "
                "from=%s to=%s payload=%s",
                action,
                role,
                actor,
                order_id,
                from_state,
                to_state,
                payload_brief,
            )


@event.listens_for(Session, 'after_soft_rollback')
def _drop_rolled_back_audit_lines(session, previous_transaction):
    session.info.pop(_PENDING_KEY, None)


def get_order_audit_trail(order_id):
    return OrderAuditLog.query.filter_by(
        order_id=order_id
    ).order_by(OrderAuditLog.id.asc()).all()


def count_actions(order_id, action):
    return OrderAuditLog.query.filter_by(
        order_id=order_id,
        action=action,
    ).count()
