"""Chronological view of everything recorded against one order."""
from heapq import merge
from operator import attrgetter

from evidence_orders.errors import NotFoundError, service_operation
from evidence_orders.models import (
    Order,
    OrderDispute,
    OrderEvidence,
    OrderPayment,
)
from evidence_orders.services import audit_service


class TimelineEvent:
    __slots__ = ('timestamp', 'kind', 'record_id', 'summary', 'data')

    def __init__(self, timestamp, kind, record_id, summary, data):
        self.timestamp = timestamp
        self.kind = kind
        self.record_id = record_id
        self.summary = summary
        self.data = data

    def to_dict(self):
        return {
            'timestamp': self.timestamp.isoformat(),
            'kind': self.kind,
            'record_id': self.record_id,
            'summary': self.summary,
            'data': self.data,
        }

    def __repr__(self):
        return f'<TimelineEvent {self.kind} {self.timestamp} {self.summary}>'


_by_time = attrgetter('timestamp')


def _audit_events(order_id):
    for entry in audit_service.get_order_audit_trail(order_id):
        yield TimelineEvent(
            entry.created_at,
            'audit',
            entry.id,
            f'{entry.action}: {entry.description}',
            entry.to_dict(),
        )


def _evidence_events(order_id):
    for evidence in OrderEvidence.query.filter_by(order_id=order_id):
        yield TimelineEvent(
            evidence.created_at,
            'evidence',
            evidence.id,
            f'{evidence.evidence_type.value} evidence by '
            f'{evidence.uploaded_by}',
            evidence.to_dict(),
        )


def _payment_events(order_id):
    for payment in OrderPayment.query.filter_by(order_id=order_id):
        yield TimelineEvent(
            payment.created_at,
            'payment',
            payment.id,
            f'{payment.phase.value} payment of {payment.amount} '
            f'({payment.status.value})',
            payment.to_dict(),
        )


def _dispute_events(order_id):
    for dispute in OrderDispute.query.filter_by(order_id=order_id):
        yield TimelineEvent(
            dispute.created_at,
            'dispute',
            dispute.id,
            f'Dispute {dispute.reason.value} ({dispute.status.value})',
            dispute.to_dict(),
        )


@service_operation
def get_order_timeline(order_id):
    if Order.query.get(order_id) is None:
        raise NotFoundError('Order not found')
    # sorted() is stable, so ties keep append order within a stream; merge
    # then prefers earlier streams on equal timestamps.
    streams = [
        sorted(source(order_id), key=_by_time)
        for source in (
            _audit_events,
            _evidence_events,
            _payment_events,
            _dispute_events,
        )
    ]
    return list(merge(*streams, key=_by_time))
