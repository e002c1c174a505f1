from datetime import datetime

from evidence_orders.errors import (
    NotFoundError,
    StateConflictError,
    ValidationError,
    service_operation,
)
from evidence_orders.extensions import db
from evidence_orders.models import (
    ActorRole,
    EvidenceType,
    OrderEvidence,
    new_id,
)
from evidence_orders.services import audit_service
from evidence_orders.services.clock import utcnow
from evidence_orders.services.locking import (
    load_order_for_update,
    order_transaction,
)
from evidence_orders.services.state_machine import is_terminal
from evidence_orders.utils import parse_enum
import logging

logger = logging.getLogger(__name__)


def _parse_geo(geo):
    """Accept ``(lat, lng)`` or ``{'lat': .., 'lng': ..}``."""
    if geo is None:
        return None, None
    if isinstance(geo, dict):
        lat = geo.get('lat', geo.get('latitude'))
        lng = geo.get('lng', geo.get('longitude'))
    else:
        try:
            lat, lng = geo
        except (TypeError, ValueError):
            raise ValidationError('Geo tag must be a latitude/longitude pair')
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ValidationError('Geo tag must be a latitude/longitude pair')
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise ValidationError('Geo tag is out of range')
    return lat, lng


def _parse_device_timestamp(value):
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        raise ValidationError('Invalid device timestamp')
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - parsed.utcoffset()
    return parsed


@service_operation
def upload_evidence(
        order_id,
        evidence_type,
        uploaded_by,
        role,
        media_refs=None,
        text=None,
        geo=None,
        device_timestamp=None):
    evidence_type = parse_enum(EvidenceType, evidence_type, 'evidence type')
    role = parse_enum(ActorRole, role, 'role')
    if not uploaded_by:
        raise ValidationError('Uploader is required')
    media_refs = [str(ref) for ref in (media_refs or []) if ref]
    text = text.strip() if isinstance(text, str) else text
    if not media_refs and not text:
        raise ValidationError(
            'Evidence needs at least one media reference or a text note')
    lat, lng = _parse_geo(geo)
    device_timestamp = _parse_device_timestamp(device_timestamp)

    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        if is_terminal(order.status):
            raise StateConflictError(
                f'Cannot upload evidence for a {order.status.value} order')

        now = utcnow()
        evidence = OrderEvidence(
            id=new_id(),
            order_id=order.id,
            evidence_type=evidence_type,
            uploaded_by=uploaded_by,
            uploaded_by_role=role.value,
            text_content=text or None,
            geo_latitude=lat,
            geo_longitude=lng,
            device_timestamp=device_timestamp or now,
            created_at=now,
        )
        evidence.set_media_refs(media_refs)
        db.session.add(evidence)
        audit_service.record_action(
            order_id=order.id,
            action='EVIDENCE_UPLOADED',
            performed_by=uploaded_by,
            performed_by_role=role,
            description=f'{evidence_type.value} evidence uploaded',
            payload={'media_count': len(media_refs)},
            evidence_id=evidence.id,
        )
    return evidence


@service_operation
def verify_evidence(evidence_id, verified_by, note=None):
    if not verified_by:
        raise ValidationError('Verifier is required')
    evidence = OrderEvidence.query.get(evidence_id)
    if evidence is None:
        raise NotFoundError('Evidence not found')

    with order_transaction(evidence.order_id):
        order = load_order_for_update(evidence.order_id)
        evidence = OrderEvidence.query.filter_by(
            id=evidence_id).populate_existing().first()
        if evidence.is_verified:
            raise StateConflictError('Evidence is already verified')
        if evidence.uploaded_by == verified_by:
            raise ValidationError('Evidence cannot be verified by its uploader')

        evidence.is_verified = True
        evidence.verified_by = verified_by
        evidence.verified_at = utcnow()
        evidence.verification_note = note
        audit_service.record_action(
            order_id=order.id,
            action='EVIDENCE_VERIFIED',
            performed_by=verified_by,
            performed_by_role=order.party_role(verified_by) or ActorRole.ADMIN,
            description=f'{evidence.evidence_type.value} evidence verified',
            payload={'note': note} if note else None,
            evidence_id=evidence.id,
        )
    return evidence


def get_order_evidence(order_id, evidence_type=None):
    query = OrderEvidence.query.filter_by(order_id=order_id)
    if evidence_type is not None:
        query = query.filter_by(
            evidence_type=parse_enum(
                EvidenceType, evidence_type, 'evidence type'))
    return query.order_by(OrderEvidence.created_at.asc()).all()


def get_evidence_for_order(order_id, evidence_id):
    """Evidence ``evidence_id`` if it belongs to ``order_id``."""
    evidence = OrderEvidence.query.get(evidence_id)
    if evidence is None:
        raise NotFoundError('Evidence not found')
    if evidence.order_id != order_id:
        raise ValidationError('Evidence does not belong to this order')
    return evidence
