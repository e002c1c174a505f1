"""Handover confirmation.

The buyer receives a 6-digit OTP and reads it out to the seller at the
door; the seller enters it together with their GPS fix. A photo path exists
for handovers where no OTP can be exchanged.
"""
from datetime import timedelta
import hmac
import secrets

from flask import current_app

from evidence_orders.errors import (
    NotFoundError,
    StateConflictError,
    ValidationError,
    service_operation,
)
from evidence_orders.extensions import db
from evidence_orders.models import (
    ActorRole,
    ConfirmationMethod,
    DeliveryConfirmation,
    DeliveryStatus,
    EvidenceType,
    OrderPayment,
    OrderStatus,
    PaymentPhase,
    PaymentStatus,
    new_id,
)
from evidence_orders.services import audit_service, geo_service
from evidence_orders.services.clock import utcnow
from evidence_orders.services.evidence_service import get_evidence_for_order
from evidence_orders.services.locking import (
    load_order_for_update,
    order_transaction,
)
from evidence_orders.services.quote_service import (
    get_locked_quote,
    needs_advance_payment,
)
from evidence_orders.services.state_machine import apply_transition
import logging

logger = logging.getLogger(__name__)

READY_FOR_DELIVERY = (
    OrderStatus.AGREEMENT_LOCKED,
    OrderStatus.PAYMENT_VERIFIED,
)


def _new_otp():
    return f'{secrets.randbelow(900000) + 100000}'


def _ensure_ready_for_delivery(order):
    if order.status not in READY_FOR_DELIVERY:
        raise StateConflictError(
            f'Order is not ready for delivery (status {order.status.value})')
    quote = get_locked_quote(order.id)
    if quote is not None and needs_advance_payment(quote):
        paid = OrderPayment.query.filter(
            OrderPayment.order_id == order.id,
            OrderPayment.phase.in_((PaymentPhase.ADVANCE, PaymentPhase.FULL)),
            OrderPayment.status == PaymentStatus.VERIFIED,
        ).first()
        if paid is None:
            raise StateConflictError(
                'Advance payment must be verified before delivery')
    return quote


def _load_confirmation(order_id):
    confirmation = DeliveryConfirmation.query.filter_by(
        order_id=order_id).populate_existing().first()
    if confirmation is None:
        raise NotFoundError('Delivery confirmation not found')
    return confirmation


@service_operation
def generate_delivery_otp(order_id):
    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        _ensure_ready_for_delivery(order)
        confirmation = DeliveryConfirmation.query.filter_by(
            order_id=order_id).populate_existing().first()
        if confirmation is not None and (
                confirmation.status != DeliveryStatus.PENDING):
            raise StateConflictError('Delivery is already confirmed')

        now = utcnow()
        if confirmation is None:
            confirmation = DeliveryConfirmation(
                id=new_id(),
                order_id=order.id,
                buyer_id=order.buyer_id,
                seller_id=order.seller_id,
                created_at=now,
            )
            db.session.add(confirmation)
        regenerated = confirmation.delivery_otp is not None
        otp = _new_otp()
        confirmation.delivery_otp = otp
        confirmation.otp_generated_at = now
        confirmation.otp_expires_at = now + timedelta(
            hours=current_app.config['DELIVERY_OTP_VALID_HOURS'])
        confirmation.otp_attempts = 0
        confirmation.max_otp_attempts = (
            current_app.config['DELIVERY_OTP_MAX_ATTEMPTS'])
        confirmation.updated_at = now

        audit_service.record_action(
            order_id=order.id,
            action='DELIVERY_OTP_GENERATED',
            performed_by=order.buyer_id,
            performed_by_role=ActorRole.BUYER,
            description=(
                'Delivery OTP regenerated' if regenerated
                else 'Delivery OTP generated'
            ),
            payload={'expires_at': confirmation.otp_expires_at.isoformat()},
        )
    return otp


@service_operation
def verify_delivery_otp(
        order_id,
        otp,
        confirmed_by,
        verifier_lat=None,
        verifier_lng=None):
    if otp is None or not str(otp).strip():
        raise ValidationError('OTP is required')
    verifier_lat, verifier_lng = geo_service.parse_coordinates(
        verifier_lat, verifier_lng, 'Verifier')

    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        confirmation = _load_confirmation(order_id)
        if confirmation.status != DeliveryStatus.PENDING:
            raise StateConflictError('Delivery is already confirmed')
        if confirmation.delivery_otp is None:
            raise StateConflictError('No delivery OTP has been generated')
        quote = _ensure_ready_for_delivery(order)

        now = utcnow()
        if now > confirmation.otp_expires_at:
            raise StateConflictError('OTP has expired')
        if confirmation.otp_attempts >= confirmation.max_otp_attempts:
            raise StateConflictError('Maximum OTP attempts exceeded')

        if not hmac.compare_digest(
                confirmation.delivery_otp, str(otp).strip()):
            confirmation.otp_attempts += 1
            confirmation.updated_at = now
            audit_service.record_action(
                order_id=order.id,
                action='DELIVERY_OTP_FAILED',
                performed_by=confirmed_by,
                performed_by_role=ActorRole.SELLER,
                description='Incorrect delivery OTP entered',
                payload={'attempts': confirmation.otp_attempts},
            )
            # The consumed attempt survives the failure below.
            db.session.commit()
            if confirmation.otp_attempts >= confirmation.max_otp_attempts:
                raise StateConflictError('Maximum OTP attempts exceeded')
            raise ValidationError('Invalid OTP')

        if (quote is not None
                and geo_service.has_coordinates(verifier_lat, verifier_lng)
                and geo_service.has_coordinates(
                    quote.delivery_latitude, quote.delivery_longitude)):
            distance = geo_service.distance_km(
                verifier_lat,
                verifier_lng,
                quote.delivery_latitude,
                quote.delivery_longitude,
            )
            radius = current_app.config['DELIVERY_GEOFENCE_KM']
            if not geo_service.within_radius(distance, radius):
                raise StateConflictError(
                    'Location verification failed. You are '
                    f'{geo_service.format_distance(distance)} away from '
                    'delivery location.'
                )

        confirmation.status = DeliveryStatus.CONFIRMED
        confirmation.confirmation_method = ConfirmationMethod.OTP
        confirmation.confirmed_by = confirmed_by
        confirmation.confirmed_at = now
        confirmation.verifier_latitude = verifier_lat
        confirmation.verifier_longitude = verifier_lng
        confirmation.updated_at = now

        audit_service.record_action(
            order_id=order.id,
            action='DELIVERY_CONFIRMED',
            performed_by=confirmed_by,
            performed_by_role=ActorRole.SELLER,
            description='Delivery confirmed with OTP',
            to_state=DeliveryStatus.CONFIRMED,
            payload={'method': ConfirmationMethod.OTP.value},
        )
        apply_transition(
            order,
            OrderStatus.DELIVERED,
            confirmed_by,
            ActorRole.SELLER,
            'Delivery confirmed via OTP',
        )
    return confirmation


@service_operation
def confirm_delivery_with_photo(
        order_id,
        delivery_photo_id,
        buyer_photo_id=None,
        confirmed_by=None):
    if not delivery_photo_id:
        raise ValidationError('Delivery photo is required')

    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        photo = get_evidence_for_order(order_id, delivery_photo_id)
        if photo.evidence_type not in (EvidenceType.PHOTO, EvidenceType.VIDEO):
            raise ValidationError('Delivery proof must be a photo or video')
        if buyer_photo_id:
            get_evidence_for_order(order_id, buyer_photo_id)

        confirmation = DeliveryConfirmation.query.filter_by(
            order_id=order_id).populate_existing().first()
        if confirmation is not None and (
                confirmation.status != DeliveryStatus.PENDING):
            raise StateConflictError('Delivery is already confirmed')
        _ensure_ready_for_delivery(order)

        now = utcnow()
        if confirmation is None:
            confirmation = DeliveryConfirmation(
                id=new_id(),
                order_id=order.id,
                buyer_id=order.buyer_id,
                seller_id=order.seller_id,
                max_otp_attempts=(
                    current_app.config['DELIVERY_OTP_MAX_ATTEMPTS']),
                created_at=now,
            )
            db.session.add(confirmation)

        confirmed_by = confirmed_by or order.buyer_id
        role = order.party_role(confirmed_by) or ActorRole.BUYER
        confirmation.status = DeliveryStatus.CONFIRMED
        confirmation.confirmation_method = ConfirmationMethod.PHOTO
        confirmation.delivery_photo_evidence_id = photo.id
        confirmation.buyer_confirmation_evidence_id = buyer_photo_id
        confirmation.confirmed_by = confirmed_by
        confirmation.confirmed_at = now
        confirmation.updated_at = now

        audit_service.record_action(
            order_id=order.id,
            action='DELIVERY_CONFIRMED',
            performed_by=confirmed_by,
            performed_by_role=role,
            description='Delivery confirmed with photo evidence',
            to_state=DeliveryStatus.CONFIRMED,
            payload={'method': ConfirmationMethod.PHOTO.value},
            evidence_id=photo.id,
        )
        apply_transition(
            order,
            OrderStatus.DELIVERED,
            confirmed_by,
            role,
            'Delivery confirmed via photo',
        )
    return confirmation


@service_operation
def mark_balance_collected(order_id, evidence_id=None, collected_by=None):
    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        confirmation = _load_confirmation(order_id)
        if confirmation.status == DeliveryStatus.PENDING:
            raise StateConflictError('Delivery has not been confirmed yet')
        if confirmation.status == DeliveryStatus.BALANCE_COLLECTED:
            raise StateConflictError('Balance already collected')
        if order.status != OrderStatus.DELIVERED:
            raise StateConflictError(
                f'Balance cannot be collected for a '
                f'{order.status.value} order')
        if evidence_id:
            get_evidence_for_order(order_id, evidence_id)

        now = utcnow()
        collected_by = collected_by or order.seller_id
        confirmation.status = DeliveryStatus.BALANCE_COLLECTED
        confirmation.balance_collected = True
        confirmation.balance_collected_at = now
        confirmation.balance_evidence_id = evidence_id
        confirmation.updated_at = now

        audit_service.record_action(
            order_id=order.id,
            action='DELIVERY_BALANCE_COLLECTED',
            performed_by=collected_by,
            performed_by_role=ActorRole.SELLER,
            description='Balance collected at handover',
            from_state=DeliveryStatus.CONFIRMED,
            to_state=DeliveryStatus.BALANCE_COLLECTED,
            evidence_id=evidence_id,
        )
        apply_transition(
            order,
            OrderStatus.COMPLETED,
            collected_by,
            ActorRole.SELLER,
            'Balance collected, order completed',
        )
    return confirmation


def get_delivery_confirmation(order_id):
    return DeliveryConfirmation.query.filter_by(order_id=order_id).first()
