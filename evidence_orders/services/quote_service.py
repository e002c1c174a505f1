"""Quote negotiation: enquiry, quote, counter-offers and the agreement lock.

Every quote revision is a new row; the previous one is marked SUPERSEDED and
linked through ``previous_quote_id``, so the full negotiation chain stays
readable. Once both parties agree, the quote is LOCKED and its prices never
change again.
"""
from datetime import timedelta
from decimal import Decimal
from itertools import groupby
from operator import itemgetter

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
    DeliveryType,
    Order,
    OrderQuote,
    OrderStatus,
    PaymentPhase,
    PaymentType,
    QuoteStatus,
    new_id,
)
from evidence_orders.services import (
    audit_service,
    geo_service,
    payment_service,
)
from evidence_orders.services.clock import utcnow
from evidence_orders.services.locking import (
    load_order_for_update,
    order_transaction,
)
from evidence_orders.services.state_machine import apply_transition
from evidence_orders.utils import parse_enum, to_decimal, to_hours, to_money
import logging

logger = logging.getLogger(__name__)

LIVE_QUOTE_STATUSES = (
    QuoteStatus.DRAFT,
    QuoteStatus.SENT,
    QuoteStatus.NEGOTIATING,
    QuoteStatus.LOCKED,
)
OPEN_QUOTE_STATUSES = (QuoteStatus.SENT, QuoteStatus.NEGOTIATING)

_ZERO = Decimal('0')


def calculate_advance(payment_type, total):
    if payment_type == PaymentType.FULL_ADVANCE:
        return to_money(total)
    if payment_type == PaymentType.SPLIT_50_50:
        return to_money(total / 2)
    return None


def calculate_balance(payment_type, total):
    if payment_type == PaymentType.SPLIT_50_50:
        # Remainder, so advance + balance always equals the total.
        return to_money(total) - calculate_advance(payment_type, total)
    if payment_type == PaymentType.COD:
        return to_money(total)
    return None


def _price_quote(quote):
    """Recompute derived totals from the price components."""
    quote.total_product_price = to_money(
        Decimal(quote.base_price) * Decimal(quote.quantity))
    final_total = to_money(
        quote.total_product_price
        + Decimal(quote.delivery_charge)
        + Decimal(quote.packing_charge)
        - Decimal(quote.discount or 0)
    )
    if final_total < _ZERO:
        raise ValidationError('Final total cannot be negative')
    quote.final_total = final_total
    quote.advance_amount = calculate_advance(quote.payment_type, final_total)
    quote.balance_amount = calculate_balance(quote.payment_type, final_total)


def _non_negative(value, field, message):
    value = to_decimal(value, field)
    if value < _ZERO:
        raise ValidationError(message)
    return value


def _load_quote(quote_id):
    quote = OrderQuote.query.filter_by(
        id=quote_id).populate_existing().first()
    if quote is None:
        raise NotFoundError('Quote not found')
    return quote


@service_operation
def create_enquiry(
        buyer_id,
        seller_id,
        product_id,
        product_name,
        quantity,
        unit,
        delivery_type=DeliveryType.SELLER_DELIVERY,
        delivery_address=None,
        delivery_latitude=None,
        delivery_longitude=None,
        payment_preference=PaymentType.COD,
        notes=None):
    if not buyer_id or not seller_id:
        raise ValidationError('Buyer and seller are required')
    if buyer_id == seller_id:
        raise ValidationError('Buyer and seller must be different users')
    quantity = to_decimal(quantity, 'quantity')
    if quantity <= _ZERO:
        raise ValidationError('Quantity must be greater than zero')
    if not unit or not str(unit).strip():
        raise ValidationError('Unit is required')
    delivery_type = parse_enum(DeliveryType, delivery_type, 'delivery type')
    payment_preference = parse_enum(
        PaymentType, payment_preference, 'payment type')
    delivery_latitude, delivery_longitude = geo_service.parse_coordinates(
        delivery_latitude, delivery_longitude, 'Delivery')

    now = utcnow()
    order = Order(
        id=new_id(),
        buyer_id=buyer_id,
        seller_id=seller_id,
        product_id=product_id,
        product_name=product_name,
        status=OrderStatus.ENQUIRY,
        created_at=now,
        updated_at=now,
    )
    with order_transaction(order.id):
        db.session.add(order)
        db.session.flush()
        quote = OrderQuote(
            id=new_id(),
            order_id=order.id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            product_id=product_id,
            product_name=product_name,
            quantity=quantity,
            unit=str(unit).strip(),
            base_price=_ZERO,
            total_product_price=_ZERO,
            delivery_charge=_ZERO,
            packing_charge=_ZERO,
            discount=_ZERO,
            final_total=_ZERO,
            delivery_type=delivery_type,
            delivery_address=delivery_address,
            delivery_latitude=delivery_latitude,
            delivery_longitude=delivery_longitude,
            payment_type=payment_preference,
            status=QuoteStatus.DRAFT,
            version=1,
            buyer_notes=notes,
            created_at=now,
            updated_at=now,
        )
        db.session.add(quote)
        audit_service.record_action(
            order_id=order.id,
            action='ENQUIRY_CREATED',
            performed_by=buyer_id,
            performed_by_role=ActorRole.BUYER,
            description=(
                f'Enquiry for {quantity} {quote.unit} of '
                f'{product_name or product_id}'
            ),
            to_state=OrderStatus.ENQUIRY,
            payload={'quote_id': quote.id, 'quantity': str(quantity)},
        )
    logger.info("Enquiry %s created by buyer %s", order.id, buyer_id)
    return quote


@service_operation
def send_quote(
        quote_id,
        base_price,
        delivery_charge=0,
        packing_charge=0,
        allowed_payment_types=None,
        notes=None,
        expires_in_hours=None,
        payment_type=None,
        discount=None):
    message = 'Prices cannot be negative'
    base_price = _non_negative(base_price, 'base_price', message)
    delivery_charge = _non_negative(
        delivery_charge or 0, 'delivery_charge', message)
    packing_charge = _non_negative(
        packing_charge or 0, 'packing_charge', message)
    if discount is not None:
        discount = _non_negative(discount, 'discount', message)
    if expires_in_hours is None:
        expires_in_hours = current_app.config['QUOTE_EXPIRY_HOURS']
    expires_in_hours = to_hours(expires_in_hours, 'Quote validity')
    allowed = [
        parse_enum(PaymentType, t, 'payment type')
        for t in (allowed_payment_types or [])
    ]
    if payment_type is not None:
        payment_type = parse_enum(PaymentType, payment_type, 'payment type')

    order_id = _load_quote(quote_id).order_id
    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        quote = _load_quote(quote_id)
        if quote.status != QuoteStatus.DRAFT:
            raise StateConflictError(
                f'Quote cannot be sent from status {quote.status.value}')
        if payment_type is not None:
            quote.payment_type = payment_type
        if allowed and quote.payment_type not in allowed:
            raise ValidationError(
                f'Payment type {quote.payment_type.value} is not accepted '
                f'by the seller')

        now = utcnow()
        quote.base_price = base_price
        quote.delivery_charge = delivery_charge
        quote.packing_charge = packing_charge
        if discount is not None:
            quote.discount = discount
        _price_quote(quote)
        quote.set_allowed_payment_types(allowed)
        quote.seller_notes = notes
        quote.status = QuoteStatus.SENT
        quote.expires_at = now + timedelta(hours=expires_in_hours)
        quote.updated_at = now

        apply_transition(
            order,
            OrderStatus.QUOTE_SENT,
            quote.seller_id,
            ActorRole.SELLER,
            f'Quote sent for {quote.final_total}',
        )
        audit_service.record_action(
            order_id=order.id,
            action='QUOTE_SENT',
            performed_by=quote.seller_id,
            performed_by_role=ActorRole.SELLER,
            description=f'Quote v{quote.version} sent',
            from_state=QuoteStatus.DRAFT,
            to_state=QuoteStatus.SENT,
            payload={
                'quote_id': quote.id,
                'final_total': str(quote.final_total),
                'payment_type': quote.payment_type.value,
            },
        )
    return quote


@service_operation
def counter_offer(
        quote_id,
        new_price=None,
        new_delivery_charge=None,
        notes=None,
        performed_by=None,
        role=ActorRole.BUYER):
    message = 'Counter offer prices cannot be negative'
    if new_price is not None:
        new_price = _non_negative(new_price, 'new_price', message)
    if new_delivery_charge is not None:
        new_delivery_charge = _non_negative(
            new_delivery_charge, 'new_delivery_charge', message)
    role = parse_enum(ActorRole, role, 'role')
    if role not in (ActorRole.BUYER, ActorRole.SELLER):
        raise ValidationError('Only the buyer or the seller can counter')

    order_id = _load_quote(quote_id).order_id
    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        original = _load_quote(quote_id)
        if original.status not in OPEN_QUOTE_STATUSES:
            raise StateConflictError(
                f'Quote cannot be countered from status '
                f'{original.status.value}')
        if order.status != OrderStatus.QUOTE_SENT:
            raise StateConflictError(
                f'Negotiation is closed for {order.status.value} orders')
        if performed_by is None:
            performed_by = (
                original.buyer_id if role == ActorRole.BUYER
                else original.seller_id
            )

        now = utcnow()
        counter = OrderQuote(
            id=new_id(),
            order_id=original.order_id,
            buyer_id=original.buyer_id,
            seller_id=original.seller_id,
            product_id=original.product_id,
            product_name=original.product_name,
            quantity=original.quantity,
            unit=original.unit,
            base_price=(
                new_price if new_price is not None else original.base_price),
            delivery_charge=(
                new_delivery_charge if new_delivery_charge is not None
                else original.delivery_charge
            ),
            packing_charge=original.packing_charge,
            discount=original.discount,
            delivery_type=original.delivery_type,
            delivery_address=original.delivery_address,
            delivery_latitude=original.delivery_latitude,
            delivery_longitude=original.delivery_longitude,
            payment_type=original.payment_type,
            allowed_payment_types=original.allowed_payment_types,
            status=QuoteStatus.NEGOTIATING,
            version=original.version + 1,
            previous_quote_id=original.id,
            buyer_notes=original.buyer_notes,
            seller_notes=original.seller_notes,
            expires_at=now + timedelta(
                hours=current_app.config['QUOTE_EXPIRY_HOURS']),
            created_at=now,
            updated_at=now,
        )
        if notes is not None:
            if role == ActorRole.BUYER:
                counter.buyer_notes = notes
            else:
                counter.seller_notes = notes
        _price_quote(counter)
        db.session.add(counter)

        previous_status = original.status
        original.status = QuoteStatus.SUPERSEDED
        original.updated_at = now

        audit_service.record_action(
            order_id=order.id,
            action='QUOTE_COUNTER_OFFER',
            performed_by=performed_by,
            performed_by_role=role,
            description=(
                f'Counter offer v{counter.version}: '
                f'{original.final_total} -> {counter.final_total}'
            ),
            from_state=previous_status,
            to_state=QuoteStatus.NEGOTIATING,
            payload={
                'quote_id': counter.id,
                'previous_quote_id': original.id,
                'version': counter.version,
                'final_total': str(counter.final_total),
            },
        )
    return counter


def needs_advance_payment(quote):
    """True when the locked terms leave an upfront amount to collect."""
    return (
        quote.payment_type.requires_advance
        and (quote.advance_amount or _ZERO) > _ZERO
    )


def _auto_payment_request(order, quote):
    if quote.payment_type == PaymentType.FULL_ADVANCE:
        phase = PaymentPhase.FULL
    else:
        phase = PaymentPhase.ADVANCE
    payment_service.create_payment_record(
        order,
        quote,
        phase,
        quote.advance_amount,
        current_app.config['DEFAULT_PAYMENT_METHOD'],
        current_app.config['PAYMENT_DUE_HOURS'],
        performed_by='SYSTEM',
        performed_by_role=ActorRole.SYSTEM,
        # The order stays AGREEMENT_LOCKED until the buyer pays.
        advance_order=False,
    )


def _agree(quote_id, party):
    order_id = _load_quote(quote_id).order_id
    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        quote = _load_quote(quote_id)
        if quote.status == QuoteStatus.LOCKED:
            raise StateConflictError('Quote is already locked')
        locked = OrderQuote.query.filter(
            OrderQuote.order_id == order_id,
            OrderQuote.status == QuoteStatus.LOCKED,
            OrderQuote.id != quote.id,
        ).first()
        if locked is not None:
            raise StateConflictError('Quote is already locked')
        if quote.status not in OPEN_QUOTE_STATUSES:
            raise StateConflictError(
                f'Quote cannot be agreed in status {quote.status.value}')
        if order.status != OrderStatus.QUOTE_SENT:
            raise StateConflictError(
                f'Negotiation is closed for {order.status.value} orders')

        now = utcnow()
        if party == ActorRole.BUYER:
            attr, actor = 'buyer_agreed_at', quote.buyer_id
        else:
            attr, actor = 'seller_agreed_at', quote.seller_id

        if getattr(quote, attr) is None:
            setattr(quote, attr, now)
            quote.updated_at = now
            audit_service.record_action(
                order_id=order.id,
                action=f'QUOTE_{party.value}_AGREED',
                performed_by=actor,
                performed_by_role=party,
                description=(
                    f'{party.value.title()} agreed to quote '
                    f'v{quote.version}'
                ),
                payload={'quote_id': quote.id},
            )

        if quote.buyer_agreed_at and quote.seller_agreed_at:
            quote.status = QuoteStatus.LOCKED
            quote.locked_at = now
            audit_service.record_action(
                order_id=order.id,
                action='QUOTE_LOCKED',
                performed_by=actor,
                performed_by_role=party,
                description=f'Quote v{quote.version} locked',
                to_state=QuoteStatus.LOCKED,
                payload={
                    'quote_id': quote.id,
                    'final_total': str(quote.final_total),
                    'payment_type': quote.payment_type.value,
                },
            )
            apply_transition(
                order,
                OrderStatus.AGREEMENT_LOCKED,
                actor,
                party,
                f'Agreement locked at {quote.final_total}',
            )
            if needs_advance_payment(quote):
                _auto_payment_request(order, quote)
    return quote


@service_operation
def buyer_agree(quote_id):
    return _agree(quote_id, ActorRole.BUYER)


@service_operation
def seller_agree(quote_id):
    return _agree(quote_id, ActorRole.SELLER)


def _expire_order_quotes(order_id, quote_ids, now):
    expired = 0
    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        quotes = OrderQuote.query.filter(
            OrderQuote.id.in_(quote_ids)).populate_existing().all()
        for quote in quotes:
            # Re-checked under the lock; a concurrent agree may have won.
            if quote.status not in OPEN_QUOTE_STATUSES:
                continue
            if quote.expires_at is None or quote.expires_at >= now:
                continue
            previous_status = quote.status
            quote.status = QuoteStatus.EXPIRED
            quote.updated_at = now
            expired += 1
            audit_service.record_action(
                order_id=order_id,
                action='QUOTE_EXPIRED',
                performed_by='SYSTEM',
                performed_by_role=ActorRole.SYSTEM,
                description=f'Quote v{quote.version} expired',
                from_state=previous_status,
                to_state=QuoteStatus.EXPIRED,
                payload={'quote_id': quote.id},
            )
        if expired and order.status in (
                OrderStatus.ENQUIRY, OrderStatus.QUOTE_SENT):
            live = OrderQuote.query.filter(
                OrderQuote.order_id == order_id,
                OrderQuote.status.in_(LIVE_QUOTE_STATUSES),
            ).count()
            if not live:
                apply_transition(
                    order,
                    OrderStatus.EXPIRED,
                    'SYSTEM',
                    ActorRole.SYSTEM,
                    'Quote validity elapsed without agreement',
                )
    return expired


@service_operation
def expire_old_quotes(now=None):
    now = now or utcnow()
    candidates = db.session.query(
        OrderQuote.order_id, OrderQuote.id
    ).filter(
        OrderQuote.status.in_(OPEN_QUOTE_STATUSES),
        OrderQuote.expires_at < now,
    ).order_by(OrderQuote.order_id).all()

    expired = 0
    for order_id, rows in groupby(candidates, key=itemgetter(0)):
        quote_ids = [row[1] for row in rows]
        try:
            expired += _expire_order_quotes(order_id, quote_ids, now)
        except OrderWorkflowError as e:
            logger.warning(
                "Quote expiry skipped order %s: %s", order_id, e.message)
    if expired:
        logger.info("Expired %d quote(s)", expired)
    return expired


def get_buyer_active_quotes(buyer_id):
    return OrderQuote.query.filter(
        OrderQuote.buyer_id == buyer_id,
        OrderQuote.status.in_(LIVE_QUOTE_STATUSES),
    ).order_by(OrderQuote.created_at.desc()).all()


def get_seller_active_quotes(seller_id):
    return OrderQuote.query.filter(
        OrderQuote.seller_id == seller_id,
        OrderQuote.status.in_(LIVE_QUOTE_STATUSES),
    ).order_by(OrderQuote.created_at.desc()).all()


def get_quote_history(order_id):
    return OrderQuote.query.filter_by(
        order_id=order_id
    ).order_by(OrderQuote.version.asc()).all()


def get_current_quote(order_id):
    return OrderQuote.query.filter_by(
        order_id=order_id
    ).order_by(OrderQuote.version.desc()).first()


def get_locked_quote(order_id):
    return OrderQuote.query.filter_by(
        order_id=order_id,
        status=QuoteStatus.LOCKED,
    ).first()
