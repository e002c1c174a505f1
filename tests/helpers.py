"""Shared builders that walk an order to a given stage."""
from datetime import datetime

from evidence_orders.models import Order
from evidence_orders.services import (
    delivery_service,
    evidence_service,
    payment_service,
    quote_service,
)

BUYER = 'buyer-1'
SELLER = 'seller-1'
ADMIN = 'admin-1'
STRANGER = 'stranger-1'

DELIVERY_POINT = (12.9716, 77.5946)

START = datetime(2026, 1, 1, 9, 0)


def ok(result):
    assert result.ok, f'{result.error_kind}: {result.error}'
    return result.data


def headers(actor_id, role):
    return {'X-Actor-Id': actor_id, 'X-Actor-Role': role}


def order_status(order_id):
    return Order.query.get(order_id).status


def new_enquiry(payment_type='SPLIT_50_50', quantity=10, with_location=True):
    lat, lng = DELIVERY_POINT if with_location else (None, None)
    return ok(quote_service.create_enquiry(
        buyer_id=BUYER,
        seller_id=SELLER,
        product_id='tomato-01',
        product_name='Tomatoes',
        quantity=quantity,
        unit='kg',
        delivery_latitude=lat,
        delivery_longitude=lng,
        payment_preference=payment_type,
    ))


def sent_quote(
        payment_type='SPLIT_50_50',
        base_price=100,
        delivery_charge=20,
        packing_charge=5,
        **kwargs):
    quote = new_enquiry(payment_type, **kwargs)
    return ok(quote_service.send_quote(
        quote.id, base_price, delivery_charge, packing_charge))


def locked_quote(payment_type='SPLIT_50_50', **kwargs):
    quote = sent_quote(payment_type, **kwargs)
    ok(quote_service.seller_agree(quote.id))
    return ok(quote_service.buyer_agree(quote.id))


def upload(order_id, by=BUYER, role='BUYER', evidence_type='PHOTO'):
    return ok(evidence_service.upload_evidence(
        order_id,
        evidence_type,
        by,
        role,
        media_refs=['media://receipt-1'],
    ))


def paid_quote(payment_type='SPLIT_50_50'):
    """Locked quote whose upfront payment has been verified."""
    quote = locked_quote(payment_type)
    payment = payment_service.get_order_payments(quote.order_id)[0]
    proof = upload(quote.order_id)
    ok(payment_service.submit_payment_proof(payment.id, proof.id, 'UTR123'))
    ok(payment_service.verify_payment(payment.id, SELLER))
    return quote


def delivered_quote(payment_type='COD'):
    quote = locked_quote(payment_type)
    photo = upload(quote.order_id, by=SELLER, role='SELLER')
    ok(delivery_service.confirm_delivery_with_photo(
        quote.order_id, photo.id, confirmed_by=SELLER))
    return quote
