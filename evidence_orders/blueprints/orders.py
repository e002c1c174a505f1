from flask import Blueprint, jsonify, request, current_app
from flask_login import current_user
from evidence_orders.blueprints import (
    entity_access_error,
    order_access_error,
    serialize_list,
)
from evidence_orders.errors import ValidationError
from evidence_orders.middleware import role_required
from evidence_orders.models import ActorRole, Order, OrderQuote
from evidence_orders.services import (
    audit_service,
    quote_service,
    review_service,
    state_machine,
    timeline_service,
)
from evidence_orders.utils import json_body, result_response
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('orders', __name__)


@bp.route('/api/health', methods=['GET'])
def health():
    return jsonify({'status': 'ok'})


@bp.route('/api/enquiries', methods=['POST'])
@role_required('BUYER')
def create_enquiry():
    data = json_body()
    result = quote_service.create_enquiry(
        buyer_id=current_user.id,
        seller_id=data.get('seller_id'),
        product_id=data.get('product_id'),
        product_name=data.get('product_name'),
        quantity=data.get('quantity'),
        unit=data.get('unit'),
        delivery_type=data.get('delivery_type', 'SELLER_DELIVERY'),
        delivery_address=data.get('delivery_address'),
        delivery_latitude=data.get('delivery_latitude'),
        delivery_longitude=data.get('delivery_longitude'),
        payment_preference=data.get('payment_preference', 'COD'),
        notes=data.get('notes'),
    )
    return result_response(result, 'quote', success_status=201)


@bp.route('/api/orders', methods=['GET'])
def list_orders():
    page = request.args.get('page', 1, type=int)
    query = Order.query
    if current_user.role == ActorRole.BUYER:
        query = query.filter_by(buyer_id=current_user.id)
    elif current_user.role == ActorRole.SELLER:
        query = query.filter_by(seller_id=current_user.id)
    status = request.args.get('status')
    if status:
        try:
            parsed = state_machine.parse_status(status)
        except ValidationError as e:
            return jsonify({'error': e.message}), 400
        query = query.filter_by(status=parsed)
    pagination = query.order_by(Order.updated_at.desc()).paginate(
        page=page,
        per_page=current_app.config['ITEMS_PER_PAGE'],
        error_out=False,
    )
    return jsonify({
        'orders': serialize_list(pagination.items),
        'total': pagination.total,
        'page': page,
    })


@bp.route('/api/orders/<order_id>', methods=['GET'])
def get_order(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    order = Order.query.get(order_id)
    quote = quote_service.get_current_quote(order_id)
    payload = order.to_dict()
    payload['current_quote'] = quote.to_dict() if quote else None
    payload['allowed_next'] = sorted(
        s.value for s in state_machine.ALLOWED_TRANSITIONS[order.status])
    return jsonify({'order': payload})


@bp.route('/api/orders/<order_id>/quotes', methods=['GET'])
def quote_history(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    quotes = quote_service.get_quote_history(order_id)
    return jsonify({'quotes': serialize_list(quotes)})


@bp.route('/api/quotes/active', methods=['GET'])
@role_required('BUYER', 'SELLER')
def active_quotes():
    if current_user.role == ActorRole.BUYER:
        quotes = quote_service.get_buyer_active_quotes(current_user.id)
    else:
        quotes = quote_service.get_seller_active_quotes(current_user.id)
    return jsonify({'quotes': serialize_list(quotes)})


@bp.route('/api/quotes/<quote_id>/send', methods=['POST'])
@role_required('SELLER')
def send_quote(quote_id):
    denied = entity_access_error(OrderQuote.query.get(quote_id), 'Quote')
    if denied:
        return denied
    data = json_body()
    result = quote_service.send_quote(
        quote_id,
        base_price=data.get('base_price'),
        delivery_charge=data.get('delivery_charge', 0),
        packing_charge=data.get('packing_charge', 0),
        allowed_payment_types=data.get('allowed_payment_types'),
        notes=data.get('notes'),
        expires_in_hours=data.get('expires_in_hours'),
        payment_type=data.get('payment_type'),
        discount=data.get('discount'),
    )
    return result_response(result, 'quote')


@bp.route('/api/quotes/<quote_id>/counter', methods=['POST'])
@role_required('BUYER', 'SELLER')
def counter_offer(quote_id):
    denied = entity_access_error(OrderQuote.query.get(quote_id), 'Quote')
    if denied:
        return denied
    data = json_body()
    result = quote_service.counter_offer(
        quote_id,
        new_price=data.get('new_price'),
        new_delivery_charge=data.get('new_delivery_charge'),
        notes=data.get('notes'),
        performed_by=current_user.id,
        role=current_user.role,
    )
    return result_response(result, 'quote', success_status=201)


@bp.route('/api/quotes/<quote_id>/agree', methods=['POST'])
@role_required('BUYER', 'SELLER')
def agree(quote_id):
    denied = entity_access_error(OrderQuote.query.get(quote_id), 'Quote')
    if denied:
        return denied
    if current_user.role == ActorRole.BUYER:
        result = quote_service.buyer_agree(quote_id)
    else:
        result = quote_service.seller_agree(quote_id)
    return result_response(result, 'quote')


@bp.route('/api/orders/transitions', methods=['GET'])
def transition_graph():
    return jsonify({'transitions': state_machine.transition_graph()})


@bp.route('/api/orders/<order_id>/transition', methods=['POST'])
@role_required('ADMIN')
def transition(order_id):
    data = json_body()
    result = state_machine.transition_order_state(
        order_id,
        data.get('status'),
        performed_by=current_user.id,
        role=current_user.role,
        notes=data.get('notes'),
    )
    return result_response(result, 'order')


@bp.route('/api/orders/<order_id>/audit', methods=['GET'])
def audit_trail(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    entries = audit_service.get_order_audit_trail(order_id)
    return jsonify({'audit': serialize_list(entries)})


@bp.route('/api/orders/<order_id>/timeline', methods=['GET'])
def timeline(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    result = timeline_service.get_order_timeline(order_id)
    return result_response(result, 'timeline', serialize=serialize_list)


@bp.route('/api/orders/<order_id>/review', methods=['POST'])
@role_required('BUYER')
def submit_review(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    data = json_body()
    result = review_service.submit_review(
        order_id,
        reviewer_id=current_user.id,
        rating=data.get('rating'),
        content=data.get('content'),
        would_recommend=data.get('would_recommend'),
    )
    return result_response(result, 'review', success_status=201)
