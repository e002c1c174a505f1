from flask import Blueprint, jsonify
from flask_login import current_user
from evidence_orders.blueprints import order_access_error
from evidence_orders.middleware import role_required
from evidence_orders.services import delivery_service
from evidence_orders.utils import json_body, result_response
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('delivery', __name__)


@bp.route('/api/orders/<order_id>/delivery/otp', methods=['POST'])
@role_required('BUYER')
def generate_otp(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    result = delivery_service.generate_delivery_otp(order_id)
    return result_response(result, 'otp', success_status=201)


@bp.route('/api/orders/<order_id>/delivery/verify', methods=['POST'])
@role_required('SELLER')
def verify_otp(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    data = json_body()
    result = delivery_service.verify_delivery_otp(
        order_id,
        otp=data.get('otp'),
        confirmed_by=current_user.id,
        verifier_lat=data.get('latitude'),
        verifier_lng=data.get('longitude'),
    )
    return result_response(result, 'delivery')


@bp.route('/api/orders/<order_id>/delivery/photo', methods=['POST'])
@role_required('BUYER', 'SELLER')
def confirm_with_photo(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    data = json_body()
    result = delivery_service.confirm_delivery_with_photo(
        order_id,
        delivery_photo_id=data.get('delivery_photo_id'),
        buyer_photo_id=data.get('buyer_photo_id'),
        confirmed_by=current_user.id,
    )
    return result_response(result, 'delivery')


@bp.route('/api/orders/<order_id>/delivery/balance', methods=['POST'])
@role_required('SELLER')
def balance_collected(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    data = json_body()
    result = delivery_service.mark_balance_collected(
        order_id,
        evidence_id=data.get('evidence_id'),
        collected_by=current_user.id,
    )
    return result_response(result, 'delivery')


@bp.route('/api/orders/<order_id>/delivery', methods=['GET'])
def get_delivery(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    confirmation = delivery_service.get_delivery_confirmation(order_id)
    if confirmation is None:
        return jsonify({'error': 'Delivery confirmation not found'}), 404
    # Only the buyer ever sees the code.
    include_otp = confirmation.buyer_id == current_user.id
    return jsonify({'delivery': confirmation.to_dict(include_otp=include_otp)})
