from flask import Blueprint, jsonify
from flask_login import current_user
from evidence_orders.blueprints import (
    entity_access_error,
    order_access_error,
    serialize_list,
)
from evidence_orders.middleware import role_required
from evidence_orders.models import OrderPayment
from evidence_orders.services import payment_service
from evidence_orders.utils import json_body, result_response
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('payments', __name__)


def _payment_access_error(payment_id):
    return entity_access_error(OrderPayment.query.get(payment_id), 'Payment')


@bp.route('/api/orders/<order_id>/payments', methods=['POST'])
@role_required('SELLER', 'ADMIN')
def create_payment_request(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    data = json_body()
    result = payment_service.create_payment_request(
        order_id,
        quote_id=data.get('quote_id'),
        phase=data.get('phase'),
        amount=data.get('amount'),
        method=data.get('method'),
        due_in_hours=data.get('due_in_hours'),
        requested_by=current_user.id,
        role=current_user.role,
    )
    return result_response(result, 'payment', success_status=201)


@bp.route('/api/orders/<order_id>/payments', methods=['GET'])
def order_payments(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    payments = payment_service.get_order_payments(order_id)
    return jsonify({'payments': serialize_list(payments)})


@bp.route('/api/payments/<payment_id>/proof', methods=['POST'])
@role_required('BUYER')
def submit_proof(payment_id):
    denied = _payment_access_error(payment_id)
    if denied:
        return denied
    data = json_body()
    result = payment_service.submit_payment_proof(
        payment_id,
        evidence_id=data.get('evidence_id'),
        transaction_ref=data.get('transaction_ref'),
    )
    return result_response(result, 'payment')


@bp.route('/api/payments/<payment_id>/verify', methods=['POST'])
@role_required('SELLER')
def verify(payment_id):
    denied = _payment_access_error(payment_id)
    if denied:
        return denied
    data = json_body()
    result = payment_service.verify_payment(
        payment_id,
        verified_by=current_user.id,
        notes=data.get('notes'),
    )
    return result_response(result, 'payment')


@bp.route('/api/payments/<payment_id>/reject', methods=['POST'])
@role_required('SELLER')
def reject(payment_id):
    denied = _payment_access_error(payment_id)
    if denied:
        return denied
    data = json_body()
    result = payment_service.reject_payment(
        payment_id,
        reason=data.get('reason'),
        rejected_by=current_user.id,
    )
    return result_response(result, 'payment')


@bp.route('/api/payments/awaiting-verification', methods=['GET'])
@role_required('SELLER')
def awaiting_verification():
    payments = payment_service.get_payments_awaiting_verification(
        current_user.id)
    return jsonify({'payments': serialize_list(payments)})


@bp.route('/api/payments/pending', methods=['GET'])
@role_required('BUYER')
def pending_for_buyer():
    payments = payment_service.get_pending_payments_for_buyer(current_user.id)
    return jsonify({'payments': serialize_list(payments)})
