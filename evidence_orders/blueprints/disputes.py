from flask import Blueprint, jsonify
from flask_login import current_user
from evidence_orders.blueprints import (
    entity_access_error,
    order_access_error,
    serialize_list,
)
from evidence_orders.middleware import role_required
from evidence_orders.models import OrderDispute
from evidence_orders.services import dispute_service
from evidence_orders.utils import json_body, result_response
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('disputes', __name__)


def _dispute_access_error(dispute_id):
    return entity_access_error(OrderDispute.query.get(dispute_id), 'Dispute')


@bp.route('/api/orders/<order_id>/disputes', methods=['POST'])
@role_required('BUYER', 'SELLER')
def raise_dispute(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    data = json_body()
    result = dispute_service.raise_dispute(
        order_id,
        raised_by=current_user.id,
        role=current_user.role,
        reason=data.get('reason'),
        description=data.get('description'),
        requested_resolution=data.get('requested_resolution'),
        claimed_amount=data.get('claimed_amount'),
        evidence_ids=data.get('evidence_ids'),
    )
    return result_response(result, 'dispute', success_status=201)


@bp.route('/api/orders/<order_id>/disputes', methods=['GET'])
def order_disputes(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    disputes = dispute_service.get_order_disputes(order_id)
    return jsonify({'disputes': serialize_list(disputes)})


@bp.route('/api/disputes/mine', methods=['GET'])
@role_required('BUYER', 'SELLER')
def my_disputes():
    disputes = dispute_service.get_user_active_disputes(current_user.id)
    return jsonify({'disputes': serialize_list(disputes)})


@bp.route('/api/disputes/<dispute_id>/responses', methods=['POST'])
def respond(dispute_id):
    denied = _dispute_access_error(dispute_id)
    if denied:
        return denied
    data = json_body()
    result = dispute_service.add_dispute_response(
        dispute_id,
        responder_id=current_user.id,
        role=current_user.role,
        message=data.get('message'),
        evidence_ids=data.get('evidence_ids'),
    )
    return result_response(result, 'dispute')


@bp.route('/api/disputes/<dispute_id>/review', methods=['POST'])
@role_required('ADMIN')
def review(dispute_id):
    result = dispute_service.mark_under_review(dispute_id, current_user.id)
    return result_response(result, 'dispute')


@bp.route('/api/disputes/<dispute_id>/escalate', methods=['POST'])
def escalate(dispute_id):
    denied = _dispute_access_error(dispute_id)
    if denied:
        return denied
    data = json_body()
    result = dispute_service.escalate_dispute(
        dispute_id,
        reason=data.get('reason'),
        escalated_by=current_user.id,
        role=current_user.role,
    )
    return result_response(result, 'dispute')


@bp.route('/api/disputes/<dispute_id>/resolve', methods=['POST'])
@role_required('ADMIN')
def resolve(dispute_id):
    data = json_body()
    result = dispute_service.resolve_dispute(
        dispute_id,
        resolved_by=current_user.id,
        resolution_type=data.get('resolution_type'),
        notes=data.get('notes'),
        refund_amount=data.get('refund_amount'),
    )
    return result_response(result, 'dispute')
