from flask import Blueprint, jsonify, request
from flask_login import current_user
from evidence_orders.blueprints import (
    entity_access_error,
    order_access_error,
    serialize_list,
)
from evidence_orders.errors import ValidationError
from evidence_orders.models import OrderEvidence
from evidence_orders.services import evidence_service
from evidence_orders.utils import json_body, result_response
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('evidence', __name__)


@bp.route('/api/orders/<order_id>/evidence', methods=['POST'])
def upload(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    data = json_body()
    geo = None
    if data.get('latitude') is not None or data.get('longitude') is not None:
        geo = (data.get('latitude'), data.get('longitude'))
    result = evidence_service.upload_evidence(
        order_id,
        evidence_type=data.get('type'),
        uploaded_by=current_user.id,
        role=current_user.role,
        media_refs=data.get('media_refs'),
        text=data.get('text'),
        geo=geo,
        device_timestamp=data.get('device_timestamp'),
    )
    return result_response(result, 'evidence', success_status=201)


@bp.route('/api/orders/<order_id>/evidence', methods=['GET'])
def list_evidence(order_id):
    denied = order_access_error(order_id)
    if denied:
        return denied
    try:
        items = evidence_service.get_order_evidence(
            order_id, request.args.get('type'))
    except ValidationError as e:
        return jsonify({'error': e.message}), 400
    return jsonify({'evidence': serialize_list(items)})


@bp.route('/api/evidence/<evidence_id>/verify', methods=['POST'])
def verify(evidence_id):
    denied = entity_access_error(
        OrderEvidence.query.get(evidence_id), 'Evidence')
    if denied:
        return denied
    data = json_body()
    result = evidence_service.verify_evidence(
        evidence_id,
        verified_by=current_user.id,
        note=data.get('note'),
    )
    return result_response(result, 'evidence')
