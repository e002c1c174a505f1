from flask import jsonify
from flask_login import current_user

from evidence_orders.models import ActorRole, Order


def order_access_error(order_id):
    """JSON error response unless the current actor may act on the order.

    Admins see every order; buyers and sellers only their own, and only
    under the role they hold on that order.
    """
    order = Order.query.get(order_id) if order_id else None
    if order is None:
        return jsonify({'error': 'Order not found'}), 404
    if current_user.role == ActorRole.ADMIN:
        return None
    if order.party_role(current_user.id) != current_user.role:
        return jsonify({'error': 'Not a party to this order'}), 403
    return None


def entity_access_error(entity, label):
    if entity is None:
        return jsonify({'error': f'{label} not found'}), 404
    return order_access_error(entity.order_id)


def serialize_list(items):
    return [item.to_dict() for item in items]
