from evidence_orders.errors import (
    StateConflictError,
    ValidationError,
    service_operation,
)
from evidence_orders.extensions import db
from evidence_orders.models import (
    ActorRole,
    OrderReview,
    OrderStatus,
    new_id,
)
from evidence_orders.services import audit_service
from evidence_orders.services.clock import utcnow
from evidence_orders.services.locking import (
    load_order_for_update,
    order_transaction,
)
import logging

logger = logging.getLogger(__name__)


@service_operation
def submit_review(
        order_id,
        reviewer_id,
        rating,
        content=None,
        would_recommend=None):
    try:
        rating = int(rating)
    except (TypeError, ValueError):
        raise ValidationError('Rating must be a whole number')
    if rating < 1 or rating > 5:
        raise ValidationError('Rating must be between 1 and 5')

    with order_transaction(order_id):
        order = load_order_for_update(order_id)
        if order.status != OrderStatus.COMPLETED:
            raise StateConflictError('Only completed orders can be reviewed')
        if reviewer_id != order.buyer_id:
            raise ValidationError('Only the buyer can review this order')
        existing = OrderReview.query.filter_by(
            order_id=order_id, reviewer_id=reviewer_id).first()
        if existing is not None:
            raise StateConflictError('This order has already been reviewed')

        review = OrderReview(
            id=new_id(),
            order_id=order.id,
            reviewer_id=reviewer_id,
            seller_id=order.seller_id,
            rating=rating,
            content=content.strip() if content else None,
            would_recommend=would_recommend,
            created_at=utcnow(),
        )
        db.session.add(review)
        audit_service.record_action(
            order_id=order.id,
            action='REVIEW_SUBMITTED',
            performed_by=reviewer_id,
            performed_by_role=ActorRole.BUYER,
            description=f'Buyer rated the order {rating}/5',
            payload={'review_id': review.id, 'rating': rating},
        )
    return review


def get_seller_reviews(seller_id):
    return OrderReview.query.filter_by(
        seller_id=seller_id
    ).order_by(OrderReview.created_at.desc()).all()
