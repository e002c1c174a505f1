from evidence_orders.extensions import db
from evidence_orders.errors import AuditLogImmutableError
from datetime import datetime, timezone
from sqlalchemy import CheckConstraint, UniqueConstraint, event
import enum
import json
import uuid


def new_id():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    return float(value) if value is not None else None


class ActorRole(enum.Enum):
    BUYER = 'BUYER'
    SELLER = 'SELLER'
    ADMIN = 'ADMIN'
    SYSTEM = 'SYSTEM'


class OrderStatus(enum.Enum):
    ENQUIRY = 'ENQUIRY'
    QUOTE_SENT = 'QUOTE_SENT'
    AGREEMENT_LOCKED = 'AGREEMENT_LOCKED'
    ADVANCE_PENDING = 'ADVANCE_PENDING'
    PAYMENT_PROOF_SUBMITTED = 'PAYMENT_PROOF_SUBMITTED'
    PAYMENT_VERIFIED = 'PAYMENT_VERIFIED'
    DELIVERED = 'DELIVERED'
    COMPLETED = 'COMPLETED'
    DISPUTE = 'DISPUTE'
    ESCALATED = 'ESCALATED'
    CANCELLED = 'CANCELLED'
    EXPIRED = 'EXPIRED'


class QuoteStatus(enum.Enum):
    DRAFT = 'DRAFT'
    SENT = 'SENT'
    NEGOTIATING = 'NEGOTIATING'
    LOCKED = 'LOCKED'
    SUPERSEDED = 'SUPERSEDED'
    EXPIRED = 'EXPIRED'


class PaymentType(enum.Enum):
    FULL_ADVANCE = 'FULL_ADVANCE'
    SPLIT_50_50 = 'SPLIT_50_50'
    COD = 'COD'
    BUYER_PICKUP = 'BUYER_PICKUP'

    @property
    def requires_advance(self):
        return self in (PaymentType.FULL_ADVANCE, PaymentType.SPLIT_50_50)


class DeliveryType(enum.Enum):
    SELLER_DELIVERY = 'SELLER_DELIVERY'
    BUYER_PICKUP = 'BUYER_PICKUP'
    COURIER = 'COURIER'


class PaymentPhase(enum.Enum):
    ADVANCE = 'ADVANCE'
    BALANCE = 'BALANCE'
    FULL = 'FULL'


class PaymentMethod(enum.Enum):
    UPI = 'UPI'
    BANK_TRANSFER = 'BANK_TRANSFER'
    CASH = 'CASH'


class PaymentStatus(enum.Enum):
    PENDING = 'PENDING'
    PROOF_SUBMITTED = 'PROOF_SUBMITTED'
    VERIFIED = 'VERIFIED'
    REJECTED = 'REJECTED'
    EXPIRED = 'EXPIRED'


class EvidenceType(enum.Enum):
    PHOTO = 'PHOTO'
    VIDEO = 'VIDEO'
    TEXT = 'TEXT'
    OTHER = 'OTHER'


class DeliveryStatus(enum.Enum):
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    BALANCE_COLLECTED = 'BALANCE_COLLECTED'


class ConfirmationMethod(enum.Enum):
    OTP = 'OTP'
    PHOTO = 'PHOTO'


class DisputeReason(enum.Enum):
    WRONG_PRODUCT = 'WRONG_PRODUCT'
    QUALITY_ISSUE = 'QUALITY_ISSUE'
    QUANTITY_MISMATCH = 'QUANTITY_MISMATCH'
    DELIVERY_ISSUE = 'DELIVERY_ISSUE'
    PAYMENT_NOT_RECEIVED = 'PAYMENT_NOT_RECEIVED'
    REFUND_NOT_RECEIVED = 'REFUND_NOT_RECEIVED'
    PRICE_DISPUTE = 'PRICE_DISPUTE'
    SELLER_UNRESPONSIVE = 'SELLER_UNRESPONSIVE'
    BUYER_UNRESPONSIVE = 'BUYER_UNRESPONSIVE'
    OTHER = 'OTHER'


class DisputeStatus(enum.Enum):
    OPEN = 'OPEN'
    UNDER_REVIEW = 'UNDER_REVIEW'
    ESCALATED = 'ESCALATED'
    # Resolution drove the order to COMPLETED / CANCELLED.
    RESOLVED_COMPLETED = 'RESOLVED_COMPLETED'
    RESOLVED_CANCELLED = 'RESOLVED_CANCELLED'


class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    buyer_id = db.Column(db.String(64), nullable=False, index=True)
    seller_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=True)
    product_name = db.Column(db.String(200), nullable=True)
    status = db.Column(
        db.Enum(OrderStatus),
        default=OrderStatus.ENQUIRY,
        nullable=False,
        index=True)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    # Pending upload to the sync backend; never read by the engine.
    dirty = db.Column(db.Boolean, default=True, nullable=False)

    # Relationships
    quotes = db.relationship(
        'OrderQuote',
        backref='order',
        lazy='dynamic',
        order_by='OrderQuote.version')
    payments = db.relationship(
        'OrderPayment',
        backref='order',
        lazy='dynamic',
        order_by='OrderPayment.created_at')
    evidence = db.relationship(
        'OrderEvidence',
        backref='order',
        lazy='dynamic',
        order_by='OrderEvidence.created_at')
    delivery_confirmation = db.relationship(
        'DeliveryConfirmation',
        backref='order',
        uselist=False)
    disputes = db.relationship(
        'OrderDispute',
        backref='order',
        lazy='dynamic',
        order_by='OrderDispute.created_at')

    def party_role(self, user_id):
        if user_id == self.buyer_id:
            return ActorRole.BUYER
        if user_id == self.seller_id:
            return ActorRole.SELLER
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'buyer_id': self.buyer_id,
            'seller_id': self.seller_id,
            'product_id': self.product_id,
            'product_name': self.product_name,
            'status': self.status.value,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    def __repr__(self):
        return f'<Order {self.id} status={self.status}>'


class OrderQuote(db.Model):
    __tablename__ = 'order_quotes'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_id = db.Column(
        db.String(36),
        db.ForeignKey('orders.id'),
        nullable=False,
        index=True)
    buyer_id = db.Column(db.String(64), nullable=False, index=True)
    seller_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=True)
    product_name = db.Column(db.String(200), nullable=True)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit = db.Column(db.String(20), nullable=False)

    # Pricing breakdown
    base_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_product_price = db.Column(
        db.Numeric(12, 2), nullable=False, default=0)
    delivery_charge = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    packing_charge = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    final_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Delivery details
    delivery_type = db.Column(
        db.Enum(DeliveryType),
        nullable=False,
        default=DeliveryType.SELLER_DELIVERY)
    delivery_address = db.Column(db.Text, nullable=True)
    delivery_latitude = db.Column(db.Float, nullable=True)
    delivery_longitude = db.Column(db.Float, nullable=True)

    # Payment agreement
    payment_type = db.Column(db.Enum(PaymentType), nullable=False)
    # Comma separated PaymentType values accepted by the seller.
    allowed_payment_types = db.Column(db.String(100), nullable=True)
    advance_amount = db.Column(db.Numeric(12, 2), nullable=True)
    balance_amount = db.Column(db.Numeric(12, 2), nullable=True)

    status = db.Column(
        db.Enum(QuoteStatus),
        default=QuoteStatus.DRAFT,
        nullable=False,
        index=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    previous_quote_id = db.Column(
        db.String(36),
        db.ForeignKey('order_quotes.id'),
        nullable=True)

    # Agreement tracking
    buyer_agreed_at = db.Column(db.DateTime, nullable=True)
    seller_agreed_at = db.Column(db.DateTime, nullable=True)
    locked_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)

    buyer_notes = db.Column(db.Text, nullable=True)
    seller_notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    previous_quote = db.relationship('OrderQuote', remote_side=[id])

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_quote_quantity_positive'),
    )

    def get_allowed_payment_types(self):
        if not self.allowed_payment_types:
            return []
        return [
            PaymentType(v)
            for v in self.allowed_payment_types.split(',')
            if v
        ]

    def set_allowed_payment_types(self, payment_types):
        self.allowed_payment_types = ','.join(
            t.value for t in payment_types) or None

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'buyer_id': self.buyer_id,
            'seller_id': self.seller_id,
            'product_id': self.product_id,
            'product_name': self.product_name,
            'quantity': float(self.quantity),
            'unit': self.unit,
            'base_price': _money(self.base_price),
            'total_product_price': _money(self.total_product_price),
            'delivery_charge': _money(self.delivery_charge),
            'packing_charge': _money(self.packing_charge),
            'discount': _money(self.discount),
            'final_total': _money(self.final_total),
            'delivery_type': self.delivery_type.value,
            'delivery_address': self.delivery_address,
            'delivery_latitude': self.delivery_latitude,
            'delivery_longitude': self.delivery_longitude,
            'payment_type': self.payment_type.value,
            'allowed_payment_types': [
                t.value for t in self.get_allowed_payment_types()],
            'advance_amount': _money(self.advance_amount),
            'balance_amount': _money(self.balance_amount),
            'status': self.status.value,
            'version': self.version,
            'previous_quote_id': self.previous_quote_id,
            'buyer_agreed_at': _iso(self.buyer_agreed_at),
            'seller_agreed_at': _iso(self.seller_agreed_at),
            'locked_at': _iso(self.locked_at),
            'expires_at': _iso(self.expires_at),
            'buyer_notes': self.buyer_notes,
            'seller_notes': self.seller_notes,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return (
            f"<OrderQuote {self.id} v{self.version} "
            f"status={self.status}>"
        )


class OrderPayment(db.Model):
    __tablename__ = 'order_payments'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_id = db.Column(
        db.String(36),
        db.ForeignKey('orders.id'),
        nullable=False,
        index=True)
    quote_id = db.Column(
        db.String(36),
        db.ForeignKey('order_quotes.id'),
        nullable=False)
    payer_id = db.Column(db.String(64), nullable=False, index=True)
    receiver_id = db.Column(db.String(64), nullable=False, index=True)

    phase = db.Column(db.Enum(PaymentPhase), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='INR')
    method = db.Column(
        db.Enum(PaymentMethod),
        nullable=False,
        default=PaymentMethod.UPI)
    status = db.Column(
        db.Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True)

    # Proof references
    proof_evidence_id = db.Column(
        db.String(36),
        db.ForeignKey('order_evidence.id'),
        nullable=True)
    transaction_ref = db.Column(db.String(100), nullable=True)

    verified_by = db.Column(db.String(64), nullable=True)
    verified_at = db.Column(db.DateTime, nullable=True)
    verification_notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)

    due_at = db.Column(db.DateTime, nullable=False)
    expired_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    quote = db.relationship('OrderQuote', foreign_keys=[quote_id])
    proof_evidence = db.relationship(
        'OrderEvidence', foreign_keys=[proof_evidence_id])

    __table_args__ = (
        CheckConstraint('amount > 0', name='check_payment_amount_positive'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'quote_id': self.quote_id,
            'payer_id': self.payer_id,
            'receiver_id': self.receiver_id,
            'phase': self.phase.value,
            'amount': _money(self.amount),
            'currency': self.currency,
            'method': self.method.value,
            'status': self.status.value,
            'proof_evidence_id': self.proof_evidence_id,
            'transaction_ref': self.transaction_ref,
            'verified_by': self.verified_by,
            'verified_at': _iso(self.verified_at),
            'rejection_reason': self.rejection_reason,
            'due_at': _iso(self.due_at),
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return (
            f"<OrderPayment {self.id} phase={self.phase} "
            f"status={self.status}>"
        )


class OrderEvidence(db.Model):
    __tablename__ = 'order_evidence'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_id = db.Column(
        db.String(36),
        db.ForeignKey('orders.id'),
        nullable=False,
        index=True)
    evidence_type = db.Column(
        db.Enum(EvidenceType),
        nullable=False,
        index=True)
    uploaded_by = db.Column(db.String(64), nullable=False, index=True)
    uploaded_by_role = db.Column(db.String(20), nullable=False)

    # Opaque media handles (JSON list); contents are never parsed here.
    media_refs_json = db.Column(db.Text, nullable=True)
    text_content = db.Column(db.Text, nullable=True)
    geo_latitude = db.Column(db.Float, nullable=True)
    geo_longitude = db.Column(db.Float, nullable=True)
    device_timestamp = db.Column(db.DateTime, nullable=False)

    # Verification
    is_verified = db.Column(db.Boolean, default=False, nullable=False)
    verified_by = db.Column(db.String(64), nullable=True)
    verified_at = db.Column(db.DateTime, nullable=True)
    verification_note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    def set_media_refs(self, refs):
        self.media_refs_json = json.dumps(list(refs)) if refs else None

    def get_media_refs(self):
        if self.media_refs_json:
            return json.loads(self.media_refs_json)
        return []

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'type': self.evidence_type.value,
            'uploaded_by': self.uploaded_by,
            'uploaded_by_role': self.uploaded_by_role,
            'media_refs': self.get_media_refs(),
            'text': self.text_content,
            'geo_latitude': self.geo_latitude,
            'geo_longitude': self.geo_longitude,
            'device_timestamp': _iso(self.device_timestamp),
            'is_verified': self.is_verified,
            'verified_by': self.verified_by,
            'verified_at': _iso(self.verified_at),
            'verification_note': self.verification_note,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<OrderEvidence {self.id} type={self.evidence_type}>'


class DeliveryConfirmation(db.Model):
    __tablename__ = 'delivery_confirmations'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_id = db.Column(
        db.String(36),
        db.ForeignKey('orders.id'),
        unique=True,
        nullable=False)
    buyer_id = db.Column(db.String(64), nullable=False)
    seller_id = db.Column(db.String(64), nullable=False)

    # OTP shown to the buyer, entered by the seller on handover.
    delivery_otp = db.Column(db.String(6), nullable=True)
    otp_generated_at = db.Column(db.DateTime, nullable=True)
    otp_expires_at = db.Column(db.DateTime, nullable=True)
    otp_attempts = db.Column(db.Integer, nullable=False, default=0)
    max_otp_attempts = db.Column(db.Integer, nullable=False, default=3)

    status = db.Column(
        db.Enum(DeliveryStatus),
        default=DeliveryStatus.PENDING,
        nullable=False,
        index=True)
    confirmation_method = db.Column(
        db.Enum(ConfirmationMethod), nullable=True)

    delivery_photo_evidence_id = db.Column(db.String(36), nullable=True)
    buyer_confirmation_evidence_id = db.Column(db.String(36), nullable=True)
    confirmed_by = db.Column(db.String(64), nullable=True)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    verifier_latitude = db.Column(db.Float, nullable=True)
    verifier_longitude = db.Column(db.Float, nullable=True)

    # Balance (COD / split) collected at handover.
    balance_collected = db.Column(db.Boolean, default=False, nullable=False)
    balance_collected_at = db.Column(db.DateTime, nullable=True)
    balance_evidence_id = db.Column(db.String(36), nullable=True)

    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    def to_dict(self, include_otp=False):
        payload = {
            'id': self.id,
            'order_id': self.order_id,
            'status': self.status.value,
            'otp_expires_at': _iso(self.otp_expires_at),
            'otp_attempts': self.otp_attempts,
            'max_otp_attempts': self.max_otp_attempts,
            'confirmation_method': (
                self.confirmation_method.value
                if self.confirmation_method
                else None
            ),
            'delivery_photo_evidence_id': self.delivery_photo_evidence_id,
            'buyer_confirmation_evidence_id': (
                self.buyer_confirmation_evidence_id
            ),
            'confirmed_by': self.confirmed_by,
            'confirmed_at': _iso(self.confirmed_at),
            'balance_collected': self.balance_collected,
            'balance_collected_at': _iso(self.balance_collected_at),
            'balance_evidence_id': self.balance_evidence_id,
        }
        if include_otp:
            payload['otp'] = self.delivery_otp
        return payload

    def __repr__(self):
        return (
            f"<DeliveryConfirmation {self.id} "
            f"order={self.order_id} status={self.status}>"
        )


class OrderDispute(db.Model):
    __tablename__ = 'order_disputes'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_id = db.Column(
        db.String(36),
        db.ForeignKey('orders.id'),
        nullable=False,
        index=True)
    raised_by = db.Column(db.String(64), nullable=False, index=True)
    raised_by_role = db.Column(db.String(20), nullable=False)
    against_user_id = db.Column(db.String(64), nullable=False, index=True)

    reason = db.Column(db.Enum(DisputeReason), nullable=False)
    description = db.Column(db.Text, nullable=False)
    requested_resolution = db.Column(db.Text, nullable=True)
    claimed_amount = db.Column(db.Numeric(12, 2), nullable=True)
    evidence_ids_json = db.Column(db.Text, nullable=True)

    status = db.Column(
        db.Enum(DisputeStatus),
        default=DisputeStatus.OPEN,
        nullable=False,
        index=True)

    # Resolution
    resolution_type = db.Column(db.String(50), nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)
    resolved_by = db.Column(db.String(64), nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    refund_amount = db.Column(db.Numeric(12, 2), nullable=True)

    reviewed_by = db.Column(db.String(64), nullable=True)
    last_response_at = db.Column(db.DateTime, nullable=True)
    response_count = db.Column(db.Integer, nullable=False, default=0)

    escalated_at = db.Column(db.DateTime, nullable=True)
    escalation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    def set_evidence_ids(self, evidence_ids):
        self.evidence_ids_json = (
            json.dumps(list(evidence_ids)) if evidence_ids else None
        )

    def get_evidence_ids(self):
        if self.evidence_ids_json:
            return json.loads(self.evidence_ids_json)
        return []

    @property
    def is_resolved(self):
        return self.status in (
            DisputeStatus.RESOLVED_COMPLETED,
            DisputeStatus.RESOLVED_CANCELLED,
        )

    @property
    def last_activity_at(self):
        return max(
            t for t in (self.created_at, self.last_response_at) if t
        )

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'raised_by': self.raised_by,
            'raised_by_role': self.raised_by_role,
            'against_user_id': self.against_user_id,
            'reason': self.reason.value,
            'description': self.description,
            'requested_resolution': self.requested_resolution,
            'claimed_amount': _money(self.claimed_amount),
            'evidence_ids': self.get_evidence_ids(),
            'status': self.status.value,
            'resolution_type': self.resolution_type,
            'resolution_notes': self.resolution_notes,
            'resolved_by': self.resolved_by,
            'resolved_at': _iso(self.resolved_at),
            'refund_amount': _money(self.refund_amount),
            'response_count': self.response_count,
            'escalated_at': _iso(self.escalated_at),
            'escalation_reason': self.escalation_reason,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<OrderDispute {self.id} status={self.status}>'


class OrderReview(db.Model):
    __tablename__ = 'order_reviews'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_id = db.Column(
        db.String(36),
        db.ForeignKey('orders.id'),
        nullable=False,
        index=True)
    reviewer_id = db.Column(db.String(64), nullable=False)
    seller_id = db.Column(db.String(64), nullable=False, index=True)
    rating = db.Column(db.Integer, nullable=False)
    content = db.Column(db.Text, nullable=True)
    would_recommend = db.Column(db.Boolean, nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            'rating >= 1 AND rating <= 5',
            name='check_order_review_rating_range'),
        UniqueConstraint(
            'order_id',
            'reviewer_id',
            name='uq_order_reviewer'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'reviewer_id': self.reviewer_id,
            'seller_id': self.seller_id,
            'rating': self.rating,
            'content': self.content,
            'would_recommend': self.would_recommend,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<OrderReview {self.id} for order {self.order_id}>'


class OrderAuditLog(db.Model):
    __tablename__ = 'order_audit_logs'

    # Autoincrement id is the append order.
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.String(36),
        db.ForeignKey('orders.id'),
        nullable=False,
        index=True)
    # e.g., STATE_CHANGE, PAYMENT_REJECTED, EVIDENCE_UPLOADED
    action = db.Column(db.String(100), nullable=False)
    from_state = db.Column(db.String(50), nullable=True)
    to_state = db.Column(db.String(50), nullable=True)
    performed_by = db.Column(db.String(64), nullable=False, index=True)
    performed_by_role = db.Column(db.String(20), nullable=False)
    description = db.Column(db.Text, nullable=False)
    # JSON format key field snapshot
    payload_json = db.Column(db.Text, nullable=True)
    evidence_id = db.Column(db.String(36), nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=_utcnow,
        nullable=False,
        index=True)

    def set_payload(self, data):
        self.payload_json = json.dumps(data, ensure_ascii=False, default=str)

    def get_payload(self):
        if self.payload_json:
            return json.loads(self.payload_json)
        return {}

    def to_dict(self):
        return {
            'log_id': self.id,
            'order_id': self.order_id,
            'action': self.action,
            'from_state': self.from_state,
            'to_state': self.to_state,
            'performed_by': self.performed_by,
            'performed_by_role': self.performed_by_role,
            'description': self.description,
            'payload': self.get_payload(),
            'evidence_id': self.evidence_id,
            'timestamp': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<OrderAuditLog {self.id} action={self.action}>'


@event.listens_for(OrderAuditLog, 'before_update')
def _refuse_audit_update(mapper, connection, target):
    raise AuditLogImmutableError(
        f'Audit log entry {target.id} cannot be modified')


@event.listens_for(OrderAuditLog, 'before_delete')
def _refuse_audit_delete(mapper, connection, target):
    raise AuditLogImmutableError(
        f'Audit log entry {target.id} cannot be deleted')
