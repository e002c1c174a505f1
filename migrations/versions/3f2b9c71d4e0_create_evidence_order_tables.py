from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3f2b9c71d4e0"
down_revision = None
branch_labels = None
depends_on = None

ORDER_STATUS = sa.Enum(
    "ENQUIRY",
    "QUOTE_SENT",
    "AGREEMENT_LOCKED",
    "ADVANCE_PENDING",
    "PAYMENT_PROOF_SUBMITTED",
    "PAYMENT_VERIFIED",
    "DELIVERED",
    "COMPLETED",
    "DISPUTE",
    "ESCALATED",
    "CANCELLED",
    "EXPIRED",
    name="orderstatus",
)
QUOTE_STATUS = sa.Enum(
    "DRAFT",
    "SENT",
    "NEGOTIATING",
    "LOCKED",
    "SUPERSEDED",
    "EXPIRED",
    name="quotestatus",
)
PAYMENT_TYPE = sa.Enum(
    "FULL_ADVANCE", "SPLIT_50_50", "COD", "BUYER_PICKUP", name="paymenttype"
)
DELIVERY_TYPE = sa.Enum(
    "SELLER_DELIVERY", "BUYER_PICKUP", "COURIER", name="deliverytype"
)
PAYMENT_PHASE = sa.Enum("ADVANCE", "BALANCE", "FULL", name="paymentphase")
PAYMENT_METHOD = sa.Enum("UPI", "BANK_TRANSFER", "CASH", name="paymentmethod")
PAYMENT_STATUS = sa.Enum(
    "PENDING",
    "PROOF_SUBMITTED",
    "VERIFIED",
    "REJECTED",
    "EXPIRED",
    name="paymentstatus",
)
EVIDENCE_TYPE = sa.Enum("PHOTO", "VIDEO", "TEXT", "OTHER", name="evidencetype")
DELIVERY_STATUS = sa.Enum(
    "PENDING", "CONFIRMED", "BALANCE_COLLECTED", name="deliverystatus"
)
CONFIRMATION_METHOD = sa.Enum("OTP", "PHOTO", name="confirmationmethod")
DISPUTE_REASON = sa.Enum(
    "WRONG_PRODUCT",
    "QUALITY_ISSUE",
    "QUANTITY_MISMATCH",
    "DELIVERY_ISSUE",
    "PAYMENT_NOT_RECEIVED",
    "REFUND_NOT_RECEIVED",
    "PRICE_DISPUTE",
    "SELLER_UNRESPONSIVE",
    "BUYER_UNRESPONSIVE",
    "OTHER",
    name="disputereason",
)
DISPUTE_STATUS = sa.Enum(
    "OPEN",
    "UNDER_REVIEW",
    "ESCALATED",
    "RESOLVED_COMPLETED",
    "RESOLVED_CANCELLED",
    name="disputestatus",
)


def upgrade():
    op.create_table(
        "orders",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("buyer_id", sa.String(length=64), nullable=False),
        sa.Column("seller_id", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=True),
        sa.Column("product_name", sa.String(length=200), nullable=True),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("dirty", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
    op.create_index("ix_orders_seller_id", "orders", ["seller_id"])
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "order_quotes",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(length=36),
            sa.ForeignKey("orders.id"),
            nullable=False,
        ),
        sa.Column("buyer_id", sa.String(length=64), nullable=False),
        sa.Column("seller_id", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=True),
        sa.Column("product_name", sa.String(length=200), nullable=True),
        sa.Column("quantity", sa.Numeric(12, 3), nullable=False),
        sa.Column("unit", sa.String(length=20), nullable=False),
        sa.Column("base_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_product_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("delivery_charge", sa.Numeric(12, 2), nullable=False),
        sa.Column("packing_charge", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount", sa.Numeric(12, 2), nullable=False),
        sa.Column("final_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("delivery_type", DELIVERY_TYPE, nullable=False),
        sa.Column("delivery_address", sa.Text(), nullable=True),
        sa.Column("delivery_latitude", sa.Float(), nullable=True),
        sa.Column("delivery_longitude", sa.Float(), nullable=True),
        sa.Column("payment_type", PAYMENT_TYPE, nullable=False),
        sa.Column(
            "allowed_payment_types", sa.String(length=100), nullable=True),
        sa.Column("advance_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("balance_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("status", QUOTE_STATUS, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column(
            "previous_quote_id",
            sa.String(length=36),
            sa.ForeignKey("order_quotes.id"),
            nullable=True,
        ),
        sa.Column("buyer_agreed_at", sa.DateTime(), nullable=True),
        sa.Column("seller_agreed_at", sa.DateTime(), nullable=True),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("buyer_notes", sa.Text(), nullable=True),
        sa.Column("seller_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "quantity > 0", name="check_quote_quantity_positive"),
    )
    op.create_index("ix_order_quotes_order_id", "order_quotes", ["order_id"])
    op.create_index("ix_order_quotes_buyer_id", "order_quotes", ["buyer_id"])
    op.create_index(
        "ix_order_quotes_seller_id", "order_quotes", ["seller_id"])
    op.create_index("ix_order_quotes_status", "order_quotes", ["status"])

    op.create_table(
        "order_evidence",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(length=36),
            sa.ForeignKey("orders.id"),
            nullable=False,
        ),
        sa.Column("evidence_type", EVIDENCE_TYPE, nullable=False),
        sa.Column("uploaded_by", sa.String(length=64), nullable=False),
        sa.Column("uploaded_by_role", sa.String(length=20), nullable=False),
        sa.Column("media_refs_json", sa.Text(), nullable=True),
        sa.Column("text_content", sa.Text(), nullable=True),
        sa.Column("geo_latitude", sa.Float(), nullable=True),
        sa.Column("geo_longitude", sa.Float(), nullable=True),
        sa.Column("device_timestamp", sa.DateTime(), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("verified_by", sa.String(length=64), nullable=True),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("verification_note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_order_evidence_order_id", "order_evidence", ["order_id"])
    op.create_index(
        "ix_order_evidence_evidence_type", "order_evidence", ["evidence_type"])
    op.create_index(
        "ix_order_evidence_uploaded_by", "order_evidence", ["uploaded_by"])

    op.create_table(
        "order_payments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(length=36),
            sa.ForeignKey("orders.id"),
            nullable=False,
        ),
        sa.Column(
            "quote_id",
            sa.String(length=36),
            sa.ForeignKey("order_quotes.id"),
            nullable=False,
        ),
        sa.Column("payer_id", sa.String(length=64), nullable=False),
        sa.Column("receiver_id", sa.String(length=64), nullable=False),
        sa.Column("phase", PAYMENT_PHASE, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("method", PAYMENT_METHOD, nullable=False),
        sa.Column("status", PAYMENT_STATUS, nullable=False),
        sa.Column(
            "proof_evidence_id",
            sa.String(length=36),
            sa.ForeignKey("order_evidence.id"),
            nullable=True,
        ),
        sa.Column("transaction_ref", sa.String(length=100), nullable=True),
        sa.Column("verified_by", sa.String(length=64), nullable=True),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("verification_notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("due_at", sa.DateTime(), nullable=False),
        sa.Column("expired_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "amount > 0", name="check_payment_amount_positive"),
    )
    op.create_index(
        "ix_order_payments_order_id", "order_payments", ["order_id"])
    op.create_index(
        "ix_order_payments_payer_id", "order_payments", ["payer_id"])
    op.create_index(
        "ix_order_payments_receiver_id", "order_payments", ["receiver_id"])
    op.create_index("ix_order_payments_phase", "order_payments", ["phase"])
    op.create_index("ix_order_payments_status", "order_payments", ["status"])

    op.create_table(
        "delivery_confirmations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(length=36),
            sa.ForeignKey("orders.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("buyer_id", sa.String(length=64), nullable=False),
        sa.Column("seller_id", sa.String(length=64), nullable=False),
        sa.Column("delivery_otp", sa.String(length=6), nullable=True),
        sa.Column("otp_generated_at", sa.DateTime(), nullable=True),
        sa.Column("otp_expires_at", sa.DateTime(), nullable=True),
        sa.Column("otp_attempts", sa.Integer(), nullable=False),
        sa.Column("max_otp_attempts", sa.Integer(), nullable=False),
        sa.Column("status", DELIVERY_STATUS, nullable=False),
        sa.Column("confirmation_method", CONFIRMATION_METHOD, nullable=True),
        sa.Column(
            "delivery_photo_evidence_id", sa.String(length=36), nullable=True),
        sa.Column(
            "buyer_confirmation_evidence_id",
            sa.String(length=36),
            nullable=True,
        ),
        sa.Column("confirmed_by", sa.String(length=64), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("verifier_latitude", sa.Float(), nullable=True),
        sa.Column("verifier_longitude", sa.Float(), nullable=True),
        sa.Column("balance_collected", sa.Boolean(), nullable=False),
        sa.Column("balance_collected_at", sa.DateTime(), nullable=True),
        sa.Column("balance_evidence_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_delivery_confirmations_status",
        "delivery_confirmations",
        ["status"],
    )

    op.create_table(
        "order_disputes",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(length=36),
            sa.ForeignKey("orders.id"),
            nullable=False,
        ),
        sa.Column("raised_by", sa.String(length=64), nullable=False),
        sa.Column("raised_by_role", sa.String(length=20), nullable=False),
        sa.Column("against_user_id", sa.String(length=64), nullable=False),
        sa.Column("reason", DISPUTE_REASON, nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("requested_resolution", sa.Text(), nullable=True),
        sa.Column("claimed_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("evidence_ids_json", sa.Text(), nullable=True),
        sa.Column("status", DISPUTE_STATUS, nullable=False),
        sa.Column("resolution_type", sa.String(length=50), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.String(length=64), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("reviewed_by", sa.String(length=64), nullable=True),
        sa.Column("last_response_at", sa.DateTime(), nullable=True),
        sa.Column("response_count", sa.Integer(), nullable=False),
        sa.Column("escalated_at", sa.DateTime(), nullable=True),
        sa.Column("escalation_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_order_disputes_order_id", "order_disputes", ["order_id"])
    op.create_index(
        "ix_order_disputes_raised_by", "order_disputes", ["raised_by"])
    op.create_index(
        "ix_order_disputes_against_user_id",
        "order_disputes",
        ["against_user_id"],
    )
    op.create_index("ix_order_disputes_status", "order_disputes", ["status"])

    op.create_table(
        "order_reviews",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(length=36),
            sa.ForeignKey("orders.id"),
            nullable=False,
        ),
        sa.Column("reviewer_id", sa.String(length=64), nullable=False),
        sa.Column("seller_id", sa.String(length=64), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("would_recommend", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "rating >= 1 AND rating <= 5",
            name="check_order_review_rating_range",
        ),
        sa.UniqueConstraint(
            "order_id", "reviewer_id", name="uq_order_reviewer"),
    )
    op.create_index(
        "ix_order_reviews_order_id", "order_reviews", ["order_id"])
    op.create_index(
        "ix_order_reviews_seller_id", "order_reviews", ["seller_id"])

    op.create_table(
        "order_audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "order_id",
            sa.String(length=36),
            sa.ForeignKey("orders.id"),
            nullable=False,
        ),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("from_state", sa.String(length=50), nullable=True),
        sa.Column("to_state", sa.String(length=50), nullable=True),
        sa.Column("performed_by", sa.String(length=64), nullable=False),
        sa.Column("performed_by_role", sa.String(length=20), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("evidence_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_order_audit_logs_order_id", "order_audit_logs", ["order_id"])
    op.create_index(
        "ix_order_audit_logs_performed_by",
        "order_audit_logs",
        ["performed_by"],
    )
    op.create_index(
        "ix_order_audit_logs_created_at", "order_audit_logs", ["created_at"])


def downgrade():
    op.drop_table("order_audit_logs")
    op.drop_table("order_reviews")
    op.drop_table("order_disputes")
    op.drop_table("delivery_confirmations")
    op.drop_table("order_payments")
    op.drop_table("order_evidence")
    op.drop_table("order_quotes")
    op.drop_table("orders")
