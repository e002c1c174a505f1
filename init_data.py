from evidence_orders import create_app
from evidence_orders.extensions import db
from evidence_orders.models import Order
from evidence_orders.services import quote_service

app = create_app()

BUYER_ID = "buyer-demo"
SELLER_ID = "seller-demo"

with app.app_context():
    db.create_all()

    existing = Order.query.filter_by(
        buyer_id=BUYER_ID, seller_id=SELLER_ID).first()
    if existing:
        print(f"Demo order already present: {existing.id}")
        raise SystemExit(0)

    # Buyer asks for 10 kg of tomatoes, to be delivered to a pinned point.
    result = quote_service.create_enquiry(
        buyer_id=BUYER_ID,
        seller_id=SELLER_ID,
        product_id="tomato-01",
        product_name="Tomatoes",
        quantity=10,
        unit="kg",
        delivery_address="12 Market Road",
        delivery_latitude=12.9716,
        delivery_longitude=77.5946,
        payment_preference="SPLIT_50_50",
    )
    if not result:
        raise SystemExit(f"Enquiry failed: {result.error}")
    quote = result.data
    print(f"Created enquiry: order {quote.order_id}")

    result = quote_service.send_quote(
        quote.id,
        base_price=100,
        delivery_charge=20,
        packing_charge=5,
        allowed_payment_types=["SPLIT_50_50", "COD"],
    )
    if not result:
        raise SystemExit(f"Quote failed: {result.error}")
    print(f"Seller quoted {result.data.final_total}")

    result = quote_service.counter_offer(quote.id, new_price=90)
    if not result:
        raise SystemExit(f"Counter offer failed: {result.error}")
    counter = result.data
    print(f"Buyer countered at {counter.final_total} (v{counter.version})")

    quote_service.seller_agree(counter.id)
    result = quote_service.buyer_agree(counter.id)
    if not result:
        raise SystemExit(f"Agreement failed: {result.error}")
    print(
        f"Agreement locked: advance {result.data.advance_amount}, "
        f"balance {result.data.balance_amount}"
    )

    print("\nDemo data created.")
    print(f"Buyer actor: {BUYER_ID}")
    print(f"Seller actor: {SELLER_ID}")
