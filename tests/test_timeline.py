from evidence_orders.services import (
    delivery_service,
    quote_service,
    review_service,
    timeline_service,
)
from tests.helpers import (
    BUYER,
    SELLER,
    delivered_quote,
    ok,
    paid_quote,
    sent_quote,
    upload,
)


def test_timeline_is_chronological(app, clock):
    quote = sent_quote('SPLIT_50_50')
    clock.advance(minutes=5)
    ok(quote_service.seller_agree(quote.id))
    clock.advance(minutes=5)
    ok(quote_service.buyer_agree(quote.id))
    clock.advance(minutes=5)
    upload(quote.order_id)

    events = ok(timeline_service.get_order_timeline(quote.order_id))

    stamps = [e.timestamp for e in events]
    assert stamps == sorted(stamps)
    kinds = {e.kind for e in events}
    assert {'audit', 'payment', 'evidence'} <= kinds
    assert events[0].kind == 'audit'
    assert 'ENQUIRY_CREATED' in events[0].summary


def test_ties_keep_append_order(app):
    quote = paid_quote()
    events = ok(timeline_service.get_order_timeline(quote.order_id))
    audit_ids = [e.record_id for e in events if e.kind == 'audit']
    assert audit_ids == sorted(audit_ids)


def test_events_serialize(app):
    quote = sent_quote()
    events = ok(timeline_service.get_order_timeline(quote.order_id))
    payload = events[0].to_dict()
    assert set(payload) == {'timestamp', 'kind', 'record_id', 'summary', 'data'}


def test_missing_order(app):
    result = timeline_service.get_order_timeline('missing')
    assert result.error_kind == 'not_found'


class TestReviews:

    def _completed(self):
        quote = delivered_quote()
        ok(delivery_service.mark_balance_collected(quote.order_id))
        return quote

    def test_buyer_reviews_completed_order(self, app):
        quote = self._completed()

        review = ok(review_service.submit_review(
            quote.order_id, BUYER, 5, 'Fresh stock', would_recommend=True))

        assert review.rating == 5
        assert review.seller_id == SELLER
        assert [r.id for r in review_service.get_seller_reviews(SELLER)] \
            == [review.id]

    def test_only_once(self, app):
        quote = self._completed()
        ok(review_service.submit_review(quote.order_id, BUYER, 4))
        result = review_service.submit_review(quote.order_id, BUYER, 1)
        assert result.error == 'This order has already been reviewed'

    def test_order_must_be_completed(self, app):
        quote = delivered_quote()
        result = review_service.submit_review(quote.order_id, BUYER, 5)
        assert result.error_kind == 'conflict'

    def test_rating_range(self, app):
        quote = self._completed()
        result = review_service.submit_review(quote.order_id, BUYER, 6)
        assert result.error == 'Rating must be between 1 and 5'

    def test_seller_cannot_review(self, app):
        quote = self._completed()
        result = review_service.submit_review(quote.order_id, SELLER, 5)
        assert result.error_kind == 'validation'
