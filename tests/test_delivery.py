from datetime import timedelta

import pytest

from evidence_orders.models import (
    ConfirmationMethod,
    DeliveryStatus,
    OrderStatus,
)
from evidence_orders.services import (
    audit_service,
    delivery_service,
    geo_service,
)
from tests.helpers import (
    DELIVERY_POINT,
    SELLER,
    delivered_quote,
    locked_quote,
    ok,
    order_status,
    paid_quote,
    sent_quote,
    upload,
)

WRONG_OTP = '000000'


class TestGeo:

    def test_same_point_is_zero(self):
        assert geo_service.distance_km(12.0, 77.0, 12.0, 77.0) == 0

    def test_one_degree_of_latitude(self):
        assert geo_service.distance_km(0, 0, 1, 0) == pytest.approx(
            111.195, abs=0.01)

    def test_format_distance(self):
        assert geo_service.format_distance(0.501) == '501 m'
        assert geo_service.format_distance(1.234) == '1.2 km'

    def test_boundary_counts_as_inside(self):
        assert geo_service.within_radius(0.5, 0.5)
        assert not geo_service.within_radius(0.501, 0.5)


class TestOtpGeneration:

    def test_generates_six_digits(self, app, clock):
        quote = locked_quote('COD')

        otp = ok(delivery_service.generate_delivery_otp(quote.order_id))

        assert len(otp) == 6 and otp.isdigit()
        confirmation = delivery_service.get_delivery_confirmation(
            quote.order_id)
        assert confirmation.otp_expires_at == clock.now() + timedelta(hours=4)
        assert confirmation.otp_attempts == 0
        assert confirmation.max_otp_attempts == 3
        assert confirmation.status == DeliveryStatus.PENDING

    def test_otp_is_not_written_to_audit(self, app):
        quote = locked_quote('COD')
        otp = ok(delivery_service.generate_delivery_otp(quote.order_id))
        for entry in audit_service.get_order_audit_trail(quote.order_id):
            assert otp not in (entry.payload_json or '')

    def test_refused_before_agreement(self, app):
        quote = sent_quote('COD')
        result = delivery_service.generate_delivery_otp(quote.order_id)
        assert result.error_kind == 'conflict'

    def test_refused_until_advance_verified(self, app):
        quote = locked_quote('SPLIT_50_50')
        result = delivery_service.generate_delivery_otp(quote.order_id)
        assert result.error == 'Advance payment must be verified before delivery'

    def test_allowed_after_advance_verified(self, app):
        quote = paid_quote('SPLIT_50_50')
        assert order_status(quote.order_id) == OrderStatus.PAYMENT_VERIFIED
        ok(delivery_service.generate_delivery_otp(quote.order_id))

    def test_regeneration_resets_attempts(self, app):
        quote = locked_quote('COD')
        first = ok(delivery_service.generate_delivery_otp(quote.order_id))
        delivery_service.verify_delivery_otp(
            quote.order_id, WRONG_OTP, SELLER)

        ok(delivery_service.generate_delivery_otp(quote.order_id))

        confirmation = delivery_service.get_delivery_confirmation(
            quote.order_id)
        assert confirmation.otp_attempts == 0
        assert first is not None

    def test_refused_after_confirmation(self, app):
        quote = delivered_quote('COD')
        result = delivery_service.generate_delivery_otp(quote.order_id)
        assert result.error_kind == 'conflict'


class TestOtpVerification:

    def test_correct_otp_delivers(self, app):
        quote = locked_quote('COD')
        otp = ok(delivery_service.generate_delivery_otp(quote.order_id))

        confirmation = ok(delivery_service.verify_delivery_otp(
            quote.order_id, otp, SELLER, *DELIVERY_POINT))

        assert confirmation.status == DeliveryStatus.CONFIRMED
        assert confirmation.confirmation_method == ConfirmationMethod.OTP
        assert confirmation.confirmed_by == SELLER
        assert order_status(quote.order_id) == OrderStatus.DELIVERED

    def test_third_wrong_attempt_reports_lockout(self, app):
        quote = locked_quote('COD')
        otp = ok(delivery_service.generate_delivery_otp(quote.order_id))

        first = delivery_service.verify_delivery_otp(
            quote.order_id, WRONG_OTP, SELLER)
        second = delivery_service.verify_delivery_otp(
            quote.order_id, WRONG_OTP, SELLER)
        third = delivery_service.verify_delivery_otp(
            quote.order_id, WRONG_OTP, SELLER)

        assert first.error == 'Invalid OTP'
        assert second.error == 'Invalid OTP'
        assert third.error == 'Maximum OTP attempts exceeded'
        confirmation = delivery_service.get_delivery_confirmation(
            quote.order_id)
        assert confirmation.otp_attempts == 3

        # Even the right code is refused now.
        fourth = delivery_service.verify_delivery_otp(
            quote.order_id, otp, SELLER)
        assert fourth.error == 'Maximum OTP attempts exceeded'
        assert order_status(quote.order_id) == OrderStatus.AGREEMENT_LOCKED

    def test_failed_attempts_are_audited(self, app):
        quote = locked_quote('COD')
        ok(delivery_service.generate_delivery_otp(quote.order_id))
        delivery_service.verify_delivery_otp(
            quote.order_id, WRONG_OTP, SELLER)
        assert audit_service.count_actions(
            quote.order_id, 'DELIVERY_OTP_FAILED') == 1

    def test_valid_until_the_expiry_instant(self, app, clock):
        quote = locked_quote('COD')
        otp = ok(delivery_service.generate_delivery_otp(quote.order_id))
        clock.advance(hours=4)
        ok(delivery_service.verify_delivery_otp(quote.order_id, otp, SELLER))

    def test_expired_just_after(self, app, clock):
        quote = locked_quote('COD')
        otp = ok(delivery_service.generate_delivery_otp(quote.order_id))
        clock.advance(hours=4, milliseconds=1)

        result = delivery_service.verify_delivery_otp(
            quote.order_id, otp, SELLER)

        assert result.error == 'OTP has expired'

    def test_geofence_boundary_passes(self, app, monkeypatch):
        quote = locked_quote('COD')
        otp = ok(delivery_service.generate_delivery_otp(quote.order_id))
        monkeypatch.setattr(geo_service, 'distance_km', lambda *a: 0.5)

        ok(delivery_service.verify_delivery_otp(
            quote.order_id, otp, SELLER, 12.0, 77.0))

    def test_geofence_just_outside_fails(self, app, monkeypatch):
        quote = locked_quote('COD')
        otp = ok(delivery_service.generate_delivery_otp(quote.order_id))
        monkeypatch.setattr(geo_service, 'distance_km', lambda *a: 0.501)

        result = delivery_service.verify_delivery_otp(
            quote.order_id, otp, SELLER, 12.0, 77.0)

        assert result.error == (
            'Location verification failed. '
            'You are 501 m away from delivery location.'
        )
        assert order_status(quote.order_id) == OrderStatus.AGREEMENT_LOCKED

    def test_far_away_verifier_fails(self, app):
        quote = locked_quote('COD')
        otp = ok(delivery_service.generate_delivery_otp(quote.order_id))
        result = delivery_service.verify_delivery_otp(
            quote.order_id, otp, SELLER, 13.0827, 80.2707)
        assert result.error.startswith('Location verification failed.')
        assert result.error.endswith('km away from delivery location.')

    def test_no_location_on_quote_skips_geofence(self, app):
        quote = locked_quote('COD', with_location=False)
        otp = ok(delivery_service.generate_delivery_otp(quote.order_id))
        ok(delivery_service.verify_delivery_otp(
            quote.order_id, otp, SELLER, 13.0827, 80.2707))

    @pytest.mark.parametrize('lat, lng, error', [
        ('abc', 77.5946, 'Verifier coordinates must be numbers'),
        (91, 77.5946, 'Verifier coordinates are out of range'),
        (12.9716, None, 'Verifier latitude and longitude must be given '
                        'together'),
    ])
    def test_malformed_location_is_rejected_up_front(
            self, app, lat, lng, error):
        quote = locked_quote('COD')
        otp = ok(delivery_service.generate_delivery_otp(quote.order_id))

        result = delivery_service.verify_delivery_otp(
            quote.order_id, otp, SELLER, lat, lng)

        assert result.error == error
        assert result.error_kind == 'validation'
        confirmation = delivery_service.get_delivery_confirmation(
            quote.order_id)
        assert confirmation.status == DeliveryStatus.PENDING
        assert confirmation.otp_attempts == 0
        assert order_status(quote.order_id) == OrderStatus.AGREEMENT_LOCKED

    def test_location_is_stored_as_numbers(self, app):
        quote = locked_quote('COD')
        otp = ok(delivery_service.generate_delivery_otp(quote.order_id))

        confirmation = ok(delivery_service.verify_delivery_otp(
            quote.order_id, otp, SELLER, '12.9716', '77.5946'))

        assert confirmation.verifier_latitude == pytest.approx(12.9716)
        assert confirmation.verifier_longitude == pytest.approx(77.5946)
        assert isinstance(confirmation.verifier_latitude, float)

    def test_without_generated_otp(self, app):
        quote = locked_quote('COD')
        result = delivery_service.verify_delivery_otp(
            quote.order_id, '123456', SELLER)
        assert result.error_kind == 'not_found'


class TestPhotoConfirmation:

    def test_photo_confirms_delivery(self, app):
        quote = locked_quote('COD')
        photo = upload(quote.order_id, by=SELLER, role='SELLER')
        buyer_photo = upload(quote.order_id)

        confirmation = ok(delivery_service.confirm_delivery_with_photo(
            quote.order_id, photo.id, buyer_photo.id))

        assert confirmation.confirmation_method == ConfirmationMethod.PHOTO
        assert confirmation.delivery_photo_evidence_id == photo.id
        assert confirmation.buyer_confirmation_evidence_id == buyer_photo.id
        assert order_status(quote.order_id) == OrderStatus.DELIVERED

    def test_photo_must_belong_to_order(self, app):
        quote = locked_quote('COD')
        other = locked_quote('COD')
        photo = upload(other.order_id)
        result = delivery_service.confirm_delivery_with_photo(
            quote.order_id, photo.id)
        assert result.error == 'Evidence does not belong to this order'

    def test_text_evidence_is_not_a_photo(self, app):
        quote = locked_quote('COD')
        note = upload(quote.order_id, evidence_type='TEXT')
        result = delivery_service.confirm_delivery_with_photo(
            quote.order_id, note.id)
        assert result.error_kind == 'validation'


class TestBalance:

    def test_balance_completes_order(self, app):
        quote = delivered_quote('COD')
        cash = upload(quote.order_id, by=SELLER, role='SELLER')

        confirmation = ok(delivery_service.mark_balance_collected(
            quote.order_id, cash.id))

        assert confirmation.balance_collected
        assert confirmation.status == DeliveryStatus.BALANCE_COLLECTED
        assert order_status(quote.order_id) == OrderStatus.COMPLETED

        again = delivery_service.mark_balance_collected(quote.order_id)
        assert again.error == 'Balance already collected'

    def test_needs_confirmed_delivery(self, app):
        quote = locked_quote('COD')
        ok(delivery_service.generate_delivery_otp(quote.order_id))
        result = delivery_service.mark_balance_collected(quote.order_id)
        assert result.error == 'Delivery has not been confirmed yet'

    def test_needs_confirmation_record(self, app):
        quote = locked_quote('COD')
        result = delivery_service.mark_balance_collected(quote.order_id)
        assert result.error_kind == 'not_found'
