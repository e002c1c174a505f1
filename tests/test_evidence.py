from datetime import datetime

from evidence_orders.models import EvidenceType, OrderStatus
from evidence_orders.services import evidence_service, state_machine
from tests.helpers import (
    ADMIN,
    BUYER,
    SELLER,
    locked_quote,
    new_enquiry,
    ok,
    order_status,
    upload,
)


def test_upload_keeps_payload(app, clock):
    quote = new_enquiry()

    evidence = ok(evidence_service.upload_evidence(
        quote.order_id,
        'photo',
        BUYER,
        'BUYER',
        media_refs=['media://a', 'media://b'],
        text='Crates at the gate',
        geo=(12.97, 77.59),
        device_timestamp='2026-01-01T08:55:00',
    ))

    assert evidence.evidence_type == EvidenceType.PHOTO
    assert evidence.get_media_refs() == ['media://a', 'media://b']
    assert evidence.text_content == 'Crates at the gate'
    assert (evidence.geo_latitude, evidence.geo_longitude) == (12.97, 77.59)
    assert evidence.device_timestamp == datetime(2026, 1, 1, 8, 55)
    assert evidence.created_at == clock.now()
    assert order_status(quote.order_id) == OrderStatus.ENQUIRY


def test_text_only_evidence(app):
    quote = new_enquiry()
    evidence = ok(evidence_service.upload_evidence(
        quote.order_id, 'TEXT', SELLER, 'SELLER', text='Loaded at 7am'))
    assert evidence.get_media_refs() == []


def test_empty_payload_rejected(app):
    quote = new_enquiry()
    result = evidence_service.upload_evidence(
        quote.order_id, 'PHOTO', BUYER, 'BUYER', media_refs=[], text='  ')
    assert result.error_kind == 'validation'
    assert evidence_service.get_order_evidence(quote.order_id) == []


def test_terminal_order_rejects_uploads(app):
    quote = new_enquiry()
    ok(state_machine.transition_order_state(
        quote.order_id, 'CANCELLED', ADMIN, 'ADMIN'))

    result = evidence_service.upload_evidence(
        quote.order_id, 'PHOTO', BUYER, 'BUYER', media_refs=['media://x'])

    assert result.error_kind == 'conflict'


def test_bad_geo_rejected(app):
    quote = new_enquiry()
    result = evidence_service.upload_evidence(
        quote.order_id, 'PHOTO', BUYER, 'BUYER',
        media_refs=['media://x'], geo={'lat': 123, 'lng': 0})
    assert result.error == 'Geo tag is out of range'


def test_verify_once(app):
    quote = locked_quote('COD')
    evidence = upload(quote.order_id)

    verified = ok(evidence_service.verify_evidence(
        evidence.id, SELLER, note='Matches invoice'))
    assert verified.is_verified
    assert verified.verified_by == SELLER
    assert verified.verification_note == 'Matches invoice'
    assert order_status(quote.order_id) == OrderStatus.AGREEMENT_LOCKED

    again = evidence_service.verify_evidence(evidence.id, ADMIN)
    assert again.error == 'Evidence is already verified'


def test_uploader_cannot_verify_own_evidence(app):
    quote = new_enquiry()
    evidence = upload(quote.order_id)
    result = evidence_service.verify_evidence(evidence.id, BUYER)
    assert result.error_kind == 'validation'


def test_filter_by_type(app):
    quote = new_enquiry()
    upload(quote.order_id)
    upload(quote.order_id, evidence_type='VIDEO')
    videos = evidence_service.get_order_evidence(quote.order_id, 'VIDEO')
    assert [e.evidence_type for e in videos] == [EvidenceType.VIDEO]
