import logging
import math

from evidence_orders.errors import ValidationError

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def distance_km(lat1, lng1, lat2, lng2):
    # Haversine great-circle distance.
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def format_distance(km):
    if km < 1:
        return f'{int(round(km * 1000))} m'
    return f'{km:.1f} km'


def has_coordinates(lat, lng):
    return lat is not None and lng is not None


def within_radius(distance, radius_km):
    # The boundary itself counts as inside.
    return distance <= radius_km


def parse_coordinates(lat, lng, label):
    """Return ``(lat, lng)`` as floats, or ``(None, None)`` when absent."""
    if lat is None and lng is None:
        return None, None
    if lat is None or lng is None:
        raise ValidationError(
            f'{label} latitude and longitude must be given together')
    if isinstance(lat, bool) or isinstance(lng, bool):
        raise ValidationError(f'{label} coordinates must be numbers')
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ValidationError(f'{label} coordinates must be numbers')
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise ValidationError(f'{label} coordinates are out of range')
    return lat, lng
