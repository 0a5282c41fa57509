"""Shared positions of customers and providers, one record per owner."""

from datetime import datetime, timezone
from typing import Optional

import structlog

from database import CLIENT_LOCATIONS, PROVIDER_LOCATIONS, get_document, upsert_document
from schemas import LocationRecord, LocationShare

logger = structlog.get_logger()

OWNER_COLLECTIONS = {
    "client": CLIENT_LOCATIONS,
    "service_provider": PROVIDER_LOCATIONS,
}

# Browser geolocation error codes
PERMISSION_DENIED = 1
POSITION_UNAVAILABLE = 2
TIMEOUT = 3

GEOLOCATION_MESSAGES = {
    PERMISSION_DENIED: "Location access was denied. Please allow location sharing and try again.",
    POSITION_UNAVAILABLE: "Your location is currently unavailable.",
    TIMEOUT: "Getting your location took too long. Please try again.",
}
UNKNOWN_GEOLOCATION_MESSAGE = "Could not get your location."


class GeolocationError(Exception):
    def __init__(self, code: int):
        self.code = code
        super().__init__(describe_geolocation_error(code))


def describe_geolocation_error(code: int) -> str:
    return GEOLOCATION_MESSAGES.get(code, UNKNOWN_GEOLOCATION_MESSAGE)


def _collection(kind: str) -> str:
    try:
        return OWNER_COLLECTIONS[kind]
    except KeyError:
        raise ValueError(f"Unknown location owner kind: {kind}") from None


def share_location(db, kind: str, owner_id: str, share: LocationShare,
                   now: Optional[datetime] = None) -> LocationRecord:
    """Overwrite the owner's location with a fresh position."""
    collection = _collection(kind)
    if share.error_code is not None:
        logger.warning("location_share_failed", owner_id=owner_id, code=share.error_code)
        raise GeolocationError(share.error_code)

    record = LocationRecord(
        owner_id=owner_id,
        latitude=share.latitude,
        longitude=share.longitude,
        accuracy=share.accuracy,
        captured_at=now or datetime.now(timezone.utc),
    )
    upsert_document(db, collection, owner_id, record)
    logger.info("location_shared", kind=kind, owner_id=owner_id)
    return record


def get_location(db, kind: str, owner_id: str) -> Optional[LocationRecord]:
    doc = get_document(db, _collection(kind), owner_id)
    if not doc:
        return None
    doc.pop("_id", None)
    return LocationRecord.model_validate(doc)
