"""Delivery ETA lookups against an OSRM-compatible routing service."""

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import requests
import structlog

from config import ETA_TIMEOUT_SECONDS, OSRM_API_URL
from schemas import ETAResult, GeoPoint

logger = structlog.get_logger()

TRAVEL_MODES = ("foot", "car", "bike")


def _half_up(value: float, places: str) -> Decimal:
    return Decimal(str(value)).quantize(Decimal(places), rounding=ROUND_HALF_UP)


def route_url(origin: GeoPoint, destination: GeoPoint, mode: str, base_url: str = OSRM_API_URL) -> str:
    # OSRM takes lng,lat pairs
    return (f"{base_url.rstrip('/')}/{mode}/"
            f"{origin.lng},{origin.lat};{destination.lng},{destination.lat}")


def parse_route(data) -> Optional[ETAResult]:
    """Best route of an OSRM response, or None when there is none."""
    if not isinstance(data, dict) or data.get("code") != "Ok" or not data.get("routes"):
        return None
    route = data["routes"][0]
    if not all(math.isfinite(route[key]) for key in ("duration", "distance")):
        return None
    return ETAResult(
        duration_minutes=int(_half_up(route["duration"] / 60, "1")),
        distance_km=float(_half_up(route["distance"] / 1000, "0.1")),
        path_points=[(lat, lng) for lng, lat in route["geometry"]["coordinates"]],
    )


def calculate_eta(origin: GeoPoint, destination: GeoPoint, mode: str = "foot",
                  session: Optional[requests.Session] = None,
                  base_url: str = OSRM_API_URL) -> Optional[ETAResult]:
    """Travel time, distance and path between two points.

    Returns None whenever the routing service fails or has no route, so
    callers can simply leave the ETA out.
    """
    if mode not in TRAVEL_MODES:
        raise ValueError(f"Unknown travel mode: {mode}")

    http = session or requests
    url = route_url(origin, destination, mode, base_url)
    try:
        response = http.get(
            url,
            params={"overview": "full", "geometries": "geojson"},
            timeout=ETA_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        result = parse_route(response.json())
    except (requests.RequestException, ArithmeticError, ValueError, KeyError, TypeError, IndexError) as exc:
        logger.warning("eta_lookup_failed", url=url, error=str(exc))
        return None

    if result is None:
        logger.info("eta_no_route", url=url, mode=mode)
    return result
