"""Client utilities for the Google Geocoding API (keyed, last resort)."""

import logging
from typing import Any, Dict, Iterable, Optional

import requests

from crm_enrich.models import GeocodeResult

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://maps.googleapis.com/maps/api/geocode/json"


class GoogleGeocodingError(RuntimeError):
    """Raised when the Geocoding API returns a non-successful response."""


def parse_address_components(components: Iterable[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    def get(*types: str) -> Optional[str]:
        for wanted in types:
            for component in components or []:
                if wanted in (component.get("types") or []):
                    return component.get("long_name")
        return None

    parsed = {
        "city": get("locality", "sublocality", "administrative_area_level_2"),
        "state": get("administrative_area_level_1"),
        "postal_code": get("postal_code"),
        "country": get("country"),
    }
    parsed = {key: value for key, value in parsed.items() if value}
    return parsed or None


def geocode(address: str, api_key: str, timeout: int = 10) -> Optional[GeocodeResult]:
    if not api_key:
        return None

    params = {"address": address, "key": api_key}
    response = _SESSION.get(_BASE_URL, params=params, timeout=timeout)
    response.raise_for_status()
    payload = response.json()
    status = payload.get("status")
    if status == "ZERO_RESULTS":
        return None
    if status != "OK":
        logger.error("geocode failed: status=%s, error_message=%s", status, payload.get("error_message"))
        raise GoogleGeocodingError(payload.get("error_message") or status)

    results = payload.get("results") or []
    if not results:
        return None
    first = results[0]
    location = (first.get("geometry") or {}).get("location") or {}
    return GeocodeResult(
        latitude=location.get("lat"),
        longitude=location.get("lng"),
        address_normalized=first.get("formatted_address"),
        address_components=parse_address_components(first.get("address_components") or []),
        provider="google",
    )
