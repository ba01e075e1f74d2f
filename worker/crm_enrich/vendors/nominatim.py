"""OpenStreetMap Nominatim search client (no API key, 1 request/second policy)."""

import logging
from typing import Any, Dict, Optional

import requests

from crm_enrich.models import GeocodeResult

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://nominatim.openstreetmap.org/search"


def _components(address: Dict[str, Any]) -> Optional[Dict[str, str]]:
    city = address.get("city") or address.get("town") or address.get("village")
    country_code = address.get("country_code")
    parsed = {
        "city": city,
        "state": address.get("state"),
        "postal_code": address.get("postcode"),
        "country": country_code.upper() if country_code else address.get("country"),
    }
    parsed = {key: value for key, value in parsed.items() if value}
    return parsed or None


def geocode(address: str, user_agent: str, timeout: int = 10) -> Optional[GeocodeResult]:
    params = {"q": address, "format": "json", "limit": 1, "addressdetails": 1}
    response = _SESSION.get(_BASE_URL, params=params, headers={"User-Agent": user_agent}, timeout=timeout)
    response.raise_for_status()
    payload = response.json()
    if not isinstance(payload, list) or not payload:
        return None

    first = payload[0]
    if not first.get("lat") or not first.get("lon"):
        return None

    details = first.get("address")
    return GeocodeResult(
        latitude=float(first["lat"]),
        longitude=float(first["lon"]),
        address_normalized=first.get("display_name"),
        address_components=_components(details) if isinstance(details, dict) else None,
        provider="nominatim",
    )
