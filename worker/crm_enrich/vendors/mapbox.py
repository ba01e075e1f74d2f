"""Mapbox Geocoding v5 forward-geocoding client."""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from crm_enrich.models import GeocodeResult

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"
_TYPES = "address,place,locality,postcode,region,country"


def _components(context: List[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    def get(prefix: str) -> Optional[str]:
        for item in context:
            if str(item.get("id", "")).startswith(prefix):
                return item.get("text")
        return None

    parsed = {
        "city": get("place") or get("locality"),
        "state": get("region"),
        "postal_code": get("postcode"),
        "country": get("country"),
    }
    parsed = {key: value for key, value in parsed.items() if value}
    return parsed or None


def geocode(address: str, access_token: str, timeout: int = 10) -> Optional[GeocodeResult]:
    if not access_token:
        return None

    params = {"access_token": access_token, "limit": 1, "types": _TYPES}
    response = _SESSION.get(f"{_BASE_URL}/{quote(address, safe='')}.json", params=params, timeout=timeout)
    response.raise_for_status()
    features = response.json().get("features") or []
    if not features:
        return None

    feature = features[0]
    center = feature.get("center") or []
    if len(center) < 2:
        return None

    # Mapbox returns [lng, lat].
    longitude, latitude = center[0], center[1]
    context = feature.get("context")
    return GeocodeResult(
        latitude=latitude,
        longitude=longitude,
        address_normalized=feature.get("place_name"),
        address_components=_components(context) if isinstance(context, list) else None,
        provider="mapbox",
    )
