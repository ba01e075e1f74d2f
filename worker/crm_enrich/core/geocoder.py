"""Free-text address geocoding through an ordered provider chain.

Nominatim runs first (no key), then Mapbox and Google when credentials are
configured. A provider answer counts only if both coordinates are finite and
in range; anything else, including exceptions, falls through to the next
provider. ``None`` means "still ungeocoded", never an error.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Callable, List, Optional, Sequence, Tuple

from crm_enrich.core.config import Settings, get_settings
from crm_enrich.models import GeocodeResult
from crm_enrich.vendors import google_geocoding, mapbox, nominatim

logger = logging.getLogger(__name__)

Provider = Callable[[str], Optional[GeocodeResult]]

_UNIT_PATTERNS = [
    re.compile(r"\s*-\s*Suite\s+\d+", re.IGNORECASE),
    re.compile(r",?\s*Suite\s+\d+", re.IGNORECASE),
    re.compile(r",?\s*Unit\s+\d+", re.IGNORECASE),
    re.compile(r",?\s*Ste\.?\s*\d+", re.IGNORECASE),
    re.compile(r"\s*#\s*\d+", re.IGNORECASE),
    re.compile(r",?\s*Floor\s+\d+", re.IGNORECASE),
    # "Fl." needs its period so a Florida "FL 32801" survives.
    re.compile(r",?\s*\b(?:Fl\.|Flr\.?)\s*\d+", re.IGNORECASE),
    re.compile(r",?\s*Bldg\.?\s*\w+", re.IGNORECASE),
]


def normalize_address_for_geocode(address: Optional[str]) -> str:
    """Strip suite/unit/floor/building qualifiers that commonly cause misses."""

    if not address or not isinstance(address, str):
        return ""
    cleaned = address.strip()
    for pattern in _UNIT_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    cleaned = re.sub(r"\s*,\s*,", ",", cleaned)
    cleaned = re.sub(r"^\s*,|,\s*$", "", cleaned)
    return re.sub(r"\s{2,}", " ", cleaned).strip()


def _as_coordinate(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def valid_coordinates(latitude, longitude) -> Optional[Tuple[float, float]]:
    lat = _as_coordinate(latitude)
    lng = _as_coordinate(longitude)
    if lat is None or lng is None:
        return None
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lng <= 180.0:
        return None
    return lat, lng


def default_providers(settings: Settings) -> List[Tuple[str, Provider]]:
    timeout = settings.request_timeout
    providers: List[Tuple[str, Provider]] = [
        ("nominatim", lambda q: nominatim.geocode(q, user_agent=settings.nominatim_user_agent, timeout=timeout)),
    ]
    if settings.mapbox_access_token:
        providers.append(
            ("mapbox", lambda q: mapbox.geocode(q, access_token=settings.mapbox_access_token, timeout=timeout))
        )
    if settings.google_maps_api_key:
        providers.append(
            ("google", lambda q: google_geocoding.geocode(q, api_key=settings.google_maps_api_key, timeout=timeout))
        )
    return providers


class Geocoder:
    def __init__(
        self,
        providers: Optional[Sequence[Tuple[str, Provider]]] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        if providers is None:
            providers = default_providers(settings or get_settings())
        self.providers = list(providers)

    def geocode(self, address: Optional[str]) -> Optional[GeocodeResult]:
        query = normalize_address_for_geocode(address)
        if not query:
            return None

        for name, provider in self.providers:
            try:
                result = provider(query)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Geocoder %s failed for %r: %s", name, query, exc)
                continue

            if result is None:
                logger.debug("Geocoder %s had no result for %r", name, query)
                continue

            coordinates = valid_coordinates(result.latitude, result.longitude)
            if coordinates is None:
                logger.warning(
                    "Geocoder %s returned unusable coordinates for %r: lat=%r lng=%r",
                    name,
                    query,
                    result.latitude,
                    result.longitude,
                )
                continue

            result.latitude, result.longitude = coordinates
            result.provider = result.provider or name
            return result

        logger.info("No geocoder resolved %r", query)
        return None


def geocode(address: Optional[str], settings: Optional[Settings] = None) -> Optional[GeocodeResult]:
    return Geocoder(settings=settings).geocode(address)
