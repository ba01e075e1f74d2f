import pytest

from crm_enrich.vendors import google_geocoding


class DummyResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise RuntimeError("http error")

    def json(self):
        return self._payload


class DummySession:
    def __init__(self):
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        return self.response


@pytest.fixture(autouse=True)
def patch_session(monkeypatch):
    session = DummySession()
    monkeypatch.setattr(google_geocoding, "_SESSION", session)
    return session


def test_geocode_success(patch_session):
    patch_session.response = DummyResponse(
        payload={
            "status": "OK",
            "results": [
                {
                    "formatted_address": "100 Main St, Springfield, IL 62701, USA",
                    "geometry": {"location": {"lat": 39.8, "lng": -89.65}},
                    "address_components": [
                        {"long_name": "Springfield", "types": ["locality", "political"]},
                        {"long_name": "Illinois", "types": ["administrative_area_level_1"]},
                        {"long_name": "62701", "types": ["postal_code"]},
                    ],
                }
            ],
        }
    )

    result = google_geocoding.geocode("100 Main St, Springfield, IL", "key")

    assert result.latitude == 39.8
    assert result.longitude == -89.65
    assert result.provider == "google"
    assert result.address_components == {"city": "Springfield", "state": "Illinois", "postal_code": "62701"}
    url, params, timeout = patch_session.calls[0]
    assert "geocode" in url
    assert params["address"] == "100 Main St, Springfield, IL"
    assert timeout == 10


def test_geocode_without_key_skips_network(patch_session):
    assert google_geocoding.geocode("100 Main St", "") is None
    assert patch_session.calls == []


def test_geocode_zero_results(patch_session):
    patch_session.response = DummyResponse(payload={"status": "ZERO_RESULTS", "results": []})
    assert google_geocoding.geocode("nowhere", "key") is None


def test_geocode_error_status(patch_session):
    patch_session.response = DummyResponse(payload={"status": "REQUEST_DENIED", "error_message": "bad key"})
    with pytest.raises(google_geocoding.GoogleGeocodingError):
        google_geocoding.geocode("100 Main St", "key")


def test_parse_address_components_empty():
    assert google_geocoding.parse_address_components([]) is None
