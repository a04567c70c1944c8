from __future__ import annotations

import json

import httpx
import pytest

from multas_core.db.enums import ConfidenceTier, GeocodingMethod
from multas_core.text import fold

from curation_service.geocode.errors import GeocodingError, GeocodingErrorKind
from curation_service.geocode.gazetteer import Gazetteer, Installation
from curation_service.geocode.google import GoogleMapsGeocoder
from curation_service.geocode.resolver import (
    LocationResolver,
    Resolution,
    ResolveStatus,
    clean_location,
)

from conftest import FakeProvider, candidate


@pytest.fixture
def gazetteer():
    return Gazetteer([Installation(5, "38k131", "MTOP", "Radar ruta 5", lat=-34.60, lng=-56.25)])


class TestResolver:
    def test_gazetteer_hit_never_reaches_the_geocoder(self, gazetteer):
        external = FakeProvider("geocoder", candidate(ConfidenceTier.exact))
        resolver = LocationResolver([gazetteer, external])
        res = resolver.resolve(65, "RUTA 005 Y 038K131_D")
        assert res.source == "gazetteer"
        assert res.tier is ConfidenceTier.exact
        assert res.is_electronic
        assert external.calls == []

    @pytest.mark.parametrize("exact_first", [True, False])
    def test_highest_tier_wins_in_any_order(self, exact_first):
        ranged = FakeProvider("ranged", candidate(ConfidenceTier.interpolated_range, lat=-34.8))
        exact = FakeProvider("exact", candidate(ConfidenceTier.exact, lat=-34.7))
        providers = [exact, ranged] if exact_first else [ranged, exact]
        res = LocationResolver(providers).resolve(6, "AV ITALIA Y COMERCIO")
        assert res.source == "exact"
        assert res.lat == -34.7

    def test_tie_goes_to_earlier_provider(self):
        first = FakeProvider("first", candidate(ConfidenceTier.interpolated_range, lat=-34.8))
        second = FakeProvider("second", candidate(ConfidenceTier.interpolated_range, lat=-34.7))
        res = LocationResolver([first, second]).resolve(6, "X")
        assert res.source == "first"
        assert len(second.calls) == 1

    def test_approximate_is_never_accepted(self):
        coarse = FakeProvider("coarse", candidate(ConfidenceTier.approximate))
        outcome = LocationResolver([coarse]).resolve_detailed(6, "CENTRO")
        assert outcome.status is ResolveStatus.needs_manual_geocode
        assert outcome.resolution is None

    def test_judgment_wins_and_is_stable(self):
        provider = FakeProvider("geocoder", candidate(ConfidenceTier.exact))
        judged = Resolution(
            lat=-34.91, lng=-56.16, tier=ConfidenceTier.exact, method=GeocodingMethod.manual_click, source="judgment"
        )
        resolver = LocationResolver([provider], {(6, fold("AV ITALIA Y COMERCIO")): judged})
        assert resolver.resolve(6, "Av Italia y Comercio") == judged
        assert resolver.resolve(6, "AV ITALIA Y COMERCIO") == judged
        assert provider.calls == []

    def test_provider_error_needs_manual_geocode(self):
        failing = FakeProvider("geocoder", error=GeocodingError(GeocodingErrorKind.rate_limit, "slow down"))
        outcome = LocationResolver([failing]).resolve_detailed(6, "X")
        assert outcome.status is ResolveStatus.needs_manual_geocode
        assert "rate_limit" in outcome.reason

    def test_nothing_matched_needs_manual_geocode(self):
        outcome = LocationResolver([FakeProvider("geocoder")]).resolve_detailed(6, "X")
        assert outcome.status is ResolveStatus.needs_manual_geocode
        assert outcome.reason == "no provider matched"

    def test_point_outside_country_is_invalid(self):
        abroad = FakeProvider("geocoder", candidate(ConfidenceTier.exact, lat=40.42, lng=-3.70))
        outcome = LocationResolver([abroad]).resolve_detailed(6, "GRAN VIA")
        assert outcome.status is ResolveStatus.invalid

    def test_empty_text_is_invalid(self):
        provider = FakeProvider("geocoder")
        outcome = LocationResolver([provider]).resolve_detailed(6, "   ")
        assert outcome.status is ResolveStatus.invalid
        assert provider.calls == []

    def test_tacuarembo_house_number_cleanup(self):
        provider = FakeProvider("geocoder")
        LocationResolver([provider]).resolve(56, "18 DE JULIO FRENTE AL N° 250")
        assert provider.calls == [(56, "18 DE JULIO 250")]
        assert clean_location(6, "18 DE JULIO FRENTE AL N° 250") == "18 DE JULIO FRENTE AL N° 250"

    def test_from_session_uses_stored_judgments(self, store):
        store.save_location(6, "AV ITALIA Y COMERCIO", lat=-34.9058, lng=-56.1913, method="manual_click")
        store.session.commit()
        provider = FakeProvider("geocoder", candidate(ConfidenceTier.exact))
        res = LocationResolver.from_session(store.session, [provider]).resolve(6, "av italia y comercio")
        assert res.source == "judgment"
        assert res.method is GeocodingMethod.manual_click
        assert provider.calls == []


def geocoder_with(handler):
    return GoogleMapsGeocoder(
        api_key="test-key", url="https://geocoder.test/json", timeout_s=1, transport=httpx.MockTransport(handler)
    )


def geocode_response(location_type, types=("street_address",), lat=-34.9058, lng=-56.1913):
    body = {
        "status": "OK",
        "results": [
            {
                "formatted_address": "Av. Italia & Comercio, Montevideo",
                "types": list(types),
                "geometry": {"location": {"lat": lat, "lng": lng}, "location_type": location_type},
            }
        ],
    }
    return httpx.Response(200, content=json.dumps(body), headers={"content-type": "application/json"})


class TestGoogleMapsGeocoder:
    def test_rooftop_is_exact_and_query_carries_region(self):
        seen = []

        def handler(request):
            seen.append(request)
            return geocode_response("ROOFTOP")

        cand = geocoder_with(handler).lookup(6, "AV ITALIA Y COMERCIO")
        assert cand.tier is ConfidenceTier.exact
        assert cand.method is GeocodingMethod.geocoder
        assert not cand.is_electronic
        params = seen[0].url.params
        assert params["address"] == "AV ITALIA Y COMERCIO, Montevideo, Uruguay"
        assert params["key"] == "test-key"
        assert params["region"] == "uy"

    def test_national_agency_has_no_region_hint(self):
        geocoder = geocoder_with(lambda request: geocode_response("ROOFTOP"))
        assert geocoder.query_for(65, "RUTA 1 KM 20") == "RUTA 1 KM 20, Uruguay"

    def test_range_interpolated(self):
        cand = geocoder_with(lambda request: geocode_response("RANGE_INTERPOLATED")).lookup(6, "X 1234")
        assert cand.tier is ConfidenceTier.interpolated_range

    def test_intersection_centre_is_accepted(self):
        handler = lambda request: geocode_response("GEOMETRIC_CENTER", types=("intersection",))  # noqa: E731
        cand = geocoder_with(handler).lookup(6, "X Y Z")
        assert cand.tier is ConfidenceTier.interpolated_range

    @pytest.mark.parametrize("location_type, types", [("APPROXIMATE", ("locality",)), ("GEOMETRIC_CENTER", ("route",))])
    def test_coarse_results_are_rejected(self, location_type, types):
        geocoder = geocoder_with(lambda request: geocode_response(location_type, types=types))
        with pytest.raises(GeocodingError) as exc_info:
            geocoder.lookup(6, "CENTRO")
        assert exc_info.value.kind is GeocodingErrorKind.low_precision

    def test_zero_results(self):
        geocoder = geocoder_with(lambda request: httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []}))
        assert geocoder.lookup(6, "NOWHERE") is None

    @pytest.mark.parametrize(
        "status_code, kind",
        [(429, GeocodingErrorKind.rate_limit), (403, GeocodingErrorKind.quota_exceeded), (500, GeocodingErrorKind.unknown)],
    )
    def test_http_errors_are_classified(self, status_code, kind):
        geocoder = geocoder_with(lambda request: httpx.Response(status_code))
        with pytest.raises(GeocodingError) as exc_info:
            geocoder.lookup(6, "X")
        assert exc_info.value.kind is kind
        assert exc_info.value.status_code == status_code

    def test_api_status_errors_are_classified(self):
        geocoder = geocoder_with(lambda request: httpx.Response(200, json={"status": "OVER_QUERY_LIMIT"}))
        with pytest.raises(GeocodingError) as exc_info:
            geocoder.lookup(6, "X")
        assert exc_info.value.kind is GeocodingErrorKind.quota_exceeded

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(GeocodingError) as exc_info:
            geocoder_with(handler).lookup(6, "X")
        assert exc_info.value.kind is GeocodingErrorKind.timeout

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(GeocodingError) as exc_info:
            geocoder_with(handler).lookup(6, "X")
        assert exc_info.value.kind is GeocodingErrorKind.network
