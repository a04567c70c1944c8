from __future__ import annotations

import logging
from typing import Any

import httpx

from multas_core.db.enums import ConfidenceTier, GeocodingMethod
from multas_core.jurisdictions import region_hint
from multas_core.settings import settings as core_settings

from curation_service.geocode.base import Candidate
from curation_service.geocode.errors import (
    GeocodingError,
    GeocodingErrorKind,
    classify_api_status,
    classify_http_error,
)
from curation_service.settings import settings

logger = logging.getLogger(__name__)

_LOCATION_TYPE_TIERS = {
    "ROOFTOP": ConfidenceTier.exact,
    "RANGE_INTERPOLATED": ConfidenceTier.interpolated_range,
}


def _tier_for(result: dict[str, Any]) -> ConfidenceTier:
    location_type = (result.get("geometry") or {}).get("location_type", "")
    tier = _LOCATION_TYPE_TIERS.get(location_type)
    if tier is not None:
        return tier
    # The centre of an intersection is a usable point; the centre of a route or town is not.
    if location_type == "GEOMETRIC_CENTER" and "intersection" in (result.get("types") or []):
        return ConfidenceTier.interpolated_range
    return ConfidenceTier.approximate


class GoogleMapsGeocoder:
    """
    External geocoding provider (Google Geocoding API).

    One request per lookup, bounded by ``timeout_s``; no retries. Only
    results at ``exact`` or ``interpolated_range`` precision are returned,
    anything coarser raises ``GeocodingError(low_precision)``.
    """

    name = "geocoder"

    def __init__(
        self,
        *,
        api_key: str,
        url: str | None = None,
        timeout_s: float | None = None,
        country: str | None = None,
        region: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.url = url or settings.geocoder_url
        self.country = country or core_settings.country_name
        self.region = region or core_settings.country_code
        timeout_s = settings.request_timeout_s if timeout_s is None else timeout_s
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_s, connect=timeout_s, read=timeout_s, write=timeout_s),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GoogleMapsGeocoder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def query_for(self, jurisdiction_id: int, text: str) -> str:
        hint = region_hint(jurisdiction_id)
        parts = [text.strip()]
        if hint:
            parts.append(hint)
        parts.append(self.country)
        return ", ".join(parts)

    def lookup(self, jurisdiction_id: int, text: str) -> Candidate | None:
        query = self.query_for(jurisdiction_id, text)
        params = {"address": query, "key": self.api_key, "region": self.region}
        try:
            resp = self._client.get(self.url, params=params)
        except httpx.TimeoutException as exc:
            raise GeocodingError(GeocodingErrorKind.timeout, f"geocoding {query!r} timed out") from exc
        except httpx.RequestError as exc:
            raise GeocodingError(GeocodingErrorKind.network, f"geocoding {query!r} failed: {exc}") from exc

        if resp.status_code != 200:
            raise GeocodingError(
                classify_http_error(resp.status_code),
                f"geocoder returned HTTP {resp.status_code} for {query!r}",
                status_code=resp.status_code,
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise GeocodingError(GeocodingErrorKind.unknown, f"undecodable geocoder response for {query!r}") from exc

        status = payload.get("status", "")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK":
            raise GeocodingError(classify_api_status(status), f"geocoder status {status} for {query!r}")

        results = payload.get("results") or []
        if not results:
            return None
        top = results[0]
        tier = _tier_for(top)
        if not tier.accepted:
            raise GeocodingError(
                GeocodingErrorKind.low_precision,
                f"{query!r} only resolved to {(top.get('geometry') or {}).get('location_type', 'unknown')} precision",
            )
        loc = top["geometry"]["location"]
        return Candidate(
            lat=float(loc["lat"]),
            lng=float(loc["lng"]),
            tier=tier,
            method=GeocodingMethod.geocoder,
            is_electronic=False,
            notes=top.get("formatted_address"),
        )
